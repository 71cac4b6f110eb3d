import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError
from .types import ConversationTurn

logger = logging.getLogger(__name__)

NO_HISTORY = "No conversation history"

LEDGER_ROLES = ("user", "assistant")


def _as_parts(content: Any) -> Tuple[Dict[str, Any], ...]:
    if isinstance(content, (list, tuple)):
        parts = []
        for item in content:
            if isinstance(item, str):
                parts.append({"type": "text", "text": item})
            elif isinstance(item, dict) and "content" in item and "type" not in item:
                # A message dict; keep only its content
                parts.extend(_as_parts(item["content"]))
            elif isinstance(item, dict):
                parts.append(dict(item))
            else:
                parts.append({"type": "text", "text": str(item)})
        return tuple(parts)
    return ({"type": "text", "text": "" if content is None else str(content)},)


class ConversationLedger:
    """
    Append-only, size-bounded history of exchanged turns.

    When the ledger is full, the oldest 20% of turns are dropped in one batch
    before the next append, so trimming happens once every few appends instead
    of on each one.
    """

    def __init__(self, max_size: int = 100):
        self.max_size = max(1, max_size)
        self._turns: List[ConversationTurn] = []

    def append(self, role: str, content: Any) -> ConversationTurn:
        """
        Record a turn.

        Args:
            role (str): 'user' or 'assistant'.
            content: A string, a list of content parts, or a list of messages.

        Returns:
            ConversationTurn: The stored turn.
        """
        if role not in LEDGER_ROLES:
            raise ValidationError(f"Unsupported history role: {role}")

        if len(self._turns) >= self.max_size:
            remove_count = max(1, math.floor(self.max_size * 0.2))
            del self._turns[:remove_count]
            logger.debug("Trimmed %d turns from conversation history", remove_count)

        turn = ConversationTurn(role=role, content=_as_parts(content))
        self._turns.append(turn)
        return turn

    def snapshot(self) -> Tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def formatted(self) -> str:
        """
        Render the history as one 'role: content' line per turn.
        """
        if not self._turns:
            return NO_HISTORY
        return "\n".join(f"{turn.role}: {turn.text}" for turn in self._turns)

    def summary(self) -> Dict[str, Any]:
        user = sum(1 for turn in self._turns if turn.role == "user")
        return {
            "user_messages": user,
            "assistant_messages": len(self._turns) - user,
            "total": len(self._turns),
        }

    def length(self) -> int:
        return len(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def last(self) -> Optional[ConversationTurn]:
        return self._turns[-1] if self._turns else None

    def clear(self) -> None:
        self._turns = []
