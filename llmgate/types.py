from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, List, Dict, Any, Union, TypedDict, Optional, Tuple

# =============================================================================
# Type Definitions
# =============================================================================

# Supported providers
Provider = Literal["openai", "groq", "grok", "anthropic", "ollama", "custom"]

# How a provider reaches its backend
IntegrationStyle = Literal["http", "sdk"]


class TextContent(TypedDict, total=False):
    """
    Text content part for multimodal messages.
    """
    type: Literal["text"]
    text: str


class ImageUrlDetail(TypedDict, total=False):
    """
    Image URL specification with optional detail level.
    """
    url: str
    detail: Literal["auto", "low", "high"]  # OpenAI-specific


class ImageContent(TypedDict, total=False):
    """
    Image content part for multimodal messages (OpenAI format).
    """
    type: Literal["image_url"]
    image_url: ImageUrlDetail


# Content can be a simple string or a list of content parts (text + images)
ContentPart = Union[TextContent, ImageContent]
MessageContent = Union[str, List[ContentPart]]


class Message(TypedDict, total=False):
    """
    Chat message with optional multimodal content.

    Roles:
    - "system": System prompt / instructions
    - "user": User message
    - "assistant": Model response
    """
    role: Literal["system", "user", "assistant"]
    content: MessageContent


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Normalized Results
# =============================================================================

@dataclass(frozen=True)
class Usage:
    """
    Token usage reported by a backend, normalized across providers.
    """
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class NormalizedResponse:
    """
    Canonical result of a non-streaming call, identical for every provider.
    """
    provider: str
    model: str
    content: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = "stop"
    timestamp: str = field(default_factory=utc_timestamp)
    latency_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "content": self.content,
            "usage": self.usage.to_dict(),
            "finish_reason": self.finish_reason,
            "timestamp": self.timestamp,
            "latency_ms": self.latency_ms,
        }


@dataclass(frozen=True)
class ConversationTurn:
    """
    One entry of the conversation ledger.
    """
    role: Literal["user", "assistant"]
    content: Tuple[Dict[str, Any], ...]
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def text(self) -> str:
        return " ".join(
            part.get("text", "") for part in self.content if part.get("type") == "text"
        )


class StreamEvent(TypedDict, total=False):
    """
    Event emitted by streaming operations.

    - type='partial': one content fragment, in arrival order.
      {"type": "partial", "provider": "ollama", "fragment": "Hi", "token_count": 1, "done": False}
    - type='complete': emitted exactly once with the accumulated result.
      {"type": "complete", "content": "Hi there", "usage": {...}, "model": "...", "done": True}
    - type='error': the call failed; carries the contextualized error.
    """
    type: Literal["partial", "complete", "error"]
    provider: str
    fragment: str
    token_count: int
    done: bool
    content: str
    usage: Dict[str, int]
    model: str
    finish_reason: str
    response: NormalizedResponse
    error: Exception
    operation: str
