from collections.abc import Mapping
from typing import Any, Callable, Optional

from .types import NormalizedResponse, Usage

# SDK-specific extractors supplied by a provider
ContentExtractor = Callable[[Any], Optional[str]]
UsageExtractor = Callable[[Any], Optional[Usage]]
FinishReasonExtractor = Callable[[Any], Optional[str]]


def get_field(obj: Any, name: str) -> Any:
    """
    Read a field from a mapping or an attribute object, None when absent.
    """
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def get_path(obj: Any, *path: Any) -> Any:
    """
    Follow a path of field names and list indexes, None on the first gap.
    """
    current = obj
    for step in path:
        if current is None:
            return None
        if isinstance(step, int):
            if not isinstance(current, (list, tuple)) or len(current) <= step:
                return None
            current = current[step]
        else:
            current = get_field(current, step)
    return current


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


class ResponseNormalizer:
    """
    Extract content, usage and finish reason from any backend payload.

    Field precedence for content:
        1. nested message content (`message.content`, `choices[0].message.content`,
           `choices[0].delta.content`)
        2. top-level `content` (string)
        3. top-level `response`
        4. the provider's SDK extractor
    Nothing found means empty content. Extraction never raises.
    """

    def __init__(
        self,
        provider: str,
        default_model: Optional[str] = None,
        *,
        sdk_content: Optional[ContentExtractor] = None,
        sdk_usage: Optional[UsageExtractor] = None,
        sdk_finish_reason: Optional[FinishReasonExtractor] = None,
    ):
        self.provider = provider
        self.default_model = default_model
        self._sdk_content = sdk_content
        self._sdk_usage = sdk_usage
        self._sdk_finish_reason = sdk_finish_reason

    def extract_content(self, payload: Any) -> str:
        candidates = (
            get_path(payload, "message", "content"),
            get_path(payload, "choices", 0, "message", "content"),
            get_path(payload, "choices", 0, "delta", "content"),
            get_field(payload, "content"),
            get_field(payload, "response"),
        )
        for candidate in candidates:
            if isinstance(candidate, str) and candidate:
                return candidate

        if self._sdk_content is not None:
            try:
                content = self._sdk_content(payload)
            except (AttributeError, IndexError, KeyError, TypeError):
                content = None
            if isinstance(content, str):
                return content
        return ""

    def extract_usage(self, payload: Any) -> Usage:
        # Ollama reports counts at the top level under two spellings
        input_tokens = _as_int(get_field(payload, "prompt_eval_count"))
        if input_tokens is None:
            input_tokens = _as_int(get_field(payload, "prompt_eval_tokens"))
        output_tokens = _as_int(get_field(payload, "eval_count"))
        if output_tokens is None:
            output_tokens = _as_int(get_field(payload, "eval_tokens"))
        if input_tokens is not None or output_tokens is not None:
            return Usage(input_tokens or 0, output_tokens or 0)

        usage = get_field(payload, "usage")
        if usage is not None:
            for prompt_key, completion_key in (
                ("prompt_tokens", "completion_tokens"),
                ("input_tokens", "output_tokens"),
            ):
                prompt = _as_int(get_field(usage, prompt_key))
                completion = _as_int(get_field(usage, completion_key))
                if prompt is not None or completion is not None:
                    return Usage(prompt or 0, completion or 0)

        if self._sdk_usage is not None:
            try:
                sdk_usage = self._sdk_usage(payload)
            except (AttributeError, IndexError, KeyError, TypeError):
                sdk_usage = None
            if isinstance(sdk_usage, Usage):
                return sdk_usage
        return Usage()

    def extract_finish_reason(self, payload: Any) -> str:
        candidates = (
            get_field(payload, "done_reason"),
            get_field(payload, "finish_reason"),
            get_path(payload, "choices", 0, "finish_reason"),
            get_field(payload, "stop_reason"),
        )
        for candidate in candidates:
            if isinstance(candidate, str) and candidate:
                return candidate

        if self._sdk_finish_reason is not None:
            try:
                reason = self._sdk_finish_reason(payload)
            except (AttributeError, IndexError, KeyError, TypeError):
                reason = None
            if isinstance(reason, str) and reason:
                return reason
        return "stop"

    def extract_model(self, payload: Any, fallback: Optional[str] = None) -> str:
        model = get_field(payload, "model")
        if isinstance(model, str) and model:
            return model
        return fallback or self.default_model or ""

    @staticmethod
    def is_terminal(payload: Any) -> bool:
        """
        True when a payload marks the end of a response.
        """
        if get_field(payload, "done") is True:
            return True
        if get_path(payload, "choices", 0, "finish_reason"):
            return True
        return get_field(payload, "type") == "message_stop"

    def normalize(
        self,
        payload: Any,
        model: Optional[str] = None,
        latency_ms: Optional[float] = None,
    ) -> NormalizedResponse:
        return NormalizedResponse(
            provider=self.provider,
            model=self.extract_model(payload, model),
            content=self.extract_content(payload),
            usage=self.extract_usage(payload),
            finish_reason=self.extract_finish_reason(payload),
            latency_ms=latency_ms,
        )
