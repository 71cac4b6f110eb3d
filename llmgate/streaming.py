import codecs
import copy
import hashlib
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional, Union

from .cache import MISSING, CacheStore
from .normalizer import ResponseNormalizer
from .types import NormalizedResponse, StreamEvent, Usage

logger = logging.getLogger(__name__)

RESPONSE_CACHE = "responses"
RESPONSE_CACHE_TTL = 60.0
RESPONSE_CACHE_MAX_SIZE = 100

# Length of the body head hashed into the cache key
CACHE_KEY_PREFIX_CHARS = 100

# Server-sent events framing used by OpenAI-compatible streaming endpoints
SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"
_SSE_FIELDS = ("event:", "id:", "retry:")
# Payload standing in for `data: [DONE]`
_SSE_DONE_PAYLOAD = {"done": True}

# Fields carrying content; stripped from the terminal payload once merged
_CONTENT_FIELDS = ("message", "content", "response", "choices", "delta")


def body_cache_key(body: str) -> str:
    """
    Cache key of a raw body: its length, a digest of its head and a digest of
    the whole body, so bodies sharing a head never share an entry.
    """
    head = hashlib.sha256(body[:CACHE_KEY_PREFIX_CHARS].encode("utf-8")).hexdigest()
    full = hashlib.sha256(body.encode("utf-8")).hexdigest()
    return f"{len(body)}:{head}:{full}"


def _parse_line(line: str) -> Optional[Any]:
    line = line.strip()
    if not line:
        return None
    if line.startswith(":") or line.startswith(_SSE_FIELDS):
        return None
    if line.startswith(SSE_DATA_PREFIX):
        line = line[len(SSE_DATA_PREFIX):].strip()
        if line == SSE_DONE:
            return _SSE_DONE_PAYLOAD
    try:
        return json.loads(line)
    except ValueError:
        logger.debug("Skipping unparseable stream line: %.80s", line)
        return None


class _Accumulator:
    """
    State of one reconstruction: content so far plus the terminal payload.
    """

    def __init__(self, normalizer: ResponseNormalizer):
        self.normalizer = normalizer
        self.content_so_far = ""
        self.fragment_count = 0
        self.terminal_payload: Optional[Any] = None
        self.last_payload: Optional[Any] = None
        self.parsed = 0
        self.finished = False

    def feed(self, payload: Any) -> str:
        """
        Merge one parsed object; returns the content fragment it carried.
        """
        self.parsed += 1
        self.last_payload = payload
        fragment = self.normalizer.extract_content(payload)
        if fragment:
            self.content_so_far += fragment
            self.fragment_count += 1
        if payload is _SSE_DONE_PAYLOAD:
            # Keeps the metadata of a finish chunk seen before it
            if self.terminal_payload is None:
                self.terminal_payload = payload
        elif self.normalizer.is_terminal(payload):
            self.terminal_payload = payload
        return fragment

    @property
    def metadata_payload(self) -> Optional[Any]:
        return self.terminal_payload if self.terminal_payload is not None else self.last_payload


class StreamReconstructor:
    """
    Turn newline-delimited JSON fragments into one logical response.

    Batch mode (`reconstruct`) handles complete bodies that still contain
    several JSON lines; live mode (`events`) consumes a chunked transport and
    yields ordered `partial` events followed by exactly one `complete` event.

    Lines that fail to parse are skipped and scanning continues, so one bad
    line never hides the valid lines after it.
    """

    def __init__(
        self,
        normalizer: ResponseNormalizer,
        cache: Optional[CacheStore] = None,
        cache_ttl: float = RESPONSE_CACHE_TTL,
    ):
        self.normalizer = normalizer
        self.cache = cache
        self.cache_ttl = cache_ttl
        if cache is not None:
            cache.ensure(RESPONSE_CACHE, max_size=RESPONSE_CACHE_MAX_SIZE, ttl=cache_ttl)

    # ==========================================================================
    # Batch Mode
    # ==========================================================================

    def reconstruct(self, body: Union[str, bytes]) -> Dict[str, Any]:
        """
        Rebuild one payload from a complete body.

        The result keeps the metadata of the last payload carrying a completion
        marker (usage, model, finish reason) with `content` replaced by the
        concatenation of every fragment. A body where nothing parses yields
        `{"content": ""}`.

        Args:
            body (Union[str, bytes]): Raw response body.

        Returns:
            Dict[str, Any]: A payload the normalizer can read.
        """
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")

        key = body_cache_key(body)
        if self.cache is not None:
            cached = self.cache.get(RESPONSE_CACHE, key)
            if cached is not MISSING:
                return copy.deepcopy(cached)

        acc = _Accumulator(self.normalizer)
        for line in body.split("\n"):
            payload = _parse_line(line)
            if payload is not None:
                acc.feed(payload)

        if acc.parsed == 0:
            result: Dict[str, Any] = {"content": ""}
        else:
            result = self._merge(acc)

        if self.cache is not None:
            self.cache.set(RESPONSE_CACHE, key, copy.deepcopy(result), ttl=self.cache_ttl)
        return result

    def _merge(self, acc: _Accumulator) -> Dict[str, Any]:
        meta = acc.metadata_payload
        result: Dict[str, Any] = {}
        if isinstance(meta, dict):
            result.update({k: v for k, v in meta.items() if k not in _CONTENT_FIELDS})
        finish_reason = self.normalizer.extract_finish_reason(meta)
        result["finish_reason"] = finish_reason
        result["content"] = acc.content_so_far
        result["fragment_count"] = acc.fragment_count
        return result

    # ==========================================================================
    # Live Mode
    # ==========================================================================

    async def events(
        self,
        chunks: AsyncIterable[Union[str, bytes]],
        model: Optional[str] = None,
        input_tokens: int = 0,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield stream events from a chunked transport.

        Partial lines are buffered until the next chunk completes them, so a
        JSON object split across chunks is still parsed. Events come out in
        chunk arrival order; once a terminal marker is seen the remaining
        input is drained without emitting anything.

        Args:
            chunks: Async iterable of raw text (or bytes) chunks.
            model (str, optional): Model reported when payloads carry none.
            input_tokens (int): Fallback prompt size when the backend reports no usage.
        """
        async def payloads() -> AsyncIterator[Any]:
            buffer = ""
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            async for chunk in chunks:
                if isinstance(chunk, bytes):
                    chunk = decoder.decode(chunk)
                buffer += chunk
                lines = buffer.split("\n")
                buffer = lines.pop()
                for line in lines:
                    payload = _parse_line(line)
                    if payload is not None:
                        yield payload
            payload = _parse_line(buffer + decoder.decode(b"", final=True))
            if payload is not None:
                yield payload

        async for event in self.events_from_payloads(payloads(), model=model, input_tokens=input_tokens):
            yield event

    async def events_from_payloads(
        self,
        payloads: AsyncIterable[Any],
        model: Optional[str] = None,
        input_tokens: int = 0,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield stream events from already-decoded payload objects (SDK streams).
        """
        acc = _Accumulator(self.normalizer)
        async for payload in payloads:
            if acc.finished:
                continue
            fragment = acc.feed(payload)
            if fragment:
                yield {
                    "type": "partial",
                    "provider": self.normalizer.provider,
                    "fragment": fragment,
                    "token_count": acc.fragment_count,
                    "done": False,
                }
            if acc.terminal_payload is not None:
                acc.finished = True
                yield self._complete_event(acc, model, input_tokens)

        # Transport closed without a terminal marker
        if not acc.finished:
            yield self._complete_event(acc, model, input_tokens)

    def _complete_event(
        self,
        acc: _Accumulator,
        model: Optional[str],
        input_tokens: int,
    ) -> StreamEvent:
        meta = acc.metadata_payload
        usage = self.normalizer.extract_usage(meta) if meta is not None else Usage()
        if usage.total_tokens == 0:
            usage = Usage(input_tokens, acc.fragment_count)
        response = NormalizedResponse(
            provider=self.normalizer.provider,
            model=self.normalizer.extract_model(meta, model),
            content=acc.content_so_far,
            usage=usage,
            finish_reason=self.normalizer.extract_finish_reason(meta) if meta is not None else "stop",
        )
        return {
            "type": "complete",
            "provider": response.provider,
            "content": response.content,
            "usage": usage.to_dict(),
            "model": response.model,
            "finish_reason": response.finish_reason,
            "response": response,
            "done": True,
        }

