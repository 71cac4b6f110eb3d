import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, AsyncIterator, NoReturn, Optional

from ..cache import CacheStore
from ..config import ProviderConfig
from ..errors import ConfigurationError, LLMGateError, ProviderError, TransportError, ValidationError
from ..formatting import ImageProcessor, MessageFormatter
from ..normalizer import ResponseNormalizer
from ..retry import RETRYABLE_STATUSES
from ..streaming import StreamReconstructor
from ..types import Message, NormalizedResponse, StreamEvent, utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class ProviderMetrics:
    request_count: int = 0
    error_count: int = 0
    total_response_time_ms: float = 0.0
    last_request_time: Optional[str] = None

    @property
    def average_response_time_ms(self) -> float:
        if not self.request_count:
            return 0.0
        return self.total_response_time_ms / self.request_count

    @property
    def success_rate(self) -> float:
        if not self.request_count:
            return 0.0
        return (self.request_count - self.error_count) / self.request_count

    def record(self, elapsed_ms: float, failed: bool = False) -> None:
        self.request_count += 1
        self.total_response_time_ms += elapsed_ms
        self.last_request_time = utc_timestamp()
        if failed:
            self.error_count += 1


@dataclass
class HealthStatus:
    last_check: Optional[str] = None
    is_healthy: Optional[bool] = None
    consecutive_failures: int = 0
    started_at: float = dataclasses.field(default_factory=time.monotonic)


def _as_number(key: str, value: Any, convert):
    try:
        return convert(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key}: {value!r}") from None


def clamp_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """
    Clamp temperature to [0, 2] and max_tokens to at least 1.

    Raises:
        ValidationError: If either option is not a number.
    """
    valid = dict(options)
    if valid.get("temperature") is not None:
        temperature = _as_number("temperature", valid["temperature"], float)
        valid["temperature"] = max(0.0, min(2.0, temperature))
    if valid.get("max_tokens") is not None:
        valid["max_tokens"] = max(1, _as_number("max_tokens", valid["max_tokens"], int))
    return valid


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Every provider exposes the same operations (`chat`, `vision`,
    `stream_chat`, `stream_vision`, `is_available`, `list_models`). This class
    runs the steps they share: format the input, merge and clamp options,
    pick the model, then hand over to the integration style (`_complete` /
    `_stream`) implemented by `HttpProvider` and `SdkProvider`.

    Collaborators are injected: one CacheStore, MessageFormatter and
    ImageProcessor can be shared by all providers of a client.
    """

    integration_style: str = "base"

    def __init__(
        self,
        config: ProviderConfig,
        name: Optional[str] = None,
        *,
        cache: Optional[CacheStore] = None,
        formatter: Optional[MessageFormatter] = None,
        image_processor: Optional[ImageProcessor] = None,
        default_vision_model: Optional[str] = None,
    ):
        self.config = config
        self.name = name or config.name
        self.model = config.model
        self.default_vision_model = default_vision_model

        self.cache = cache or CacheStore()
        self.image_processor = image_processor or ImageProcessor(cache=self.cache)
        self.formatter = formatter or MessageFormatter(
            image_processor=self.image_processor, cache=self.cache
        )
        self.normalizer = self._build_normalizer()
        self.reconstructor = StreamReconstructor(self.normalizer, cache=self.cache)

        self.metrics = ProviderMetrics()
        self.health = HealthStatus()

    def _build_normalizer(self) -> ResponseNormalizer:
        return ResponseNormalizer(self.name, self.config.model)

    # ==========================================================================
    # Unified Operations
    # ==========================================================================

    async def chat(self, messages: Any, **opts) -> NormalizedResponse:
        """
        Send a non-streaming chat request.

        Args:
            messages: A string, a message dict or a list of them.
            **opts: temperature, max_tokens, model.

        Returns:
            NormalizedResponse: The provider-independent result.

        Raises:
            LLMGateError: Carrying this provider's name and the operation.
        """
        return await self._run("chat", messages, opts, vision=False)

    async def vision(self, messages: Any, **opts) -> NormalizedResponse:
        """
        Send a non-streaming request whose messages may contain images.

        Uses the provider's default vision model unless `model` is given.
        """
        return await self._run("vision", messages, opts, vision=True)

    async def stream_chat(self, messages: Any, **opts) -> AsyncIterator[StreamEvent]:
        """
        Stream a chat response.

        Yields:
            StreamEvent: 'partial' events in arrival order, then one 'complete'
            event; a failure yields one 'error' event instead of raising.
        """
        async for event in self._run_stream("stream_chat", messages, opts, vision=False):
            yield event

    async def stream_vision(self, messages: Any, **opts) -> AsyncIterator[StreamEvent]:
        async for event in self._run_stream("stream_vision", messages, opts, vision=True):
            yield event

    @abstractmethod
    async def is_available(self) -> bool:
        """
        Check whether the backend can currently serve requests.
        """

    @abstractmethod
    async def list_models(self) -> List[str]:
        """
        Get list of available models from the provider.

        Returns:
            List[str]: List of model identifiers.
        """

    # ==========================================================================
    # Integration Style Hooks
    # ==========================================================================

    @abstractmethod
    async def _complete(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
    ) -> NormalizedResponse:
        ...

    @abstractmethod
    def _stream(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
    ) -> AsyncIterator[StreamEvent]:
        ...

    # ==========================================================================
    # Shared Dispatch Steps
    # ==========================================================================

    def _prepare(self, messages: Any, opts: Dict[str, Any], vision: bool):
        if vision:
            formatted = self.formatter.format_vision_messages(messages)
        else:
            formatted = self.formatter.format_messages(messages)
        options = self.prepare_options(opts)
        model = self.resolve_model(options, vision)
        return formatted, options, model

    async def _run(
        self,
        operation: str,
        messages: Any,
        opts: Dict[str, Any],
        vision: bool,
    ) -> NormalizedResponse:
        start = time.perf_counter()
        try:
            formatted, options, model = self._prepare(messages, opts, vision)
            response = await self._complete(model, formatted, options)
        except Exception as e:
            self.metrics.record((time.perf_counter() - start) * 1000.0, failed=True)
            self.raise_error(e, operation)

        latency_ms = (time.perf_counter() - start) * 1000.0
        self.metrics.record(latency_ms)
        return dataclasses.replace(response, latency_ms=latency_ms)

    async def _run_stream(
        self,
        operation: str,
        messages: Any,
        opts: Dict[str, Any],
        vision: bool,
    ) -> AsyncIterator[StreamEvent]:
        start = time.perf_counter()
        try:
            formatted, options, model = self._prepare(messages, opts, vision)
            async for event in self._stream(model, formatted, options):
                if event.get("type") == "complete":
                    latency_ms = (time.perf_counter() - start) * 1000.0
                    event["response"] = dataclasses.replace(event["response"], latency_ms=latency_ms)
                    self.metrics.record(latency_ms)
                yield event
        except Exception as e:
            self.metrics.record((time.perf_counter() - start) * 1000.0, failed=True)
            yield {
                "type": "error",
                "provider": self.name,
                "operation": operation,
                "error": self.handle_error(e, operation),
                "done": True,
            }

    def default_options(self) -> Dict[str, Any]:
        return {
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

    def prepare_options(self, opts: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge defaults with caller options (caller wins) and clamp them.
        """
        merged = {**self.default_options(), **{k: v for k, v in opts.items() if v is not None}}
        return clamp_options(merged)

    def resolve_model(self, options: Dict[str, Any], vision: bool = False) -> str:
        model = options.get("model") or (self.default_vision_model if vision else None) or self.model
        if not model:
            raise ConfigurationError(f"No model specified for provider {self.name}")
        return model

    def handle_error(self, error: BaseException, operation: str) -> LLMGateError:
        """
        Attach provider and operation context to a failure.

        Our own errors keep their type. A transport error carrying a
        non-retryable status is a well-formed backend refusal and becomes a
        ProviderError; foreign exceptions (vendor SDKs) are wrapped likewise.
        """
        if isinstance(error, TransportError) and error.status is not None \
                and error.status < 500 and error.status not in RETRYABLE_STATUSES:
            wrapped = ProviderError(
                f"{self.name} {operation} error: {error.message}",
                provider=self.name,
                operation=operation,
                original_error=error,
            )
        elif isinstance(error, LLMGateError):
            wrapped = error.with_context(self.name, operation)
        else:
            detail = getattr(error, "message", None) or str(error) or "Unknown error occurred"
            wrapped = ProviderError(
                f"{self.name} {operation} error: {detail}",
                provider=self.name,
                operation=operation,
                original_error=error,
            )
        logger.debug("%s %s failed: %s", self.name, operation, wrapped)
        return wrapped

    def raise_error(self, error: Exception, operation: str) -> NoReturn:
        wrapped = self.handle_error(error, operation)
        if wrapped is error:
            raise wrapped
        raise wrapped from error

    # ==========================================================================
    # Model Management, Health & Metrics
    # ==========================================================================

    def supports_vision(self) -> bool:
        return self.default_vision_model is not None

    async def switch_model(self, model: str) -> bool:
        """
        Make `model` the default after checking the provider offers it.

        Raises:
            ProviderError: If the model is not available.
        """
        models = await self.list_models()
        if model not in models:
            raise ProviderError(
                f"Model '{model}' not found. Available models: {', '.join(models)}",
                provider=self.name,
                operation="switch_model",
            )
        self.model = model
        self.normalizer.default_model = model
        return True

    async def _check_health(self, probe) -> bool:
        start = time.perf_counter()
        try:
            healthy = bool(await probe())
        except LLMGateError as e:
            logger.debug("%s health probe failed: %s", self.name, e)
            healthy = False

        self.health.last_check = utc_timestamp()
        self.health.is_healthy = healthy
        if healthy:
            self.health.consecutive_failures = 0
        else:
            self.health.consecutive_failures += 1
        self.metrics.record((time.perf_counter() - start) * 1000.0, failed=not healthy)
        return healthy

    async def get_health_status(self) -> Dict[str, Any]:
        """
        Get detailed health information ('healthy', 'unhealthy' or 'error').
        """
        base = {
            "provider": self.name,
            "consecutive_failures": self.health.consecutive_failures,
            "uptime_s": time.monotonic() - self.health.started_at,
            "timestamp": utc_timestamp(),
        }
        start = time.perf_counter()
        try:
            if not await self.is_available():
                return {
                    **base,
                    "status": "unhealthy",
                    "available": False,
                    "error": f"{self.name} instance is not responding",
                    "consecutive_failures": self.health.consecutive_failures,
                    "last_check": self.health.last_check,
                }
            models = await self.list_models()
        except LLMGateError as e:
            return {
                **base,
                "status": "error",
                "available": False,
                "error": str(e),
                "last_check": self.health.last_check,
            }

        return {
            **base,
            "status": "healthy",
            "available": True,
            "models": len(models),
            "response_time_ms": (time.perf_counter() - start) * 1000.0,
            "consecutive_failures": self.health.consecutive_failures,
            "last_check": self.health.last_check,
            "performance_metrics": self.get_performance_metrics(),
        }

    def get_performance_metrics(self) -> Dict[str, Any]:
        return {
            "request_count": self.metrics.request_count,
            "error_count": self.metrics.error_count,
            "total_response_time_ms": self.metrics.total_response_time_ms,
            "average_response_time_ms": self.metrics.average_response_time_ms,
            "last_request_time": self.metrics.last_request_time,
            "success_rate": self.metrics.success_rate,
        }

    def reset_performance_metrics(self) -> None:
        self.metrics = ProviderMetrics()

    async def aclose(self) -> None:
        """
        Release resources owned by this provider (shared collaborators are left open).
        """

    def get_current_config(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "integration_style": self.integration_style,
            "model": self.model,
            "base_url": self.config.base_url,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "default_vision_model": self.default_vision_model,
        }

    def validate_configuration(self) -> Dict[str, Any]:
        errors: List[str] = []
        warnings: List[str] = []
        if self.integration_style == "http" and not self.config.base_url:
            errors.append("base_url is required for HTTP providers")
        if self.integration_style == "sdk" and not self.config.api_key:
            warnings.append("api_key is recommended for SDK providers")
        if not self.model:
            warnings.append("no default model configured")
        return {"is_valid": not errors, "errors": errors, "warnings": warnings}
