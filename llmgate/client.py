import logging
from pathlib import Path
from typing import Optional, Dict, List, Any, AsyncIterator, Literal, Tuple, Union

from .cache import CacheStore
from .config import Settings
from .errors import LLMGateError
from .formatting import ImageProcessor, MessageFormatter, create_image_content, create_message, create_text_content, encode_image_file
from .history import ConversationLedger
from .providers import BaseLLMProvider, create_provider
from .retry import RetryPolicy
from .transport import HttpTransport
from .types import ContentPart, ConversationTurn, ImageContent, Message, NormalizedResponse, StreamEvent, TextContent

logger = logging.getLogger(__name__)


class UnifiedChatClient:
    """
    Unified client for interacting with multiple LLM providers.

    Providers are built lazily from `Settings` on first use and share one
    cache store, one HTTP transport, one retry policy and one conversation
    ledger owned by this client.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        providers: Optional[Dict[str, BaseLLMProvider]] = None,
        cache: Optional[CacheStore] = None,
        transport: Optional[HttpTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_provider: Optional[str] = None,
    ):
        """
        Initialize the UnifiedChatClient.

        Args:
            settings: Configuration. Defaults to `Settings.from_env()`, which
                reads the environment and a `.env` file.
            providers: Pre-built providers by name, used as-is.
            cache: Shared cache store.
            transport: Shared HTTP transport for HTTP-style providers.
            retry_policy: Retry policy for HTTP-style providers.
            default_provider: Provider used when a call names none.
                Defaults to `settings.provider`.
        """
        self.settings = settings or Settings.from_env()
        self.cache = cache or CacheStore()
        self.transport = transport or HttpTransport(timeout=self.settings.request_timeout)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_delay,
        )
        self.image_processor = ImageProcessor(
            max_image_size=self.settings.vision_max_image_size,
            supported_formats=self.settings.vision_supported_formats,
            cache=self.cache,
        )
        self.formatter = MessageFormatter(image_processor=self.image_processor, cache=self.cache)
        self.history = ConversationLedger(self.settings.max_history_size)

        self.providers: Dict[str, BaseLLMProvider] = dict(providers or {})
        self.default_provider = (default_provider or self.settings.provider).lower()

    # ==========================================================================
    # Message Helpers - Re-exported from formatting
    # ==========================================================================

    @staticmethod
    def encode_image_file(image_path: Union[str, Path]) -> Tuple[str, str]:
        return encode_image_file(image_path)

    @staticmethod
    def create_image_content(
        source: str,
        *,
        mime_type: Optional[str] = None,
        detail: Optional[Literal["auto", "low", "high"]] = None
    ) -> ImageContent:
        return create_image_content(source, mime_type=mime_type, detail=detail)

    @staticmethod
    def create_text_content(text: str) -> TextContent:
        return create_text_content(text)

    @classmethod
    def create_message(
        cls,
        role: Literal["system", "user", "assistant"],
        content: Union[str, List[Union[str, ContentPart]]],
    ) -> Message:
        return create_message(role, content)

    # ==========================================================================
    # Provider Management
    # ==========================================================================

    def get_provider(self, provider: Optional[str] = None) -> BaseLLMProvider:
        """
        Get a provider by name, building it on first use.

        Raises:
            ConfigurationError: If the provider is unsupported or misconfigured.
        """
        name = (provider or self.default_provider).lower()
        if name not in self.providers:
            self.providers[name] = create_provider(
                name,
                self.settings,
                cache=self.cache,
                transport=self.transport,
                retry_policy=self.retry_policy,
                formatter=self.formatter,
                image_processor=self.image_processor,
            )
            logger.debug("Initialized provider %s", name)
        return self.providers[name]

    def switch_provider(self, provider: str) -> bool:
        """
        Make `provider` the default for calls that name none.

        The provider is built (and its configuration validated) immediately.
        """
        self.get_provider(provider)
        self.default_provider = provider.lower()
        logger.info("Switched default provider to %s", self.default_provider)
        return True

    def get_provider_info(self, provider: Optional[str] = None) -> Dict[str, Any]:
        backend = self.get_provider(provider)
        return {
            **backend.get_current_config(),
            "supports_vision": backend.supports_vision(),
            "performance_metrics": backend.get_performance_metrics(),
        }

    async def list_models(self, provider: Optional[str] = None) -> List[str]:
        """
        Get the list of available models for a provider.

        Args:
            provider (str, optional): Provider name; the default provider when omitted.

        Returns:
            List[str]: A list of model identifiers available for the provider.
        """
        return await self.get_provider(provider).list_models()

    async def is_provider_available(self, provider: Optional[str] = None) -> bool:
        return await self.get_provider(provider).is_available()

    async def get_health_status(self, provider: Optional[str] = None) -> Dict[str, Any]:
        return await self.get_provider(provider).get_health_status()

    # ==========================================================================
    # Unified Chat Methods
    # ==========================================================================

    async def chat(
        self,
        messages: Any,
        provider: Optional[str] = None,
        *,
        track_history: bool = True,
        **opts,
    ) -> NormalizedResponse:
        """
        Send a non-streaming chat request.

        Args:
            messages: A string, a message dict, or a list of them. Each message
                has a 'role' ('system', 'user', 'assistant') and a 'content'
                (str or list of content parts).
            provider (str, optional): Provider name; the default provider when omitted.
            track_history (bool): Record the user turn before the call and the
                assistant turn after a successful call.
            **opts: Generation options:
                - temperature (float): Clamped to [0, 2].
                - max_tokens (int): At least 1.
                - model (str): Overrides the provider's default model.

        Returns:
            NormalizedResponse: Provider, model, content, usage, finish reason,
            timestamp and latency.

        Raises:
            ValidationError: If the input is malformed.
            ConfigurationError: If the provider is not configured or not supported.
            TransportError: If the backend stayed unreachable after retries.
            ProviderError: If the backend rejected the request.
        """
        return await self._dispatch("chat", messages, provider, track_history, opts)

    async def vision(
        self,
        messages: Any,
        provider: Optional[str] = None,
        *,
        track_history: bool = True,
        **opts,
    ) -> NormalizedResponse:
        """
        Send a non-streaming request containing images.

        Image parts may reference a URL, a data URI or a local file path.
        """
        return await self._dispatch("vision", messages, provider, track_history, opts)

    async def stream_chat(
        self,
        messages: Any,
        provider: Optional[str] = None,
        *,
        track_history: bool = True,
        **opts,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a chat response in real-time.

        Yields:
            StreamEvent: An event dictionary:
                - type='partial': a content fragment.
                  Example: {"type": "partial", "fragment": "Hel", "token_count": 1, "done": False}
                - type='complete': sent once with the full content, usage and
                  the NormalizedResponse under 'response'.
                - type='error': the failure under 'error'; the stream ends.
        """
        async for event in self._dispatch_stream("stream_chat", messages, provider, track_history, opts):
            yield event

    async def stream_vision(
        self,
        messages: Any,
        provider: Optional[str] = None,
        *,
        track_history: bool = True,
        **opts,
    ) -> AsyncIterator[StreamEvent]:
        async for event in self._dispatch_stream("stream_vision", messages, provider, track_history, opts):
            yield event

    async def ask(self, text: str, provider: Optional[str] = None, **opts) -> str:
        """
        Send a single user prompt and return only the response text.
        """
        response = await self.chat(text, provider, **opts)
        return response.content

    async def see(
        self,
        prompt: str,
        image: str,
        provider: Optional[str] = None,
        **opts,
    ) -> str:
        """
        Ask a question about one image (URL, data URI or file path).
        """
        message = {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image}},
            ],
        }
        response = await self.vision([message], provider, **opts)
        return response.content

    async def _dispatch(
        self,
        operation: str,
        messages: Any,
        provider: Optional[str],
        track_history: bool,
        opts: Dict[str, Any],
    ) -> NormalizedResponse:
        backend = self.get_provider(provider)
        if track_history:
            self.history.append("user", self._user_content(messages))

        if operation == "vision":
            response = await backend.vision(messages, **opts)
        else:
            response = await backend.chat(messages, **opts)

        if track_history:
            self.history.append("assistant", response.content)
        return response

    async def _dispatch_stream(
        self,
        operation: str,
        messages: Any,
        provider: Optional[str],
        track_history: bool,
        opts: Dict[str, Any],
    ) -> AsyncIterator[StreamEvent]:
        name = (provider or self.default_provider).lower()
        try:
            backend = self.get_provider(name)
        except LLMGateError as e:
            yield {
                "type": "error",
                "provider": name,
                "operation": operation,
                "error": e.with_context(name, operation),
                "done": True,
            }
            return

        if track_history:
            self.history.append("user", self._user_content(messages))

        if operation == "stream_vision":
            events = backend.stream_vision(messages, **opts)
        else:
            events = backend.stream_chat(messages, **opts)

        async for event in events:
            if track_history and event.get("type") == "complete":
                self.history.append("assistant", event["content"])
            yield event

    @staticmethod
    def _user_content(messages: Any) -> Any:
        """
        Select what a user turn records: user messages, system prompts excluded.
        """
        if isinstance(messages, str):
            return messages
        if isinstance(messages, dict):
            return [messages]
        if isinstance(messages, (list, tuple)):
            return [
                m for m in messages
                if isinstance(m, str) or (isinstance(m, dict) and m.get("role", "user") == "user")
            ]
        return messages

    # ==========================================================================
    # History
    # ==========================================================================

    def get_history(self) -> Tuple[ConversationTurn, ...]:
        return self.history.snapshot()

    def get_formatted_history(self) -> str:
        return self.history.formatted()

    def clear_history(self) -> None:
        self.history.clear()

    def get_summary(self) -> Dict[str, Any]:
        """
        Summarize the session: default provider, its model and the history counts.
        """
        backend = self.providers.get(self.default_provider)
        last = self.history.last()
        return {
            "provider": self.default_provider,
            "model": backend.model if backend else None,
            **self.history.summary(),
            "last_message": last.text if last else None,
        }

    # ==========================================================================
    # Caches & Lifecycle
    # ==========================================================================

    def cache_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.cache.all_stats()

    def clear_caches(self) -> None:
        self.cache.clear_all()

    async def aclose(self) -> None:
        for backend in self.providers.values():
            await backend.aclose()
        await self.transport.aclose()

    async def __aenter__(self) -> "UnifiedChatClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
