import logging
from abc import abstractmethod
from typing import Dict, Any, List, AsyncIterator, Optional

from ..errors import ConfigurationError
from ..normalizer import ResponseNormalizer
from ..types import Message, NormalizedResponse, StreamEvent, Usage
from .base import BaseLLMProvider

logger = logging.getLogger(__name__)


class SdkProvider(BaseLLMProvider):
    """
    Provider backed by a vendor client library.

    The vendor client handles its own connection reuse and retries, so calls
    go straight through `create_message` without the retry policy. Subclasses
    supply the client, the request parameters and the extractors for fields
    the generic normalizer cannot find.
    """

    integration_style = "sdk"

    def __init__(self, config, name: Optional[str] = None, *, client: Any = None, **kwargs):
        super().__init__(config, name, **kwargs)
        if client is not None:
            self.client = client
        else:
            self.client = self.create_client() if config.api_key else None

    def _build_normalizer(self) -> ResponseNormalizer:
        return ResponseNormalizer(
            self.name,
            self.config.model,
            sdk_content=self.extract_content_from_sdk,
            sdk_usage=self.extract_usage_from_sdk,
            sdk_finish_reason=self.extract_finish_reason_from_sdk,
        )

    def require_client(self) -> Any:
        if self.client is None:
            raise ConfigurationError(
                f"{self.name} client not configured (missing API key)", provider=self.name
            )
        return self.client

    # ==========================================================================
    # Subclass Hooks
    # ==========================================================================

    @abstractmethod
    def create_client(self) -> Any:
        """
        Build the vendor client from this provider's configuration.
        """

    @abstractmethod
    async def create_message(self, params: Dict[str, Any]) -> Any:
        """
        Issue one vendor request; returns a response object or, with
        `stream=True`, an async iterable of stream events.
        """

    def build_params(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
        stream: bool = False,
    ) -> Dict[str, Any]:
        params = {
            "model": model,
            "messages": messages,
        }
        optional_params = {
            "temperature": options.get("temperature"),
            "max_tokens": options.get("max_tokens"),
            "stream": True if stream else None,
        }
        params.update({k: v for k, v in optional_params.items() if v is not None})
        return params

    async def decode_stream(self, stream: Any) -> AsyncIterator[Any]:
        """
        Turn vendor stream events into payloads the normalizer understands.
        """
        async for chunk in stream:
            yield chunk.model_dump() if hasattr(chunk, "model_dump") else chunk

    def extract_content_from_sdk(self, payload: Any) -> Optional[str]:
        return None

    def extract_usage_from_sdk(self, payload: Any) -> Optional[Usage]:
        return None

    def extract_finish_reason_from_sdk(self, payload: Any) -> Optional[str]:
        return None

    async def list_sdk_models(self) -> List[str]:
        return []

    async def aclose(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            await self.client.close()

    # ==========================================================================
    # Integration Style Hooks
    # ==========================================================================

    async def _complete(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
    ) -> NormalizedResponse:
        self.require_client()
        response = await self.create_message(self.build_params(model, messages, options))
        return self.normalizer.normalize(response, model=model)

    async def _stream(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
    ) -> AsyncIterator[StreamEvent]:
        self.require_client()
        stream = await self.create_message(self.build_params(model, messages, options, stream=True))
        async for event in self.reconstructor.events_from_payloads(
            self.decode_stream(stream), model=model, input_tokens=len(messages)
        ):
            yield event

    # ==========================================================================
    # Availability & Models
    # ==========================================================================

    async def is_available(self) -> bool:
        async def probe() -> bool:
            if self.client is None:
                return False
            return len(await self.list_models()) > 0

        return await self._check_health(probe)

    async def list_models(self) -> List[str]:
        """
        Get list of available models from the vendor API.

        Raises:
            LLMGateError: If the client is not configured or the listing fails.
        """
        try:
            self.require_client()
            return await self.list_sdk_models()
        except Exception as e:
            self.raise_error(e, "list_models")
