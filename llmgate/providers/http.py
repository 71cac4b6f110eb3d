import logging
from typing import Dict, Any, List, AsyncIterator, Optional, Literal

from ..errors import ValidationError
from ..formatting import split_data_uri
from ..retry import RetryPolicy
from ..transport import HttpTransport
from ..types import Message, NormalizedResponse, StreamEvent
from .base import BaseLLMProvider

logger = logging.getLogger(__name__)

RequestFormat = Literal["ollama", "openai"]


class HttpProvider(BaseLLMProvider):
    """
    Provider that speaks a backend's JSON API over the shared HTTP transport.

    Non-streaming calls and stream opening run under the retry policy. Bodies
    that arrive as newline-delimited JSON are rebuilt by the stream
    reconstructor before normalization.

    Two wire formats are supported:
        - "ollama": `/api/chat`, sampling options nested under `options`,
          images as a base64 `images` list on the message.
        - "openai": `/chat/completions`, OpenAI-compatible request body.
    """

    integration_style = "http"

    def __init__(
        self,
        config,
        name: Optional[str] = None,
        *,
        transport: HttpTransport,
        retry_policy: Optional[RetryPolicy] = None,
        request_format: RequestFormat = "ollama",
        endpoint: Optional[str] = None,
        models_endpoint: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(config, name, **kwargs)
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.request_format = request_format
        if request_format == "ollama":
            self.endpoint = endpoint or "/api/chat"
            self.models_endpoint = models_endpoint or "/api/tags"
        else:
            self.endpoint = endpoint or "/chat/completions"
            self.models_endpoint = models_endpoint or "/models"

    # ==========================================================================
    # Request Building
    # ==========================================================================

    def url_for(self, path: str) -> str:
        if not self.config.base_url:
            raise ValidationError(f"No base_url configured for provider {self.name}")
        return self.config.base_url.rstrip("/") + path

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def build_request(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
        stream: bool = False,
    ) -> Dict[str, Any]:
        if self.request_format == "ollama":
            sampling = {
                "temperature": options.get("temperature"),
                "num_predict": options.get("max_tokens"),
            }
            return {
                "model": model,
                "messages": [self._to_ollama_message(m) for m in messages],
                "stream": stream,
                "options": {k: v for k, v in sampling.items() if v is not None},
            }

        body = {
            "model": model,
            "messages": messages,
            "stream": stream,
        }
        body.update({
            k: v for k, v in {
                "temperature": options.get("temperature"),
                "max_tokens": options.get("max_tokens"),
            }.items() if v is not None
        })
        return body

    @staticmethod
    def _to_ollama_message(message: Message) -> Dict[str, Any]:
        """
        Flatten content parts into Ollama's `content` + `images` shape.
        """
        content = message["content"]
        if isinstance(content, str):
            return {"role": message["role"], "content": content}

        texts: List[str] = []
        images: List[str] = []
        for part in content:
            if part.get("type") == "text":
                texts.append(part.get("text", ""))
            elif part.get("type") == "image_url":
                url = part["image_url"]["url"]
                if not url.startswith("data:"):
                    raise ValidationError(
                        "Ollama requires inline images; pass a file path or data URI instead of a URL"
                    )
                data, _ = split_data_uri(url)
                images.append(data)

        result: Dict[str, Any] = {"role": message["role"], "content": " ".join(texts)}
        if images:
            result["images"] = images
        return result

    # ==========================================================================
    # Integration Style Hooks
    # ==========================================================================

    async def _complete(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
    ) -> NormalizedResponse:
        url = self.url_for(self.endpoint)
        body = self.build_request(model, messages, options, stream=False)
        response = await self.retry_policy.execute(
            lambda: self.transport.post(url, body, headers=self.headers())
        )

        payload = response.data
        if isinstance(payload, (str, bytes)):
            payload = self.reconstructor.reconstruct(payload)
        return self.normalizer.normalize(payload, model=model)

    async def _stream(
        self,
        model: str,
        messages: List[Message],
        options: Dict[str, Any],
    ) -> AsyncIterator[StreamEvent]:
        url = self.url_for(self.endpoint)
        body = self.build_request(model, messages, options, stream=True)
        response = await self.retry_policy.execute(
            lambda: self.transport.open_stream(url, body, headers=self.headers())
        )
        chunks = self.transport.iter_text(response)
        async for event in self.reconstructor.events(chunks, model=model, input_tokens=len(messages)):
            yield event

    # ==========================================================================
    # Availability & Models
    # ==========================================================================

    async def _fetch_models(self) -> Any:
        response = await self.transport.get(
            self.url_for(self.models_endpoint), timeout=5.0, headers=self.headers()
        )
        return response.data

    async def is_available(self) -> bool:
        async def probe() -> bool:
            await self._fetch_models()
            return True

        return await self._check_health(probe)

    async def list_models(self) -> List[str]:
        """
        Get list of available models from the backend.

        Raises:
            LLMGateError: If the listing request fails.
        """
        try:
            data = await self.retry_policy.execute(self._fetch_models)
        except Exception as e:
            self.raise_error(e, "list_models")

        if self.request_format == "ollama":
            entries = data.get("models", []) if isinstance(data, dict) else []
            return [m["name"] for m in entries if isinstance(m, dict) and m.get("name")]
        entries = data.get("data", []) if isinstance(data, dict) else []
        return [m["id"] for m in entries if isinstance(m, dict) and m.get("id")]
