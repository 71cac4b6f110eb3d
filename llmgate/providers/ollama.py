from typing import Dict, Any, Optional

from .http import HttpProvider


class OllamaProvider(HttpProvider):
    """
    Provider for a local or remote Ollama server (`/api/chat`, `/api/tags`).

    Ollama may answer a non-streaming request with newline-delimited JSON;
    such bodies are rebuilt into one response before normalization.
    """

    def __init__(self, config, name: Optional[str] = None, **kwargs):
        kwargs.setdefault("request_format", "ollama")
        super().__init__(config, name, **kwargs)

    def supports_vision(self) -> bool:
        # Multimodal support depends on the pulled model (llava, llama3.2-vision...)
        return True

    async def get_model_info(self, model: Optional[str] = None) -> Dict[str, Any]:
        """
        Get details of a model via `/api/show`.

        Raises:
            LLMGateError: If the request fails.
        """
        try:
            response = await self.retry_policy.execute(
                lambda: self.transport.post(
                    self.url_for("/api/show"), {"name": model or self.model}, headers=self.headers()
                )
            )
        except Exception as e:
            self.raise_error(e, "get_model_info")
        return response.data if isinstance(response.data, dict) else {}
