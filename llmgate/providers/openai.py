import logging
from typing import Dict, Any, List, Optional

from openai import AsyncOpenAI

from ..cache import MISSING
from ..normalizer import get_path
from .sdk import SdkProvider

logger = logging.getLogger(__name__)

MODEL_CACHE = "models"
MODEL_CACHE_TTL = 300.0

# Vision-capable defaults for the OpenAI-compatible backends
DEFAULT_VISION_MODELS = {
    "openai": "gpt-4-vision-preview",
    "grok": "grok-vision",
}


class OpenAIProvider(SdkProvider):
    """
    Provider for OpenAI-compatible APIs (OpenAI, Groq, Grok, etc.).
    """

    def __init__(self, config, name: Optional[str] = None, **kwargs):
        provider_name = name or config.name
        kwargs.setdefault("default_vision_model", DEFAULT_VISION_MODELS.get(provider_name))
        super().__init__(config, provider_name, **kwargs)
        self.cache.ensure(MODEL_CACHE, max_size=20, ttl=MODEL_CACHE_TTL)

    def create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=self.config.api_key, base_url=self.config.base_url)

    async def create_message(self, params: Dict[str, Any]) -> Any:
        return await self.client.chat.completions.create(**params)

    def extract_content_from_sdk(self, payload: Any) -> Optional[str]:
        # Some compatible endpoints return content as a list of text parts
        content = get_path(payload, "choices", 0, "message", "content")
        if isinstance(content, list):
            return "".join(part.get("text", "") for part in content if isinstance(part, dict))
        return None

    async def list_sdk_models(self) -> List[str]:
        cached = self.cache.get(MODEL_CACHE, self.name)
        if cached is not MISSING:
            return list(cached)

        models = await self.client.models.list()
        names = [m.id for m in models.data]
        self.cache.set(MODEL_CACHE, self.name, names)
        logger.debug("Fetched %d models from %s", len(names), self.name)
        return list(names)
