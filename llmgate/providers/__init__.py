from typing import Optional

from ..cache import CacheStore
from ..config import Settings
from ..errors import ConfigurationError
from ..formatting import ImageProcessor, MessageFormatter
from ..retry import RetryPolicy
from ..transport import HttpTransport
from .base import BaseLLMProvider, ProviderMetrics
from .http import HttpProvider
from .sdk import SdkProvider
from .openai import OpenAIProvider
from .anthropic import AnthropicProvider
from .ollama import OllamaProvider

# Provider name -> class. The custom provider is any OpenAI-compatible HTTP endpoint.
PROVIDER_CLASSES = {
    "openai": OpenAIProvider,
    "groq": OpenAIProvider,
    "grok": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "ollama": OllamaProvider,
    "custom": HttpProvider,
}


def create_provider(
    name: str,
    settings: Settings,
    *,
    cache: Optional[CacheStore] = None,
    transport: Optional[HttpTransport] = None,
    retry_policy: Optional[RetryPolicy] = None,
    formatter: Optional[MessageFormatter] = None,
    image_processor: Optional[ImageProcessor] = None,
    client=None,
) -> BaseLLMProvider:
    """
    Build a provider from settings, wiring in shared collaborators.

    Args:
        name (str): Provider name (openai, groq, grok, anthropic, ollama, custom).
        settings (Settings): Source of the provider configuration.
        client: Optional pre-built vendor client for SDK providers.

    Raises:
        ConfigurationError: If the provider is unsupported or misconfigured.
    """
    name = name.lower()
    provider_class = PROVIDER_CLASSES.get(name)
    if provider_class is None:
        raise ConfigurationError(f"Provider '{name}' not configured or not supported.")

    settings.validate(name)
    config = settings.provider_config(name)

    cache = cache or CacheStore()
    if image_processor is None:
        image_processor = ImageProcessor(
            max_image_size=settings.vision_max_image_size,
            supported_formats=settings.vision_supported_formats,
            cache=cache,
        )
    kwargs = dict(
        cache=cache,
        formatter=formatter or MessageFormatter(image_processor=image_processor, cache=cache),
        image_processor=image_processor,
    )

    if issubclass(provider_class, HttpProvider):
        if name == "custom":
            kwargs["request_format"] = "openai"
        return provider_class(
            config,
            name,
            transport=transport or HttpTransport(timeout=settings.request_timeout),
            retry_policy=retry_policy or RetryPolicy(
                max_attempts=settings.retry_attempts, base_delay=settings.retry_delay
            ),
            **kwargs,
        )
    return provider_class(config, name, client=client, **kwargs)


__all__ = [
    "BaseLLMProvider",
    "ProviderMetrics",
    "HttpProvider",
    "SdkProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "OllamaProvider",
    "PROVIDER_CLASSES",
    "create_provider",
]
