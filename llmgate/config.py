import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import dotenv

from .errors import ConfigurationError

# =============================================================================
# Provider Defaults
# =============================================================================

# OpenAI-compatible providers (OpenAI, Groq, Grok) share one configuration
# pattern; Anthropic, Ollama and custom endpoints have their own requirements.
PROVIDER_DEFAULTS: Dict[str, Dict[str, Optional[str]]] = {
    "openai": {"model": "gpt-4", "base_url": "https://api.openai.com/v1"},
    "groq": {"model": "llama3-70b-8192", "base_url": "https://api.groq.com/openai/v1"},
    "grok": {"model": "grok-beta", "base_url": "https://api.x.ai/v1"},
    "anthropic": {"model": "claude-3-sonnet-20240229", "base_url": None},
    "ollama": {"model": "llama3.2", "base_url": "http://localhost:11434"},
    "custom": {"model": None, "base_url": None},
}

# Providers that talk to a local server and need no API key
KEYLESS_PROVIDERS = ("ollama",)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class ProviderConfig:
    """
    Connection and default generation settings for one provider.
    """
    name: str
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: Optional[int] = 4096


@dataclass(frozen=True)
class Settings:
    """
    Process-wide settings, normally read from the environment / `.env`.
    """
    provider: str = "openai"
    log_level: str = "INFO"
    request_timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    max_history_size: int = 100
    vision_max_image_size: int = 20 * 1024 * 1024
    vision_supported_formats: Tuple[str, ...] = ("jpg", "jpeg", "png", "webp", "gif")
    providers: Dict[str, ProviderConfig] = field(default_factory=dict)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """
        Build settings from environment variables.

        Variables from a `.env` file (searched from the working directory, or
        `dotenv_path`) are loaded first without overriding the real environment.
        """
        dotenv.load_dotenv(dotenv_path=dotenv_path or dotenv.find_dotenv(usecwd=True))

        formats = os.getenv("VISION_SUPPORTED_FORMATS", "jpg,jpeg,png,webp,gif")
        return cls(
            provider=os.getenv("LLM_PROVIDER", "openai").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            request_timeout=_env_float("REQUEST_TIMEOUT", 30.0),
            retry_attempts=_env_int("RETRY_ATTEMPTS", 3),
            retry_delay=_env_float("RETRY_DELAY", 1.0),
            max_history_size=_env_int("MAX_HISTORY_SIZE", 100),
            vision_max_image_size=_env_int("VISION_MAX_IMAGE_SIZE", 20 * 1024 * 1024),
            vision_supported_formats=tuple(
                f.strip().lower() for f in formats.split(",") if f.strip()
            ),
            providers={name: cls._provider_from_env(name) for name in PROVIDER_DEFAULTS},
        )

    @staticmethod
    def _provider_from_env(name: str) -> ProviderConfig:
        prefix = name.upper()
        defaults = PROVIDER_DEFAULTS[name]
        return ProviderConfig(
            name=name,
            api_key=os.getenv(f"{prefix}_API_KEY"),
            model=os.getenv(f"{prefix}_MODEL", defaults["model"]),
            base_url=os.getenv(f"{prefix}_BASE_URL", defaults["base_url"]),
            temperature=_env_float(f"{prefix}_TEMPERATURE", 0.7),
            max_tokens=_env_int(f"{prefix}_MAX_TOKENS", 4096),
        )

    def provider_config(self, name: Optional[str] = None) -> ProviderConfig:
        """
        Get the configuration of a provider (the default provider when omitted).

        Raises:
            ConfigurationError: If the provider is not supported.
        """
        name = (name or self.provider).lower()
        if name not in PROVIDER_DEFAULTS:
            raise ConfigurationError(f"Unsupported provider: {name}")
        if name in self.providers:
            return self.providers[name]
        defaults = PROVIDER_DEFAULTS[name]
        return ProviderConfig(name=name, model=defaults["model"], base_url=defaults["base_url"])

    def validate(self, name: Optional[str] = None) -> List[str]:
        """
        Check that a provider can be constructed.

        Returns:
            List[str]: Non-fatal warnings.

        Raises:
            ConfigurationError: If a required value is missing.
        """
        config = self.provider_config(name)
        if config.name not in KEYLESS_PROVIDERS and not config.api_key:
            raise ConfigurationError(f"API key not found for provider: {config.name}")
        if config.name == "custom" and not config.base_url:
            raise ConfigurationError("Custom provider requires CUSTOM_BASE_URL to be set")

        warnings = []
        if not 1 <= self.retry_attempts <= 10:
            warnings.append("retry_attempts should be between 1 and 10")
        if not 0.1 <= self.retry_delay <= 10.0:
            warnings.append("retry_delay should be between 0.1s and 10s")
        return warnings


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Set the level of the `llmgate` logger and attach a console handler once.
    """
    logger = logging.getLogger("llmgate")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    if not any(getattr(h, "_llmgate_console", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler._llmgate_console = True
        logger.addHandler(handler)
    return logger
