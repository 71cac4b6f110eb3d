import logging

import pytest

from llmgate.config import ProviderConfig, Settings, configure_logging
from llmgate.errors import ConfigurationError

ENV_VARS = [
    "LLM_PROVIDER", "LOG_LEVEL", "REQUEST_TIMEOUT", "RETRY_ATTEMPTS", "RETRY_DELAY",
    "MAX_HISTORY_SIZE", "VISION_MAX_IMAGE_SIZE", "VISION_SUPPORTED_FORMATS",
    "OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_BASE_URL", "OPENAI_TEMPERATURE", "OPENAI_MAX_TOKENS",
    "ANTHROPIC_API_KEY", "GROQ_API_KEY", "OLLAMA_BASE_URL", "CUSTOM_API_KEY", "CUSTOM_BASE_URL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Point dotenv at an empty file so a developer's .env is never read
    empty = tmp_path / ".env"
    empty.write_text("")
    return str(empty)


class TestSettings:

    def test_defaults(self, clean_env):
        settings = Settings.from_env(dotenv_path=clean_env)
        assert settings.provider == "openai"
        assert settings.request_timeout == 30.0
        assert settings.retry_attempts == 3
        assert settings.max_history_size == 100
        assert settings.vision_supported_formats == ("jpg", "jpeg", "png", "webp", "gif")

        ollama = settings.provider_config("ollama")
        assert ollama.model == "llama3.2"
        assert ollama.base_url == "http://localhost:11434"
        assert settings.provider_config("anthropic").model == "claude-3-sonnet-20240229"

    def test_reads_environment(self, clean_env, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "Anthropic")
        monkeypatch.setenv("RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("REQUEST_TIMEOUT", "12.5")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
        monkeypatch.setenv("OPENAI_TEMPERATURE", "0.2")
        monkeypatch.setenv("VISION_SUPPORTED_FORMATS", "png, JPG")

        settings = Settings.from_env(dotenv_path=clean_env)
        assert settings.provider == "anthropic"
        assert settings.retry_attempts == 5
        assert settings.request_timeout == 12.5
        assert settings.vision_supported_formats == ("png", "jpg")

        openai = settings.provider_config("openai")
        assert openai.api_key == "sk-env"
        assert openai.model == "gpt-4o"
        assert openai.temperature == 0.2

    def test_dotenv_file_is_loaded(self, clean_env, monkeypatch, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("GROQ_API_KEY=gsk-from-file\n")
        monkeypatch.setenv("GROQ_API_KEY", "placeholder")
        monkeypatch.delenv("GROQ_API_KEY")

        settings = Settings.from_env(dotenv_path=str(env_file))
        assert settings.provider_config("groq").api_key == "gsk-from-file"

    def test_invalid_number(self, clean_env, monkeypatch):
        monkeypatch.setenv("RETRY_ATTEMPTS", "many")
        with pytest.raises(ConfigurationError, match="RETRY_ATTEMPTS"):
            Settings.from_env(dotenv_path=clean_env)

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unsupported provider"):
            Settings().provider_config("gemini")

    def test_validate(self):
        settings = Settings(providers={
            "openai": ProviderConfig(name="openai", model="gpt-4"),
            "custom": ProviderConfig(name="custom", api_key="k"),
        })
        with pytest.raises(ConfigurationError, match="API key"):
            settings.validate("openai")
        with pytest.raises(ConfigurationError, match="CUSTOM_BASE_URL"):
            settings.validate("custom")
        # Ollama needs no key
        assert settings.validate("ollama") == []

    def test_validate_warnings(self):
        settings = Settings(retry_attempts=20, retry_delay=0.0)
        warnings = settings.validate("ollama")
        assert len(warnings) == 2


def test_configure_logging_adds_one_handler():
    logger = configure_logging("debug")
    configure_logging("INFO")
    handlers = [h for h in logger.handlers if getattr(h, "_llmgate_console", False)]
    assert len(handlers) == 1
    assert logger.level == logging.INFO
    for handler in handlers:
        logger.removeHandler(handler)
