import json

import httpx
import pytest
from unittest.mock import AsyncMock

from llmgate.cache import CacheStore
from llmgate.config import ProviderConfig, Settings
from llmgate.retry import RetryPolicy
from llmgate.transport import HttpTransport


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def ndjson(*payloads) -> str:
    return "\n".join(json.dumps(p) for p in payloads) + "\n"


def make_transport(handler) -> HttpTransport:
    """HttpTransport whose requests are answered by `handler(request)`."""
    return HttpTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def mock_env(monkeypatch):
    """Mock environment variables for API keys."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-anthropic")
    monkeypatch.setenv("GROQ_API_KEY", "gsk-test-groq")
    monkeypatch.setenv("LLM_PROVIDER", "ollama")


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def cache(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def no_sleep_retry():
    """Retry policy whose backoff sleeps are recorded instead of awaited."""
    return RetryPolicy(max_attempts=3, base_delay=1.0, sleep=AsyncMock())


@pytest.fixture
def settings():
    """Settings built in code so tests never read a local .env file."""
    return Settings(
        provider="ollama",
        retry_attempts=3,
        retry_delay=0.0,
        max_history_size=10,
        providers={
            "openai": ProviderConfig(name="openai", api_key="sk-test", model="gpt-4",
                                     base_url="https://api.openai.com/v1"),
            "anthropic": ProviderConfig(name="anthropic", api_key="sk-ant-test",
                                        model="claude-3-sonnet-20240229"),
            "ollama": ProviderConfig(name="ollama", model="llama3.2", base_url="http://ollama.test"),
            "custom": ProviderConfig(name="custom", api_key="key", model="local-model",
                                     base_url="http://custom.test/v1"),
        },
    )


@pytest.fixture
def ollama_config():
    return ProviderConfig(name="ollama", model="llama3.2", base_url="http://ollama.test",
                          temperature=0.7, max_tokens=4096)
