from typing import Optional


class LLMGateError(Exception):
    """
    Base class for every error raised by llmgate.

    Carries the provider and operation the failure happened in, so callers can
    report it without unwrapping the chain.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.operation = operation
        self.original_error = original_error

    def with_context(self, provider: str, operation: str) -> "LLMGateError":
        if self.provider is None:
            self.provider = provider
        if self.operation is None:
            self.operation = operation
        return self


class ValidationError(LLMGateError):
    """Malformed caller input. Never retried."""


class ConfigurationError(LLMGateError):
    """Missing or inconsistent provider configuration."""


class TransportError(LLMGateError):
    """
    Network, timeout or server-side failure while talking to a backend.

    `status` is the HTTP status when a response was received, `code` names the
    connection failure otherwise ("connection-reset", "connection-refused",
    "timed-out").
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        code: Optional[str] = None,
        body: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status = status
        self.code = code
        self.body = body


class ProviderError(LLMGateError):
    """Well-formed error reported by a backend or raised by a vendor SDK."""
