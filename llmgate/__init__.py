import logging

from .client import UnifiedChatClient
from .cache import CacheStore, MISSING
from .config import Settings, ProviderConfig, configure_logging
from .errors import LLMGateError, ValidationError, TransportError, ProviderError, ConfigurationError
from .history import ConversationLedger
from .normalizer import ResponseNormalizer
from .retry import RetryPolicy, is_retryable_error
from .streaming import StreamReconstructor
from .transport import HttpTransport, TransportResponse
from .types import Message, ContentPart, ImageContent, TextContent, Provider, Usage, NormalizedResponse, ConversationTurn, StreamEvent
from .rich_llm_printer import RichPrinter, RichStreamPrinter

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "UnifiedChatClient",
    "CacheStore",
    "MISSING",
    "Settings",
    "ProviderConfig",
    "configure_logging",
    "LLMGateError",
    "ValidationError",
    "TransportError",
    "ProviderError",
    "ConfigurationError",
    "ConversationLedger",
    "ResponseNormalizer",
    "RetryPolicy",
    "is_retryable_error",
    "StreamReconstructor",
    "HttpTransport",
    "TransportResponse",
    "Message",
    "ContentPart",
    "ImageContent",
    "TextContent",
    "Provider",
    "Usage",
    "NormalizedResponse",
    "ConversationTurn",
    "StreamEvent",
    "RichPrinter",
    "RichStreamPrinter",
]
