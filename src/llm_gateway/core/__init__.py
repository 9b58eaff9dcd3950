"""
Cœur métier de LLM Gateway.
Modules indépendants sans dépendances externes au package.
"""

from .exceptions import (
    GatewayError,
    ConfigurationError,
    ValidationError,
    AuthenticationError,
    QuotaExceededError,
    UpstreamAuthError,
    RefreshError,
    UpstreamError,
    UpstreamRateLimitError,
    ProviderUnavailableError,
    PersistenceError,
)
from .models import (
    Account,
    RateLimitStatus,
    ModelLimit,
    UsageEntry,
    Route,
    ResolvedRoute,
    QuotaDecision,
    ToolSpec,
    ToolCall,
    ChatMessage,
    GenerationParams,
    ChatRequest,
    Usage,
    ChatResult,
    EventType,
    BlockType,
    StreamEvent,
)
from .timing import now_ms, period_start_ms, parse_instant_ms, iso_from_ms
from .tokens import count_tokens_text, count_tokens_messages

__all__ = [
    # Exceptions
    "GatewayError",
    "ConfigurationError",
    "ValidationError",
    "AuthenticationError",
    "QuotaExceededError",
    "UpstreamAuthError",
    "RefreshError",
    "UpstreamError",
    "UpstreamRateLimitError",
    "ProviderUnavailableError",
    "PersistenceError",
    # Models
    "Account",
    "RateLimitStatus",
    "ModelLimit",
    "UsageEntry",
    "Route",
    "ResolvedRoute",
    "QuotaDecision",
    "ToolSpec",
    "ToolCall",
    "ChatMessage",
    "GenerationParams",
    "ChatRequest",
    "Usage",
    "ChatResult",
    "EventType",
    "BlockType",
    "StreamEvent",
    # Timing
    "now_ms",
    "period_start_ms",
    "parse_instant_ms",
    "iso_from_ms",
    # Tokens
    "count_tokens_text",
    "count_tokens_messages",
]
