"""
Adapters de providers amont et registre de dispatch.
"""

from .base import BaseProvider
from .antigravity import AntigravityProvider
from .kiro import KiroProvider, KiroEventScanner
from .codex import CodexProvider
from .rate_limits import RateLimitTracker, parse_retry_delay, parse_duration_ms
from .registry import ProviderRegistry

__all__ = [
    "BaseProvider",
    "AntigravityProvider",
    "KiroProvider",
    "KiroEventScanner",
    "CodexProvider",
    "RateLimitTracker",
    "parse_retry_delay",
    "parse_duration_ms",
    "ProviderRegistry",
]
