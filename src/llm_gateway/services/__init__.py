"""
Services applicatifs: routes client, quotas et admission des requêtes.
"""

from .route_store import RouteStore, sha256_hex
from .quota import QuotaEnforcer
from .admission import admit, resolve_model, quota_message

__all__ = [
    "RouteStore",
    "sha256_hex",
    "QuotaEnforcer",
    "admit",
    "resolve_model",
    "quota_message",
]
