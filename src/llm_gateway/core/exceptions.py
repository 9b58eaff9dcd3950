"""
Exceptions personnalisées pour LLM Gateway.
"""
from typing import Optional


class GatewayError(Exception):
    """Exception de base pour toutes les erreurs du gateway."""

    status_code = 500

    def __init__(self, message: str, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code or "unknown_error"
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"[{self.code}] {self.message} - Détails: {self.details}"
        return f"[{self.code}] {self.message}"


class ConfigurationError(GatewayError):
    """Erreur de configuration (fichier manquant, valeur invalide)."""

    def __init__(self, message: str, config_key: str = None):
        super().__init__(
            message=message,
            code="config_error",
            details={"key": config_key} if config_key else {}
        )


class ValidationError(GatewayError):
    """Requête client invalide (champ manquant, modèle non autorisé)."""

    status_code = 400

    def __init__(self, message: str, field: str = None):
        super().__init__(
            message=message,
            code="invalid_request_error",
            details={"field": field} if field else {}
        )


class AuthenticationError(GatewayError):
    """Clé API client absente ou inconnue."""

    status_code = 401

    def __init__(self, message: str = "Invalid API Key"):
        super().__init__(message=message, code="authentication_error")


class QuotaExceededError(GatewayError):
    """Quota d'une route dépassé pour un modèle."""

    status_code = 429

    def __init__(self, message: str, reason: str, counters: dict = None):
        super().__init__(
            message=message,
            code="quota_exceeded",
            details=counters or {}
        )
        self.reason = reason


class UpstreamAuthError(GatewayError):
    """
    Aucun credential utilisable pour un provider.

    Le message reste générique: il ne doit jamais contenir de token.
    """

    status_code = 503

    def __init__(self, message: str, provider: str = None):
        super().__init__(
            message=message,
            code="upstream_auth_error",
            details={"provider": provider} if provider else {}
        )


class RefreshError(GatewayError):
    """Échec du rafraîchissement d'un compte."""

    status_code = 503

    def __init__(self, message: str, account_id: str = None, status: int = None):
        details = {}
        if account_id:
            details["account_id"] = account_id
        if status is not None:
            details["status"] = status
        super().__init__(message=message, code="refresh_error", details=details)


class UpstreamError(GatewayError):
    """Erreur HTTP renvoyée par un provider (hors 429)."""

    def __init__(self, message: str, provider: str = None, status: int = 502, body: str = None):
        details = {"provider": provider, "status": status}
        if body:
            details["body"] = body[:500]
        super().__init__(message=message, code="upstream_error", details=details)
        self.status_code = status if 400 <= status < 600 else 502
        self.body = body


class UpstreamRateLimitError(GatewayError):
    """Le provider a répondu 429."""

    status_code = 429

    def __init__(
        self,
        message: str,
        provider: str = None,
        account_id: str = None,
        retry_after_ms: Optional[int] = None
    ):
        super().__init__(
            message=message,
            code="rate_limit_error",
            details={
                "provider": provider,
                "account_id": account_id,
                "retry_after_ms": retry_after_ms
            }
        )
        self.retry_after_ms = retry_after_ms


class ProviderUnavailableError(GatewayError):
    """Aucun provider activé et initialisé."""

    status_code = 503

    def __init__(self, message: str = "No available provider", model: str = None):
        super().__init__(
            message=message,
            code="provider_unavailable",
            details={"model": model} if model else {}
        )


class PersistenceError(GatewayError):
    """Échec d'écriture d'un document (comptes, routes). Loggé, jamais propagé au client."""

    def __init__(self, message: str, path: str = None):
        super().__init__(
            message=message,
            code="persistence_error",
            details={"path": path} if path else {}
        )
