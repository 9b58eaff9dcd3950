"""
Accès aux composants partagés (app.state) et authentification des clients.
"""
import re
from typing import Optional

from fastapi import Request

from ..config.settings import Settings
from ..core.exceptions import AuthenticationError
from ..core.models import ResolvedRoute
from ..providers.registry import ProviderRegistry
from ..services.quota import QuotaEnforcer
from ..services.route_store import RouteStore

_BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)

CLIENT_KEY_HEADERS = ("authorization", "x-api-key", "api-key", "x-openai-api-key")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_route_store(request: Request) -> RouteStore:
    return request.app.state.route_store


def get_quota_enforcer(request: Request) -> QuotaEnforcer:
    return request.app.state.quota_enforcer


def extract_client_key(request: Request, gemini: bool = False) -> Optional[str]:
    """
    Clé client depuis les headers (préfixe Bearer retiré).

    La surface Gemini accepte aussi `?key=` et `x-goog-api-key`.
    """
    if gemini:
        key = request.query_params.get("key") or request.headers.get("x-goog-api-key")
        if key:
            return key.strip()

    for header in CLIENT_KEY_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            return _BEARER_PREFIX.sub("", value.strip()).strip() or None
    return None


def resolve_route(request: Request, gemini: bool = False) -> ResolvedRoute:
    """
    Route du client appelant.

    Raises:
        AuthenticationError: Clé absente ou inconnue alors que l'auth est exigée
    """
    settings = get_settings(request)
    return get_route_store(request).resolve_key(
        extract_client_key(request, gemini=gemini),
        settings.api_key,
    )


def require_master(request: Request) -> ResolvedRoute:
    """
    Réservé à la clé maître (routes d'administration).

    Raises:
        AuthenticationError: Clé non maître
    """
    route = resolve_route(request)
    if not route.is_master:
        raise AuthenticationError("Admin access requires the master API key")
    return route
