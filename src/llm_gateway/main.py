"""
LLM Gateway - Application FastAPI Factory.
Surfaces OpenAI / Claude / Gemini, dispatch multi-providers, quotas par route.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.router import api_router
from .auth import AntigravityCredentialStore, CodexCredentialStore, KiroCredentialStore
from .config.loader import default_config_path, load_config
from .config.settings import Settings
from .core.constants import PROVIDER_ANTIGRAVITY, PROVIDER_CODEX, PROVIDER_KIRO
from .providers import (
    AntigravityProvider,
    CodexProvider,
    KiroProvider,
    ProviderRegistry,
    RateLimitTracker,
)
from .proxy.client import UpstreamClient, create_upstream_client
from .proxy.pool import create_chunk_pool, get_chunk_pool
from .services.quota import QuotaEnforcer
from .services.route_store import RouteStore

logger = logging.getLogger(__name__)


def load_settings(config_path: str = None) -> Settings:
    """
    Settings depuis config.toml.

    Sans fichier, la passerelle démarre avec les valeurs par défaut
    (aucune clé maître: accès ouvert). Un fichier invalide reste fatal.
    """
    path = config_path or default_config_path()
    if not os.path.exists(path):
        logger.warning("⚠️  [CONFIG] %s introuvable, configuration par défaut", path)
        return Settings()
    return Settings.from_config(load_config(path))


def build_registry(settings: Settings, client: UpstreamClient) -> ProviderRegistry:
    """Crée les credential stores et les adapters, puis les enregistre."""
    registry = ProviderRegistry(settings.model_provider_mapping)

    antigravity = settings.get_provider(PROVIDER_ANTIGRAVITY)
    registry.register(AntigravityProvider(
        antigravity,
        AntigravityCredentialStore(antigravity.accounts_file, client),
        client,
        settings.defaults,
        settings.antigravity,
    ))

    kiro = settings.get_provider(PROVIDER_KIRO)
    registry.register(KiroProvider(
        kiro,
        KiroCredentialStore(kiro.accounts_file, client),
        client,
        settings.defaults,
    ))

    codex = settings.get_provider(PROVIDER_CODEX)
    registry.register(CodexProvider(
        codex,
        CodexCredentialStore(codex.accounts_file, client),
        client,
        settings.defaults,
        RateLimitTracker(),
    ))

    return registry


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ProviderRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    config_path: str = None
) -> FastAPI:
    """
    Factory pour créer l'application FastAPI.

    Args:
        settings: Settings déjà construits (sinon lus depuis config.toml au démarrage)
        registry: Registry déjà construit (tests)
        transport: Transport HTTPX pour le client amont (tests)
        config_path: Chemin de config.toml

    Returns:
        Instance configurée de FastAPI
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Gestion du cycle de vie de l'application."""
        # Startup
        await _startup(app, settings, registry, transport, config_path)
        yield
        # Shutdown
        await _shutdown(app)

    app = FastAPI(
        title="LLM Gateway",
        description="Passerelle OpenAI / Claude / Gemini vers Antigravity, Kiro et Codex",
        version=__version__,
        lifespan=lifespan
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Inclusion des routes API
    app.include_router(api_router)

    return app


async def _startup(
    app: FastAPI,
    settings: Optional[Settings],
    registry: Optional[ProviderRegistry],
    transport: Optional[httpx.AsyncBaseTransport],
    config_path: Optional[str]
):
    """Initialisation au démarrage."""
    print("🚀 Démarrage de LLM Gateway...")

    if settings is None:
        settings = load_settings(config_path)

    client = create_upstream_client(
        timeout=settings.server.timeout,
        proxy=settings.server.proxy,
        transport=transport,
    )

    if registry is None:
        registry = build_registry(settings, client)
    await registry.initialize()

    route_store = RouteStore(settings.routes_file)
    await route_store.load()

    create_chunk_pool()

    app.state.settings = settings
    app.state.registry = registry
    app.state.route_store = route_store
    app.state.quota_enforcer = QuotaEnforcer(route_store)

    enabled = registry.enabled_providers()
    print(f"✅ {len(enabled)} provider(s) actif(s): {', '.join(p.name for p in enabled) or '-'}")
    print(f"✅ {len(route_store.routes)} route(s) chargée(s)")
    if not settings.api_key and not route_store.routes:
        print("⚠️  Aucune clé maître ni route: accès ouvert")
    print(f"🌐 Passerelle disponible sur http://{settings.server.host}:{settings.server.port}")


async def _shutdown(app: FastAPI):
    """Arrêt de l'application."""
    print("\n👋 Arrêt du serveur...")

    get_chunk_pool().clear()

    print("✅ Serveur arrêté proprement")


# Crée l'application pour uvicorn
app = create_app()
