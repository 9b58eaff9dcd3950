"""
Contrat commun des adapters de providers.

Un adapter traduit une ChatRequest normalisée vers le format natif de son
provider, appelle l'amont (unaire ou streaming) et retraduit la réponse en
ChatResult / séquence de StreamEvent.
"""
import logging
import time
from typing import Any, AsyncIterator, Dict, List

import httpx

from ..auth.base import CredentialStore
from ..config.settings import GenerationDefaults, ProviderConfig
from ..core.constants import MODEL_CREATED_TIMESTAMP
from ..core.exceptions import UpstreamAuthError, UpstreamError, UpstreamRateLimitError
from ..core.models import Account, ChatRequest, ChatResult, StreamEvent
from ..proxy.client import UpstreamClient, create_upstream_client

logger = logging.getLogger(__name__)


class BaseProvider:
    """
    Adapter de provider.

    Args:
        config: Configuration du provider (enabled, priority, models)
        store: Credential store du provider
        client: Client HTTP amont
        defaults: Paramètres de génération par défaut
    """

    name = "base"
    owned_by = "unknown"
    default_models: List[str] = []

    def __init__(
        self,
        config: ProviderConfig,
        store: CredentialStore,
        client: UpstreamClient = None,
        defaults: GenerationDefaults = None
    ):
        self.config = config
        self.enabled = config.enabled
        self.priority = config.priority
        self.supported_models = list(config.models or self.default_models)
        self.store = store
        self.client = client or create_upstream_client()
        self.defaults = defaults or GenerationDefaults()
        self.initialized = False
        self.stats = {
            "total_requests": 0,
            "success_requests": 0,
            "failed_requests": 0,
            "total_tokens_used": 0,
            "last_request_time": None,
        }

    # ========================================================================
    # CYCLE DE VIE
    # ========================================================================

    async def initialize(self):
        """Charge les comptes; l'adapter devient sélectionnable."""
        if self.initialized:
            return
        await self.store.load()
        self.initialized = True
        logger.info(
            "✅ [%s] Initialisé (%d compte(s) actif(s))",
            self.name.upper(), self.store.get_account_count()
        )

    async def reload(self) -> Dict[str, Any]:
        return await self.store.reload()

    # ========================================================================
    # MODÈLES
    # ========================================================================

    def supports_model(self, model: str) -> bool:
        """Correspondance exacte ou préfixe avec joker final (`gpt-5*`)."""
        if not model:
            return False
        for pattern in self.supported_models:
            if pattern.endswith("*"):
                if model.startswith(pattern[:-1]):
                    return True
            elif pattern == model:
                return True
        return False

    def list_models(self) -> List[Dict[str, Any]]:
        """Modèles concrets (hors jokers) au format OpenAI."""
        return [
            {
                "id": model,
                "object": "model",
                "created": MODEL_CREATED_TIMESTAMP,
                "owned_by": self.owned_by,
            }
            for model in self.supported_models
            if not model.endswith("*")
        ]

    # ========================================================================
    # CREDENTIALS
    # ========================================================================

    async def get_token(self) -> Account:
        """
        Compte prêt à l'emploi.

        Raises:
            UpstreamAuthError: Aucun compte actif ou tous les refresh ont échoué
        """
        account = await self.store.get_token()
        if account is None:
            raise UpstreamAuthError(f"No available {self.name} account", provider=self.name)
        return account

    async def refresh_token(self, account: Account) -> Account:
        return await self.store.refresh_token(account)

    # ========================================================================
    # CHAT (à surcharger)
    # ========================================================================

    async def chat(self, request: ChatRequest) -> ChatResult:
        raise NotImplementedError

    def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        raise NotImplementedError

    # ========================================================================
    # UTILITAIRES
    # ========================================================================

    def resolve_params(self, request: ChatRequest) -> Dict[str, Any]:
        """Paramètres effectifs: valeurs client, sinon défauts configurés."""
        params = request.params
        defaults = self.defaults
        return {
            "temperature": params.temperature if params.temperature is not None else defaults.temperature,
            "top_p": params.top_p if params.top_p is not None else defaults.top_p,
            "top_k": params.top_k if params.top_k is not None else defaults.top_k,
            "max_tokens": params.max_tokens if params.max_tokens is not None else defaults.max_tokens,
            "thinking_budget": (
                params.thinking_budget if params.thinking_budget is not None else defaults.thinking_budget
            ),
            "stop": list(params.stop),
        }

    def on_rate_limited(self, account: Account, body: str):
        """Hook appelé sur un 429 avant la levée de l'erreur."""

    def on_success(self, account: Account):
        """Hook appelé après un appel amont réussi."""

    def raise_for_status(self, status: int, body: str, account: Account):
        """
        Traduit un statut HTTP amont en exception.

        Raises:
            UpstreamRateLimitError: 429
            UpstreamError: Tout autre statut >= 400
        """
        if status < 400:
            return
        if status == 429:
            self.on_rate_limited(account, body)
            raise UpstreamRateLimitError(
                message=f"{self.name} rate limit exceeded",
                provider=self.name,
                account_id=account.id,
            )
        logger.error("🔴 [%s] HTTP %d: %s", self.name.upper(), status, (body or "")[:300])
        raise UpstreamError(
            message=f"{self.name} upstream error (HTTP {status})",
            provider=self.name,
            status=status,
            body=body,
        )

    async def check_stream_response(self, response: httpx.Response, account: Account):
        """Lit le corps d'une réponse streaming en erreur puis lève l'exception adaptée."""
        if response.status_code < 400:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        self.raise_for_status(response.status_code, body, account)

    def record_request(self, success: bool, tokens_used: int = 0):
        self.stats["total_requests"] += 1
        if success:
            self.stats["success_requests"] += 1
        else:
            self.stats["failed_requests"] += 1
        self.stats["total_tokens_used"] += max(0, tokens_used or 0)
        self.stats["last_request_time"] = int(time.time() * 1000)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "initialized": self.initialized,
            "priority": self.priority,
            "accounts": self.store.get_account_count(),
            **self.stats,
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "initialized": self.initialized,
            "priority": self.priority,
            "models": list(self.supported_models),
        }
