"""
Registre des providers et dispatcher.

Sélection d'un provider pour un modèle, première correspondance gagnante:
1. Entrée exacte de la table modèle -> providers
2. Entrée joker (`prefix*`) de la même table
3. Premier provider actif (ordre de priorité) dont supports_model accepte le modèle
4. Repli sur le provider actif le plus prioritaire (warning, pas de rejet)
"""
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ..core.exceptions import ProviderUnavailableError
from ..core.models import ChatRequest, ChatResult, EventType, StreamEvent
from .base import BaseProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Registre des adapters, instancié au démarrage.

    Args:
        model_provider_mapping: Table modèle (ou `prefix*`) -> noms de providers
    """

    def __init__(self, model_provider_mapping: Optional[Dict[str, List[str]]] = None):
        self.providers: Dict[str, BaseProvider] = {}
        self.custom_mapping = dict(model_provider_mapping or {})
        self.model_mapping: Dict[str, List[str]] = {}

    # ========================================================================
    # ENREGISTREMENT
    # ========================================================================

    def register(self, provider: BaseProvider):
        self.providers[provider.name] = provider

    def get(self, name: str) -> Optional[BaseProvider]:
        return self.providers.get(name)

    def enabled_providers(self) -> List[BaseProvider]:
        """Providers actifs et initialisés, triés par priorité croissante."""
        active = [p for p in self.providers.values() if p.enabled and p.initialized]
        return sorted(active, key=lambda p: p.priority)

    async def initialize(self):
        """
        Initialise tous les providers actifs.

        Un provider dont l'initialisation échoue est désactivé; les autres
        continuent de servir.
        """
        for provider in self.providers.values():
            if not provider.enabled:
                logger.info("[REGISTRY] %s désactivé par configuration", provider.name)
                continue
            try:
                await provider.initialize()
            except Exception as e:
                provider.enabled = False
                logger.error("🔴 [REGISTRY] Initialisation de %s échouée: %s", provider.name, e)

        self.build_model_mapping()
        names = ", ".join(p.name for p in self.enabled_providers()) or "aucun"
        logger.info("✅ [REGISTRY] Providers actifs: %s", names)

    def build_model_mapping(self):
        """Table de routage: entrées configurées, complétées par les modèles de chaque provider."""
        self.model_mapping = {pattern: list(names) for pattern, names in self.custom_mapping.items()}
        for name, provider in self.providers.items():
            if not provider.enabled:
                continue
            for model in provider.supported_models:
                self.model_mapping.setdefault(model, [name])

    # ========================================================================
    # SÉLECTION
    # ========================================================================

    def _first_available(self, names: List[str]) -> Optional[BaseProvider]:
        for name in names:
            provider = self.providers.get(name)
            if provider is not None and provider.enabled and provider.initialized:
                return provider
        return None

    def select_provider(self, model: str) -> BaseProvider:
        """
        Choisit le provider d'un modèle.

        Raises:
            ProviderUnavailableError: Aucun provider actif
        """
        if model in self.model_mapping:
            provider = self._first_available(self.model_mapping[model])
            if provider is not None:
                return provider

        for pattern, names in self.model_mapping.items():
            if pattern.endswith("*") and model.startswith(pattern[:-1]):
                provider = self._first_available(names)
                if provider is not None:
                    return provider

        enabled = self.enabled_providers()
        for provider in enabled:
            if provider.supports_model(model):
                return provider

        if enabled:
            logger.warning(
                "⚠️  [REGISTRY] Aucun provider pour le modèle %s, repli sur %s",
                model, enabled[0].name
            )
            return enabled[0]

        raise ProviderUnavailableError(f"No available provider for model: {model}", model=model)

    # ========================================================================
    # DISPATCH
    # ========================================================================

    async def handle_chat(self, request: ChatRequest) -> ChatResult:
        provider = self.select_provider(request.model)
        logger.info("[REGISTRY] %s -> %s", request.model, provider.name)
        try:
            result = await provider.chat(request)
        except Exception:
            provider.record_request(False)
            raise
        provider.record_request(True, result.usage.total_tokens if result.usage else 0)
        return result

    async def handle_chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Flux d'événements du provider sélectionné; les stats sont mises à jour en fin de flux."""
        provider = self.select_provider(request.model)
        logger.info("[REGISTRY] stream %s -> %s", request.model, provider.name)
        tokens = 0
        stream = provider.chat_stream(request)
        try:
            async for event in stream:
                if event.type == EventType.USAGE and event.usage:
                    tokens = event.usage.total_tokens
                yield event
        except Exception:
            provider.record_request(False)
            raise
        finally:
            await stream.aclose()
        provider.record_request(True, tokens)

    # ========================================================================
    # ADMIN
    # ========================================================================

    def list_all_models(self) -> List[Dict[str, Any]]:
        """Modèles des providers actifs, dédoublonnés par id."""
        seen = set()
        models = []
        for provider in self.enabled_providers():
            for model in provider.list_models():
                if model["id"] in seen:
                    continue
                seen.add(model["id"])
                models.append(model)
        return models

    async def reload_all(self) -> Dict[str, Any]:
        results = {}
        for name, provider in self.providers.items():
            if not provider.enabled:
                continue
            try:
                results[name] = await provider.reload()
            except Exception as e:
                logger.error("🔴 [REGISTRY] Rechargement de %s échoué: %s", name, e)
                results[name] = {"success": False, "message": str(e)}
        self.build_model_mapping()
        return results

    def get_all_stats(self) -> List[Dict[str, Any]]:
        return [provider.get_stats() for provider in self.providers.values()]
