"""
Document des routes (clés client, modèles autorisés, alias, quotas et usages).

Format persisté: {"routes": [...]} (une liste nue est acceptée à la lecture).
Les limites et usages sont normalisés une seule fois, au chargement.
"""
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles

from ..core.exceptions import AuthenticationError, ConfigurationError, PersistenceError
from ..core.models import ResolvedRoute, Route

logger = logging.getLogger(__name__)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class RouteStore:
    """
    Routes chargées en mémoire, réécrites intégralement à chaque sauvegarde.

    Args:
        routes_file: Chemin du document JSON
    """

    def __init__(self, routes_file: str):
        self.routes_file = routes_file
        self.routes: List[Route] = []
        self._by_id: Dict[str, Route] = {}

    # ========================================================================
    # PERSISTANCE
    # ========================================================================

    async def load(self) -> List[Route]:
        """
        Charge le document (absent = aucune route).

        Raises:
            ConfigurationError: Document illisible
        """
        path = Path(self.routes_file)
        if not path.exists():
            self._set_routes([])
            logger.info("📁 [ROUTES] Aucun fichier de routes (%s)", path)
            return self.routes

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()

        try:
            data = json.loads(content) if content.strip() else []
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                message=f"Fichier de routes invalide ({path}): {e}",
                config_key="routing.routes_file"
            ) from e

        if isinstance(data, dict):
            data = data.get("routes", [])
        self._set_routes([Route.from_dict(raw) for raw in data if isinstance(raw, dict)])
        logger.info("✅ [ROUTES] %d route(s) chargée(s)", len(self.routes))
        return self.routes

    def _set_routes(self, routes: List[Route]):
        self.routes = routes
        self._by_id = {route.id: route for route in routes}

    async def save(self):
        """
        Réécrit le document complet (écriture atomique).

        Raises:
            PersistenceError: Échec d'écriture
        """
        path = Path(self.routes_file)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        payload = json.dumps(
            {"routes": [route.to_dict() for route in self.routes]},
            ensure_ascii=False,
            indent=2
        )
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(
                message=f"Impossible d'écrire les routes: {e}",
                path=str(path)
            ) from e

    # ========================================================================
    # RÉSOLUTION DES CLÉS
    # ========================================================================

    def get(self, route_id: str) -> Optional[Route]:
        return self._by_id.get(route_id)

    def requires_auth(self, master_key: Optional[str]) -> bool:
        """L'authentification est exigée dès qu'une clé maître ou une route existe."""
        return bool(master_key) or bool(self.routes)

    def find_by_key(self, key: str) -> Optional[Route]:
        """Route dont une clé en clair ou un hash sha256 correspond."""
        if not key:
            return None
        key_hash = sha256_hex(key)
        for route in self.routes:
            if key in route.api_keys or key_hash in (h.lower() for h in route.api_key_hashes):
                return route
        return None

    def resolve_key(self, key: Optional[str], master_key: Optional[str]) -> ResolvedRoute:
        """
        Résout la clé client en route.

        Args:
            key: Clé fournie par le client (déjà extraite des headers)
            master_key: Clé maître configurée

        Returns:
            ResolvedRoute (maître si le gateway est ouvert ou la clé maître fournie)

        Raises:
            AuthenticationError: Clé absente ou inconnue
        """
        if not self.requires_auth(master_key):
            return ResolvedRoute.master()
        if not key:
            raise AuthenticationError()
        if master_key and key == master_key:
            return ResolvedRoute.master()

        route = self.find_by_key(key)
        if route is None:
            logger.warning("⚠️  [AUTH] Clé inconnue (...%s)", key[-8:])
            raise AuthenticationError()

        return ResolvedRoute(
            id=route.id,
            is_master=False,
            name=route.name,
            models=list(route.models),
            model_aliases=dict(route.aliases),
        )
