"""
Pool d'objets "chunk" réutilisables pour le streaming OpenAI.

Chaque tick de relais produit un dict chunk; le pool évite d'en allouer un
nouveau à chaque delta. Un chunk rendu est vidé avant d'être réutilisé.
"""
import threading
from typing import Any, Dict, List, Optional

from ..core.constants import CHUNK_POOL_MAX_SIZE


class ChunkPool:
    """
    Pool borné de dicts chunk.

    Args:
        max_size: Nombre maximal de chunks conservés au repos
    """

    def __init__(self, max_size: int = CHUNK_POOL_MAX_SIZE):
        self.max_size = max_size
        self._free: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def get(self) -> Dict[str, Any]:
        """Retourne un chunk vide (recyclé si possible)."""
        with self._lock:
            if self._free:
                return self._free.pop()
        return {}

    def release(self, chunk: Dict[str, Any]):
        """Rend un chunk au pool; ignoré si le pool est plein."""
        chunk.clear()
        with self._lock:
            if len(self._free) < self.max_size:
                self._free.append(chunk)

    def size(self) -> int:
        """Nombre de chunks disponibles."""
        with self._lock:
            return len(self._free)

    def clear(self):
        """Vide le pool (arrêt du serveur)."""
        with self._lock:
            self._free.clear()


# Instance globale (créée au démarrage)
_pool: Optional[ChunkPool] = None


def create_chunk_pool(max_size: int = CHUNK_POOL_MAX_SIZE) -> ChunkPool:
    """Crée et enregistre le pool global."""
    global _pool
    _pool = ChunkPool(max_size=max_size)
    return _pool


def get_chunk_pool() -> ChunkPool:
    """Récupère le pool global (créé à la volée si absent)."""
    global _pool
    if _pool is None:
        _pool = ChunkPool()
    return _pool
