"""
Routes API pour le health check.
"""
from fastapi import APIRouter, Request

from ...proxy.pool import get_chunk_pool
from ..dependencies import get_registry

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check avec l'état des providers et du pool de chunks."""
    registry = get_registry(request)
    enabled = registry.enabled_providers()
    return {
        "status": "ok" if enabled else "degraded",
        "providers": registry.get_all_stats(),
        "active_providers": [provider.name for provider in enabled],
        "chunk_pool": {"size": get_chunk_pool().size()},
    }
