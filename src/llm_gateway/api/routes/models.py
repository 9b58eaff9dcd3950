"""
Liste des modèles: GET /v1/models.
"""
from fastapi import APIRouter, Request

from ..dependencies import get_registry, resolve_route
from ..errors import FORMAT_OPENAI, error_response
from ..pipeline import list_route_models

router = APIRouter()


@router.get("/v1/models")
async def list_models(request: Request):
    """Catalogue au format OpenAI, filtré selon la route de l'appelant."""
    try:
        route = resolve_route(request)
    except Exception as e:
        return error_response(FORMAT_OPENAI, e)

    return {
        "object": "list",
        "data": list_route_models(route, get_registry(request)),
    }
