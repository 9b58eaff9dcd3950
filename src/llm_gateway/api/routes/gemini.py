"""
Surface Gemini: /v1beta/models.
"""
from fastapi import APIRouter, Request

from ...core.exceptions import ValidationError
from ...translators.gemini import GeminiStreamEncoder, build_gemini_response, parse_gemini_request
from ..dependencies import get_registry, resolve_route
from ..errors import FORMAT_GEMINI, error_response
from ..pipeline import ClientFormat, handle_chat, list_route_models

router = APIRouter()

GEMINI_FORMAT = ClientFormat(
    name=FORMAT_GEMINI,
    build_response=build_gemini_response,
    make_encoder=lambda model, pass_signature: GeminiStreamEncoder(model, pass_signature),
    gemini_auth=True,
)

ACTIONS = {
    "generateContent": False,
    "streamGenerateContent": True,
}


@router.get("/v1beta/models")
async def list_gemini_models(request: Request):
    try:
        route = resolve_route(request, gemini=True)
    except Exception as e:
        return error_response(FORMAT_GEMINI, e)

    return {
        "models": [
            {
                "name": f"models/{model['id']}",
                "displayName": model["id"],
                "supportedGenerationMethods": list(ACTIONS),
            }
            for model in list_route_models(route, get_registry(request))
        ]
    }


@router.post("/v1beta/models/{target}")
async def generate_content(target: str, request: Request):
    """`{model}:generateContent` (unaire) ou `{model}:streamGenerateContent` (SSE)."""
    model, _, action = target.rpartition(":")
    if not model or action not in ACTIONS:
        return error_response(FORMAT_GEMINI, ValidationError(f"Unsupported method: {target}"))

    stream = ACTIONS[action]
    return await handle_chat(
        request,
        GEMINI_FORMAT,
        lambda body: parse_gemini_request(model, body, stream),
    )
