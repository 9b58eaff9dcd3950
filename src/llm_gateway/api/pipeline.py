"""
Chaîne commune des requêtes de chat, quel que soit le format client.

1. Authentification -> route résolue
2. Parsing du corps -> ChatRequest
3. Admission: alias, liste blanche, quota (une seule implémentation)
4. Dispatch vers le provider, avec retry borné sur 429
5. Réponse JSON, ou flux SSE avec heartbeat
"""
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..core.constants import MODEL_CREATED_TIMESTAMP, SSE_HEADERS
from ..core.exceptions import ValidationError
from ..core.models import ChatRequest, ChatResult, ResolvedRoute, StreamEvent
from ..providers.registry import ProviderRegistry
from ..proxy.retry import stream_with_429_retry, with_429_retry
from ..proxy.stream import relay_with_heartbeat
from ..services.admission import admit
from .dependencies import get_quota_enforcer, get_registry, get_settings, resolve_route
from .errors import describe_error, error_response

logger = logging.getLogger(__name__)


class ClientFormat:
    """
    Description d'une surface client.

    Args:
        name: openai | claude | gemini (format des erreurs)
        build_response: (ChatResult, model, pass_signature) -> dict
        make_encoder: (model, pass_signature) -> encodeur (start/encode/finish/error)
        gemini_auth: Accepter `?key=` / x-goog-api-key
    """

    def __init__(
        self,
        name: str,
        build_response: Callable[[ChatResult, str, bool], Dict[str, Any]],
        make_encoder: Callable[[str, bool], Any],
        gemini_auth: bool = False
    ):
        self.name = name
        self.build_response = build_response
        self.make_encoder = make_encoder
        self.gemini_auth = gemini_auth


async def read_json_body(request: Request) -> Dict[str, Any]:
    """
    Corps JSON de la requête.

    Raises:
        ValidationError: Corps absent, illisible ou non objet
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
        raise ValidationError(f"Invalid JSON body: {e}") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def _prime(events: AsyncIterator[StreamEvent]) -> Optional[StreamEvent]:
    """Premier événement du flux (None si vide); les erreurs d'ouverture remontent ici."""
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return None


async def _encode_stream(
    first: Optional[StreamEvent],
    events: AsyncIterator[StreamEvent],
    encoder: Any
) -> AsyncIterator[str]:
    """Frames SSE d'un flux déjà amorcé; une erreur en cours de flux devient une frame d'erreur."""
    try:
        for frame in encoder.start():
            yield frame
        if first is not None:
            for frame in encoder.encode(first):
                yield frame
            async for event in events:
                for frame in encoder.encode(event):
                    yield frame
        for frame in encoder.finish():
            yield frame
    except Exception as e:
        status, message = describe_error(e)
        logger.error("🔴 [STREAM] Interrompu (%d): %s", status, message)
        for frame in encoder.error(message, status):
            yield frame
    finally:
        await events.aclose()


async def handle_chat(
    request: Request,
    client_format: ClientFormat,
    parse: Callable[[Dict[str, Any]], ChatRequest]
):
    """
    Traite une requête de chat de bout en bout.

    Args:
        request: Requête FastAPI
        client_format: Surface appelante
        parse: Corps JSON -> ChatRequest

    Returns:
        JSONResponse ou StreamingResponse
    """
    try:
        route = resolve_route(request, gemini=client_format.gemini_auth)
        chat_request = parse(await read_json_body(request))
        requested_model = chat_request.requested_model or chat_request.model
        chat_request.model = await admit(route, requested_model, get_quota_enforcer(request))
    except Exception as e:
        return error_response(client_format.name, e)

    settings = get_settings(request)
    registry = get_registry(request)
    pass_signature = settings.pass_signature_to_client
    retries = settings.server.retry_times
    delay = settings.server.retry_delay

    logger.info(
        "[DISPATCH] %s %s -> %s (route=%s, stream=%s)",
        client_format.name, requested_model, chat_request.model, route.id, chat_request.stream
    )

    if not chat_request.stream:
        try:
            result = await with_429_retry(
                lambda: registry.handle_chat(chat_request),
                retries=retries,
                delay=delay,
                tag=chat_request.model,
            )
        except Exception as e:
            return error_response(client_format.name, e)
        return JSONResponse(content=client_format.build_response(result, requested_model, pass_signature))

    events = stream_with_429_retry(
        lambda: registry.handle_chat_stream(chat_request),
        retries=retries,
        delay=delay,
        tag=chat_request.model,
    )
    try:
        first = await _prime(events)
    except Exception as e:
        await events.aclose()
        return error_response(client_format.name, e)

    encoder = client_format.make_encoder(requested_model, pass_signature)
    frames = _encode_stream(first, events, encoder)
    return StreamingResponse(
        relay_with_heartbeat(frames, settings.server.heartbeat_interval),
        media_type="text/event-stream",
        headers=dict(SSE_HEADERS),
    )


def list_route_models(route: ResolvedRoute, registry: ProviderRegistry) -> List[Dict[str, Any]]:
    """
    Modèles visibles par une route.

    La clé maître voit tout le catalogue; une route ne voit que ses modèles
    autorisés et ses alias (propriétaire repris du modèle cible).
    """
    models = registry.list_all_models()
    if route.is_master:
        return models

    owners = {model["id"]: model["owned_by"] for model in models}
    visible = []
    for name in sorted(set(route.models) | set(route.model_aliases)):
        if not name:
            continue
        target = route.model_aliases.get(name, name)
        visible.append({
            "id": name,
            "object": "model",
            "created": MODEL_CREATED_TIMESTAMP,
            "owned_by": owners.get(target, "gateway"),
        })
    return visible
