"""
Rendu des erreurs dans le format du client appelant.

Chaque surface (OpenAI, Claude, Gemini) renvoie ses erreurs dans sa propre
forme; aucune forme interne n'est exposée.
"""
import logging
from typing import Any, Callable, Dict, Tuple

import httpx
from fastapi.responses import JSONResponse

from ..core.exceptions import GatewayError, UpstreamError
from ..proxy.stream import STREAMING_ERROR_TYPES, classify_stream_error
from ..translators.claude import build_claude_error_payload
from ..translators.gemini import build_gemini_error_payload
from ..translators.openai import build_openai_error_payload

logger = logging.getLogger(__name__)

FORMAT_OPENAI = "openai"
FORMAT_CLAUDE = "claude"
FORMAT_GEMINI = "gemini"

ERROR_BUILDERS: Dict[str, Callable[[str, int], Dict[str, Any]]] = {
    FORMAT_OPENAI: build_openai_error_payload,
    FORMAT_CLAUDE: build_claude_error_payload,
    FORMAT_GEMINI: build_gemini_error_payload,
}


def describe_error(error: Exception) -> Tuple[int, str]:
    """
    Statut HTTP et message client d'une exception.

    Les erreurs amont gardent leur statut; le corps amont est joint au message.
    Les erreurs inattendues deviennent des 500 (loggées avec trace).
    """
    if isinstance(error, UpstreamError):
        message = error.message
        if error.body:
            message = f"{message}: {error.body[:500]}"
        return error.status_code, message
    if isinstance(error, GatewayError):
        return error.status_code, error.message
    if isinstance(error, httpx.HTTPError):
        kind = classify_stream_error(error)
        logger.error("🔴 [UPSTREAM] %s: %s", kind, error)
        return 502, STREAMING_ERROR_TYPES[kind]
    logger.exception("🔴 [GATEWAY] Erreur inattendue: %s", error)
    return 500, "Internal server error"


def error_payload(client_format: str, error: Exception) -> Tuple[int, Dict[str, Any]]:
    status, message = describe_error(error)
    return status, ERROR_BUILDERS[client_format](message, status)


def error_response(client_format: str, error: Exception) -> JSONResponse:
    """JSONResponse d'erreur au format du client."""
    status, payload = error_payload(client_format, error)
    return JSONResponse(status_code=status, content=payload)
