"""
Surface Claude: POST /v1/messages.
"""
from fastapi import APIRouter, Request

from ...translators.claude import ClaudeStreamEncoder, build_claude_response, parse_claude_request
from ..errors import FORMAT_CLAUDE
from ..pipeline import ClientFormat, handle_chat

router = APIRouter()

CLAUDE_FORMAT = ClientFormat(
    name=FORMAT_CLAUDE,
    build_response=build_claude_response,
    make_encoder=lambda model, pass_signature: ClaudeStreamEncoder(model, pass_signature),
)


@router.post("/v1/messages")
async def messages(request: Request):
    """Messages au format Claude; en streaming, séquence d'événements nommés."""
    return await handle_chat(request, CLAUDE_FORMAT, parse_claude_request)
