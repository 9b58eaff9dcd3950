"""
Surface OpenAI: POST /v1/chat/completions.
"""
from fastapi import APIRouter, Request

from ...translators.openai import OpenAIStreamEncoder, build_openai_response, parse_openai_request
from ..errors import FORMAT_OPENAI
from ..pipeline import ClientFormat, handle_chat

router = APIRouter()

OPENAI_FORMAT = ClientFormat(
    name=FORMAT_OPENAI,
    build_response=build_openai_response,
    make_encoder=lambda model, pass_signature: OpenAIStreamEncoder(model, pass_signature),
)


@router.post("/v1/chat/completions")
async def chat_completions(request: Request):
    """Chat au format OpenAI (unaire ou `stream: true`)."""
    return await handle_chat(request, OPENAI_FORMAT, parse_openai_request)
