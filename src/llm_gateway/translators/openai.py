"""
Format OpenAI chat.completions (client).

- Requête: messages (system inclus), tools, paramètres -> ChatRequest
- Réponse unaire: ChatResult -> chat.completion
- Streaming: StreamEvent -> chunks chat.completion.chunk tirés du pool
"""
import json
import time
from typing import Any, Dict, List, Optional

from ..core.exceptions import ValidationError
from ..core.models import (
    BlockType,
    ChatMessage,
    ChatRequest,
    ChatResult,
    EventType,
    StreamEvent,
    ToolCall,
    Usage,
)
from ..proxy.pool import ChunkPool, get_chunk_pool
from ..proxy.stream import sse_data
from .common import (
    content_to_text,
    extract_images,
    new_tool_call_id,
    normalize_openai_parameters,
    normalize_tools,
    require_fields,
)

DONE_FRAME = "data: [DONE]\n\n"

OPENAI_ERROR_TYPES = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    429: "rate_limit_error",
}


def _completion_id() -> str:
    return f"chatcmpl-{int(time.time() * 1000)}"


def _tool_call_from_openai(raw: Dict[str, Any]) -> Optional[ToolCall]:
    function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
    name = function.get("name")
    if not name:
        return None
    arguments = function.get("arguments")
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments or {}, ensure_ascii=False)
    return ToolCall(
        id=raw.get("id") or new_tool_call_id(),
        name=name,
        arguments=arguments,
        signature=raw.get("thoughtSignature"),
    )


def parse_openai_request(body: Dict[str, Any]) -> ChatRequest:
    """
    Requête chat.completions -> ChatRequest.

    Raises:
        ValidationError: model ou messages manquant
    """
    require_fields(body, "model", "messages")
    if not isinstance(body["messages"], list):
        raise ValidationError("messages must be an array", field="messages")

    messages: List[ChatMessage] = []
    for raw in body["messages"]:
        if not isinstance(raw, dict):
            continue
        role = raw.get("role", "user")
        if role == "developer":
            role = "system"
        calls = [
            call for call in (
                _tool_call_from_openai(item)
                for item in raw.get("tool_calls") or [] if isinstance(item, dict)
            )
            if call is not None
        ]
        messages.append(ChatMessage(
            role=role,
            content=content_to_text(raw.get("content")),
            tool_calls=calls,
            tool_call_id=raw.get("tool_call_id"),
            name=raw.get("name"),
            images=extract_images(raw.get("content")),
        ))

    return ChatRequest(
        model=body["model"],
        messages=messages,
        tools=normalize_tools(body.get("tools")),
        params=normalize_openai_parameters(body),
        stream=bool(body.get("stream")),
        requested_model=body["model"],
    )


def _tool_call_payload(call: ToolCall, pass_signature: bool) -> Dict[str, Any]:
    payload = {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": call.arguments or "{}"},
    }
    if pass_signature and call.signature:
        payload["thoughtSignature"] = call.signature
    return payload


def build_openai_response(result: ChatResult, model: str, pass_signature: bool = False) -> Dict[str, Any]:
    """ChatResult -> réponse chat.completion."""
    message: Dict[str, Any] = {"role": "assistant"}
    if result.reasoning_content:
        message["reasoning_content"] = result.reasoning_content
    message["content"] = result.content
    if result.tool_calls:
        message["tool_calls"] = [_tool_call_payload(c, pass_signature) for c in result.tool_calls]

    if result.tool_calls:
        finish_reason = "tool_calls"
    elif result.stop_reason == "max_tokens":
        finish_reason = "length"
    else:
        finish_reason = "stop"

    response = {
        "id": _completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
    }
    if result.usage:
        response["usage"] = result.usage.to_dict()
    return response


class OpenAIStreamEncoder:
    """
    StreamEvent -> frames SSE chat.completion.chunk.

    Chaque frame est construite dans un chunk emprunté au pool, sérialisée,
    puis le chunk est rendu immédiatement.

    Args:
        model: Modèle renvoyé au client (nom demandé)
        pass_signature: Transmettre les thoughtSignature
        pool: Pool de chunks (global par défaut)
    """

    def __init__(self, model: str, pass_signature: bool = False, pool: ChunkPool = None):
        self.model = model
        self.pass_signature = pass_signature
        self.pool = pool or get_chunk_pool()
        self.id = _completion_id()
        self.created = int(time.time())
        self.tool_index = 0
        self.usage: Optional[Usage] = None
        self.finished = False

    def _frame(self, delta: Dict[str, Any], finish_reason: Optional[str] = None, usage: Optional[Usage] = None) -> str:
        chunk = self.pool.get()
        try:
            chunk["id"] = self.id
            chunk["object"] = "chat.completion.chunk"
            chunk["created"] = self.created
            chunk["model"] = self.model
            chunk["choices"] = [{"index": 0, "delta": delta, "finish_reason": finish_reason}]
            if usage is not None:
                chunk["usage"] = usage.to_dict()
            return sse_data(chunk)
        finally:
            self.pool.release(chunk)

    def start(self) -> List[str]:
        return [self._frame({"role": "assistant", "content": ""})]

    def encode(self, event: StreamEvent) -> List[str]:
        """Frames produites par un événement (souvent une seule, parfois aucune)."""
        if event.type == EventType.USAGE:
            self.usage = event.usage
            return []

        if event.type == EventType.MESSAGE_DELTA:
            if event.usage:
                self.usage = event.usage
            return self.finish()

        if event.type != EventType.BLOCK_DELTA:
            return []

        if event.block_type == BlockType.TEXT:
            return [self._frame({"content": event.text})] if event.text else []

        if event.block_type == BlockType.THINKING:
            delta: Dict[str, Any] = {}
            if event.text:
                delta["reasoning_content"] = event.text
            if self.pass_signature and event.signature:
                delta["thoughtSignature"] = event.signature
            return [self._frame(delta)] if delta else []

        if event.block_type == BlockType.TOOL_USE and event.tool_call:
            payload = _tool_call_payload(event.tool_call, self.pass_signature)
            payload["index"] = self.tool_index
            self.tool_index += 1
            return [self._frame({"tool_calls": [payload]})]

        return []

    def finish(self) -> List[str]:
        """Chunk final (finish_reason + usage) puis [DONE]; idempotent."""
        if self.finished:
            return []
        self.finished = True
        finish_reason = "tool_calls" if self.tool_index else "stop"
        return [self._frame({}, finish_reason=finish_reason, usage=self.usage), DONE_FRAME]

    def error(self, message: str, status: int = 500) -> List[str]:
        """Frame d'erreur en cours de flux (le flux s'arrête ensuite)."""
        self.finished = True
        return [sse_data(build_openai_error_payload(message, status))]


def build_openai_error_payload(message: str, status: int) -> Dict[str, Any]:
    return {
        "error": {
            "message": message,
            "type": OPENAI_ERROR_TYPES.get(status, "api_error"),
        }
    }
