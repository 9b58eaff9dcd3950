"""
Format Claude messages (client).

- Requête: system séparé, blocs text / image / tool_use / tool_result -> ChatRequest
- Réponse unaire: ChatResult -> message Claude (blocs thinking, text, tool_use)
- Streaming: machine à états des blocs (index croissant, un seul bloc ouvert)
"""
import json
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
from ..proxy.stream import sse_event
from .common import (
    content_to_text,
    extract_images,
    new_message_id,
    new_tool_call_id,
    normalize_claude_parameters,
    normalize_tools,
    parse_tool_arguments,
    require_fields,
)

CLAUDE_ERROR_TYPES = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    429: "rate_limit_error",
    500: "api_error",
    529: "overloaded_error",
}


def _system_text(system: Any) -> Optional[str]:
    if isinstance(system, str):
        return system or None
    if isinstance(system, list):
        text = "\n".join(
            block.get("text", "") for block in system
            if isinstance(block, dict) and block.get("type") == "text"
        )
        return text or None
    return None


def _tool_result_text(content: Any) -> str:
    if isinstance(content, (str, list)) or content is None:
        return content_to_text(content)
    return json.dumps(content, ensure_ascii=False)


def _convert_message(raw: Dict[str, Any]) -> List[ChatMessage]:
    """Un message Claude peut produire plusieurs messages normalisés (tool_result)."""
    role = raw.get("role", "user")
    content = raw.get("content")
    if not isinstance(content, list):
        return [ChatMessage(role=role, content=content_to_text(content))]

    if role == "assistant":
        calls = [
            ToolCall(
                id=block.get("id") or new_tool_call_id(),
                name=block.get("name", ""),
                arguments=json.dumps(block.get("input") or {}, ensure_ascii=False),
                signature=block.get("signature"),
            )
            for block in content
            if isinstance(block, dict) and block.get("type") == "tool_use"
        ]
        return [ChatMessage(role="assistant", content=content_to_text(content), tool_calls=calls)]

    messages = [
        ChatMessage(
            role="tool",
            content=_tool_result_text(block.get("content")),
            tool_call_id=block.get("tool_use_id"),
        )
        for block in content
        if isinstance(block, dict) and block.get("type") == "tool_result"
    ]
    text = content_to_text(content)
    images = extract_images(content)
    if text or images or not messages:
        messages.append(ChatMessage(role="user", content=text, images=images))
    return messages


def parse_claude_request(body: Dict[str, Any]) -> ChatRequest:
    """
    Requête messages -> ChatRequest.

    Raises:
        ValidationError: model ou messages manquant
    """
    require_fields(body, "model", "messages")
    if not isinstance(body["messages"], list):
        raise ValidationError("messages must be an array", field="messages")

    messages: List[ChatMessage] = []
    for raw in body["messages"]:
        if isinstance(raw, dict):
            messages.extend(_convert_message(raw))

    return ChatRequest(
        model=body["model"],
        messages=messages,
        system=_system_text(body.get("system")),
        tools=normalize_tools(body.get("tools")),
        params=normalize_claude_parameters(body),
        stream=bool(body.get("stream")),
        requested_model=body["model"],
    )


def _stop_reason(result_reason: Optional[str], has_tool_calls: bool) -> str:
    if has_tool_calls:
        return "tool_use"
    if result_reason == "max_tokens":
        return "max_tokens"
    return "end_turn"


def build_claude_response(result: ChatResult, model: str, pass_signature: bool = False) -> Dict[str, Any]:
    """ChatResult -> message Claude (ordre des blocs: thinking, text, tool_use)."""
    content: List[Dict[str, Any]] = []
    if result.reasoning_content:
        block = {"type": "thinking", "thinking": result.reasoning_content}
        if pass_signature and result.reasoning_signature:
            block["signature"] = result.reasoning_signature
        content.append(block)
    if result.content:
        content.append({"type": "text", "text": result.content})
    for call in result.tool_calls:
        content.append({
            "type": "tool_use",
            "id": call.id,
            "name": call.name,
            "input": parse_tool_arguments(call.arguments),
        })

    usage = result.usage or Usage()
    return {
        "id": new_message_id(),
        "type": "message",
        "role": "assistant",
        "model": model,
        "content": content,
        "stop_reason": _stop_reason(result.stop_reason, bool(result.tool_calls)),
        "stop_sequence": None,
        "usage": {
            "input_tokens": usage.prompt_tokens,
            "output_tokens": usage.completion_tokens,
        },
    }


class ClaudeStreamEncoder:
    """
    StreamEvent -> événements SSE Claude.

    Invariants:
    - Un seul bloc ouvert à la fois; content_block_stop avant tout nouveau start
    - L'index démarre à 0 et n'avance qu'à la fermeture d'un bloc
    - Un bloc thinking se ferme avant tout autre bloc
    - Chaque tool_use est ouvert, rempli (input_json_delta) et fermé d'un coup

    Args:
        model: Modèle annoncé dans message_start (nom demandé par le client)
        pass_signature: Émettre les signature_delta
    """

    def __init__(self, model: str, pass_signature: bool = False):
        self.model = model
        self.pass_signature = pass_signature
        self.index = 0
        self.open_block: Optional[str] = None
        self.started = False
        self.finished = False
        self.has_tool_calls = False
        self.usage: Optional[Usage] = None

    # ------------------------------------------------------------------------
    # Cycle de vie des blocs
    # ------------------------------------------------------------------------

    def _open(self, block_type: str, block: Dict[str, Any]) -> List[str]:
        frames = self._close()
        self.open_block = block_type
        frames.append(sse_event("content_block_start", {
            "type": "content_block_start",
            "index": self.index,
            "content_block": block,
        }))
        return frames

    def _close(self) -> List[str]:
        if self.open_block is None:
            return []
        frame = sse_event("content_block_stop", {"type": "content_block_stop", "index": self.index})
        self.open_block = None
        self.index += 1
        return [frame]

    def _delta(self, delta: Dict[str, Any]) -> str:
        return sse_event("content_block_delta", {
            "type": "content_block_delta",
            "index": self.index,
            "delta": delta,
        })

    # ------------------------------------------------------------------------
    # Encodage
    # ------------------------------------------------------------------------

    def start(self, input_tokens: int = 0) -> List[str]:
        """message_start (émis une seule fois)."""
        if self.started:
            return []
        self.started = True
        return [sse_event("message_start", {
            "type": "message_start",
            "message": {
                "id": new_message_id(),
                "type": "message",
                "role": "assistant",
                "model": self.model,
                "content": [],
                "stop_reason": None,
                "stop_sequence": None,
                "usage": {"input_tokens": input_tokens, "output_tokens": 0},
            },
        })]

    def encode(self, event: StreamEvent) -> List[str]:
        frames = self.start()

        if event.type == EventType.USAGE:
            self.usage = event.usage
            return frames

        if event.type == EventType.MESSAGE_DELTA:
            if event.usage:
                self.usage = event.usage
            return frames + self.finish()

        if event.type != EventType.BLOCK_DELTA:
            return frames

        if event.block_type == BlockType.THINKING:
            if self.open_block != BlockType.THINKING:
                if not event.text and not (self.pass_signature and event.signature):
                    return frames
                frames += self._open(BlockType.THINKING, {"type": "thinking", "thinking": ""})
            if event.text:
                frames.append(self._delta({"type": "thinking_delta", "thinking": event.text}))
            if self.pass_signature and event.signature:
                frames.append(self._delta({"type": "signature_delta", "signature": event.signature}))
            return frames

        if event.block_type == BlockType.TEXT:
            if not event.text:
                return frames
            if self.open_block != BlockType.TEXT:
                frames += self._open(BlockType.TEXT, {"type": "text", "text": ""})
            frames.append(self._delta({"type": "text_delta", "text": event.text}))
            return frames

        if event.block_type == BlockType.TOOL_USE and event.tool_call:
            call = event.tool_call
            self.has_tool_calls = True
            frames += self._open(BlockType.TOOL_USE, {
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": {},
            })
            arguments = json.dumps(parse_tool_arguments(call.arguments), ensure_ascii=False)
            frames.append(self._delta({"type": "input_json_delta", "partial_json": arguments}))
            frames += self._close()
            return frames

        return frames

    def finish(self) -> List[str]:
        """Ferme le bloc ouvert puis message_delta + message_stop; idempotent."""
        if self.finished:
            return []
        self.finished = True
        frames = self.start() + self._close()
        output_tokens = self.usage.completion_tokens if self.usage else 0
        frames.append(sse_event("message_delta", {
            "type": "message_delta",
            "delta": {
                "stop_reason": "tool_use" if self.has_tool_calls else "end_turn",
                "stop_sequence": None,
            },
            "usage": {"output_tokens": output_tokens},
        }))
        frames.append(sse_event("message_stop", {"type": "message_stop"}))
        return frames

    def error(self, message: str, status: int = 500) -> List[str]:
        """Événement `error` en cours de flux."""
        self.finished = True
        return [sse_event("error", build_claude_error_payload(message, status))]


def build_claude_error_payload(message: str, status: int) -> Dict[str, Any]:
    return {
        "type": "error",
        "error": {
            "type": CLAUDE_ERROR_TYPES.get(status, "api_error"),
            "message": message,
        },
    }
