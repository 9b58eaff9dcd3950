"""
Format Gemini (generateContent), dans les deux sens.

- Vers l'amont Antigravity: ChatMessage -> contents/parts, outils -> functionDeclarations
- Depuis l'amont: candidats -> StreamEvent (thought, text, functionCall, usageMetadata)
- Côté client (/v1beta): requête Gemini -> ChatRequest, réponse/flux -> candidats
"""
import json
from typing import Any, Dict, List, Optional

from ..core.models import (
    BlockType,
    ChatMessage,
    ChatRequest,
    ChatResult,
    EventType,
    StreamEvent,
    ToolCall,
    ToolSpec,
    Usage,
)
from ..proxy.stream import sse_data
from .common import (
    new_tool_call_id,
    normalize_gemini_parameters,
    parse_tool_arguments,
)

GEMINI_STATUS_NAMES = {
    400: "INVALID_ARGUMENT",
    401: "UNAUTHENTICATED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    429: "RESOURCE_EXHAUSTED",
    500: "INTERNAL",
    503: "UNAVAILABLE",
}

FINISH_REASONS = {
    "MAX_TOKENS": "max_tokens",
    "STOP": "end_turn",
}


def is_thinking_model(model: str) -> bool:
    """Modèles qui acceptent un thinkingConfig."""
    return (
        model.endswith("-thinking")
        or model.startswith("gemini-2.5")
        or model.startswith("gemini-3")
    )


# ============================================================================
# VERS L'AMONT
# ============================================================================

def to_gemini_contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    """
    Convertit la conversation normalisée en `contents` Gemini.

    Les réponses d'outils consécutives sont regroupées dans un même tour user,
    nommées d'après l'appel assistant correspondant.
    """
    contents: List[Dict[str, Any]] = []
    call_names: Dict[str, str] = {}

    for message in messages:
        if message.role == "system":
            continue

        if message.role == "assistant":
            parts: List[Dict[str, Any]] = []
            if message.content:
                parts.append({"text": message.content})
            for call in message.tool_calls:
                call_names[call.id] = call.name
                part = {
                    "functionCall": {
                        "name": call.name,
                        "args": parse_tool_arguments(call.arguments),
                        "id": call.id,
                    }
                }
                if call.signature:
                    part["thoughtSignature"] = call.signature
                parts.append(part)
            contents.append({"role": "model", "parts": parts or [{"text": ""}]})
            continue

        if message.role == "tool":
            part = {
                "functionResponse": {
                    "name": message.name or call_names.get(message.tool_call_id or "", ""),
                    "id": message.tool_call_id,
                    "response": {"output": message.content},
                }
            }
            previous = contents[-1] if contents else None
            if previous and previous["role"] == "user" and all(
                "functionResponse" in p for p in previous["parts"]
            ):
                previous["parts"].append(part)
            else:
                contents.append({"role": "user", "parts": [part]})
            continue

        parts = []
        if message.content:
            parts.append({"text": message.content})
        for image in message.images:
            parts.append({"inlineData": {"mimeType": image["mime_type"], "data": image["data"]}})
        contents.append({"role": "user", "parts": parts or [{"text": ""}]})

    return contents


def to_gemini_tools(tools: List[ToolSpec]) -> List[Dict[str, Any]]:
    if not tools:
        return []
    return [{
        "functionDeclarations": [
            {"name": tool.name, "description": tool.description, "parameters": tool.parameters}
            for tool in tools
        ]
    }]


def gemini_usage(metadata: Dict[str, Any]) -> Usage:
    """usageMetadata -> Usage (les tokens de réflexion comptent en sortie)."""
    prompt = int(metadata.get("promptTokenCount") or 0)
    completion = int(metadata.get("candidatesTokenCount") or 0) + int(metadata.get("thoughtsTokenCount") or 0)
    total = int(metadata.get("totalTokenCount") or 0) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


# ============================================================================
# DEPUIS L'AMONT
# ============================================================================

class GeminiStreamParser:
    """
    Convertit les réponses Gemini (chunk SSE ou réponse unaire) en StreamEvent.

    Seul le premier candidat est pris en compte.
    """

    def __init__(self):
        self.usage: Optional[Usage] = None
        self.finish_reason: Optional[str] = None
        self.has_tool_calls = False
        self._last_block: Optional[str] = None

    def feed(self, data: Dict[str, Any]) -> List[StreamEvent]:
        response = data.get("response", data) if isinstance(data, dict) else {}
        if not isinstance(response, dict):
            return []

        metadata = response.get("usageMetadata")
        if isinstance(metadata, dict):
            self.usage = gemini_usage(metadata)

        events: List[StreamEvent] = []
        candidates = response.get("candidates") or []
        if candidates and isinstance(candidates[0], dict):
            candidate = candidates[0]
            if candidate.get("finishReason"):
                self.finish_reason = candidate["finishReason"]
            for part in (candidate.get("content") or {}).get("parts") or []:
                if isinstance(part, dict):
                    events.extend(self._part_events(part))
        return events

    def _part_events(self, part: Dict[str, Any]) -> List[StreamEvent]:
        signature = part.get("thoughtSignature")

        call = part.get("functionCall")
        if isinstance(call, dict):
            self.has_tool_calls = True
            self._last_block = BlockType.TOOL_USE
            return [StreamEvent.tool_use(ToolCall(
                id=call.get("id") or new_tool_call_id(),
                name=call.get("name", ""),
                arguments=json.dumps(call.get("args") or {}, ensure_ascii=False),
                signature=signature,
            ))]

        text = part.get("text") or ""
        if part.get("thought"):
            self._last_block = BlockType.THINKING
            return [StreamEvent.thinking_delta(text, signature)]
        if text:
            self._last_block = BlockType.TEXT
            return [StreamEvent.text_delta(text)]
        if signature and self._last_block == BlockType.THINKING:
            return [StreamEvent.thinking_delta("", signature)]
        return []

    @property
    def stop_reason(self) -> str:
        if self.has_tool_calls:
            return "tool_use"
        return FINISH_REASONS.get(self.finish_reason or "STOP", "end_turn")

    def finish(self) -> List[StreamEvent]:
        """Événements de clôture: usage, message_delta, message_stop."""
        events = []
        if self.usage:
            events.append(StreamEvent.usage_event(self.usage))
        events.append(StreamEvent(type=EventType.MESSAGE_DELTA, stop_reason=self.stop_reason, usage=self.usage))
        events.append(StreamEvent(type=EventType.MESSAGE_STOP))
        return events


# ============================================================================
# CÔTÉ CLIENT (/v1beta)
# ============================================================================

def parse_gemini_request(model: str, body: Dict[str, Any], stream: bool) -> ChatRequest:
    """Requête generateContent -> ChatRequest."""
    messages: List[ChatMessage] = []
    for content in body.get("contents") or []:
        if not isinstance(content, dict):
            continue
        parts = [p for p in content.get("parts") or [] if isinstance(p, dict)]
        if content.get("role") == "model":
            text = "".join(p.get("text", "") for p in parts if "text" in p and not p.get("thought"))
            calls = [
                ToolCall(
                    id=p["functionCall"].get("id") or new_tool_call_id(),
                    name=p["functionCall"].get("name", ""),
                    arguments=json.dumps(p["functionCall"].get("args") or {}, ensure_ascii=False),
                    signature=p.get("thoughtSignature"),
                )
                for p in parts if isinstance(p.get("functionCall"), dict)
            ]
            messages.append(ChatMessage(role="assistant", content=text, tool_calls=calls))
            continue

        responses = [p["functionResponse"] for p in parts if isinstance(p.get("functionResponse"), dict)]
        for response in responses:
            messages.append(ChatMessage(
                role="tool",
                content=json.dumps(response.get("response") or {}, ensure_ascii=False),
                tool_call_id=response.get("id") or response.get("name"),
                name=response.get("name"),
            ))
        text = "".join(p.get("text", "") for p in parts if "text" in p)
        images = [
            {"mime_type": p["inlineData"].get("mimeType", "image/png"), "data": p["inlineData"].get("data", "")}
            for p in parts if isinstance(p.get("inlineData"), dict)
        ]
        if text or images or not responses:
            messages.append(ChatMessage(role="user", content=text, images=images))

    system = None
    instruction = body.get("systemInstruction") or body.get("system_instruction")
    if isinstance(instruction, dict):
        system = "\n".join(p.get("text", "") for p in instruction.get("parts") or [] if isinstance(p, dict)) or None

    tools = []
    for tool in body.get("tools") or []:
        for declaration in (tool or {}).get("functionDeclarations") or []:
            if isinstance(declaration, dict) and declaration.get("name"):
                tools.append(ToolSpec(
                    name=declaration["name"],
                    description=declaration.get("description", ""),
                    parameters=declaration.get("parameters") or {},
                ))

    return ChatRequest(
        model=model,
        messages=messages,
        system=system,
        tools=tools,
        params=normalize_gemini_parameters(body.get("generationConfig") or {}),
        stream=stream,
        requested_model=model,
    )


def _usage_metadata(usage: Optional[Usage]) -> Optional[Dict[str, int]]:
    if usage is None:
        return None
    return {
        "promptTokenCount": usage.prompt_tokens,
        "candidatesTokenCount": usage.completion_tokens,
        "totalTokenCount": usage.total_tokens or usage.prompt_tokens + usage.completion_tokens,
    }


def _tool_call_part(call: ToolCall, pass_signature: bool) -> Dict[str, Any]:
    part = {
        "functionCall": {
            "name": call.name,
            "args": parse_tool_arguments(call.arguments),
            "id": call.id,
        }
    }
    if pass_signature and call.signature:
        part["thoughtSignature"] = call.signature
    return part


def build_gemini_response(result: ChatResult, model: str, pass_signature: bool = False) -> Dict[str, Any]:
    """ChatResult -> réponse generateContent."""
    parts: List[Dict[str, Any]] = []
    if result.reasoning_content:
        thought = {"text": result.reasoning_content, "thought": True}
        if pass_signature and result.reasoning_signature:
            thought["thoughtSignature"] = result.reasoning_signature
        parts.append(thought)
    if result.content:
        parts.append({"text": result.content})
    for call in result.tool_calls:
        parts.append(_tool_call_part(call, pass_signature))

    response = {
        "candidates": [{
            "content": {"role": "model", "parts": parts or [{"text": ""}]},
            "finishReason": "MAX_TOKENS" if result.stop_reason == "max_tokens" else "STOP",
            "index": 0,
        }],
        "modelVersion": model,
    }
    metadata = _usage_metadata(result.usage)
    if metadata:
        response["usageMetadata"] = metadata
    return response


class GeminiStreamEncoder:
    """StreamEvent -> frames SSE generateContent (un chunk par delta)."""

    def __init__(self, model: str, pass_signature: bool = False):
        self.model = model
        self.pass_signature = pass_signature
        self.usage: Optional[Usage] = None
        self.finished = False

    def _frame(self, parts: List[Dict[str, Any]], finish_reason: Optional[str] = None) -> str:
        candidate: Dict[str, Any] = {"content": {"role": "model", "parts": parts}, "index": 0}
        if finish_reason:
            candidate["finishReason"] = finish_reason
        chunk = {"candidates": [candidate], "modelVersion": self.model}
        if finish_reason and self.usage:
            chunk["usageMetadata"] = _usage_metadata(self.usage)
        return sse_data(chunk)

    def start(self) -> List[str]:
        return []

    def encode(self, event: StreamEvent) -> List[str]:
        if event.type == EventType.USAGE:
            self.usage = event.usage
            return []
        if event.type == EventType.MESSAGE_DELTA:
            if event.usage:
                self.usage = event.usage
            return self.finish("MAX_TOKENS" if event.stop_reason == "max_tokens" else "STOP")
        if event.type != EventType.BLOCK_DELTA:
            return []

        if event.block_type == BlockType.TEXT and event.text:
            return [self._frame([{"text": event.text}])]
        if event.block_type == BlockType.THINKING:
            part: Dict[str, Any] = {"text": event.text, "thought": True}
            if self.pass_signature and event.signature:
                part["thoughtSignature"] = event.signature
            if not event.text and "thoughtSignature" not in part:
                return []
            return [self._frame([part])]
        if event.block_type == BlockType.TOOL_USE and event.tool_call:
            return [self._frame([_tool_call_part(event.tool_call, self.pass_signature)])]
        return []

    def finish(self, finish_reason: str = "STOP") -> List[str]:
        """Chunk final (finishReason + usageMetadata); idempotent."""
        if self.finished:
            return []
        self.finished = True
        return [self._frame([{"text": ""}], finish_reason=finish_reason)]

    def error(self, message: str, status: int = 500) -> List[str]:
        self.finished = True
        return [sse_data(build_gemini_error_payload(message, status))]


def build_gemini_error_payload(message: str, status: int) -> Dict[str, Any]:
    return {
        "error": {
            "code": status,
            "message": message,
            "status": GEMINI_STATUS_NAMES.get(status, "UNKNOWN"),
        }
    }
