"""
Adapter Codex (OpenAI).

Deux modes selon le type de compte:
- OAuth (ChatGPT): API Responses du backend ChatGPT, liste `input` d'items
- API key: /chat/completions de la plateforme OpenAI, format `messages`

Les 429 alimentent le RateLimitTracker (télémétrie admin); un appel réussi
efface le statut du compte.
"""
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from ..auth.base import CredentialStore
from ..config.settings import GenerationDefaults, ProviderConfig
from ..core.constants import (
    CODEX_AUTH_OAUTH,
    CODEX_BASE_URL,
    CODEX_MODELS,
    CODEX_PLATFORM_API_URL,
    CODEX_RESPONSES_PATH,
    PROVIDER_CODEX,
)
from ..core.models import (
    Account,
    ChatRequest,
    ChatResult,
    EventType,
    StreamEvent,
    ToolCall,
    Usage,
)
from ..core.timing import now_ms
from ..proxy.client import UpstreamClient
from ..proxy.stream import iter_sse_data, parse_sse_json
from ..translators.common import fold_events, new_tool_call_id, split_system
from .base import BaseProvider
from .rate_limits import RateLimitTracker

logger = logging.getLogger(__name__)

OPENAI_BETA = "responses=experimental"
ORIGINATOR = "codex_cli_rs"


def _closing_events(usage: Optional[Usage], has_tool_calls: bool) -> List[StreamEvent]:
    events = []
    if usage:
        events.append(StreamEvent.usage_event(usage))
    events.append(StreamEvent(
        type=EventType.MESSAGE_DELTA,
        stop_reason="tool_use" if has_tool_calls else "end_turn",
        usage=usage,
    ))
    events.append(StreamEvent(type=EventType.MESSAGE_STOP))
    return events


# ============================================================================
# PARSEURS DE RÉPONSE
# ============================================================================

class ResponsesStreamParser:
    """Événements SSE de l'API Responses -> StreamEvent."""

    def __init__(self):
        self.usage: Optional[Usage] = None
        self.has_tool_calls = False

    def feed(self, data: Dict[str, Any]) -> List[StreamEvent]:
        kind = data.get("type", "")

        if kind == "response.output_text.delta":
            delta = data.get("delta")
            return [StreamEvent.text_delta(delta)] if isinstance(delta, str) and delta else []

        if kind == "response.content_part.delta":
            delta = data.get("delta") or {}
            text = delta.get("text") if isinstance(delta, dict) else None
            return [StreamEvent.text_delta(text)] if text else []

        if kind in ("response.reasoning_summary_text.delta", "response.reasoning_text.delta"):
            delta = data.get("delta")
            return [StreamEvent.thinking_delta(delta)] if isinstance(delta, str) and delta else []

        if kind == "response.output_item.done":
            item = data.get("item") or {}
            if item.get("type") == "function_call":
                self.has_tool_calls = True
                return [StreamEvent.tool_use(ToolCall(
                    id=item.get("call_id") or item.get("id") or new_tool_call_id(),
                    name=item.get("name", ""),
                    arguments=item.get("arguments") or "{}",
                ))]
            return []

        if kind == "response.completed":
            self.usage = responses_usage((data.get("response") or {}).get("usage"))
        return []

    def finish(self) -> List[StreamEvent]:
        return _closing_events(self.usage, self.has_tool_calls)


class ChatCompletionsStreamParser:
    """
    Chunks chat.completions -> StreamEvent.

    Les fragments d'arguments d'outils sont accumulés par index et émis
    complets à la fin du flux.
    """

    def __init__(self):
        self.usage: Optional[Usage] = None
        self._tool_calls: Dict[int, Dict[str, str]] = {}

    def feed(self, data: Dict[str, Any]) -> List[StreamEvent]:
        if isinstance(data.get("usage"), dict):
            self.usage = chat_usage(data["usage"])

        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return []
        delta = choices[0].get("delta") or {}

        events = []
        if delta.get("reasoning_content"):
            events.append(StreamEvent.thinking_delta(delta["reasoning_content"]))
        if delta.get("content"):
            events.append(StreamEvent.text_delta(delta["content"]))
        for fragment in delta.get("tool_calls") or []:
            slot = self._tool_calls.setdefault(fragment.get("index", 0), {"id": "", "name": "", "arguments": ""})
            function = fragment.get("function") or {}
            slot["id"] = fragment.get("id") or slot["id"]
            slot["name"] = function.get("name") or slot["name"]
            slot["arguments"] += function.get("arguments") or ""
        return events

    def finish(self) -> List[StreamEvent]:
        events = [
            StreamEvent.tool_use(ToolCall(
                id=slot["id"] or new_tool_call_id(),
                name=slot["name"],
                arguments=slot["arguments"] or "{}",
            ))
            for _, slot in sorted(self._tool_calls.items())
        ]
        return events + _closing_events(self.usage, bool(self._tool_calls))


def responses_usage(raw: Any) -> Optional[Usage]:
    if not isinstance(raw, dict):
        return None
    prompt = int(raw.get("input_tokens") or 0)
    completion = int(raw.get("output_tokens") or 0)
    return Usage(prompt, completion, int(raw.get("total_tokens") or 0) or prompt + completion)


def chat_usage(raw: Any) -> Optional[Usage]:
    if not isinstance(raw, dict):
        return None
    prompt = int(raw.get("prompt_tokens") or 0)
    completion = int(raw.get("completion_tokens") or 0)
    return Usage(prompt, completion, int(raw.get("total_tokens") or 0) or prompt + completion)


def parse_responses_output(data: Dict[str, Any]) -> List[StreamEvent]:
    """Réponse Responses unaire (`output[]`) -> événements."""
    events: List[StreamEvent] = []
    has_tool_calls = False
    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "message":
            for part in item.get("content") or []:
                if isinstance(part, dict) and part.get("type") in ("output_text", "text") and part.get("text"):
                    events.append(StreamEvent.text_delta(part["text"]))
        elif kind == "reasoning":
            for part in item.get("summary") or []:
                if isinstance(part, dict) and part.get("text"):
                    events.append(StreamEvent.thinking_delta(part["text"]))
        elif kind == "function_call":
            has_tool_calls = True
            events.append(StreamEvent.tool_use(ToolCall(
                id=item.get("call_id") or item.get("id") or new_tool_call_id(),
                name=item.get("name", ""),
                arguments=item.get("arguments") or "{}",
            )))
    return events + _closing_events(responses_usage(data.get("usage")), has_tool_calls)


def parse_chat_completion(data: Dict[str, Any]) -> List[StreamEvent]:
    """Réponse chat.completion unaire -> événements."""
    events: List[StreamEvent] = []
    choices = data.get("choices") or []
    message = (choices[0].get("message") or {}) if choices and isinstance(choices[0], dict) else {}
    if message.get("reasoning_content"):
        events.append(StreamEvent.thinking_delta(message["reasoning_content"]))
    if message.get("content"):
        events.append(StreamEvent.text_delta(message["content"]))
    calls = message.get("tool_calls") or []
    for call in calls:
        function = call.get("function") or {}
        events.append(StreamEvent.tool_use(ToolCall(
            id=call.get("id") or new_tool_call_id(),
            name=function.get("name", ""),
            arguments=function.get("arguments") or "{}",
        )))
    return events + _closing_events(chat_usage(data.get("usage")), bool(calls))


# ============================================================================
# PROVIDER
# ============================================================================

class CodexProvider(BaseProvider):
    """Provider OpenAI via comptes ChatGPT (OAuth) ou clés API."""

    name = PROVIDER_CODEX
    owned_by = "openai"
    default_models = CODEX_MODELS

    def __init__(
        self,
        config: ProviderConfig,
        store: CredentialStore,
        client: UpstreamClient = None,
        defaults: GenerationDefaults = None,
        tracker: RateLimitTracker = None
    ):
        super().__init__(config, store, client, defaults)
        self.rate_limits = tracker or RateLimitTracker()

    @staticmethod
    def is_oauth(account: Account) -> bool:
        return account.auth_type == CODEX_AUTH_OAUTH

    # ========================================================================
    # HOOKS RATE-LIMIT
    # ========================================================================

    def on_rate_limited(self, account: Account, body: str):
        self.rate_limits.record(account.id, body)

    def on_success(self, account: Account):
        self.rate_limits.clear(account.id)

    # ========================================================================
    # CONSTRUCTION DE LA REQUÊTE
    # ========================================================================

    def build_url(self, account: Account) -> str:
        if self.is_oauth(account):
            return f"{CODEX_BASE_URL}{CODEX_RESPONSES_PATH}"
        return f"{CODEX_PLATFORM_API_URL}/chat/completions"

    def build_headers(self, account: Account) -> Dict[str, str]:
        if not self.is_oauth(account):
            return {
                "Authorization": f"Bearer {account.secret}",
                "Content-Type": "application/json",
            }
        headers = {
            "Authorization": f"Bearer {account.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "OpenAI-Beta": OPENAI_BETA,
            "originator": ORIGINATOR,
            "session_id": str(uuid.uuid4()),
        }
        chatgpt_account_id = account.metadata.get("chatgpt_account_id")
        if chatgpt_account_id:
            headers["chatgpt-account-id"] = chatgpt_account_id
        return headers

    def build_responses_body(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        """Corps API Responses: system + messages aplatis en items `input`."""
        params = self.resolve_params(request)
        system, conversation = split_system(request.messages, request.system)

        items: List[Dict[str, Any]] = []
        if system:
            items.append({"type": "message", "role": "system", "content": system})
        for message in conversation:
            if message.role == "tool":
                items.append({
                    "type": "function_call_output",
                    "call_id": message.tool_call_id,
                    "output": message.content,
                })
                continue
            if message.content or not message.tool_calls:
                items.append({"type": "message", "role": message.role, "content": message.content})
            for call in message.tool_calls:
                items.append({
                    "type": "function_call",
                    "call_id": call.id,
                    "name": call.name,
                    "arguments": call.arguments,
                })

        body: Dict[str, Any] = {
            "model": request.model,
            "input": items,
            "stream": stream,
            "max_output_tokens": params["max_tokens"],
            "temperature": params["temperature"],
        }
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                }
                for tool in request.tools
            ]
        return body

    def build_chat_body(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        """Corps chat.completions standard."""
        params = self.resolve_params(request)
        system, conversation = split_system(request.messages, request.system)

        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        for message in conversation:
            entry: Dict[str, Any] = {"role": message.role, "content": message.content}
            if message.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in message.tool_calls
                ]
            if message.role == "tool":
                entry["tool_call_id"] = message.tool_call_id
            messages.append(entry)

        body: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": stream,
            "max_tokens": params["max_tokens"],
            "temperature": params["temperature"],
        }
        if params["stop"]:
            body["stop"] = params["stop"]
        if stream:
            body["stream_options"] = {"include_usage": True}
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in request.tools
            ]
        return body

    def build_body(self, request: ChatRequest, account: Account, stream: bool) -> Dict[str, Any]:
        if self.is_oauth(account):
            return self.build_responses_body(request, stream)
        return self.build_chat_body(request, stream)

    # ========================================================================
    # CHAT
    # ========================================================================

    async def chat(self, request: ChatRequest) -> ChatResult:
        account = await self.get_token()
        response = await self.client.post(
            self.build_url(account),
            headers=self.build_headers(account),
            json_body=self.build_body(request, account, stream=False),
            tag=self.name,
        )
        self.raise_for_status(response.status_code, response.text, account)
        self.on_success(account)

        data = response.json()
        if self.is_oauth(account):
            return fold_events(parse_responses_output(data))
        return fold_events(parse_chat_completion(data))

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        account = await self.get_token()
        parser = ResponsesStreamParser() if self.is_oauth(account) else ChatCompletionsStreamParser()
        async with self.client.stream(
            self.build_url(account),
            headers=self.build_headers(account),
            json_body=self.build_body(request, account, stream=True),
            tag=self.name,
        ) as response:
            await self.check_stream_response(response, account)
            async for payload in iter_sse_data(response):
                data = parse_sse_json(payload, self.name)
                if data is None:
                    continue
                for event in parser.feed(data):
                    yield event

        self.on_success(account)
        for event in parser.finish():
            yield event

    # ========================================================================
    # ADMIN
    # ========================================================================

    def get_rate_limit_status(self, account_id: str) -> Optional[Dict[str, Any]]:
        """
        Statut de rate-limit d'un compte pour l'admin.

        Returns:
            Dictionnaire de statut, ou None si le compte est inconnu
        """
        account = self.store.find_account(account_id)
        if account is None:
            return None

        current = now_ms()
        status = self.rate_limits.get(account_id, now=current)
        result: Dict[str, Any] = {
            "account_id": account_id,
            "auth_type": account.auth_type,
            "last_updated": current,
            "rate_limited": status is not None,
        }
        if status is not None:
            result.update({
                "reset_time": status.reset_time,
                "remaining_minutes": -(-(status.reset_time - current) // 60000),
                "last_error": status.last_error,
            })
        return result
