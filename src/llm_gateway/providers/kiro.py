"""
Adapter Kiro (AWS CodeWhisperer generateAssistantResponse).

Protocole "conversationState": historique de userInputMessage /
assistantResponseMessage + message courant. La réponse est un flux
d'événements binaire dont seuls les fragments `{"content":"..."}` sont utiles.
"""
import codecs
import json
import logging
import re
import uuid
from typing import Any, AsyncIterator, Dict, List

from ..core.constants import (
    KIRO_BASE_URL,
    KIRO_CHAT_TRIGGER_TYPE,
    KIRO_DEFAULT_MODEL,
    KIRO_MODEL_MAPPING,
    KIRO_ORIGIN,
    KIRO_VERSION,
    PROVIDER_KIRO,
)
from ..core.models import Account, ChatMessage, ChatRequest, ChatResult, EventType, StreamEvent
from ..translators.common import estimate_usage, fold_events, split_system
from .base import BaseProvider

logger = logging.getLogger(__name__)

_CONTENT_PATTERN = re.compile(r'\{"content":"((?:[^"\\]|\\.)*)"')
_CONTENT_MARKER = '{"content":'


def _unescape(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return raw


class KiroEventScanner:
    """
    Extrait les fragments de texte d'un flux d'événements Kiro.

    Les chunks réseau peuvent couper un caractère UTF-8 ou un fragment JSON:
    le décodage est incrémental et la fin non résolue du tampon est conservée.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        contents = []
        position = 0
        for match in _CONTENT_PATTERN.finditer(self._buffer):
            contents.append(_unescape(match.group(1)))
            position = match.end()

        rest = self._buffer[position:]
        start = rest.rfind(_CONTENT_MARKER)
        self._buffer = rest[start:] if start >= 0 else rest[-16:]
        return contents


def map_model(model: str) -> str:
    """Nom client -> identifiant CodeWhisperer (modèle par défaut si inconnu)."""
    return KIRO_MODEL_MAPPING.get(model) or KIRO_MODEL_MAPPING[KIRO_DEFAULT_MODEL]


def _message_text(message: ChatMessage) -> str:
    if message.role == "tool":
        return f"Tool result ({message.tool_call_id or message.name or 'tool'}):\n{message.content}"
    return message.content


class KiroProvider(BaseProvider):
    """Provider Claude via les comptes Kiro."""

    name = PROVIDER_KIRO
    owned_by = "anthropic"
    default_models = list(KIRO_MODEL_MAPPING)

    # ========================================================================
    # CONSTRUCTION DE LA REQUÊTE
    # ========================================================================

    def build_headers(self, account: Account) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {account.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "amz-sdk-invocation-id": str(uuid.uuid4()),
            "amz-sdk-request": "attempt=1; max=1",
            "x-amzn-kiro-agent-mode": "vibe",
            "User-Agent": f"KiroIDE/{KIRO_VERSION}",
        }

    def build_url(self) -> str:
        return KIRO_BASE_URL.format(region=self.config.region)

    def build_body(self, request: ChatRequest, account: Account) -> Dict[str, Any]:
        """
        Construit le conversationState.

        Le prompt système est préfixé au premier message utilisateur: dans
        l'historique s'il existe, sinon au message courant.
        """
        model_id = map_model(request.model)
        system, conversation = split_system(request.messages, request.system)

        history: List[Dict[str, Any]] = []
        for message in conversation[:-1]:
            if message.role == "assistant":
                history.append({"assistantResponseMessage": {"content": message.content}})
            else:
                history.append({
                    "userInputMessage": {
                        "content": _message_text(message),
                        "modelId": model_id,
                        "origin": KIRO_ORIGIN,
                    }
                })

        current = _message_text(conversation[-1]) if conversation else ""
        if system:
            first_user = next((h for h in history if "userInputMessage" in h), None)
            if first_user is None:
                current = f"{system}\n\n{current}"
            else:
                entry = first_user["userInputMessage"]
                entry["content"] = f"{system}\n\n{entry['content']}"

        user_input: Dict[str, Any] = {
            "content": current,
            "modelId": model_id,
            "origin": KIRO_ORIGIN,
        }
        if request.tools:
            user_input["userInputMessageContext"] = {
                "tools": [
                    {
                        "toolSpecification": {
                            "name": tool.name,
                            "description": tool.description,
                            "inputSchema": {"json": tool.parameters},
                        }
                    }
                    for tool in request.tools
                ]
            }

        body: Dict[str, Any] = {
            "conversationState": {
                "chatTriggerType": KIRO_CHAT_TRIGGER_TYPE,
                "conversationId": str(uuid.uuid4()),
                "currentMessage": {"userInputMessage": user_input},
            }
        }
        if history:
            body["conversationState"]["history"] = history
        profile_arn = account.metadata.get("profileArn")
        if profile_arn:
            body["profileArn"] = profile_arn
        return body

    # ========================================================================
    # CHAT
    # ========================================================================

    def _closing_events(self, request: ChatRequest, text: str) -> List[StreamEvent]:
        usage = estimate_usage(request.messages, text)
        return [
            StreamEvent.usage_event(usage),
            StreamEvent(type=EventType.MESSAGE_DELTA, stop_reason="end_turn", usage=usage),
            StreamEvent(type=EventType.MESSAGE_STOP),
        ]

    async def chat(self, request: ChatRequest) -> ChatResult:
        account = await self.get_token()
        logger.info("[KIRO] %s -> %s", request.model, map_model(request.model))
        response = await self.client.post(
            self.build_url(),
            headers=self.build_headers(account),
            json_body=self.build_body(request, account),
            tag=self.name,
        )
        self.raise_for_status(response.status_code, response.text, account)
        self.on_success(account)

        text = "".join(KiroEventScanner().feed(response.content))
        events = [StreamEvent.text_delta(text)] if text else []
        events.extend(self._closing_events(request, text))
        return fold_events(events)

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        account = await self.get_token()
        logger.info("[KIRO] stream %s -> %s", request.model, map_model(request.model))
        scanner = KiroEventScanner()
        parts: List[str] = []
        async with self.client.stream(
            self.build_url(),
            headers=self.build_headers(account),
            json_body=self.build_body(request, account),
            tag=self.name,
        ) as response:
            await self.check_stream_response(response, account)
            async for chunk in response.aiter_bytes():
                for content in scanner.feed(chunk):
                    if content:
                        parts.append(content)
                        yield StreamEvent.text_delta(content)

        self.on_success(account)
        for event in self._closing_events(request, "".join(parts)):
            yield event
