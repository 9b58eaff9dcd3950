"""
Adapter Antigravity (API Gemini interne cloudcode v1internal).

La requête Gemini standard est enveloppée: {project, requestId, request, model, userAgent}.
Les réponses (SSE ou unaires) arrivent sous `response.candidates`.
"""
import logging
import uuid
from typing import Any, AsyncIterator, Dict

from ..auth.base import CredentialStore
from ..config.settings import AntigravityApiConfig, GenerationDefaults, ProviderConfig
from ..core.constants import ANTIGRAVITY_MODELS, PROVIDER_ANTIGRAVITY
from ..core.models import Account, ChatRequest, ChatResult, StreamEvent
from ..proxy.client import UpstreamClient
from ..proxy.stream import iter_sse_data, parse_sse_json
from ..translators.common import fold_events, split_system
from ..translators.gemini import (
    GeminiStreamParser,
    is_thinking_model,
    to_gemini_contents,
    to_gemini_tools,
)
from .base import BaseProvider

logger = logging.getLogger(__name__)


class AntigravityProvider(BaseProvider):
    """Provider Gemini via les comptes Google OAuth Antigravity."""

    name = PROVIDER_ANTIGRAVITY
    owned_by = "google"
    default_models = ANTIGRAVITY_MODELS

    def __init__(
        self,
        config: ProviderConfig,
        store: CredentialStore,
        client: UpstreamClient = None,
        defaults: GenerationDefaults = None,
        api: AntigravityApiConfig = None
    ):
        super().__init__(config, store, client, defaults)
        self.api = api or AntigravityApiConfig()

    # ========================================================================
    # CONSTRUCTION DE LA REQUÊTE
    # ========================================================================

    def build_headers(self, account: Account) -> Dict[str, str]:
        return {
            "Host": self.api.host,
            "User-Agent": self.api.user_agent,
            "Authorization": f"Bearer {account.access_token}",
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip",
        }

    def build_body(self, request: ChatRequest, account: Account) -> Dict[str, Any]:
        """
        Construit l'enveloppe v1internal.

        Args:
            request: Requête normalisée
            account: Compte (fournit le projectId)

        Returns:
            Corps JSON prêt à envoyer
        """
        params = self.resolve_params(request)
        system, conversation = split_system(request.messages, request.system)

        generation_config: Dict[str, Any] = {
            "temperature": params["temperature"],
            "topP": params["top_p"],
            "topK": params["top_k"],
            "maxOutputTokens": params["max_tokens"],
            "candidateCount": 1,
        }
        if params["stop"]:
            generation_config["stopSequences"] = params["stop"]
        if is_thinking_model(request.model) and params["thinking_budget"]:
            generation_config["thinkingConfig"] = {
                "includeThoughts": True,
                "thinkingBudget": params["thinking_budget"],
            }

        inner: Dict[str, Any] = {
            "contents": to_gemini_contents(conversation),
            "generationConfig": generation_config,
        }
        if system:
            inner["systemInstruction"] = {"role": "user", "parts": [{"text": system}]}
        tools = to_gemini_tools(request.tools)
        if tools:
            inner["tools"] = tools
            inner["toolConfig"] = {"functionCallingConfig": {"mode": "VALIDATED"}}

        return {
            "project": account.metadata.get("project_id"),
            "requestId": f"agent-{uuid.uuid4()}",
            "request": inner,
            "model": request.model,
            "userAgent": "antigravity",
        }

    # ========================================================================
    # CHAT
    # ========================================================================

    async def chat(self, request: ChatRequest) -> ChatResult:
        account = await self.get_token()
        response = await self.client.post(
            self.api.no_stream_url,
            headers=self.build_headers(account),
            json_body=self.build_body(request, account),
            tag=self.name,
        )
        self.raise_for_status(response.status_code, response.text, account)
        self.on_success(account)

        parser = GeminiStreamParser()
        events = parser.feed(response.json())
        events.extend(parser.finish())
        return fold_events(events)

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        account = await self.get_token()
        parser = GeminiStreamParser()
        async with self.client.stream(
            self.api.url,
            headers=self.build_headers(account),
            json_body=self.build_body(request, account),
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
