"""
Tests unitaires de l'adapter Antigravity (enveloppe v1internal, flux SSE, erreurs).
"""
import json

import httpx
import pytest

from llm_gateway.config.settings import ProviderConfig
from llm_gateway.core.exceptions import UpstreamError
from llm_gateway.core.models import ChatMessage, ChatRequest, EventType, GenerationParams, ToolSpec
from llm_gateway.core.timing import now_ms
from llm_gateway.providers.antigravity import AntigravityProvider
from llm_gateway.proxy.client import create_upstream_client

from conftest import MemoryCredentialStore, write_json

pytestmark = pytest.mark.anyio


def _provider(tmp_path, handler):
    path = write_json(tmp_path / "antigravity.json", [
        {"id": "g1", "access_token": "google-token-abcdef12", "expires_at": now_ms() + 3600 * 1000},
    ])
    client = create_upstream_client(max_retries=0, transport=httpx.MockTransport(handler))
    return AntigravityProvider(
        ProviderConfig(name="antigravity", accounts_file=path),
        MemoryCredentialStore(path),
        client,
    )


def _request(model="gemini-2.5-pro", **params):
    return ChatRequest(
        model=model,
        messages=[
            ChatMessage(role="system", content="Be brief"),
            ChatMessage(role="user", content="hello"),
        ],
        tools=[ToolSpec(name="lookup", parameters={"type": "object"})],
        params=GenerationParams(**params),
    )


def _sse(*payloads):
    body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
    return httpx.Response(200, content=body.encode("utf-8"), headers={"Content-Type": "text/event-stream"})


async def test_envelope(tmp_path):
    provider = _provider(tmp_path, lambda request: httpx.Response(200))
    await provider.initialize()
    account = await provider.get_token()

    body = provider.build_body(_request(max_tokens=128, thinking_budget=2048), account)

    inner = body["request"]
    assert body["model"] == "gemini-2.5-pro"
    assert body["requestId"].startswith("agent-")
    assert inner["systemInstruction"]["parts"] == [{"text": "Be brief"}]
    assert inner["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
    assert inner["generationConfig"]["maxOutputTokens"] == 128
    assert inner["generationConfig"]["thinkingConfig"] == {"includeThoughts": True, "thinkingBudget": 2048}
    assert inner["tools"][0]["functionDeclarations"][0]["name"] == "lookup"


async def test_no_thinking_config_for_plain_models(tmp_path):
    provider = _provider(tmp_path, lambda request: httpx.Response(200))
    await provider.initialize()
    account = await provider.get_token()

    body = provider.build_body(_request(model="gemini-2.0-flash", thinking_budget=2048), account)

    assert "thinkingConfig" not in body["request"]["generationConfig"]


async def test_stream(tmp_path):
    seen = []

    def handler(request):
        seen.append(request)
        return _sse(
            {"response": {"candidates": [{"content": {"parts": [{"text": "plan", "thought": True}]}}]}},
            {"response": {"candidates": [{"content": {"parts": [{"text": "Hi"}]}, "finishReason": "STOP"}],
                          "usageMetadata": {"promptTokenCount": 2, "candidatesTokenCount": 1}}},
        )

    provider = _provider(tmp_path, handler)
    await provider.initialize()

    events = [event async for event in provider.chat_stream(_request())]

    assert seen[0].headers["Authorization"] == "Bearer google-token-abcdef12"
    assert "streamGenerateContent" in str(seen[0].url)
    assert [e.text for e in events[:2]] == ["plan", "Hi"]
    assert events[-2].stop_reason == "end_turn"
    assert events[-1].type == EventType.MESSAGE_STOP


async def test_unary(tmp_path):
    provider = _provider(tmp_path, lambda request: httpx.Response(200, json={"response": {
        "candidates": [{"content": {"parts": [{"text": "pong"}]}, "finishReason": "MAX_TOKENS"}],
        "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 6},
    }}))
    await provider.initialize()

    result = await provider.chat(_request())

    assert result.content == "pong"
    assert result.stop_reason == "max_tokens"
    assert result.usage.total_tokens == 10


async def test_upstream_error_keeps_status(tmp_path):
    provider = _provider(tmp_path, lambda request: httpx.Response(403, text="PERMISSION_DENIED"))
    await provider.initialize()

    with pytest.raises(UpstreamError) as exc_info:
        await provider.chat(_request())

    assert exc_info.value.status_code == 403
    assert exc_info.value.body == "PERMISSION_DENIED"
