"""
Tests E2E de la passerelle: surfaces HTTP, auth, quotas, streaming, admin.

L'application complète tourne via TestClient avec un provider scripté.
"""
import json

import pytest
from fastapi.testclient import TestClient

from llm_gateway.core.exceptions import UpstreamError
from llm_gateway.main import create_app
from llm_gateway.providers.registry import ProviderRegistry

from conftest import MASTER_KEY, TEAM_KEY, FakeProvider


def _client(settings, provider):
    registry = ProviderRegistry()
    registry.register(provider)
    return TestClient(create_app(settings=settings, registry=registry))


def _bearer(key):
    return {"Authorization": f"Bearer {key}"}


def _chat_body(model="fake-model", stream=False):
    return {"model": model, "stream": stream, "messages": [{"role": "user", "content": "ping"}]}


def _claude_body(model="fake-model", stream=False):
    return {"model": model, "max_tokens": 64, "stream": stream, "messages": [{"role": "user", "content": "ping"}]}


@pytest.fixture
def client(settings, fake_provider):
    with _client(settings, fake_provider) as test_client:
        yield test_client


# ============================================================================
# AUTH & ADMISSION
# ============================================================================

def test_unknown_key_rejected(client):
    response = client.post("/v1/chat/completions", json=_chat_body(), headers=_bearer("nope-nope-nope"))

    assert response.status_code == 401
    assert response.json()["error"]["type"] == "authentication_error"


def test_missing_key_rejected(client):
    response = client.post("/v1/messages", json=_claude_body())

    assert response.status_code == 401
    assert response.json()["type"] == "error"


def test_model_not_allowed_for_route(client):
    response = client.post("/v1/chat/completions", json=_chat_body("other-model"), headers=_bearer(TEAM_KEY))

    assert response.status_code == 400
    assert "other-model" in response.json()["error"]["message"]


def test_quota_exhausted_after_limit(client, fake_provider):
    for _ in range(2):
        response = client.post("/v1/chat/completions", json=_chat_body(), headers=_bearer(TEAM_KEY))
        assert response.status_code == 200

    response = client.post("/v1/chat/completions", json=_chat_body(), headers=_bearer(TEAM_KEY))

    assert response.status_code == 429
    assert "quota exceeded" in response.json()["error"]["message"]
    assert len(fake_provider.calls) == 2


def test_alias_dispatches_target_and_echoes_alias(client, fake_provider):
    response = client.post("/v1/chat/completions", json=_chat_body("fast"), headers=_bearer(TEAM_KEY))

    assert response.status_code == 200
    assert response.json()["model"] == "fast"
    assert fake_provider.calls[0].model == "fake-model"


def test_master_key_bypasses_quota(client):
    for _ in range(3):
        response = client.post("/v1/chat/completions", json=_chat_body(), headers=_bearer(MASTER_KEY))
        assert response.status_code == 200


def test_invalid_json_body(client):
    response = client.post(
        "/v1/chat/completions",
        content=b"{not json",
        headers={**_bearer(MASTER_KEY), "Content-Type": "application/json"},
    )

    assert response.status_code == 400


# ============================================================================
# SURFACES
# ============================================================================

def test_openai_unary(client):
    response = client.post("/v1/chat/completions", json=_chat_body(), headers=_bearer(MASTER_KEY))

    body = response.json()
    assert body["object"] == "chat.completion"
    assert body["choices"][0]["message"]["content"] == "pong"
    assert body["usage"]["total_tokens"] == 5


def test_openai_stream(client):
    response = client.post("/v1/chat/completions", json=_chat_body(stream=True), headers=_bearer(MASTER_KEY))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = [line[len("data: "):] for line in response.text.splitlines() if line.startswith("data: ")]
    assert frames[-1] == "[DONE]"
    chunks = [json.loads(frame) for frame in frames[:-1]]
    text = "".join(c["choices"][0]["delta"].get("content") or "" for c in chunks)
    assert text == "Hello"
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"


def test_claude_unary(client):
    response = client.post("/v1/messages", json=_claude_body(), headers={"x-api-key": MASTER_KEY})

    body = response.json()
    assert body["type"] == "message"
    assert body["content"] == [{"type": "text", "text": "pong"}]
    assert body["stop_reason"] == "end_turn"


def test_claude_stream(client):
    response = client.post("/v1/messages", json=_claude_body(stream=True), headers={"x-api-key": MASTER_KEY})

    events = [line[len("event: "):] for line in response.text.splitlines() if line.startswith("event: ")]
    assert events[0] == "message_start"
    assert events[-2:] == ["message_delta", "message_stop"]
    assert events.count("content_block_start") == events.count("content_block_stop") == 1


def test_gemini_generate_content_with_query_key(client):
    response = client.post(
        f"/v1beta/models/fake-model:generateContent?key={TEAM_KEY}",
        json={"contents": [{"role": "user", "parts": [{"text": "ping"}]}]},
    )

    assert response.status_code == 200
    assert response.json()["candidates"][0]["content"]["parts"] == [{"text": "pong"}]


def test_gemini_stream_generate_content(client):
    response = client.post(
        "/v1beta/models/fake-model:streamGenerateContent?alt=sse",
        json={"contents": [{"role": "user", "parts": [{"text": "ping"}]}]},
        headers={"x-goog-api-key": MASTER_KEY},
    )

    chunks = [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]
    text = "".join(p.get("text", "") for c in chunks for p in c["candidates"][0]["content"]["parts"])
    assert text == "Hello"
    assert chunks[-1]["candidates"][0]["finishReason"] == "STOP"


def test_gemini_unsupported_action(client):
    response = client.post(
        "/v1beta/models/fake-model:countTokens",
        json={},
        headers={"x-goog-api-key": MASTER_KEY},
    )

    assert response.status_code == 400
    assert response.json()["error"]["status"] == "INVALID_ARGUMENT"


def test_models_filtered_by_route(client):
    team = client.get("/v1/models", headers=_bearer(TEAM_KEY)).json()
    master = client.get("/v1/models", headers=_bearer(MASTER_KEY)).json()

    assert [m["id"] for m in team["data"]] == ["fake-model", "fast"]
    assert all(m["owned_by"] == "fake-owner" for m in team["data"])
    assert [m["id"] for m in master["data"]] == ["fake-model"]


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["active_providers"] == ["fake"]
    assert "size" in body["chunk_pool"]


# ============================================================================
# ERREURS AMONT
# ============================================================================

def test_upstream_429_retried(settings, tmp_path):
    provider = FakeProvider("fake", str(tmp_path / "fake.json"), rate_limited=1)

    with _client(settings, provider) as client:
        response = client.post("/v1/chat/completions", json=_chat_body(), headers=_bearer(MASTER_KEY))

    assert response.status_code == 200
    assert len(provider.calls) == 2


def test_upstream_429_exhausted(settings, tmp_path):
    provider = FakeProvider("fake", str(tmp_path / "fake.json"), rate_limited=5)

    with _client(settings, provider) as client:
        response = client.post("/v1/messages", json=_claude_body(stream=True), headers={"x-api-key": MASTER_KEY})

    assert response.status_code == 429
    assert response.json()["error"]["type"] == "rate_limit_error"


def test_upstream_error_rendered_in_claude_format(settings, tmp_path):
    error = UpstreamError("fake upstream error", provider="fake", status=503, body="overloaded")
    provider = FakeProvider("fake", str(tmp_path / "fake.json"), error=error)

    with _client(settings, provider) as client:
        response = client.post("/v1/messages", json=_claude_body(), headers={"x-api-key": MASTER_KEY})

    assert response.status_code == 503
    body = response.json()
    assert body["type"] == "error"
    assert "overloaded" in body["error"]["message"]


# ============================================================================
# ADMIN
# ============================================================================

def test_admin_requires_master(client):
    assert client.get("/admin/providers", headers=_bearer(TEAM_KEY)).status_code == 401
    assert client.get("/admin/providers").status_code == 401

    response = client.get("/admin/providers", headers=_bearer(MASTER_KEY))
    assert response.status_code == 200
    assert response.json()["providers"][0]["name"] == "fake"


def test_admin_account_lifecycle(client):
    headers = _bearer(MASTER_KEY)

    created = client.post(
        "/admin/fake/accounts",
        json={"id": "acc-1", "access_token": "secret-token-abcdef123456", "expires_at": None},
        headers=headers,
    )
    assert created.status_code == 200

    listed = client.get("/admin/fake/accounts", headers=headers).json()["accounts"]
    assert [a["id"] for a in listed] == ["acc-1"]
    assert "secret-token-abcdef123456" not in json.dumps(listed)

    assert client.delete("/admin/fake/accounts/acc-1", headers=headers).status_code == 200
    assert client.delete("/admin/fake/accounts/acc-1", headers=headers).status_code == 404
    assert client.get("/admin/unknown/accounts", headers=headers).status_code == 404
