"""
Tests unitaires des credential stores Antigravity, Kiro et Codex
(formats disque, protocoles de refresh, JWT et PKCE).
"""
import base64
import hashlib
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from llm_gateway.auth.antigravity import AntigravityCredentialStore
from llm_gateway.auth.codex import (
    CodexCredentialStore,
    build_authorize_url,
    extract_account_id,
    extract_email,
    generate_pkce,
)
from llm_gateway.auth.kiro import KiroCredentialStore
from llm_gateway.core.exceptions import RefreshError
from llm_gateway.core.timing import iso_from_ms, now_ms
from llm_gateway.proxy.client import create_upstream_client

from conftest import read_json, write_json

pytestmark = pytest.mark.anyio


def _client(handler):
    return create_upstream_client(max_retries=0, transport=httpx.MockTransport(handler))


def _jwt(claims):
    def segment(data):
        return base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).rstrip(b"=").decode("ascii")
    return f"{segment({'alg': 'none'})}.{segment(claims)}.sig"


# ============================================================================
# KIRO
# ============================================================================

async def test_kiro_social_refresh(tmp_path):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"accessToken": "kiro-new-access", "expiresIn": 600, "profileArn": "arn:p"})

    path = write_json(tmp_path / "kiro.json", [{
        "id": "k1", "accessToken": "old", "refreshToken": "kiro-refresh",
        "expiresAt": "2020-01-01T00:00:00.000Z", "region": "eu-west-1",
    }])
    store = KiroCredentialStore(path, _client(handler))
    await store.load()

    account = await store.get_token()

    assert str(seen[0].url) == "https://prod.eu-west-1.auth.desktop.kiro.dev/refreshToken"
    assert json.loads(seen[0].content) == {"refreshToken": "kiro-refresh"}
    assert account.access_token == "kiro-new-access"
    assert account.metadata["profileArn"] == "arn:p"
    saved = read_json(path)[0]
    assert saved["accessToken"] == "kiro-new-access"
    assert saved["expiresAt"].endswith("Z")


async def test_kiro_idc_refresh_sends_client_credentials(tmp_path):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"accessToken": "idc-access"})

    path = write_json(tmp_path / "kiro.json", [{
        "id": "k1", "refreshToken": "r", "authMethod": "idc",
        "clientId": "cid", "clientSecret": "csecret", "expiresAt": "2020-01-01T00:00:00Z",
    }])
    store = KiroCredentialStore(path, _client(handler))
    await store.load()

    await store.refresh_token(store.accounts[0])

    body = json.loads(seen[0].content)
    assert str(seen[0].url) == "https://oidc.us-east-1.amazonaws.com/token"
    assert body["grantType"] == "refresh_token"
    assert body["clientId"] == "cid"


async def test_kiro_dedupe_by_email(tmp_path):
    path = write_json(tmp_path / "kiro.json", [{"id": "k1", "email": "a@x.io", "accessToken": "t1"}])
    store = KiroCredentialStore(path, _client(lambda request: httpx.Response(500)))
    await store.load()

    result = await store.add_account({"id": "k2", "email": "a@x.io", "accessToken": "t2"})

    assert result["message"] == "Account updated"
    assert len(store.accounts) == 1
    assert store.accounts[0].access_token == "t2"


async def test_kiro_records_without_id_fail_over(tmp_path):
    def handler(request):
        return httpx.Response(400, json={"message": "invalid refresh token"})

    path = write_json(tmp_path / "kiro.json", [
        {"accessToken": "stale", "refreshToken": "bad", "expiresAt": "2020-01-01T00:00:00Z"},
        {"accessToken": "good", "refreshToken": "ok", "expiresAt": iso_from_ms(now_ms() + 3600 * 1000)},
    ])
    store = KiroCredentialStore(path, _client(handler))
    await store.load()

    account = await store.get_token()

    assert account.access_token == "good"
    first, second = store.accounts
    assert first.id != second.id
    assert [r["id"] for r in read_json(path)] == [first.id, second.id]


async def test_duplicate_ids_are_reassigned_and_stable(tmp_path):
    path = write_json(tmp_path / "kiro.json", [
        {"id": "dup", "accessToken": "a", "email": "a@x.io"},
        {"id": "dup", "accessToken": "b", "email": "b@x.io"},
    ])
    store = KiroCredentialStore(path, _client(lambda request: httpx.Response(500)))
    await store.load()
    ids = [a.id for a in store.accounts]

    await store.load()

    assert ids[0] == "dup" and ids[1] != "dup"
    assert [a.id for a in store.accounts] == ids
    result = await store.delete_account(ids[1])
    assert result["success"] is True
    assert [a.access_token for a in store.accounts] == ["a"]


# ============================================================================
# CODEX
# ============================================================================

def test_codex_jwt_claims():
    token = _jwt({
        "https://api.openai.com/auth": {"chatgpt_account_id": "acct-42"},
        "https://api.openai.com/profile": {"email": "dev@example.com"},
    })

    assert extract_account_id(token) == "acct-42"
    assert extract_email(token) == "dev@example.com"
    assert extract_account_id("not-a-jwt") is None


def test_pkce_pair_and_authorize_url():
    verifier, challenge = generate_pkce()

    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    query = parse_qs(urlparse(build_authorize_url(challenge, "state-1")).query)
    assert query["code_challenge"] == [challenge]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["state-1"]


async def test_codex_api_key_never_refreshed(tmp_path):
    path = write_json(tmp_path / "codex.json", [{"id": "c1", "api_key": "sk-static-key-12345678"}])
    store = CodexCredentialStore(path, _client(lambda request: httpx.Response(500)))
    await store.load()

    account = await store.get_token()

    assert account.auth_type == "api_key"
    assert account.secret == "sk-static-key-12345678"


async def test_codex_refresh_requires_expires_in(tmp_path):
    handler = lambda request: httpx.Response(200, json={"access_token": "a", "refresh_token": "r"})
    path = write_json(tmp_path / "codex.json", [
        {"id": "c1", "access_token": "old", "refresh_token": "r0", "expires_at": now_ms() - 1000},
    ])
    store = CodexCredentialStore(path, _client(handler))
    await store.load()

    with pytest.raises(RefreshError):
        await store.refresh_token(store.accounts[0])


async def test_codex_exchange_authorization_code(tmp_path):
    token = _jwt({"email": "new@example.com", "https://api.openai.com/auth": {"chatgpt_account_id": "acct-7"}})
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": token, "refresh_token": "rt", "expires_in": 3600})

    path = str(tmp_path / "codex.json")
    store = CodexCredentialStore(path, _client(handler))
    await store.load()

    result = await store.exchange_authorization_code("the-code", "the-verifier")

    form = parse_qs(seen[0].content.decode("utf-8"))
    assert form["grant_type"] == ["authorization_code"]
    assert form["code_verifier"] == ["the-verifier"]
    assert result["success"] is True
    account = store.accounts[0]
    assert account.email == "new@example.com"
    assert account.metadata["chatgpt_account_id"] == "acct-7"
    assert account.auth_type == "oauth"


# ============================================================================
# ANTIGRAVITY
# ============================================================================

async def test_antigravity_expiry_and_project_id(tmp_path):
    path = write_json(tmp_path / "ag.json", [
        {"access_token": "a", "refresh_token": "r", "expires_in": 3599, "timestamp": 1_700_000_000_000},
    ])
    store = AntigravityCredentialStore(path, _client(lambda request: httpx.Response(500)))
    await store.load()

    account = store.accounts[0]
    assert account.expires_at == 1_700_000_000_000 + 3_599_000
    assert account.id.startswith("ag_")
    assert len(account.metadata["project_id"].split("-")) == 3


async def test_antigravity_generated_project_id_persisted(tmp_path):
    path = write_json(tmp_path / "ag.json", [{"id": "g1", "refresh_token": "r", "access_token": "a"}])
    store = AntigravityCredentialStore(path, _client(lambda request: httpx.Response(500)))
    await store.load()
    project_id = store.accounts[0].metadata["project_id"]

    reloaded = AntigravityCredentialStore(path, _client(lambda request: httpx.Response(500)))
    await reloaded.load()

    assert read_json(path)[0]["projectId"] == project_id
    assert reloaded.accounts[0].metadata["project_id"] == project_id


async def test_antigravity_refresh_needs_client_credentials(tmp_path, monkeypatch):
    monkeypatch.delenv("ANTIGRAVITY_OAUTH_CLIENT_ID", raising=False)
    monkeypatch.delenv("ANTIGRAVITY_OAUTH_CLIENT_SECRET", raising=False)
    path = write_json(tmp_path / "ag.json", [{"id": "g1", "refresh_token": "r"}])
    store = AntigravityCredentialStore(path, _client(lambda request: httpx.Response(500)))
    await store.load()

    with pytest.raises(RefreshError):
        await store.refresh_token(store.accounts[0])


async def test_antigravity_refresh(tmp_path, monkeypatch):
    monkeypatch.setenv("ANTIGRAVITY_OAUTH_CLIENT_ID", "client-id")
    monkeypatch.setenv("ANTIGRAVITY_OAUTH_CLIENT_SECRET", "client-secret")
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": "google-new", "expires_in": 3599})

    path = write_json(tmp_path / "ag.json", [{"id": "g1", "refresh_token": "r", "projectId": "p-1"}])
    store = AntigravityCredentialStore(path, _client(handler))
    await store.load()

    account = await store.refresh_token(store.accounts[0])

    form = parse_qs(seen[0].content.decode("utf-8"))
    assert form["grant_type"] == ["refresh_token"]
    assert form["client_id"] == ["client-id"]
    assert account.access_token == "google-new"
    saved = read_json(path)[0]
    assert saved["projectId"] == "p-1"
    assert saved["expires_in"] == 3599
