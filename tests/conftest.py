"""
Configuration des tests pytest.
"""
import json
import os
import sys

import pytest

# Ajoute src au path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from llm_gateway.auth.base import CredentialStore
from llm_gateway.config.settings import ProviderConfig, ServerConfig, Settings
from llm_gateway.core.exceptions import RefreshError, UpstreamRateLimitError
from llm_gateway.core.models import (
    Account,
    ChatResult,
    EventType,
    StreamEvent,
    Usage,
)
from llm_gateway.core.timing import now_ms
from llm_gateway.providers.base import BaseProvider
from llm_gateway.services.route_store import sha256_hex

MASTER_KEY = "master-key-0123456789"
TEAM_KEY = "team-key-abcdefgh12345678"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def write_json(path, data):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return str(path)


def read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# ============================================================================
# DOUBLES DE TEST
# ============================================================================

class MemoryCredentialStore(CredentialStore):
    """Store minimal: format disque plat, refresh simulé."""

    provider_name = "fake"
    refresh_buffer_ms = 60 * 1000

    def __init__(self, accounts_file: str):
        super().__init__(accounts_file)
        self.refresh_calls = []
        self.failing_ids = set()

    def account_from_record(self, record):
        return Account(
            id=record["id"],
            access_token=record.get("access_token"),
            refresh_token=record.get("refresh_token"),
            expires_at=record.get("expires_at"),
            enabled=record.get("enabled", True),
            email=record.get("email"),
        )

    def account_to_record(self, account):
        return {
            "id": account.id,
            "access_token": account.access_token,
            "refresh_token": account.refresh_token,
            "expires_at": account.expires_at,
            "enabled": account.enabled,
            "email": account.email,
        }

    async def _request_refresh(self, account):
        self.refresh_calls.append(account.id)
        if account.id in self.failing_ids:
            raise RefreshError("refresh refused", account_id=account.id)
        account.access_token = f"fresh-{account.id}"
        account.expires_at = now_ms() + 3600 * 1000


class FakeProvider(BaseProvider):
    """Provider scripté: réponse fixe, 429 simulés, erreurs injectables."""

    owned_by = "fake-owner"

    def __init__(self, name, accounts_file, models=None, priority=1, rate_limited=0, error=None):
        config = ProviderConfig(
            name=name,
            priority=priority,
            accounts_file=accounts_file,
            models=list(models or ["fake-model"]),
        )
        super().__init__(config, MemoryCredentialStore(accounts_file))
        self.name = name
        self.rate_limited = rate_limited
        self.error = error
        self.calls = []

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error
        if self.rate_limited > 0:
            self.rate_limited -= 1
            raise UpstreamRateLimitError(f"{self.name} rate limit exceeded", provider=self.name)

    async def chat(self, request):
        self.calls.append(request)
        self._maybe_fail()
        return ChatResult(content="pong", usage=Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5))

    async def chat_stream(self, request):
        self.calls.append(request)
        self._maybe_fail()
        yield StreamEvent.text_delta("Hel")
        yield StreamEvent.text_delta("lo")
        yield StreamEvent(type=EventType.USAGE, usage=Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5))
        yield StreamEvent(type=EventType.MESSAGE_DELTA, stop_reason="end_turn")
        yield StreamEvent(type=EventType.MESSAGE_STOP)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def accounts_file(tmp_path):
    return str(tmp_path / "accounts.json")


@pytest.fixture
def routes_file(tmp_path):
    """Une route: fake-model (total 2) + alias fast, clé TEAM_KEY stockée hashée."""
    return write_json(tmp_path / "routes.json", {
        "routes": [
            {
                "id": "team",
                "name": "Team",
                "models": ["fake-model"],
                "aliases": {"fast": "fake-model"},
                "apiKeyHashes": [sha256_hex(TEAM_KEY)],
                "modelLimits": {"fake-model": 2},
                "modelUsage": {},
            }
        ]
    })


@pytest.fixture
def settings(routes_file):
    return Settings(
        server=ServerConfig(heartbeat_interval=15.0, retry_times=1, retry_delay=0.0),
        api_key=MASTER_KEY,
        routes_file=routes_file,
    )


@pytest.fixture
def fake_provider(tmp_path):
    return FakeProvider("fake", str(tmp_path / "fake_accounts.json"))
