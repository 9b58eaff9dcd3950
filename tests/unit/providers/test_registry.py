"""
Tests unitaires du ProviderRegistry (sélection, dispatch, statistiques).
"""
import pytest

from llm_gateway.core.exceptions import ProviderUnavailableError, UpstreamError
from llm_gateway.core.models import ChatMessage, ChatRequest, EventType
from llm_gateway.providers.registry import ProviderRegistry

from conftest import FakeProvider

pytestmark = pytest.mark.anyio


def _request(model="fake-model"):
    return ChatRequest(model=model, messages=[ChatMessage(role="user", content="ping")])


@pytest.fixture
def providers(tmp_path):
    alpha = FakeProvider("alpha", str(tmp_path / "alpha.json"), models=["alpha-1", "shared", "alpha-*"], priority=1)
    beta = FakeProvider("beta", str(tmp_path / "beta.json"), models=["beta-1", "shared"], priority=2)
    return alpha, beta


async def _registry(providers, mapping=None):
    registry = ProviderRegistry(mapping)
    for provider in providers:
        registry.register(provider)
    await registry.initialize()
    return registry


async def test_explicit_mapping_wins(providers):
    registry = await _registry(providers, {"shared": ["beta"]})

    assert registry.select_provider("shared").name == "beta"


async def test_first_available_in_mapping_list(providers):
    alpha, beta = providers
    registry = await _registry(providers, {"x-model": ["alpha", "beta"]})
    alpha.enabled = False

    assert registry.select_provider("x-model") is beta


async def test_wildcard_mapping(providers):
    registry = await _registry(providers, {"claude-*": ["beta"]})

    assert registry.select_provider("claude-sonnet-4-5").name == "beta"


async def test_supported_model_lookup(providers):
    registry = await _registry(providers)

    assert registry.select_provider("beta-1").name == "beta"
    assert registry.select_provider("alpha-99").name == "alpha"
    # Modèle partagé: premier enregistré dans la table
    assert registry.select_provider("shared").name == "alpha"


async def test_unknown_model_falls_back_to_highest_priority(providers):
    registry = await _registry(providers)

    assert registry.select_provider("mystery").name == "alpha"


async def test_no_enabled_provider(providers):
    alpha, beta = providers
    registry = await _registry(providers)
    alpha.enabled = False
    beta.enabled = False

    with pytest.raises(ProviderUnavailableError):
        registry.select_provider("alpha-1")


async def test_failed_initialization_disables_provider(providers, tmp_path):
    alpha, beta = providers
    broken = tmp_path / "alpha.json"
    broken.write_text("{broken", encoding="utf-8")

    registry = await _registry(providers)

    assert not alpha.enabled
    assert registry.enabled_providers() == [beta]


async def test_handle_chat_records_stats(providers):
    alpha, _ = providers
    registry = await _registry(providers)

    result = await registry.handle_chat(_request("alpha-1"))

    assert result.content == "pong"
    assert alpha.stats["success_requests"] == 1
    assert alpha.stats["total_tokens_used"] == 5


async def test_handle_chat_failure_counted(providers):
    alpha, _ = providers
    alpha.error = UpstreamError("boom", status=500)
    registry = await _registry(providers)

    with pytest.raises(UpstreamError):
        await registry.handle_chat(_request("alpha-1"))

    assert alpha.stats["failed_requests"] == 1


async def test_handle_chat_stream_records_usage(providers):
    _, beta = providers
    registry = await _registry(providers)

    events = [event async for event in registry.handle_chat_stream(_request("beta-1"))]

    assert events[-1].type == EventType.MESSAGE_STOP
    assert "".join(e.text for e in events if e.type == EventType.BLOCK_DELTA) == "Hello"
    assert beta.stats["success_requests"] == 1
    assert beta.stats["total_tokens_used"] == 5


async def test_list_all_models_deduplicated_without_wildcards(providers):
    registry = await _registry(providers)

    ids = [model["id"] for model in registry.list_all_models()]

    assert ids == ["alpha-1", "shared", "beta-1"]
