"""
Tests unitaires du RouteStore (chargement, résolution des clés).
"""
import pytest

from llm_gateway.core.exceptions import AuthenticationError, ConfigurationError
from llm_gateway.services.route_store import RouteStore, sha256_hex

from conftest import MASTER_KEY, TEAM_KEY, read_json, write_json

pytestmark = pytest.mark.anyio


async def _loaded(path):
    store = RouteStore(str(path))
    await store.load()
    return store


async def test_open_gateway_without_master_key_or_routes(tmp_path):
    store = await _loaded(tmp_path / "missing.json")

    route = store.resolve_key(None, None)

    assert route.is_master
    assert store.routes == []


async def test_master_key(routes_file):
    store = await _loaded(routes_file)

    assert store.resolve_key(MASTER_KEY, MASTER_KEY).is_master


async def test_hashed_key_resolves_route(routes_file):
    store = await _loaded(routes_file)

    route = store.resolve_key(TEAM_KEY, MASTER_KEY)

    assert route.id == "team"
    assert not route.is_master
    assert route.models == ["fake-model"]
    assert route.model_aliases == {"fast": "fake-model"}


async def test_plain_key_resolves_route(tmp_path):
    path = write_json(tmp_path / "routes.json", [{"id": "legacy", "apiKeys": ["plain"]}])
    store = await _loaded(path)

    assert store.resolve_key("plain", None).id == "legacy"


@pytest.mark.parametrize("key", [None, "", "wrong-key"])
async def test_missing_or_unknown_key_rejected(routes_file, key):
    store = await _loaded(routes_file)

    with pytest.raises(AuthenticationError):
        store.resolve_key(key, MASTER_KEY)


async def test_unknown_key_logged_as_suffix_only(routes_file, caplog):
    store = await _loaded(routes_file)
    secret = "sk-secret-value-XYZ12345"

    with pytest.raises(AuthenticationError):
        store.resolve_key(secret, MASTER_KEY)

    assert secret not in caplog.text
    assert "XYZ12345" in caplog.text


async def test_invalid_document_raises(tmp_path):
    path = tmp_path / "routes.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        await _loaded(path)


async def test_save_keeps_unknown_fields(tmp_path):
    path = write_json(tmp_path / "routes.json", {"routes": [
        {"id": "r", "apiKeyHashes": [sha256_hex("k")], "owner": "ops", "modelLimits": {"m": 5}}
    ]})
    store = await _loaded(path)

    await store.save()

    saved = read_json(path)["routes"][0]
    assert saved["owner"] == "ops"
    assert saved["modelLimits"]["m"]["total"] == 5
