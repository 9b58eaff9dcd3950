"""
Tests unitaires du credential store (rotation, refresh, persistance).
"""
import asyncio

import pytest

from llm_gateway.core.exceptions import UpstreamAuthError
from llm_gateway.core.timing import now_ms

from conftest import MemoryCredentialStore, read_json, write_json

pytestmark = pytest.mark.anyio


def _record(account_id, expired=False, enabled=True, refresh_token="rt"):
    offset = -1000 if expired else 3600 * 1000
    return {
        "id": account_id,
        "access_token": f"at-{account_id}",
        "refresh_token": refresh_token,
        "expires_at": now_ms() + offset,
        "enabled": enabled,
    }


async def _store(tmp_path, records):
    store = MemoryCredentialStore(write_json(tmp_path / "accounts.json", records))
    await store.load()
    return store


async def test_missing_file_is_created_empty(tmp_path):
    path = tmp_path / "sub" / "accounts.json"
    store = MemoryCredentialStore(str(path))

    assert await store.load() == []
    assert read_json(path) == []
    assert await store.get_token() is None


async def test_round_robin_skips_disabled_accounts(tmp_path):
    store = await _store(tmp_path, [
        _record("a"),
        _record("b", enabled=False),
        _record("c"),
    ])

    picked = [(await store.get_token()).id for _ in range(4)]

    assert picked == ["a", "c", "a", "c"]
    assert store.get_account_count() == 2


async def test_expired_account_refreshed_before_use(tmp_path):
    store = await _store(tmp_path, [_record("a", expired=True)])

    account = await store.get_token()

    assert store.refresh_calls == ["a"]
    assert account.access_token == "fresh-a"
    assert account.last_refresh is not None
    # Le token rafraîchi est persisté
    assert read_json(tmp_path / "accounts.json")[0]["access_token"] == "fresh-a"


async def test_account_within_refresh_buffer_is_refreshed(tmp_path):
    record = _record("a")
    record["expires_at"] = now_ms() + 30 * 1000  # sous le buffer de 60s
    store = await _store(tmp_path, [record])

    await store.get_token()

    assert store.refresh_calls == ["a"]


async def test_static_key_never_refreshed(tmp_path):
    store = await _store(tmp_path, [_record("a", expired=True, refresh_token=None)])

    account = await store.get_token()

    assert account.id == "a"
    assert store.refresh_calls == []


async def test_refresh_failure_moves_to_next_account(tmp_path):
    store = await _store(tmp_path, [_record("a", expired=True), _record("b")])
    store.failing_ids.add("a")

    account = await store.get_token()

    assert account.id == "b"
    assert store.refresh_calls == ["a"]


async def test_failover_tracks_accounts_not_ids(tmp_path):
    store = await _store(tmp_path, [_record("a", expired=True), _record("b")])
    store.accounts[1].id = "a"
    store.failing_ids.add("a")

    account = await store.get_token()

    assert account is store.accounts[1]
    assert account.access_token == "at-b"


async def test_refresh_attempts_bounded_by_enabled_accounts(tmp_path):
    store = await _store(tmp_path, [
        _record("a", expired=True),
        _record("b", expired=True),
        _record("c", expired=True, enabled=False),
    ])
    store.failing_ids.update({"a", "b", "c"})

    with pytest.raises(UpstreamAuthError):
        await store.get_token()

    assert sorted(store.refresh_calls) == ["a", "b"]


async def test_concurrent_callers_share_one_refresh(tmp_path):
    store = await _store(tmp_path, [_record("a", expired=True)])
    original = store._request_refresh

    async def slow_refresh(account):
        await asyncio.sleep(0.01)
        await original(account)

    store._request_refresh = slow_refresh

    accounts = await asyncio.gather(*(store.get_token() for _ in range(5)))

    assert store.refresh_calls == ["a"]
    assert {a.access_token for a in accounts} == {"fresh-a"}


async def test_admin_add_update_delete(tmp_path):
    store = await _store(tmp_path, [_record("a")])

    added = await store.add_account(_record("b"))
    assert added["success"] and added["message"] == "Account added"

    duplicate = await store.add_account({**_record("b"), "email": "b@example.com"})
    assert duplicate["message"] == "Account updated"
    assert len(store.accounts) == 2

    updated = await store.update_account("a", {"enabled": False})
    assert updated["success"]
    assert store.get_account_count() == 1

    deleted = await store.delete_account("a")
    assert deleted["success"]
    assert [r["id"] for r in read_json(tmp_path / "accounts.json")] == ["b"]

    missing = await store.delete_account("zzz")
    assert missing == {"success": False, "message": "Account not found"}


async def test_public_view_masks_tokens(tmp_path):
    store = await _store(tmp_path, [_record("a")])

    view = store.get_account_list()[0]

    assert view["token"] == "..." + "at-a"[-8:]
    assert "access_token" not in view
    assert view["has_refresh_token"] is True
