try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
import sqlite3

import pytest

from authbridge.clients.sqlite_store import AccountStore
from authbridge.core.exceptions import StorageError

from conftest import FakeClock

pytestmark = pytest.mark.anyio


async def test_accounts_are_unique_per_provider_user(store) -> None:
    first = await store.store_provider_token("discord", "111", "token-a")
    again = await store.store_provider_token("discord", "111", "token-b")
    other = await store.store_provider_token("discord", "222", "token-c")

    assert first == again
    assert other != first
    assert await store.get_provider_token("discord", "111") == "token-b"
    account = await store.get_account(first)
    assert account is not None
    assert (account.provider, account.provider_user_id) == ("discord", "111")


async def test_unknown_account_and_token(store) -> None:
    assert await store.get_account(999) is None
    assert await store.get_provider_token("discord", "nobody") is None


async def test_refresh_rotates_token(store) -> None:
    account_id = await store.store_provider_token("discord", "111", "token")
    token = await store.register_device(account_id)
    assert len(token) == 64

    refreshed = await store.refresh_device(token)

    assert refreshed is not None
    assert refreshed.account_id == account_id
    assert refreshed.provider == "discord"
    assert refreshed.provider_user_id == "111"
    assert refreshed.token != token
    assert await store.refresh_device(token) is None
    assert await store.refresh_device(refreshed.token) is not None


async def test_concurrent_refresh_succeeds_once(store) -> None:
    account_id = await store.store_provider_token("discord", "111", "token")
    token = await store.register_device(account_id)

    results = await asyncio.gather(*(store.refresh_device(token) for _ in range(5)))

    assert sum(result is not None for result in results) == 1


async def test_register_replaces_only_same_device(store) -> None:
    account_id = await store.store_provider_token("discord", "111", "token")
    phone = await store.register_device(account_id, "phone")
    laptop = await store.register_device(account_id, "laptop")
    phone_again = await store.register_device(account_id, "phone")

    assert await store.refresh_device(phone) is None
    assert await store.refresh_device(laptop, "laptop") is not None
    assert await store.refresh_device(phone_again, "phone") is not None


async def test_refresh_with_wrong_device_fails(store) -> None:
    account_id = await store.store_provider_token("discord", "111", "token")
    token = await store.register_device(account_id, "phone")

    assert await store.refresh_device(token, "laptop") is None
    assert await store.refresh_device(token, "phone") is not None


async def test_expired_device_cannot_refresh_and_is_purged(tmp_path) -> None:
    clock = FakeClock()
    store = AccountStore(str(tmp_path / "db.sqlite"), device_ttl_seconds=60, clock=clock)
    account_id = await store.store_provider_token("discord", "111", "token")
    stale = await store.register_device(account_id, "old")
    clock.advance(50)
    fresh = await store.register_device(account_id, "new")
    clock.advance(20)

    assert await store.refresh_device(stale) is None
    assert await store.purge_expired_devices() == 1
    assert await store.refresh_device(fresh) is not None


async def test_revoke_and_logout(store) -> None:
    account_id = await store.store_provider_token("discord", "111", "token")
    first = await store.register_device(account_id, "a")
    second = await store.register_device(account_id, "b")
    third = await store.register_device(account_id, "c")

    await store.revoke_device(first)
    await store.revoke_device("unknown-token")
    assert await store.refresh_device(first) is None

    await store.logout(account_id)
    assert await store.refresh_device(second) is None
    assert await store.refresh_device(third) is None


async def test_sqlite_errors_become_storage_errors(store, monkeypatch) -> None:
    def _broken_connect():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "_connect", _broken_connect)

    with pytest.raises(StorageError) as excinfo:
        await store.register_device(1)
    assert excinfo.value.message == "Failed to register device"
