"""SQLite-backed persistence for accounts and their device refresh tokens."""

from __future__ import annotations

import asyncio
import logging
import secrets
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar

from authbridge.core.exceptions import StorageError
from authbridge.models.account import Account, RefreshedDevice

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DEVICE = ""
_DEVICE_TOKEN_BYTES = 32


def _new_device_token() -> str:
    return secrets.token_hex(_DEVICE_TOKEN_BYTES)


class AccountStore:
    """Accounts keyed by (provider, provider user id) and per-device refresh tokens.

    A device token is rotated by a single conditional ``UPDATE``, so of two
    concurrent rotations of the same token exactly one matches a row.
    """

    def __init__(
        self,
        db_path: str,
        *,
        device_ttl_seconds: int = 30 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._device_ttl = device_ttl_seconds
        self._clock = clock
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider TEXT NOT NULL,
                    provider_user_id TEXT NOT NULL,
                    token TEXT NOT NULL,
                    UNIQUE (provider, provider_user_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS account_devices (
                    account_id INTEGER NOT NULL REFERENCES accounts (id),
                    device_id TEXT NOT NULL,
                    token TEXT NOT NULL UNIQUE,
                    expires_at INTEGER NOT NULL,
                    PRIMARY KEY (account_id, device_id)
                )
                """
            )

    async def _run(self, operation: str, func: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(func)
        except sqlite3.Error as exc:
            logger.exception("Account store operation %s failed", operation)
            raise StorageError(f"Failed to {operation}") from exc

    def _expiry(self) -> int:
        return int(self._clock()) + self._device_ttl

    async def store_provider_token(
        self, provider: str, provider_user_id: str, token: str
    ) -> int:
        """Record the provider token for a user, creating the account on first login."""

        def _execute() -> int:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO accounts (provider, provider_user_id, token)
                    VALUES (?, ?, ?)
                    ON CONFLICT(provider, provider_user_id)
                    DO UPDATE SET token = excluded.token
                    """,
                    (provider, provider_user_id, token),
                )
                row = conn.execute(
                    "SELECT id FROM accounts WHERE provider = ? AND provider_user_id = ?",
                    (provider, provider_user_id),
                ).fetchone()
            return int(row["id"])

        return await self._run("store provider token", _execute)

    async def get_provider_token(self, provider: str, provider_user_id: str) -> Optional[str]:
        def _execute() -> Optional[str]:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT token FROM accounts WHERE provider = ? AND provider_user_id = ?",
                    (provider, provider_user_id),
                ).fetchone()
            return row["token"] if row else None

        return await self._run("load provider token", _execute)

    async def get_account(self, account_id: int) -> Optional[Account]:
        def _execute() -> Optional[Account]:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT id, provider, provider_user_id FROM accounts WHERE id = ?",
                    (account_id,),
                ).fetchone()
            if not row:
                return None
            return Account(
                id=row["id"],
                provider=row["provider"],
                provider_user_id=row["provider_user_id"],
            )

        return await self._run("load account", _execute)

    async def register_device(self, account_id: int, device: str = DEFAULT_DEVICE) -> str:
        """Issue a refresh token for a device, replacing the device's previous one."""
        token = _new_device_token()

        def _execute() -> str:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO account_devices (account_id, device_id, token, expires_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(account_id, device_id)
                    DO UPDATE SET token = excluded.token, expires_at = excluded.expires_at
                    """,
                    (account_id, device, token, self._expiry()),
                )
            return token

        return await self._run("register device", _execute)

    async def refresh_device(
        self, token: str, device: Optional[str] = None
    ) -> Optional[RefreshedDevice]:
        """Rotate an unexpired refresh token.

        Returns None when no unexpired device holds ``token``; the old value is
        unusable as soon as this returns.
        """
        new_token = _new_device_token()

        def _execute() -> Optional[RefreshedDevice]:
            now = int(self._clock())
            query = (
                "UPDATE account_devices SET token = ?, expires_at = ? "
                "WHERE token = ? AND expires_at > ?"
            )
            params: list = [new_token, self._expiry(), token, now]
            if device is not None:
                query += " AND device_id = ?"
                params.append(device)
            with self._transaction() as conn:
                changed = conn.execute(query, params).rowcount
                if not changed:
                    return None
                row = conn.execute(
                    """
                    SELECT a.id, a.provider, a.provider_user_id
                    FROM account_devices d JOIN accounts a ON a.id = d.account_id
                    WHERE d.token = ?
                    """,
                    (new_token,),
                ).fetchone()
            if not row:
                return None
            return RefreshedDevice(
                account_id=row["id"],
                provider=row["provider"],
                provider_user_id=row["provider_user_id"],
                token=new_token,
            )

        return await self._run("refresh device", _execute)

    async def revoke_device(self, token: str) -> None:
        def _execute() -> None:
            with self._transaction() as conn:
                conn.execute("DELETE FROM account_devices WHERE token = ?", (token,))

        await self._run("revoke device", _execute)

    async def logout(self, account_id: int) -> None:
        """Remove every device of an account."""

        def _execute() -> None:
            with self._transaction() as conn:
                conn.execute("DELETE FROM account_devices WHERE account_id = ?", (account_id,))

        await self._run("log out account", _execute)

    async def purge_expired_devices(self) -> int:
        def _execute() -> int:
            with self._transaction() as conn:
                return conn.execute(
                    "DELETE FROM account_devices WHERE expires_at < ?",
                    (int(self._clock()),),
                ).rowcount

        removed = await self._run("purge expired devices", _execute)
        if removed:
            logger.info("Purged %d expired device tokens", removed)
        return removed


__all__ = ["AccountStore", "DEFAULT_DEVICE"]
