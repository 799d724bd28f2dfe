"""Process-local tables of single-use values with absolute deadlines."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, TypeVar

from authbridge.core.exceptions import EntryExpiredError

V = TypeVar("V")


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    expires_at: float


class ExpiringTable(Generic[V]):
    """Keyed store whose entries can be taken exactly once before their deadline.

    Expiry is checked when an entry is taken; :meth:`sweep` only reclaims
    memory held by entries nobody redeemed.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry[V]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: V, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    def take(self, key: str) -> V:
        """Remove and return the value for ``key``.

        Raises ``KeyError`` when the key is unknown or was already taken, and
        :class:`EntryExpiredError` when it exists but its deadline has passed.
        Either way the entry no longer exists afterwards.
        """
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            raise KeyError(key)
        if entry.expires_at < self._clock():
            raise EntryExpiredError(key)
        return entry.value

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def sweep(self) -> int:
        """Drop entries past their deadline and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at < now]
            for key in expired:
                del self._entries[key]
        return len(expired)


__all__ = ["ExpiringTable"]
