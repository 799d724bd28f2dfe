"""In-memory token bucket used to gate untrusted operations per caller."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List

from authbridge.core.config import RateLimitSettings


class TokenBucket:
    """Virtual-scheduling token bucket keyed by caller.

    Each key stores how many tokens it has drawn so far on a shared timeline
    where ``clock() * refill_rate`` tokens have been issued. A draw succeeds
    while the key's counter stays at or below that total, and the counter is
    never allowed to lag more than ``capacity`` behind it, which caps bursts.
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("Token bucket capacity and refill rate must be positive.")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._used: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _issued(self) -> float:
        return self._clock() * self.refill_rate

    def _effective_used(self, key: str, issued: float) -> float:
        floor = issued - self.capacity
        used = self._used.get(key)
        if used is None or used < floor:
            return floor
        return used

    def consume(self, key: str, tokens: int = 1) -> bool:
        """Draw ``tokens`` for ``key``; return False without side effects when short."""
        with self._lock:
            issued = self._issued()
            used = self._effective_used(key, issued)
            if used + tokens > issued:
                return False
            self._used[key] = used + tokens
            return True

    def drain(self, key: str, tokens: int) -> None:
        """Charge ``tokens`` to ``key`` unconditionally, pushing it into debt if needed."""
        with self._lock:
            issued = self._issued()
            self._used[key] = self._effective_used(key, issued) + tokens

    def can_consume(self, key: str, tokens: int = 1) -> bool:
        with self._lock:
            issued = self._issued()
            return self._effective_used(key, issued) + tokens <= issued

    def time_until_refill(self, key: str, tokens: int = 1) -> float:
        """Seconds until ``tokens`` could be drawn for ``key``."""
        with self._lock:
            issued = self._issued()
            used = self._effective_used(key, issued)
        return max(0.0, (used + tokens - issued) / self.refill_rate)

    def retry_after(self, key: str, tokens: int = 1) -> int:
        """Whole seconds suitable for a ``Retry-After`` header."""
        return max(1, math.ceil(self.time_until_refill(key, tokens)))

    def cleanup(self) -> int:
        """Forget keys whose bucket has refilled completely."""
        with self._lock:
            floor = self._issued() - self.capacity
            stale = [key for key, used in self._used.items() if used < floor]
            for key in stale:
                del self._used[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._used)


@dataclass(slots=True)
class RateLimiters:
    """One bucket per protected endpoint group."""

    login: TokenBucket
    auth: TokenBucket
    token: TokenBucket
    default: TokenBucket

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "RateLimiters":
        return cls(
            login=TokenBucket(settings.login_capacity, settings.login_refill),
            auth=TokenBucket(settings.auth_capacity, settings.auth_refill),
            token=TokenBucket(settings.token_capacity, settings.token_refill),
            default=TokenBucket(settings.default_capacity, settings.default_refill),
        )

    def all(self) -> List[TokenBucket]:
        return [self.login, self.auth, self.token, self.default]

    def cleanup(self) -> int:
        return sum(bucket.cleanup() for bucket in self.all())


__all__ = ["RateLimiters", "TokenBucket"]
