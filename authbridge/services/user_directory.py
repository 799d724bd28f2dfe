"""Cached lookup of public account profiles."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from authbridge.clients.identity import IdentityProvider
from authbridge.clients.sqlite_store import AccountStore
from authbridge.core.exceptions import IdentityProviderError
from authbridge.schemas.auth import APIUser
from authbridge.utils.ids import IdObfuscator

logger = logging.getLogger(__name__)

PROFILE_TTL_SECONDS = 60 * 60


@dataclass(slots=True)
class _CachedProfile:
    user: APIUser
    expires_at: float


class UserDirectory:
    """Resolve account ids to profiles, caching each for an hour."""

    def __init__(
        self,
        *,
        store: AccountStore,
        providers: Mapping[str, IdentityProvider],
        obfuscator: IdObfuscator,
        ttl_seconds: int = PROFILE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._providers = dict(providers)
        self._ids = obfuscator
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: Dict[int, _CachedProfile] = {}

    async def get_user(self, account_id: int) -> Optional[APIUser]:
        cached = self._cache.get(account_id)
        if cached and cached.expires_at > self._clock():
            return cached.user

        account = await self._store.get_account(account_id)
        if account is None:
            return None
        provider = self._providers.get(account.provider)
        if provider is None:
            return None
        try:
            profile = await provider.get_user(account.provider_user_id)
        except IdentityProviderError as exc:
            logger.warning("Profile lookup for account %s failed: %s", account_id, exc)
            return None

        user = APIUser(
            id=self._ids.encode(account_id),
            service=account.provider,
            user_id=profile.user_id,
            username=profile.username,
            avatar_url=profile.avatar_url,
        )
        self._cache[account_id] = _CachedProfile(user=user, expires_at=self._clock() + self._ttl)
        return user

    async def lookup(self, public_id: str) -> Optional[APIUser]:
        account_id = self._ids.decode(public_id)
        if account_id is None:
            return None
        return await self.get_user(account_id)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, value in self._cache.items() if value.expires_at < now]
        for key in expired:
            self._cache.pop(key, None)
        return len(expired)


__all__ = ["PROFILE_TTL_SECONDS", "UserDirectory"]
