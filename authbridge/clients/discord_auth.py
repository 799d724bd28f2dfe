"""
Discord OAuth2 adapter.

Exchanges authorization codes, keeps Discord access tokens cached in memory
and refreshes them with the refresh token persisted (encrypted) on the account.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from authbridge.clients.identity import IdentityProvider
from authbridge.clients.sqlite_store import AccountStore
from authbridge.core.exceptions import IdentityProviderError, StorageError
from authbridge.models.account import ProviderProfile
from authbridge.services.token_cipher import TokenCipherService
from authbridge.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

_EXPIRY_MARGIN_SECONDS = 60


@dataclass(slots=True)
class _CachedToken:
    access_token: str
    expires_at: float


class DiscordIdentityProvider(IdentityProvider):
    """Sign users in with their Discord account."""

    name = "discord"

    AUTHORIZE_URL = "https://discord.com/api/oauth2/authorize"
    TOKEN_URL = "https://discord.com/api/oauth2/token"
    USER_URL = "https://discord.com/api/users/@me"
    CDN_URL = "https://cdn.discordapp.com"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        host_url: str,
        store: AccountStore,
        cipher: TokenCipherService,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = f"{host_url}/auth/{self.name}"
        self._store = store
        self._cipher = cipher
        self._transport = transport
        self._retry = retry_config or RetryConfig()
        self._clock = clock
        self._active_tokens: Dict[str, _CachedToken] = {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=10.0, transport=self._transport)

    def get_login_redirect(self, state: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": "identify",
            "state": state,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    def get_state(self, params: Mapping[str, str]) -> str:
        return params.get("state") or ""

    async def handle_response(self, params: Mapping[str, str]) -> int:
        code = params.get("code")
        if not code:
            raise IdentityProviderError("Missing code in response")

        token_payload = await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri,
            },
            failure="Failed to get token",
        )

        try:
            profile = await self._fetch_user(token_payload["access_token"])
        except IdentityProviderError as exc:
            raise IdentityProviderError("Failed to get user information") from exc

        self._cache_token(profile.user_id, token_payload)
        try:
            return await self._store.store_provider_token(
                self.name,
                profile.user_id,
                self._cipher.encrypt(token_payload["refresh_token"]),
            )
        except StorageError as exc:
            raise IdentityProviderError("Failed to store token") from exc

    async def get_user(self, provider_user_id: str) -> ProviderProfile:
        cached = self._active_tokens.get(provider_user_id)
        if cached and cached.expires_at > self._clock():
            access_token = cached.access_token
        else:
            access_token = await self._refresh_token(provider_user_id)

        try:
            return await self._fetch_user(access_token)
        except IdentityProviderError as exc:
            raise IdentityProviderError("Failed to get user information") from exc

    def purge_expired_tokens(self) -> int:
        now = self._clock()
        expired = [key for key, value in self._active_tokens.items() if value.expires_at <= now]
        for key in expired:
            self._active_tokens.pop(key, None)
        return len(expired)

    async def _refresh_token(self, provider_user_id: str) -> str:
        try:
            stored = await self._store.get_provider_token(self.name, provider_user_id)
        except StorageError as exc:
            raise IdentityProviderError("Failed to get refresh token") from exc
        if not stored:
            raise IdentityProviderError("Failed to get refresh token")
        try:
            refresh_token = self._cipher.decrypt(stored)
        except ValueError as exc:
            raise IdentityProviderError("Failed to get refresh token") from exc

        token_payload = await self._request_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            failure="Failed to refresh token",
        )
        self._cache_token(provider_user_id, token_payload)
        try:
            await self._store.store_provider_token(
                self.name,
                provider_user_id,
                self._cipher.encrypt(token_payload["refresh_token"]),
            )
        except StorageError as exc:
            raise IdentityProviderError("Failed to store token") from exc
        return token_payload["access_token"]

    async def _request_token(self, data: Dict[str, str], *, failure: str) -> Dict[str, Any]:
        """POST to the token endpoint; codes are single-use so this is never retried."""
        body = {
            **data,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        try:
            async with self._client() as client:
                response = await client.post(self.TOKEN_URL, data=body)
        except httpx.HTTPError as exc:
            logger.warning("Discord token request failed: %s", exc)
            raise IdentityProviderError(failure) from exc

        if response.status_code != httpx.codes.OK:
            logger.warning("Discord token endpoint returned %s", response.status_code)
            raise IdentityProviderError(failure)

        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityProviderError("Failed to parse token") from exc
        if not isinstance(payload, dict):
            raise IdentityProviderError("Failed to parse token")
        expires_in = payload.get("expires_in")
        if (
            not isinstance(payload.get("access_token"), str)
            or not isinstance(payload.get("refresh_token"), str)
            or not payload["access_token"]
            or not payload["refresh_token"]
            or not isinstance(expires_in, int)
            or isinstance(expires_in, bool)
            or expires_in <= 0
        ):
            raise IdentityProviderError("Failed to parse token")
        return payload

    async def _fetch_user(self, access_token: str) -> ProviderProfile:
        try:
            async with self._client() as client:
                response = await request_with_retry(
                    client.get,
                    self.USER_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                    retry_config=self._retry,
                )
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise IdentityProviderError("Failed to fetch Discord user") from exc

        if not isinstance(payload, dict) or not payload.get("id") or not payload.get("username"):
            raise IdentityProviderError("Incomplete Discord user payload")

        user_id = str(payload["id"])
        try:
            return ProviderProfile(
                user_id=user_id,
                username=payload["username"],
                avatar_url=self._avatar_url(user_id, payload.get("avatar")),
            )
        except ValidationError as exc:
            raise IdentityProviderError("Incomplete Discord user payload") from exc

    def _cache_token(self, provider_user_id: str, token_payload: Mapping[str, Any]) -> None:
        lifetime = int(token_payload["expires_in"]) - _EXPIRY_MARGIN_SECONDS
        self._active_tokens[provider_user_id] = _CachedToken(
            access_token=token_payload["access_token"],
            expires_at=self._clock() + lifetime,
        )

    def _avatar_url(self, user_id: str, avatar: Optional[str]) -> str:
        if isinstance(avatar, str) and avatar:
            return f"{self.CDN_URL}/avatars/{user_id}/{avatar}.png"
        try:
            index = (int(user_id) >> 22) % 6
        except ValueError:
            index = 0
        return f"{self.CDN_URL}/embed/avatars/{index}.png"


__all__ = ["DiscordIdentityProvider"]
