"""
OAuth2 login handshake, hand-off tokens and device token lifecycle.

A login moves through these steps:

1. ``handle_login`` records a CSRF state and redirects to the provider.
2. ``handle_response`` consumes that state, lets the provider resolve the
   account and redirects the client with a single-use hand-off token.
3. ``handle_initial_token`` redeems the hand-off token for a device refresh
   token.
4. ``handle_refresh_token`` rotates the refresh token and issues a signed
   access token on every call.

CSRF states and hand-off tokens only live in process memory; a restart simply
forces an in-flight login to start over.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Dict, Mapping, Optional
from urllib.parse import urlencode

import jwt

from authbridge.clients.identity import IdentityProvider
from authbridge.clients.sqlite_store import DEFAULT_DEVICE, AccountStore
from authbridge.core.config import OAuthSettings, ServerSettings
from authbridge.core.exceptions import (
    BadRequestError,
    EntryExpiredError,
    IdentityProviderError,
    NotFoundError,
    RateLimitedError,
    StorageError,
    TokenVerificationError,
    UnauthorizedError,
    UpstreamError,
)
from authbridge.models.account import AuthenticatedUser
from authbridge.schemas.auth import APIUser, TokenResponse
from authbridge.services.expiring import ExpiringTable
from authbridge.services.rate_limiter import TokenBucket
from authbridge.services.signer import CredentialSigner
from authbridge.utils.ids import IdObfuscator

logger = logging.getLogger(__name__)

_STATE_BYTES = 20
_HANDOFF_BYTES = 20
_BEARER_PREFIX = "Bearer "
SERVICE_PENALTY_FACTOR = 5


@dataclass(slots=True)
class LoginState:
    """What a login attempt needs to remember until the provider calls back."""

    provider: str
    client_state: str
    redirect_target: str


@dataclass(slots=True)
class HandoffGrant:
    account_id: int


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    return authorization[len(_BEARER_PREFIX):]


def _append_query(url: str, params: Dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


class AuthenticationManager:
    """Orchestrates logins, device credentials and request verification."""

    def __init__(
        self,
        *,
        providers: Mapping[str, IdentityProvider],
        store: AccountStore,
        signer: CredentialSigner,
        obfuscator: IdObfuscator,
        server_settings: ServerSettings,
        oauth_settings: OAuthSettings,
        service_token: bytes,
        failed_auth_penalty: int = 2,
        states: Optional[ExpiringTable[LoginState]] = None,
        handoff_tokens: Optional[ExpiringTable[HandoffGrant]] = None,
    ) -> None:
        self._providers = dict(providers)
        self._store = store
        self._signer = signer
        self._ids = obfuscator
        self._server = server_settings
        self._oauth = oauth_settings
        self._service_token = service_token
        self._failed_auth_penalty = failed_auth_penalty
        self._states: ExpiringTable[LoginState] = (
            states if states is not None else ExpiringTable()
        )
        self._handoff_tokens: ExpiringTable[HandoffGrant] = (
            handoff_tokens if handoff_tokens is not None else ExpiringTable()
        )

    @property
    def providers(self) -> Dict[str, IdentityProvider]:
        return dict(self._providers)

    def provider(self, name: str) -> IdentityProvider:
        try:
            return self._providers[name.lower()]
        except KeyError:
            raise NotFoundError() from None

    # Login handshake

    def handle_login(
        self,
        provider_name: str,
        client_state: Optional[str] = None,
        redirect_target: Optional[str] = None,
    ) -> str:
        """Record a CSRF state and return the provider authorization URL."""
        provider = self.provider(provider_name)
        client_state = client_state or ""
        redirect_target = redirect_target or self._server.default_redirect

        if len(client_state) > self._oauth.max_state_length:
            raise BadRequestError("State too long")
        if len(redirect_target) > self._oauth.max_redirect_length:
            raise BadRequestError("Redirect too long")
        if redirect_target not in self._server.redirect_allow_list:
            raise BadRequestError("Redirect target not allowed")

        state_id = secrets.token_hex(_STATE_BYTES)
        self._states.put(
            state_id,
            LoginState(
                provider=provider.name,
                client_state=client_state,
                redirect_target=redirect_target,
            ),
            self._oauth.state_ttl_seconds,
        )
        return provider.get_login_redirect(state_id)

    async def handle_response(self, provider_name: str, params: Mapping[str, str]) -> str:
        """Finish the provider callback and return the client redirect URL."""
        provider = self.provider(provider_name)
        state_id = provider.get_state(params)
        if not state_id:
            raise BadRequestError("Missing state")
        try:
            login = self._states.take(state_id)
        except KeyError:
            # Covers unknown, replayed and expired states alike.
            raise BadRequestError("Invalid state") from None
        if login.provider != provider.name:
            raise BadRequestError("Invalid state")

        try:
            account_id = await provider.handle_response(params)
        except IdentityProviderError as exc:
            logger.warning("%s login failed: %s", provider.name, exc)
            raise UpstreamError(str(exc) or "Login failed", status_code=422) from exc

        token = secrets.token_hex(_HANDOFF_BYTES)
        self._handoff_tokens.put(
            token, HandoffGrant(account_id=account_id), self._oauth.handoff_ttl_seconds
        )
        params_out = {"token": token}
        if login.client_state:
            params_out["state"] = login.client_state
        return _append_query(login.redirect_target, params_out)

    # Device credentials

    async def handle_initial_token(self, token: str, device: Optional[str] = None) -> str:
        """Redeem a hand-off token for a new device refresh token."""
        if not token:
            raise BadRequestError("Missing token")
        try:
            grant = self._handoff_tokens.take(token)
        except EntryExpiredError:
            raise UnauthorizedError("Token expired, please try again") from None
        except KeyError:
            raise UnauthorizedError("Invalid token") from None

        try:
            return await self._store.register_device(grant.account_id, device or DEFAULT_DEVICE)
        except StorageError as exc:
            raise StorageError("Failed to generate refresh token") from exc

    async def handle_refresh_token(
        self, token: str, device: Optional[str] = None
    ) -> TokenResponse:
        """Rotate a refresh token and issue an access token for its account."""
        if not token:
            raise BadRequestError("Missing token")

        refreshed = await self._store.refresh_device(token, device)
        if refreshed is None:
            raise UnauthorizedError("Invalid token")

        provider = self._providers.get(refreshed.provider)
        if provider is None:
            logger.error("No identity provider bound for %s", refreshed.provider)
            raise UpstreamError("Invalid handler")

        try:
            profile = await provider.get_user(refreshed.provider_user_id)
        except IdentityProviderError as exc:
            logger.warning("Profile refresh for account %s failed: %s", refreshed.account_id, exc)
            raise UpstreamError("Failed to get user information") from exc

        user = APIUser(
            id=self._ids.encode(refreshed.account_id),
            service=refreshed.provider,
            user_id=profile.user_id,
            username=profile.username,
            avatar_url=profile.avatar_url,
        )
        try:
            issued = self._signer.sign_access_token(user)
        except (jwt.PyJWTError, ValueError) as exc:
            logger.exception("Signing access token failed")
            raise UpstreamError("Failed to generate access token") from exc

        return TokenResponse(
            access_token=issued.token,
            expires_in=issued.expires_in - self._oauth.expiry_margin_seconds,
            refresh_token=refreshed.token,
            user=user,
        )

    def handle_external_token(self, user: AuthenticatedUser, host: Optional[str]) -> str:
        """Sign a token scoped to one third-party host for an authenticated user."""
        if not host:
            raise BadRequestError("Missing host")
        try:
            return self._signer.sign_external_token(self._signer.to_api_user(user), host)
        except (jwt.PyJWTError, ValueError) as exc:
            logger.exception("Signing external token failed")
            raise UpstreamError("Failed to generate external token") from exc

    async def revoke(self, token: str) -> None:
        """Delete the device holding ``token``; unknown tokens are ignored."""
        if not token:
            raise BadRequestError("Missing token")
        try:
            await self._store.revoke_device(token)
        except StorageError:
            logger.warning("Revoking a device token failed; ignoring")

    async def logout(self, user: AuthenticatedUser) -> None:
        """Delete every device of the user's account; storage failures are logged."""
        try:
            await self._store.logout(user.id)
        except StorageError:
            logger.warning("Logging out account %s failed; ignoring", user.id)

    # Request verification

    def verify_request(
        self,
        *,
        required: bool,
        client: str,
        authorization: Optional[str],
        bucket: TokenBucket,
        cost: int = 1,
    ) -> Optional[AuthenticatedUser]:
        """Rate limit the caller, then verify its bearer access token.

        Returns None for anonymous callers when authentication is optional.
        """
        if not bucket.consume(client, cost):
            raise RateLimitedError(bucket.retry_after(client, cost))

        token = _bearer_token(authorization)
        if token is None:
            if required:
                raise UnauthorizedError()
            return None

        try:
            return self._signer.verify(token)
        except TokenVerificationError:
            bucket.drain(client, self._failed_auth_penalty)
            raise UnauthorizedError() from None

    def verify_service_request(
        self,
        *,
        required: bool,
        client: str,
        authorization: Optional[str],
        bucket: TokenBucket,
        cost: int = 1,
    ) -> bool:
        """Check a bearer value against the shared service secret.

        Returns whether the caller presented valid service credentials; callers
        without any are rate limited like anonymous users when allowed.
        """
        token = _bearer_token(authorization)
        if token is None:
            if required:
                raise UnauthorizedError()
            if not bucket.consume(client, cost):
                raise RateLimitedError(bucket.retry_after(client, cost))
            return False

        if not bucket.can_consume(client, cost):
            raise RateLimitedError(bucket.retry_after(client, cost))
        if not hmac.compare_digest(token.encode("utf-8"), self._service_token):
            # Five times what a failed user check costs, request included.
            bucket.drain(client, SERVICE_PENALTY_FACTOR * (cost + self._failed_auth_penalty))
            raise UnauthorizedError()
        return True

    # Housekeeping

    def cleanup_tokens(self) -> int:
        """Forget CSRF states and hand-off tokens nobody redeemed in time."""
        removed = self._states.sweep() + self._handoff_tokens.sweep()
        if removed:
            logger.debug("Swept %d expired login entries", removed)
        return removed


__all__ = [
    "AuthenticationManager",
    "HandoffGrant",
    "LoginState",
    "SERVICE_PENALTY_FACTOR",
]
