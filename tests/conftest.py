"""Pytest configuration and fakes shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from typing import Mapping
from urllib.parse import urlencode

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from authbridge.clients.identity import IdentityProvider
from authbridge.clients.sqlite_store import AccountStore
from authbridge.core.config import OAuthSettings, ServerSettings
from authbridge.core.exceptions import IdentityProviderError
from authbridge.models.account import ProviderProfile
from authbridge.services.authentication import AuthenticationManager
from authbridge.services.expiring import ExpiringTable
from authbridge.services.signer import CredentialSigner
from authbridge.utils.ids import IdObfuscator

SERVICE_SECRET = b"service-secret"
VALID_CODE = "valid-code"


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityProvider(IdentityProvider):
    name = "discord"

    def __init__(self, store: AccountStore) -> None:
        self._store = store
        self.fail_profile = False
        self.profile_calls: list[str] = []

    def get_login_redirect(self, state: str) -> str:
        return f"https://provider.example/authorize?{urlencode({'state': state})}"

    def get_state(self, params: Mapping[str, str]) -> str:
        return params.get("state") or ""

    async def handle_response(self, params: Mapping[str, str]) -> int:
        if params.get("code") != VALID_CODE:
            raise IdentityProviderError("Failed to get token")
        return await self._store.store_provider_token(
            self.name, params.get("user", "provider-user-1"), "provider-refresh"
        )

    async def get_user(self, provider_user_id: str) -> ProviderProfile:
        self.profile_calls.append(provider_user_id)
        if self.fail_profile:
            raise IdentityProviderError("Failed to get user information")
        return ProviderProfile(
            user_id=provider_user_id,
            username=f"user-{provider_user_id}",
            avatar_url="https://cdn.example/avatar.png",
        )


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture(scope="session")
def key_pair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


@pytest.fixture
def obfuscator() -> IdObfuscator:
    return IdObfuscator()


@pytest.fixture
def signer(key_pair, obfuscator) -> CredentialSigner:
    private_key, public_key = key_pair
    return CredentialSigner(
        private_key=private_key, public_key=public_key, obfuscator=obfuscator
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> AccountStore:
    return AccountStore(str(tmp_path / "accounts.db"))


@pytest.fixture
def provider(store) -> FakeIdentityProvider:
    return FakeIdentityProvider(store)


@pytest.fixture
def server_settings() -> ServerSettings:
    return ServerSettings(
        HOST_URL="api.example.com/",
        CLIENT_URL="https://client.example/",
        ALLOWED_HOSTS="https://partner.example/login",
    )


@pytest.fixture
def manager(provider, store, signer, obfuscator, server_settings, clock) -> AuthenticationManager:
    return AuthenticationManager(
        providers={provider.name: provider},
        store=store,
        signer=signer,
        obfuscator=obfuscator,
        server_settings=server_settings,
        oauth_settings=OAuthSettings(),
        service_token=SERVICE_SECRET,
        failed_auth_penalty=2,
        states=ExpiringTable(clock=clock),
        handoff_tokens=ExpiringTable(clock=clock),
    )
