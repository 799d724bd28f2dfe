"""
Identity provider capability shared by all OAuth2 provider adapters.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Mapping

from authbridge.models.account import ProviderProfile

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from authbridge.clients.sqlite_store import AccountStore
    from authbridge.core.config import AppSettings
    from authbridge.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    """One external OAuth2 provider users can sign in with.

    Implementations raise :class:`authbridge.core.exceptions.IdentityProviderError`
    for every transport, payload or persistence failure.
    """

    name: str

    @abstractmethod
    def get_login_redirect(self, state: str) -> str:
        """Build the provider authorization URL carrying ``state``."""

    @abstractmethod
    def get_state(self, params: Mapping[str, str]) -> str:
        """Extract the echoed state from the callback parameters, or ``""``."""

    @abstractmethod
    async def handle_response(self, params: Mapping[str, str]) -> int:
        """Complete the provider handshake and return the internal account id."""

    @abstractmethod
    async def get_user(self, provider_user_id: str) -> ProviderProfile:
        """Fetch the current profile of a provider user."""

    def purge_expired_tokens(self) -> int:
        """Drop cached provider access tokens past their expiry."""
        return 0


def build_identity_providers(
    settings: "AppSettings",
    store: "AccountStore",
    cipher: "TokenCipherService",
) -> Dict[str, IdentityProvider]:
    """Instantiate every provider whose credentials are configured."""
    from authbridge.clients.discord_auth import DiscordIdentityProvider

    providers: Dict[str, IdentityProvider] = {}
    if settings.discord.configured:
        providers[DiscordIdentityProvider.name] = DiscordIdentityProvider(
            client_id=settings.discord.client_id or "",
            client_secret=settings.discord.client_secret or "",
            host_url=settings.server.host_url,
            store=store,
            cipher=cipher,
        )
    else:
        logger.warning("discord authentication not configured")
    return providers


__all__ = ["IdentityProvider", "build_identity_providers"]
