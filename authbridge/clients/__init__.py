"""Expose constructed client wrappers."""

from .discord_auth import DiscordIdentityProvider
from .identity import IdentityProvider, build_identity_providers
from .sqlite_store import AccountStore

__all__ = [
    "AccountStore",
    "DiscordIdentityProvider",
    "IdentityProvider",
    "build_identity_providers",
]
