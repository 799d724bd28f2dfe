"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache
from typing import Dict

from authbridge.clients import AccountStore, IdentityProvider, build_identity_providers
from authbridge.core.config import get_settings
from authbridge.services import (
    AuthenticationManager,
    CredentialSigner,
    Housekeeping,
    RateLimiters,
    TokenCipherService,
    UserDirectory,
)
from authbridge.utils.ids import IdObfuscator


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_id_obfuscator() -> IdObfuscator:
    return IdObfuscator(alphabet=_settings().security.id_alphabet)


@lru_cache()
def get_account_store() -> AccountStore:
    """Provide the shared SQLite account store."""
    settings = _settings()
    return AccountStore(
        settings.storage.database_path,
        device_ttl_seconds=settings.oauth.device_ttl_seconds,
    )


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption for provider tokens at rest."""
    settings = _settings()
    secret = (
        settings.security.token_encryption_secret
        or settings.discord.client_secret
        or settings.security.service_token
    )
    if not secret:
        raise RuntimeError(
            "TOKEN_ENCRYPTION_SECRET is required when no provider secret is configured."
        )
    return TokenCipherService(secret=secret)


@lru_cache()
def get_identity_providers() -> Dict[str, IdentityProvider]:
    """Instantiate the configured identity providers once per process."""
    return build_identity_providers(
        _settings(), get_account_store(), get_token_cipher_service()
    )


@lru_cache()
def get_credential_signer() -> CredentialSigner:
    """Load (or create) the signing key pair."""
    settings = _settings()
    return CredentialSigner.from_files(
        settings.security.private_key_path,
        settings.security.public_key_path,
        obfuscator=get_id_obfuscator(),
        access_ttl_seconds=settings.oauth.access_token_ttl_seconds,
        external_ttl_seconds=settings.oauth.external_token_ttl_seconds,
    )


@lru_cache()
def get_rate_limiters() -> RateLimiters:
    return RateLimiters.from_settings(_settings().rate_limits)


@lru_cache()
def get_authentication_manager() -> AuthenticationManager:
    """Create the process-wide authentication manager."""
    settings = _settings()
    return AuthenticationManager(
        providers=get_identity_providers(),
        store=get_account_store(),
        signer=get_credential_signer(),
        obfuscator=get_id_obfuscator(),
        server_settings=settings.server,
        oauth_settings=settings.oauth,
        service_token=settings.security.service_token_bytes(),
        failed_auth_penalty=settings.rate_limits.failed_auth_penalty,
    )


@lru_cache()
def get_user_directory() -> UserDirectory:
    return UserDirectory(
        store=get_account_store(),
        providers=get_identity_providers(),
        obfuscator=get_id_obfuscator(),
    )


@lru_cache()
def get_housekeeping() -> Housekeeping:
    """Build the housekeeping scheduler with every cleanup task registered."""
    housekeeping = Housekeeping()
    manager = get_authentication_manager()
    limiters = get_rate_limiters()
    housekeeping.register_minor_task(manager.cleanup_tokens)
    housekeeping.register_minor_task(limiters.cleanup)
    for provider in get_identity_providers().values():
        housekeeping.register_minor_task(provider.purge_expired_tokens)
    housekeeping.register_major_task(get_account_store().purge_expired_devices)
    housekeeping.register_major_task(get_user_directory().purge_expired)
    return housekeeping


__all__ = [
    "get_account_store",
    "get_authentication_manager",
    "get_credential_signer",
    "get_housekeeping",
    "get_id_obfuscator",
    "get_identity_providers",
    "get_rate_limiters",
    "get_token_cipher_service",
    "get_user_directory",
]
