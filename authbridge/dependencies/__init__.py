"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_account_store,
    get_authentication_manager,
    get_credential_signer,
    get_housekeeping,
    get_id_obfuscator,
    get_identity_providers,
    get_rate_limiters,
    get_token_cipher_service,
    get_user_directory,
)
from .config import get_app_settings

__all__ = [
    "get_account_store",
    "get_app_settings",
    "get_authentication_manager",
    "get_credential_signer",
    "get_housekeeping",
    "get_id_obfuscator",
    "get_identity_providers",
    "get_rate_limiters",
    "get_token_cipher_service",
    "get_user_directory",
]
