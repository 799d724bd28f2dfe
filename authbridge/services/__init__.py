"""Service layer exports."""

from .authentication import AuthenticationManager
from .expiring import ExpiringTable
from .housekeeping import Housekeeping
from .rate_limiter import RateLimiters, TokenBucket
from .signer import CredentialSigner
from .token_cipher import TokenCipherService
from .user_directory import UserDirectory

__all__ = [
    "AuthenticationManager",
    "CredentialSigner",
    "ExpiringTable",
    "Housekeeping",
    "RateLimiters",
    "TokenBucket",
    "TokenCipherService",
    "UserDirectory",
]
