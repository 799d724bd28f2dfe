"""Public schema exports."""

from .auth import APIUser, TokenResponse

__all__ = [
    "APIUser",
    "TokenResponse",
]
