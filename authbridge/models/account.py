"""
Domain models for accounts, devices and the identities carried in tokens.
"""

from pydantic import BaseModel, Field


class Account(BaseModel):
    """An internal account bound to one identity at one provider."""

    id: int = Field(..., description="Internal account identifier.")
    provider: str
    provider_user_id: str


class RefreshedDevice(BaseModel):
    """Result of rotating a device refresh token."""

    account_id: int
    provider: str
    provider_user_id: str
    token: str = Field(..., description="The newly issued refresh token.")


class ProviderProfile(BaseModel):
    """Profile fields a provider reports for one of its users."""

    user_id: str
    username: str
    avatar_url: str


class AuthenticatedUser(BaseModel):
    """Identity decoded from a verified access token."""

    id: int
    service: str
    user_id: str
    username: str
    avatar_url: str


class IssuedToken(BaseModel):
    """A freshly signed access token and its lifetime in seconds."""

    token: str
    expires_in: int


__all__ = [
    "Account",
    "AuthenticatedUser",
    "IssuedToken",
    "ProviderProfile",
    "RefreshedDevice",
]
