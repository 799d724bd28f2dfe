"""Schemas returned by the authentication endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class APIUser(BaseModel):
    """Public view of an account, as embedded in access tokens."""

    id: str = Field(..., description="Obfuscated account identifier.")
    service: str = Field(..., description="Identity provider the account signed in with.")
    user_id: str = Field(..., description="The account's user id at the provider.")
    username: str
    avatar_url: str


class TokenResponse(BaseModel):
    """Payload returned when a refresh token is exchanged."""

    access_token: str
    expires_in: int = Field(
        ..., description="Seconds until the client should request a new access token."
    )
    refresh_token: str = Field(..., description="Replacement for the redeemed refresh token.")
    user: APIUser


__all__ = ["APIUser", "TokenResponse"]
