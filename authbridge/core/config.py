"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the housekeeping loop and
the maintenance scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import base64
import binascii
import logging
import os
import secrets

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class ServerSettings(BaseSettings):
    """Public addresses of this service and the client it hands users back to."""

    model_config = SettingsConfigDict(extra="ignore")

    host_url: str = Field(
        ...,
        validation_alias="HOST_URL",
        description="Public URL of this service, used for provider callbacks.",
    )
    client_url: str = Field("https://warfront.io", validation_alias="CLIENT_URL")
    allowed_hosts: Annotated[tuple[str, ...], NoDecode] = Field(
        ("http://localhost:8080/auth",),
        validation_alias="ALLOWED_HOSTS",
        description="Redirect targets a login may hand its token to.",
    )
    use_x_forwarded_for: bool = Field(False, validation_alias="USE_X_FORWARDED_FOR")

    @field_validator("host_url")
    def _normalize_host_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("HOST_URL must not be empty")
        if not value.startswith("http"):
            value = f"https://{value}"
        return value.rstrip("/")

    @field_validator("client_url")
    def _strip_client_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("allowed_hosts", mode="before")
    def _split_hosts(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        """Support providing hosts as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(host.strip() for host in value.split(",") if host.strip())

    @property
    def default_redirect(self) -> str:
        return f"{self.client_url}/auth/"

    @property
    def redirect_allow_list(self) -> frozenset[str]:
        return frozenset((*self.allowed_hosts, self.default_redirect))


class SecuritySettings(BaseSettings):
    """Secrets and key material locations."""

    model_config = SettingsConfigDict(extra="ignore")

    service_token: Optional[str] = Field(
        None,
        validation_alias="SERVICE_TOKEN",
        description="Base64 encoded secret shared with internal services.",
    )
    private_key_path: str = Field("private.key", validation_alias="PRIVATE_KEY_PATH")
    public_key_path: str = Field("public.key", validation_alias="PUBLIC_KEY_PATH")
    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting provider tokens."
        ),
    )
    id_alphabet: Optional[str] = Field(
        None,
        validation_alias="ID_ALPHABET",
        description="Alphabet for the public account id encoding.",
    )

    @field_validator("service_token")
    def _validate_service_token(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("SERVICE_TOKEN must be base64 encoded") from exc
        return value

    def service_token_bytes(self) -> bytes:
        """Return the decoded service secret, or a random one when unset."""
        if self.service_token is None:
            logger.warning("Service token not provided, using a random token")
            return secrets.token_bytes(32)
        return base64.b64decode(self.service_token)


class OAuthSettings(BaseSettings):
    """Lifetimes and limits of the login flow and issued credentials."""

    model_config = SettingsConfigDict(extra="ignore")

    state_ttl_seconds: int = Field(15 * 60, validation_alias="OAUTH_STATE_TTL")
    handoff_ttl_seconds: int = Field(10, validation_alias="HANDOFF_TOKEN_TTL")
    access_token_ttl_seconds: int = Field(15 * 60, validation_alias="ACCESS_TOKEN_TTL")
    external_token_ttl_seconds: int = Field(60, validation_alias="EXTERNAL_TOKEN_TTL")
    device_ttl_seconds: int = Field(30 * 24 * 60 * 60, validation_alias="DEVICE_TOKEN_TTL")
    expiry_margin_seconds: int = Field(60, validation_alias="TOKEN_EXPIRY_MARGIN")
    max_state_length: int = Field(128, validation_alias="MAX_STATE_LENGTH")
    max_redirect_length: int = Field(256, validation_alias="MAX_REDIRECT_LENGTH")


class DiscordSettings(BaseSettings):
    """Credentials of the Discord application, optional as a pair."""

    model_config = SettingsConfigDict(extra="ignore")

    client_id: Optional[str] = Field(None, validation_alias="DISCORD_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="DISCORD_CLIENT_SECRET")

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class StorageSettings(BaseSettings):
    """Location of the account database."""

    model_config = SettingsConfigDict(extra="ignore")

    database_path: str = Field("data/authbridge.db", validation_alias="DATABASE_PATH")


class RateLimitSettings(BaseSettings):
    """Token bucket sizes per endpoint group, as capacity and tokens per second."""

    model_config = SettingsConfigDict(extra="ignore")

    login_capacity: int = Field(10, validation_alias="RATE_LOGIN_CAPACITY")
    login_refill: float = Field(0.2, validation_alias="RATE_LOGIN_REFILL")
    auth_capacity: int = Field(10, validation_alias="RATE_AUTH_CAPACITY")
    auth_refill: float = Field(0.5, validation_alias="RATE_AUTH_REFILL")
    token_capacity: int = Field(20, validation_alias="RATE_TOKEN_CAPACITY")
    token_refill: float = Field(1.0, validation_alias="RATE_TOKEN_REFILL")
    default_capacity: int = Field(10, validation_alias="RATE_DEFAULT_CAPACITY")
    default_refill: float = Field(1.0, validation_alias="RATE_DEFAULT_REFILL")
    failed_auth_penalty: int = Field(2, validation_alias="RATE_FAILED_AUTH_PENALTY")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    server: ServerSettings = Field(default_factory=ServerSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "DiscordSettings",
    "OAuthSettings",
    "RateLimitSettings",
    "SecuritySettings",
    "ServerSettings",
    "StorageSettings",
    "get_settings",
]
