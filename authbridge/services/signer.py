"""
Signing and verification of access and external tokens.

Tokens are RS256 JWTs. The key pair is generated on first start and persisted
next to the service; replacing either file rotates the pair and invalidates
every outstanding token.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from authbridge.core.exceptions import TokenVerificationError
from authbridge.models.account import AuthenticatedUser, IssuedToken
from authbridge.schemas.auth import APIUser
from authbridge.utils.ids import IdObfuscator

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
USER_TOKEN = "user"
EXTERNAL_TOKEN = "external"

_PROFILE_CLAIMS = ("service", "user_id", "username", "avatar_url")


def _write_key(path: Path, data: bytes, *, private: bool) -> None:
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if private:
        os.chmod(path, 0o600)


def load_or_generate_key_pair(
    private_key_path: str, public_key_path: str, *, key_size: int = 4096
) -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Load the persisted key pair, generating a new one when either half is missing."""
    private_path = Path(private_key_path)
    public_path = Path(public_key_path)

    if not private_path.exists() or not public_path.exists():
        logger.info("No key pair found, generating new one...")
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        _write_key(
            private_path,
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
            private=True,
        )
        _write_key(
            public_path,
            private_key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            ),
            private=False,
        )

    private_key = serialization.load_pem_private_key(private_path.read_bytes(), password=None)
    public_key = serialization.load_pem_public_key(public_path.read_bytes())
    if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(
        public_key, rsa.RSAPublicKey
    ):
        raise ValueError("Persisted key pair is not an RSA key pair.")
    return private_key, public_key


class CredentialSigner:
    """Issue and verify the stateless tokens handed to clients."""

    def __init__(
        self,
        *,
        private_key: rsa.RSAPrivateKey,
        public_key: rsa.RSAPublicKey,
        obfuscator: IdObfuscator,
        access_ttl_seconds: int = 15 * 60,
        external_ttl_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._private_key = private_key
        self._public_key = public_key
        self._ids = obfuscator
        self.access_ttl_seconds = access_ttl_seconds
        self.external_ttl_seconds = external_ttl_seconds
        self._clock = clock

    @classmethod
    def from_files(
        cls,
        private_key_path: str,
        public_key_path: str,
        *,
        obfuscator: IdObfuscator,
        **kwargs: Any,
    ) -> "CredentialSigner":
        private_key, public_key = load_or_generate_key_pair(private_key_path, public_key_path)
        return cls(
            private_key=private_key,
            public_key=public_key,
            obfuscator=obfuscator,
            **kwargs,
        )

    def to_api_user(self, user: AuthenticatedUser) -> APIUser:
        return APIUser(
            id=self._ids.encode(user.id),
            service=user.service,
            user_id=user.user_id,
            username=user.username,
            avatar_url=user.avatar_url,
        )

    def _encode(
        self, token_type: str, user: APIUser, ttl_seconds: int, audience: str | None = None
    ) -> str:
        now = int(self._clock())
        claims: Dict[str, Any] = {
            "type": token_type,
            **user.model_dump(),
            "iat": now,
            "exp": now + ttl_seconds,
        }
        if audience is not None:
            claims["aud"] = audience
        return jwt.encode(claims, self._private_key, algorithm=ALGORITHM)

    def sign_access_token(self, user: APIUser) -> IssuedToken:
        token = self._encode(USER_TOKEN, user, self.access_ttl_seconds)
        return IssuedToken(token=token, expires_in=self.access_ttl_seconds)

    def sign_external_token(self, user: APIUser, host: str) -> str:
        """Sign a short-lived token that only ``host`` should accept."""
        if not host:
            raise ValueError("External tokens require a target host.")
        return self._encode(EXTERNAL_TOKEN, user, self.external_ttl_seconds, audience=host)

    def verify(self, token: str) -> AuthenticatedUser:
        """Verify a user access token.

        Any defect raises :class:`TokenVerificationError` without further detail.
        """
        return self._decode(token, USER_TOKEN, audience=None)

    def verify_external(self, token: str, host: str) -> AuthenticatedUser:
        """Verify an external token on behalf of ``host``."""
        return self._decode(token, EXTERNAL_TOKEN, audience=host)

    def _decode(self, token: str, token_type: str, audience: str | None) -> AuthenticatedUser:
        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[ALGORITHM],
                audience=audience,
                options={"require": ["exp", "iat"]},
            )
        except jwt.PyJWTError as exc:
            raise TokenVerificationError() from exc

        if claims.get("type") != token_type:
            raise TokenVerificationError()
        public_id = claims.get("id")
        if not isinstance(public_id, str):
            raise TokenVerificationError()
        if any(not isinstance(claims.get(name), str) for name in _PROFILE_CLAIMS):
            raise TokenVerificationError()
        account_id = self._ids.decode(public_id)
        if account_id is None:
            raise TokenVerificationError()

        return AuthenticatedUser(
            id=account_id,
            service=claims["service"],
            user_id=claims["user_id"],
            username=claims["username"],
            avatar_url=claims["avatar_url"],
        )


__all__ = [
    "CredentialSigner",
    "EXTERNAL_TOKEN",
    "USER_TOKEN",
    "load_or_generate_key_pair",
]
