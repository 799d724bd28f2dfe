"""Encryption of provider refresh tokens kept in the account store."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


class TokenCipherService:
    """Fernet wrapper keyed by a SHA-256 digest of the configured secret."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
        self._fernet = Fernet(key)

    def encrypt(self, provider_token: str) -> str:
        return self._fernet.encrypt(provider_token.encode("utf-8")).decode("utf-8")

    def decrypt(self, stored_value: str) -> str:
        """Recover a provider token; raises ValueError for foreign or corrupt values."""
        try:
            plaintext = self._fernet.decrypt(stored_value.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError("Stored provider token could not be decrypted.") from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipherService"]
