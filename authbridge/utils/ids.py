"""Public presentation of internal account ids."""

from __future__ import annotations

from typing import Optional

from sqids import Sqids

_MIN_LENGTH = 6


class IdObfuscator:
    """Map integer account ids to short opaque strings and back.

    This hides the sequential nature of the ids; it is not a security boundary.
    """

    def __init__(self, alphabet: Optional[str] = None) -> None:
        if alphabet:
            self._sqids = Sqids(alphabet=alphabet, min_length=_MIN_LENGTH)
        else:
            self._sqids = Sqids(min_length=_MIN_LENGTH)

    def encode(self, account_id: int) -> str:
        if account_id < 0:
            raise ValueError("Account ids must be non-negative.")
        return self._sqids.encode([account_id])

    def decode(self, public_id: str) -> Optional[int]:
        """Return the account id, or None for anything but a canonical single id."""
        if not public_id:
            return None
        decoded = self._sqids.decode(public_id)
        if len(decoded) != 1:
            return None
        # Several strings can decode to the same number; only the one we emit counts.
        if self._sqids.encode(decoded) != public_id:
            return None
        return decoded[0]


__all__ = ["IdObfuscator"]
