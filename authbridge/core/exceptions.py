"""
Error taxonomy shared by the authentication services and the HTTP layer.

Every error a caller may observe derives from :class:`AuthBridgeError` and maps
to a single status code with a plain-text message. Storage and provider
failures are converted into this taxonomy before they leave the services.
"""

from __future__ import annotations

from http import HTTPStatus


class AuthBridgeError(Exception):
    """Base error carrying the HTTP status and the message shown to callers."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message: str = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(AuthBridgeError):
    """Malformed or missing request parameters."""

    status_code = HTTPStatus.BAD_REQUEST
    default_message = "Bad Request"


class UnauthorizedError(AuthBridgeError):
    """Absent, invalid, expired or replayed credential."""

    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Unauthorized"


class NotFoundError(AuthBridgeError):
    status_code = HTTPStatus.NOT_FOUND
    default_message = "Not Found"


class RateLimitedError(AuthBridgeError):
    """The caller exhausted its token bucket."""

    status_code = HTTPStatus.TOO_MANY_REQUESTS
    default_message = "Too Many Requests"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = max(0, int(retry_after))


class UpstreamError(AuthBridgeError):
    """The identity provider failed while serving a request."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class StorageError(AuthBridgeError):
    """A read or write against the account store failed."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Storage failure"


class IdentityProviderError(Exception):
    """Raised by provider adapters for any transport or payload failure."""


class TokenVerificationError(Exception):
    """Uniform failure for signature, expiry and claim-shape defects."""


class EntryExpiredError(KeyError):
    """A temporary entry was found but its deadline has passed."""


__all__ = [
    "AuthBridgeError",
    "BadRequestError",
    "EntryExpiredError",
    "IdentityProviderError",
    "NotFoundError",
    "RateLimitedError",
    "StorageError",
    "TokenVerificationError",
    "UnauthorizedError",
    "UpstreamError",
]
