"""
Request-scoped dependencies for rate limiting and caller authentication.
"""

from __future__ import annotations

from typing import Annotated, Any, Callable, Optional

from fastapi import Depends, Header, Request

from authbridge.core.exceptions import RateLimitedError
from authbridge.dependencies import (
    get_app_settings,
    get_authentication_manager,
    get_rate_limiters,
)
from authbridge.models.account import AuthenticatedUser


def client_address(
    request: Request,
    settings: Annotated[Any, Depends(get_app_settings)],
) -> str:
    """Identify the caller for rate limiting purposes."""
    if settings.server.use_x_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def rate_limit(group: str, cost: int = 1) -> Callable[..., None]:
    """Reject the request with 429 when the caller's bucket for ``group`` is empty."""

    def _dependency(
        client: Annotated[str, Depends(client_address)],
        limiters: Annotated[Any, Depends(get_rate_limiters)],
    ) -> None:
        bucket = getattr(limiters, group)
        if not bucket.consume(client, cost):
            raise RateLimitedError(bucket.retry_after(client, cost))

    return _dependency


def user_auth(required: bool = True, group: str = "default") -> Callable[..., Optional[AuthenticatedUser]]:
    """Verify the bearer access token; anonymous callers pass when not ``required``."""

    def _dependency(
        client: Annotated[str, Depends(client_address)],
        manager: Annotated[Any, Depends(get_authentication_manager)],
        limiters: Annotated[Any, Depends(get_rate_limiters)],
        authorization: Annotated[Optional[str], Header()] = None,
    ) -> Optional[AuthenticatedUser]:
        return manager.verify_request(
            required=required,
            client=client,
            authorization=authorization,
            bucket=getattr(limiters, group),
        )

    return _dependency


def service_auth(required: bool = True, group: str = "default") -> Callable[..., bool]:
    """Check the shared service secret; returns whether the caller presented it."""

    def _dependency(
        client: Annotated[str, Depends(client_address)],
        manager: Annotated[Any, Depends(get_authentication_manager)],
        limiters: Annotated[Any, Depends(get_rate_limiters)],
        authorization: Annotated[Optional[str], Header()] = None,
    ) -> bool:
        return manager.verify_service_request(
            required=required,
            client=client,
            authorization=authorization,
            bucket=getattr(limiters, group),
        )

    return _dependency


__all__ = ["client_address", "rate_limit", "service_auth", "user_auth"]
