"""Translate service errors into plain-text HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from authbridge.core.exceptions import AuthBridgeError, RateLimitedError


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthBridgeError)
    async def auth_bridge_error_handler(request: Request, exc: AuthBridgeError):
        headers = {}
        if isinstance(exc, RateLimitedError):
            headers["Retry-After"] = str(exc.retry_after)
        return PlainTextResponse(exc.message, status_code=int(exc.status_code), headers=headers)


__all__ = ["register_exception_handlers"]
