"""
FastAPI application entrypoint for the credential service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from authbridge.api.errors import register_exception_handlers
from authbridge.api.routes import router as api_router
from authbridge.core.config import get_settings
from authbridge.core.logging import configure_logging
from authbridge.dependencies import (
    get_authentication_manager,
    get_housekeeping,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load key material eagerly and run housekeeping while the app serves."""
    manager = get_authentication_manager()
    if not manager.providers:
        logger.warning("No identity providers configured; logins are disabled")
    housekeeping = get_housekeeping()
    housekeeping.start()
    try:
        yield
    finally:
        await housekeeping.stop()


def create_app() -> FastAPI:
    """Factory for the FastAPI application.

    Raises ``pydantic.ValidationError`` when required configuration is missing.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="authbridge",
        version="0.1.0",
        description="Device credentials and signed access tokens for OAuth2 logins.",
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()

__all__ = ["app", "create_app"]
