"""
FastAPI routes for user login, device tokens and token exchange.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from authbridge.api.security import rate_limit, service_auth, user_auth
from authbridge.core.exceptions import NotFoundError
from authbridge.dependencies import (
    get_app_settings,
    get_authentication_manager,
    get_user_directory,
)
from authbridge.models.account import AuthenticatedUser

router = APIRouter()
logger = logging.getLogger(__name__)

ManagerDependency = Annotated[Any, Depends(get_authentication_manager)]


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck(
    manager: ManagerDependency,
    settings: Annotated[Any, Depends(get_app_settings)],
    is_service: Annotated[bool, Depends(service_auth(required=False))],
) -> dict:
    """Health endpoint; internal services also see the enabled providers."""
    payload: dict = {"status": "ok"}
    if is_service:
        payload["environment"] = settings.environment
        payload["providers"] = sorted(manager.providers)
    return payload


@router.get(
    "/login/{provider}",
    dependencies=[Depends(rate_limit("login"))],
    response_class=RedirectResponse,
)
async def login(
    provider: str,
    manager: ManagerDependency,
    state: Optional[str] = None,
    redirect: Optional[str] = None,
) -> RedirectResponse:
    """Start an OAuth2 login by redirecting to the provider."""
    location = manager.handle_login(provider, client_state=state, redirect_target=redirect)
    return RedirectResponse(url=location, status_code=HTTPStatus.FOUND)


@router.get(
    "/auth/{provider}",
    dependencies=[Depends(rate_limit("login"))],
    response_class=RedirectResponse,
)
async def provider_callback(
    provider: str,
    request: Request,
    manager: ManagerDependency,
) -> RedirectResponse:
    """Complete the provider callback and hand the client a one-time token."""
    location = await manager.handle_response(provider, dict(request.query_params))
    return RedirectResponse(url=location, status_code=HTTPStatus.FOUND)


@router.post(
    "/auth",
    dependencies=[Depends(rate_limit("auth"))],
    response_class=PlainTextResponse,
)
async def redeem_handoff_token(
    manager: ManagerDependency,
    token: Annotated[Optional[str], Form()] = None,
    device: Annotated[Optional[str], Form()] = None,
) -> PlainTextResponse:
    """Exchange the hand-off token for a device refresh token."""
    refresh_token = await manager.handle_initial_token(token or "", device)
    return PlainTextResponse(refresh_token)


@router.post("/token", dependencies=[Depends(rate_limit("token"))])
async def refresh_access_token(
    manager: ManagerDependency,
    token: Annotated[Optional[str], Form()] = None,
    device: Annotated[Optional[str], Form()] = None,
) -> JSONResponse:
    """Rotate a refresh token and issue a new access token."""
    result = await manager.handle_refresh_token(token or "", device)
    return JSONResponse(content=result.model_dump())


@router.post("/token/external", response_class=PlainTextResponse)
async def issue_external_token(
    manager: ManagerDependency,
    user: Annotated[AuthenticatedUser, Depends(user_auth(group="token"))],
    host: Annotated[Optional[str], Form()] = None,
) -> PlainTextResponse:
    """Issue a one-minute token only the given host should accept."""
    return PlainTextResponse(manager.handle_external_token(user, host))


@router.post("/revoke", dependencies=[Depends(rate_limit("auth"))])
async def revoke(
    manager: ManagerDependency,
    token: Annotated[Optional[str], Form()] = None,
) -> Response:
    """Revoke a single device refresh token."""
    await manager.revoke(token or "")
    return Response(status_code=HTTPStatus.OK)


@router.post("/logout")
async def logout(
    manager: ManagerDependency,
    user: Annotated[AuthenticatedUser, Depends(user_auth())],
) -> Response:
    """Revoke every device refresh token of the caller."""
    await manager.logout(user)
    return Response(status_code=HTTPStatus.OK)


@router.get("/users/{user_id}", dependencies=[Depends(rate_limit("default"))])
async def get_user(
    user_id: str,
    directory: Annotated[Any, Depends(get_user_directory)],
) -> JSONResponse:
    """Public profile of an account."""
    user = await directory.lookup(user_id)
    if user is None:
        raise NotFoundError()
    return JSONResponse(content=user.model_dump())


__all__ = ["router"]
