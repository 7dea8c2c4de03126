"""Registration, login, and email verification endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.core.state import get_app_state
from human_farm_service.routers.validation import parse_json_body

if TYPE_CHECKING:
    from human_farm_service.services.accounts import AccountManager

router = APIRouter()


def _account_manager() -> AccountManager:
    state = get_app_state()
    if state.account_manager is None:
        msg = "AccountManager not initialized"
        raise RuntimeError(msg)
    return state.account_manager


@router.post("/auth/register", status_code=201)
async def register(request: Request) -> JSONResponse:
    """Register a human operator or an agent with email and password."""
    data = parse_json_body(await request.body())
    result = _account_manager().register(data)
    return JSONResponse(status_code=201, content=result)


@router.post("/auth/login")
async def login(request: Request) -> dict[str, Any]:
    """Exchange credentials for a session token."""
    data = parse_json_body(await request.body())
    return _account_manager().login(data)


@router.post("/auth/verify-email")
async def verify_email(request: Request) -> dict[str, Any]:
    """Confirm an email address with the token issued at registration."""
    data = parse_json_body(await request.body())
    token = data.get("token")
    if not isinstance(token, str) or not token:
        raise ServiceError("INVALID_PAYLOAD", "Missing required field: token", 400, {})
    return _account_manager().verify_email(token)


@router.post("/agents/register", status_code=201)
async def register_agent(request: Request) -> JSONResponse:
    """Register an API-only agent and return its API key."""
    data = parse_json_body(await request.body())
    result = _account_manager().register_agent(data)
    return JSONResponse(status_code=201, content=result)
