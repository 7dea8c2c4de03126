"""Wallet endpoints for the authenticated user."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from human_farm_service.core.state import get_app_state
from human_farm_service.routers.validation import parse_json_body, require_principal

if TYPE_CHECKING:
    from human_farm_service.services.accounts import AccountManager

router = APIRouter()


def _account_manager() -> AccountManager:
    state = get_app_state()
    if state.account_manager is None:
        msg = "AccountManager not initialized"
        raise RuntimeError(msg)
    return state.account_manager


@router.get("/users/wallet")
async def get_wallet(request: Request) -> dict[str, Any]:
    """Return the caller's wallet address."""
    principal = require_principal(request)
    return _account_manager().get_wallet(principal)


@router.post("/users/wallet")
async def set_wallet(request: Request) -> dict[str, Any]:
    """Set the caller's wallet address."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    return _account_manager().set_wallet(principal, data)
