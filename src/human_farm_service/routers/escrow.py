"""Escrow configuration, payment status, and event recording."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from human_farm_service.core.state import get_app_state
from human_farm_service.routers.validation import (
    is_admin_request,
    parse_json_body,
    require_principal,
)

if TYPE_CHECKING:
    from human_farm_service.services.escrow_tracker import EscrowTracker

router = APIRouter()


def _escrow_tracker() -> EscrowTracker:
    state = get_app_state()
    if state.escrow_tracker is None:
        msg = "EscrowTracker not initialized"
        raise RuntimeError(msg)
    return state.escrow_tracker


@router.get("/escrow")
async def get_escrow(request: Request) -> dict[str, Any]:
    """Contract configuration, or a task's payment status when task_id is given."""
    task_id = request.query_params.get("task_id")
    if not task_id:
        return _escrow_tracker().get_config()
    return _escrow_tracker().get_payment_status(task_id)


@router.post("/escrow")
async def record_escrow_event(request: Request) -> dict[str, Any]:
    """Record a confirmed deposit, release or refund transaction."""
    # The admin secret identifies the trusted chain watcher.
    is_admin = is_admin_request(request)
    principal = None if is_admin else require_principal(request)
    data = parse_json_body(await request.body())
    return _escrow_tracker().record_event(data, principal, is_admin=is_admin)
