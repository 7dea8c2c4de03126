"""Public, per-user and admin statistics endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.core.state import get_app_state
from human_farm_service.routers.validation import is_admin_request, require_principal

if TYPE_CHECKING:
    from human_farm_service.services.stats import StatsService

router = APIRouter()


def _stats_service() -> StatsService:
    state = get_app_state()
    if state.stats_service is None:
        msg = "StatsService not initialized"
        raise RuntimeError(msg)
    return state.stats_service


@router.get("/stats/public")
async def public_stats() -> dict[str, Any]:
    """Counters shown on the public earn page."""
    return _stats_service().public_stats()


@router.get("/admin/stats")
async def admin_stats(request: Request) -> dict[str, Any]:
    """Dashboard figures, gated by the admin secret."""
    if not is_admin_request(request):
        raise ServiceError("UNAUTHORIZED", "Unauthorized", 401, {})
    return _stats_service().admin_stats()


@router.get("/earn/stats")
async def earn_stats(request: Request) -> dict[str, Any]:
    """The caller's points, referral code and referrals."""
    principal = require_principal(request)
    return _stats_service().user_stats(principal)
