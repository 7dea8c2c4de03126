"""Liveness endpoint with task and escrow counters."""

from __future__ import annotations

from fastapi import APIRouter

from human_farm_service.config import get_settings
from human_farm_service.core.state import get_app_state
from human_farm_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report uptime and how many tasks sit in each lifecycle and payment status."""
    settings = get_settings()
    state = get_app_state()
    counts: dict[str, object] = {
        "total_tasks": 0,
        "tasks_by_status": {},
        "payments_by_status": {},
    }
    if state.task_manager is not None:
        counts.update(state.task_manager.get_stats())
    return HealthResponse.model_validate(
        {
            "status": "ok",
            "service": settings.service.name,
            "chain_id": settings.escrow.chain_id,
            "uptime_seconds": state.uptime_seconds,
            "started_at": state.started_at,
            **counts,
        }
    )
