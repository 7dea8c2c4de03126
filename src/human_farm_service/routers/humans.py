"""Operator directory endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from human_farm_service.core.state import get_app_state
from human_farm_service.routers.validation import parse_float_param, parse_int_param

if TYPE_CHECKING:
    from human_farm_service.services.listing import ListingService

router = APIRouter()


def _listing_service() -> ListingService:
    state = get_app_state()
    if state.listing_service is None:
        msg = "ListingService not initialized"
        raise RuntimeError(msg)
    return state.listing_service


@router.get("/humans")
async def list_humans(request: Request) -> dict[str, Any]:
    """List verified operators, filterable by skills, location, rate and rating."""
    skills_raw = request.query_params.get("skills")
    skills = [skill for skill in skills_raw.split(",") if skill] if skills_raw else None
    return _listing_service().list_humans(
        skills=skills,
        location=request.query_params.get("location") or None,
        max_rate=parse_float_param(request, "max_rate"),
        min_rating=parse_float_param(request, "min_rating"),
        limit=parse_int_param(request, "limit", minimum=1),
        offset=parse_int_param(request, "offset", minimum=0),
    )


@router.get("/humans/{user_id}")
async def get_human(user_id: str) -> dict[str, Any]:
    """Public operator profile. Never includes the email address."""
    return _listing_service().get_human(user_id)
