"""Pydantic models that document the service's fixed-shape responses."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Liveness plus marketplace counters, served by GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    service: str
    chain_id: int
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    payments_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]
