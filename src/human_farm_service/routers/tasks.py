"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.core.state import get_app_state
from human_farm_service.routers.validation import (
    parse_int_param,
    parse_json_body,
    require_principal,
)
from human_farm_service.services import lifecycle

if TYPE_CHECKING:
    from human_farm_service.services.authenticator import Principal
    from human_farm_service.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a new open task owned by the calling agent."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    result = _task_manager().create_task(principal, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters, newest first."""
    offset = parse_int_param(request, "offset", minimum=0)
    limit = parse_int_param(request, "limit", minimum=1)

    state = get_app_state()
    if state.listing_service is None:
        msg = "ListingService not initialized"
        raise RuntimeError(msg)

    return state.listing_service.list_tasks(
        status=request.query_params.get("status") or None,
        category=request.query_params.get("category") or None,
        agent_id=request.query_params.get("agent_id") or None,
        human_id=request.query_params.get("human_id") or None,
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/apply", status_code=201)
async def apply_to_task(task_id: str, request: Request) -> JSONResponse:
    """Apply to an open task as a verified operator."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    result = _task_manager().apply(principal, task_id, data)
    return JSONResponse(status_code=201, content=result)


@router.post("/tasks/{task_id}/start")
async def start_task(task_id: str, request: Request) -> dict[str, Any]:
    """Mark an assigned task as in progress."""
    principal = require_principal(request)
    return _task_manager().start(principal, task_id)


@router.post("/tasks/{task_id}/complete")
async def submit_completion(task_id: str, request: Request) -> dict[str, Any]:
    """Submit proof of completion for review."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    return _task_manager().submit_completion(principal, task_id, data)


# ---------------------------------------------------------------------------
# Agent actions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/assign")
async def assign_task(task_id: str, request: Request) -> dict[str, Any]:
    """Assign one of the applicants to the task."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    return _task_manager().assign(principal, task_id, data)


@router.post("/tasks/{task_id}/approve")
async def approve_task(task_id: str, request: Request) -> dict[str, Any]:
    """Approve the submitted work, with an optional rating and review."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    return _task_manager().approve(principal, task_id, data)


@router.post("/tasks/{task_id}/reject")
async def reject_task(task_id: str, request: Request) -> dict[str, Any]:
    """Reject the submitted work and return the task to the operator."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    return _task_manager().reject(principal, task_id, data)


@router.post("/tasks/{task_id}/dispute")
async def dispute_task(task_id: str, request: Request) -> dict[str, Any]:
    """Dispute the submitted work."""
    principal = require_principal(request)
    return _task_manager().dispute(principal, task_id)


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, request: Request) -> dict[str, Any]:
    """Cancel a task that is open or assigned."""
    principal = require_principal(request)
    return _task_manager().cancel(principal, task_id)


# ---------------------------------------------------------------------------
# PATCH /tasks/{task_id}: action dispatch
# ---------------------------------------------------------------------------


def _dispatch(
    manager: TaskManager,
    principal: Principal,
    task_id: str,
    action: str,
    data: dict[str, Any],
) -> dict[str, Any]:
    if action == lifecycle.ASSIGN:
        return manager.assign(principal, task_id, data)
    if action == lifecycle.START:
        return manager.start(principal, task_id)
    if action in ("complete", lifecycle.SUBMIT_COMPLETION):
        return manager.submit_completion(principal, task_id, data)
    if action == lifecycle.APPROVE:
        return manager.approve(principal, task_id, data)
    if action == lifecycle.REJECT:
        return manager.reject(principal, task_id, data)
    if action == lifecycle.DISPUTE:
        return manager.dispute(principal, task_id)
    return manager.cancel(principal, task_id)


@router.patch("/tasks/{task_id}")
async def update_task(task_id: str, request: Request) -> dict[str, Any]:
    """Apply a lifecycle action named in the body's ``action`` field."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    action = data.get("action")
    known = {
        lifecycle.ASSIGN,
        lifecycle.START,
        lifecycle.SUBMIT_COMPLETION,
        "complete",
        lifecycle.APPROVE,
        lifecycle.REJECT,
        lifecycle.DISPUTE,
        lifecycle.CANCEL,
    }
    if not isinstance(action, str) or action not in known:
        raise ServiceError(
            "INVALID_ACTION",
            f"Invalid action: {action}",
            400,
            {"allowed": sorted(known)},
        )
    return _dispatch(_task_manager(), principal, task_id, action, data)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}: MUST be LAST (parameterized catch-all)
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Get full task details."""
    return _task_manager().get_task(task_id)
