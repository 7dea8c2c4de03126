"""Per-task message thread endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from human_farm_service.core.state import get_app_state
from human_farm_service.routers.validation import parse_json_body, require_principal

if TYPE_CHECKING:
    from human_farm_service.services.messages import MessageService

router = APIRouter()


def _message_service() -> MessageService:
    state = get_app_state()
    if state.message_service is None:
        msg = "MessageService not initialized"
        raise RuntimeError(msg)
    return state.message_service


@router.get("/messages")
async def list_messages(request: Request) -> dict[str, Any]:
    """Messages on the task named by the task_id query parameter."""
    principal = require_principal(request)
    task_id = request.query_params.get("task_id") or None
    return _message_service().list_messages(principal, task_id)


@router.post("/messages", status_code=201)
async def send_message(request: Request) -> JSONResponse:
    """Post a message on a task as its agent or assigned operator."""
    principal = require_principal(request)
    data = parse_json_body(await request.body())
    result = _message_service().send_message(principal, data)
    return JSONResponse(status_code=201, content=result)
