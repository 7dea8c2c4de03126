"""Task conversations between an agent and its assigned operator."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.logging import get_logger

if TYPE_CHECKING:
    from human_farm_service.services.authenticator import Principal
    from human_farm_service.services.task_store import TaskStore

MAX_CONTENT_LENGTH = 5000
MAX_ATTACHMENTS = 10

_FALLBACK_SENDER_NAMES = {"agent": "Agent", "human": "Human"}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _sender_fields(message: dict[str, Any]) -> dict[str, Any]:
    sender_type = message.pop("sender_type") or "unknown"
    agent_name = message.pop("agent_name")
    human_name = message.pop("human_name")
    name = agent_name if sender_type == "agent" else human_name
    message["sender_type"] = sender_type
    message["sender_name"] = name or _FALLBACK_SENDER_NAMES.get(sender_type, "Unknown")
    return message


class MessageService:
    """
    Posts and lists messages on a task.

    Only the two parties of a task can take part: the agent that owns it
    and the operator assigned to it. Applicants who were not assigned have
    no access.
    """

    def __init__(self, store: TaskStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def _load_participating_task(self, principal: Principal, task_id: object) -> dict[str, Any]:
        if not isinstance(task_id, str) or not task_id:
            raise ServiceError("INVALID_PAYLOAD", "task_id is required", 400, {})
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        if principal.user_id not in (task["agent_id"], task["human_id"]):
            raise ServiceError(
                "FORBIDDEN",
                "Only the task's agent and assigned operator can use its messages",
                403,
                {},
            )
        return task

    def list_messages(self, principal: Principal, task_id: str | None) -> dict[str, Any]:
        """Return the task's messages oldest first, with sender names and types."""
        task = self._load_participating_task(principal, task_id)
        messages = [_sender_fields(message) for message in self._store.list_messages(task["id"])]
        return {"task_id": task["id"], "messages": messages}

    def send_message(self, principal: Principal, data: dict[str, Any]) -> dict[str, Any]:
        """
        Post a message on a task.

        Error precedence:
        1. INVALID_PAYLOAD: task_id missing
        2. TASK_NOT_FOUND: task does not exist
        3. FORBIDDEN: caller is neither the agent nor the assigned operator
        4. INVALID_PAYLOAD: content or attachments malformed
        """
        task = self._load_participating_task(principal, data.get("task_id"))

        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ServiceError("INVALID_PAYLOAD", "content is required", 400, {})
        if len(content) > MAX_CONTENT_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"content must be at most {MAX_CONTENT_LENGTH} characters",
                400,
                {},
            )

        attachments = data.get("attachments")
        if attachments is None:
            attachments = []
        if (
            not isinstance(attachments, list)
            or len(attachments) > MAX_ATTACHMENTS
            or not all(isinstance(item, str) and item for item in attachments)
        ):
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"attachments must be a list of at most {MAX_ATTACHMENTS} URLs",
                400,
                {},
            )

        message = {
            "id": str(uuid.uuid4()),
            "task_id": task["id"],
            "sender_id": principal.user_id,
            "content": content,
            "attachments": attachments,
            "created_at": _now_iso(),
        }
        self._store.insert_message(message)
        self._logger.info(
            "Message posted",
            extra={"task_id": task["id"], "sender_id": principal.user_id},
        )
        return message
