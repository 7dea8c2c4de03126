"""Task lifecycle management: creation, applications, assignment, completion, review."""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from human_farm_service.catalog import TASK_CATEGORIES
from human_farm_service.core.exceptions import ServiceError
from human_farm_service.logging import get_logger
from human_farm_service.services import lifecycle
from human_farm_service.services.task_store import DuplicateApplicationError

if TYPE_CHECKING:
    from human_farm_service.services.authenticator import Principal
    from human_farm_service.services.task_store import TaskStore

PLATFORM_FEE_RATE = 0.05

_MAX_TITLE_LENGTH = 200
_MAX_DESCRIPTION_LENGTH = 10000
_MAX_MESSAGE_LENGTH = 2000


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_finite_number(value: object) -> bool:
    """Check if value is an int or a finite float (not bool, NaN or infinity)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _is_positive_number(value: object) -> bool:
    """Check if value is a finite positive int or float (not bool)."""
    return _is_finite_number(value) and value > 0  # type: ignore[operator]


def _is_optional_number(value: object) -> bool:
    return value is None or _is_finite_number(value)


def _parse_deadline(value: object) -> str:
    """Validate an ISO 8601 timestamp and normalise it to UTC with a Z suffix."""
    if not isinstance(value, str) or not value:
        raise ServiceError("INVALID_PAYLOAD", "deadline must be an ISO 8601 timestamp", 400, {})
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ServiceError(
            "INVALID_PAYLOAD", "deadline must be an ISO 8601 timestamp", 400, {}
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


class TaskManager:
    """
    Drives a task through its lifecycle on behalf of agents and operators.

    Every status change is resolved against the composite transition table
    and written with a conditional update on the (status, payment_status)
    pair the decision was based on. If that pair changed in the meantime the
    update affects no rows and the caller gets a 409.
    """

    def __init__(self, store: TaskStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return task

    @staticmethod
    def _require_owner(principal: Principal, task: dict[str, Any]) -> None:
        if not principal.is_agent or task["agent_id"] != principal.user_id:
            raise ServiceError("FORBIDDEN", "Only the task's agent can do this", 403, {})

    @staticmethod
    def _require_assignee(principal: Principal, task: dict[str, Any]) -> None:
        if not principal.is_human or task["human_id"] != principal.user_id:
            raise ServiceError("FORBIDDEN", "You are not assigned to this task", 403, {})

    @staticmethod
    def _transition(event: str, task: dict[str, Any]) -> dict[str, Any]:
        """Resolve event against the table and build the status columns to write."""
        try:
            new_status, new_payment = lifecycle.resolve_transition(
                event, task["status"], task["payment_status"]
            )
        except lifecycle.TransitionNotAllowedError as exc:
            raise ServiceError(
                "INVALID_STATUS",
                str(exc),
                400,
                {"status": exc.status, "payment_status": exc.payment_status},
            ) from exc

        updates: dict[str, Any] = {"status": new_status, "updated_at": _now_iso()}
        if new_payment != task["payment_status"]:
            updates["payment_status"] = new_payment
        return updates

    def _check_applied(self, changed: int, event: str, task: dict[str, Any]) -> None:
        if changed == 0:
            self._logger.warning(
                "Concurrent task update lost",
                extra={"task_id": task["id"], "event": event},
            )
            raise ServiceError(
                "INVALID_STATUS",
                "Task was modified concurrently",
                409,
                {},
            )

    def _updated(self, task_id: str, event: str) -> dict[str, Any]:
        task = self._load_task(task_id)
        self._logger.info(
            "Task transition applied",
            extra={
                "task_id": task_id,
                "event": event,
                "status": task["status"],
                "payment_status": task["payment_status"],
            },
        )
        return task

    # ------------------------------------------------------------------
    # Public methods: called by routers
    # ------------------------------------------------------------------

    def create_task(self, principal: Principal, data: dict[str, Any]) -> dict[str, Any]:
        """
        Create an open task owned by the calling agent.

        Error precedence:
        1. FORBIDDEN: caller is not an agent
        2. INVALID_PAYLOAD: missing or malformed field
        3. INVALID_CATEGORY: category not in the catalogue
        """
        if not principal.is_agent:
            raise ServiceError("FORBIDDEN", "Only agents can create tasks", 403, {})

        for field_name in ("title", "description", "category", "budget_usd", "deadline"):
            if data.get(field_name) in (None, ""):
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"Missing required field: {field_name}",
                    400,
                    {},
                )

        title = data["title"]
        if not isinstance(title, str) or len(title) > _MAX_TITLE_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"title must be a string of at most {_MAX_TITLE_LENGTH} characters",
                400,
                {},
            )

        description = data["description"]
        if not isinstance(description, str) or len(description) > _MAX_DESCRIPTION_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"description must be a string of at most {_MAX_DESCRIPTION_LENGTH} characters",
                400,
                {},
            )

        category = data["category"]
        if category not in TASK_CATEGORIES:
            raise ServiceError(
                "INVALID_CATEGORY",
                f"Unknown category: {category}",
                400,
                {"allowed": list(TASK_CATEGORIES)},
            )

        budget = data["budget_usd"]
        if not _is_positive_number(budget):
            raise ServiceError("INVALID_PAYLOAD", "budget_usd must be a positive number", 400, {})

        deadline = _parse_deadline(data["deadline"])

        location_required = data.get("location_required", False)
        if not isinstance(location_required, bool):
            raise ServiceError("INVALID_PAYLOAD", "location_required must be a boolean", 400, {})

        location_lat = data.get("location_lat")
        location_lng = data.get("location_lng")
        if not _is_optional_number(location_lat) or not _is_optional_number(location_lng):
            raise ServiceError(
                "INVALID_PAYLOAD", "location_lat/location_lng must be numbers", 400, {}
            )

        location_address = data.get("location_address")
        if location_address is not None and not isinstance(location_address, str):
            raise ServiceError("INVALID_PAYLOAD", "location_address must be a string", 400, {})

        proof_requirements = data.get("proof_requirements", [])
        if proof_requirements is None:
            proof_requirements = []
        if not isinstance(proof_requirements, list) or not all(
            isinstance(item, str) for item in proof_requirements
        ):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "proof_requirements must be a list of strings",
                400,
                {},
            )

        now = _now_iso()
        budget_usd = float(budget)
        task: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "agent_id": principal.user_id,
            "human_id": None,
            "title": title,
            "description": description,
            "category": category,
            "status": "open",
            "budget_usd": budget_usd,
            "platform_fee_usd": budget_usd * PLATFORM_FEE_RATE,
            "deadline": deadline,
            "location_required": location_required,
            "location_lat": location_lat,
            "location_lng": location_lng,
            "location_address": location_address,
            "proof_requirements": proof_requirements,
            "payment_status": "pending_deposit",
            "escrow_contract_address": None,
            "escrow_task_id": None,
            "payment_token": None,
            "payment_amount_wei": None,
            "payment_chain_id": None,
            "deposit_tx_hash": None,
            "release_tx_hash": None,
            "created_at": now,
            "updated_at": now,
            "assigned_at": None,
            "completed_at": None,
        }
        self._store.insert_task(task)
        self._logger.info(
            "Task created",
            extra={"task_id": task["id"], "agent_id": principal.user_id, "budget_usd": budget_usd},
        )
        return task

    def get_task(self, task_id: str) -> dict[str, Any]:
        """Task detail with names, applications and the latest completion."""
        task = self._store.get_task_with_names(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        task["applications"] = self._store.list_applications(task_id)
        task["completion"] = self._store.get_latest_completion(task_id)
        return task

    def apply(self, principal: Principal, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Record an operator's application to an open task.

        Error precedence:
        1. FORBIDDEN: caller is not an operator, or their email is unverified
        2. TASK_NOT_FOUND: task does not exist
        3. INVALID_STATUS: task is not open
        4. INVALID_PAYLOAD: message or proposed_rate malformed
        5. APPLICATION_EXISTS: operator already applied
        """
        if not principal.is_human:
            raise ServiceError("FORBIDDEN", "Only operators can apply to tasks", 403, {})
        if not principal.email_verified:
            raise ServiceError(
                "FORBIDDEN",
                "Please verify your email before applying to tasks",
                403,
                {},
            )

        task = self._load_task(task_id)
        if task["status"] != "open":
            raise ServiceError(
                "INVALID_STATUS",
                "Task is no longer accepting applications",
                400,
                {"status": task["status"]},
            )

        message = data.get("message")
        if message is not None and (
            not isinstance(message, str) or len(message) > _MAX_MESSAGE_LENGTH
        ):
            raise ServiceError("INVALID_PAYLOAD", "message must be a short string", 400, {})

        proposed_rate = data.get("proposed_rate")
        if proposed_rate is not None and not _is_positive_number(proposed_rate):
            raise ServiceError(
                "INVALID_PAYLOAD", "proposed_rate must be a positive number", 400, {}
            )

        application = {
            "id": str(uuid.uuid4()),
            "task_id": task_id,
            "human_id": principal.user_id,
            "message": message,
            "proposed_rate": proposed_rate,
            "status": "pending",
            "created_at": _now_iso(),
        }
        try:
            self._store.insert_application(application)
        except DuplicateApplicationError as exc:
            raise ServiceError(
                "APPLICATION_EXISTS",
                "Already applied to this task",
                409,
                {},
            ) from exc

        self._logger.info(
            "Application submitted",
            extra={"task_id": task_id, "human_id": principal.user_id},
        )
        return application

    def assign(self, principal: Principal, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Assign an applicant to the agent's open task."""
        task = self._load_task(task_id)
        self._require_owner(principal, task)

        human_id = data.get("human_id")
        if not isinstance(human_id, str) or not human_id:
            raise ServiceError("INVALID_PAYLOAD", "Missing required field: human_id", 400, {})

        updates = self._transition(lifecycle.ASSIGN, task)
        if self._store.get_application(task_id, human_id) is None:
            raise ServiceError(
                "APPLICATION_NOT_FOUND",
                "This operator has not applied to the task",
                404,
                {},
            )

        updates["human_id"] = human_id
        updates["assigned_at"] = updates["updated_at"]
        changed = self._store.assign_task(
            task_id,
            human_id,
            updates,
            expected_status=task["status"],
            expected_payment_status=task["payment_status"],
        )
        self._check_applied(changed, lifecycle.ASSIGN, task)
        return self._updated(task_id, lifecycle.ASSIGN)

    def start(self, principal: Principal, task_id: str) -> dict[str, Any]:
        """The assigned operator starts work."""
        task = self._load_task(task_id)
        self._require_assignee(principal, task)
        updates = self._transition(lifecycle.START, task)
        changed = self._store.update_task(
            task_id,
            updates,
            expected_status=task["status"],
            expected_payment_status=task["payment_status"],
        )
        self._check_applied(changed, lifecycle.START, task)
        return self._updated(task_id, lifecycle.START)

    def submit_completion(
        self, principal: Principal, task_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Submit proof of work and move the task to review.

        Error precedence:
        1. TASK_NOT_FOUND: task does not exist
        2. FORBIDDEN: caller is not the assigned operator (whatever the status)
        3. INVALID_STATUS: task is not assigned or in progress
        4. INVALID_PAYLOAD: proof_data missing
        """
        task = self._load_task(task_id)
        self._require_assignee(principal, task)
        updates = self._transition(lifecycle.SUBMIT_COMPLETION, task)

        proof_data = data.get("proof_data")
        if proof_data is None or proof_data == "":
            raise ServiceError("INVALID_PAYLOAD", "Proof data is required", 400, {})

        completion = {
            "id": str(uuid.uuid4()),
            "task_id": task_id,
            "human_id": principal.user_id,
            "proof_data": proof_data,
            "status": "pending",
            "submitted_at": updates["updated_at"],
            "review_note": None,
        }
        changed = self._store.submit_completion(
            completion,
            updates,
            expected_status=task["status"],
            expected_payment_status=task["payment_status"],
        )
        self._check_applied(changed, lifecycle.SUBMIT_COMPLETION, task)
        return {
            "completion": completion,
            "task": self._updated(task_id, lifecycle.SUBMIT_COMPLETION),
        }

    def approve(self, principal: Principal, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Approve the submitted work, optionally rating the operator."""
        task = self._load_task(task_id)
        self._require_owner(principal, task)
        updates = self._transition(lifecycle.APPROVE, task)

        rating = data.get("rating")
        review_text = data.get("review")
        if rating is not None and (
            not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5
        ):
            raise ServiceError("INVALID_PAYLOAD", "rating must be an integer 1-5", 400, {})
        if review_text is not None and not isinstance(review_text, str):
            raise ServiceError("INVALID_PAYLOAD", "review must be a string", 400, {})

        updates["completed_at"] = updates["updated_at"]
        review: dict[str, Any] | None = None
        if rating is not None:
            review = {
                "id": str(uuid.uuid4()),
                "task_id": task_id,
                "reviewer_id": principal.user_id,
                "reviewee_id": task["human_id"],
                "rating": rating,
                "content": review_text,
                "created_at": updates["updated_at"],
            }

        changed = self._store.approve_task(
            task_id,
            task["human_id"],
            updates,
            review,
            expected_status=task["status"],
            expected_payment_status=task["payment_status"],
        )
        self._check_applied(changed, lifecycle.APPROVE, task)
        return self._updated(task_id, lifecycle.APPROVE)

    def reject(self, principal: Principal, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Reject the submitted work and hand the task back to the operator."""
        task = self._load_task(task_id)
        self._require_owner(principal, task)
        updates = self._transition(lifecycle.REJECT, task)

        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ServiceError("INVALID_PAYLOAD", "reason must be a string", 400, {})

        changed = self._store.reject_completion(
            task_id,
            updates,
            reason,
            expected_status=task["status"],
            expected_payment_status=task["payment_status"],
        )
        self._check_applied(changed, lifecycle.REJECT, task)
        return self._updated(task_id, lifecycle.REJECT)

    def dispute(self, principal: Principal, task_id: str) -> dict[str, Any]:
        """Open a dispute on submitted work."""
        return self._simple_agent_transition(principal, task_id, lifecycle.DISPUTE)

    def cancel(self, principal: Principal, task_id: str) -> dict[str, Any]:
        """Cancel a task that has not started."""
        return self._simple_agent_transition(principal, task_id, lifecycle.CANCEL)

    def _simple_agent_transition(
        self, principal: Principal, task_id: str, event: str
    ) -> dict[str, Any]:
        task = self._load_task(task_id)
        self._require_owner(principal, task)
        updates = self._transition(event, task)
        changed = self._store.update_task(
            task_id,
            updates,
            expected_status=task["status"],
            expected_payment_status=task["payment_status"],
        )
        self._check_applied(changed, event, task)
        return self._updated(task_id, event)

    def get_stats(self) -> dict[str, Any]:
        """Return task and escrow counts for the health endpoint."""
        tasks_by_status = dict.fromkeys(lifecycle.TASK_STATUSES, 0)
        tasks_by_status.update(self._store.count_tasks_by_status())
        payments_by_status = dict.fromkeys(lifecycle.PAYMENT_STATUSES, 0)
        payments_by_status.update(self._store.count_tasks_by_payment_status())
        return {
            "total_tasks": sum(tasks_by_status.values()),
            "tasks_by_status": tasks_by_status,
            "payments_by_status": payments_by_status,
        }
