"""Off-chain mirror of the escrow contract's per-task payment state."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.logging import get_logger
from human_farm_service.services import lifecycle

if TYPE_CHECKING:
    from human_farm_service.config import EscrowConfig
    from human_farm_service.services.authenticator import Principal
    from human_farm_service.services.task_store import TaskStore


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class EscrowTracker:
    """
    Records deposit, release and refund transactions against tasks.

    The tracker does not verify anything on-chain. It trusts its caller
    (the owning agent or the admin watcher) but refuses events that the
    transition table does not admit for the task's current state, so a
    release can never be recorded before a deposit.
    """

    def __init__(self, store: TaskStore, escrow_config: EscrowConfig) -> None:
        self._store = store
        self._config = escrow_config
        self._token_symbols = frozenset(token.symbol for token in escrow_config.tokens)
        self._logger = get_logger(__name__)

    def get_config(self) -> dict[str, Any]:
        """Contract address, chain and accepted tokens, as clients need them to pay."""
        return {
            "contract": self._config.contract_address,
            "chain_id": self._config.chain_id,
            "chain_name": self._config.chain_name,
            "rpc_url": self._config.rpc_url,
            "explorer_url": self._config.explorer_url,
            "tokens": {
                token.symbol: {"address": token.address, "decimals": token.decimals}
                for token in self._config.tokens
            },
        }

    def get_payment_status(self, task_id: str) -> dict[str, Any]:
        """Escrow fields of a task plus its derived on-chain identifier."""
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return {
            "task_id": task["id"],
            "status": task["status"],
            "escrow_contract_address": task["escrow_contract_address"],
            "escrow_task_id": task["escrow_task_id"],
            "payment_token": task["payment_token"],
            "payment_amount_wei": task["payment_amount_wei"],
            "payment_chain_id": task["payment_chain_id"],
            "payment_status": task["payment_status"] or "pending_deposit",
            "deposit_tx_hash": task["deposit_tx_hash"],
            "release_tx_hash": task["release_tx_hash"],
            "bytes32_task_id": lifecycle.task_id_to_bytes32(task["id"]),
        }

    def record_event(
        self,
        data: dict[str, Any],
        principal: Principal | None,
        *,
        is_admin: bool,
    ) -> dict[str, Any]:
        """
        Apply a deposit, release or refund event to a task.

        Error precedence:
        1. INVALID_PAYLOAD: task_id, action or tx_hash missing
        2. INVALID_ACTION: action is not deposit/release/refund
        3. TASK_NOT_FOUND: task does not exist
        4. FORBIDDEN: caller is neither the owning agent nor the admin
        5. INVALID_STATUS (409): event not allowed in the task's current state
        6. INVALID_TOKEN: deposit token not accepted by the contract
        """
        for field_name in ("task_id", "action", "tx_hash"):
            value = data.get(field_name)
            if not isinstance(value, str) or not value:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"Missing required field: {field_name}",
                    400,
                    {},
                )

        task_id: str = data["task_id"]
        action: str = data["action"]
        tx_hash: str = data["tx_hash"]

        if action not in lifecycle.ESCROW_EVENTS:
            raise ServiceError(
                "INVALID_ACTION",
                f"Invalid action: {action}",
                400,
                {"allowed": list(lifecycle.ESCROW_EVENTS)},
            )

        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

        if not is_admin and (
            principal is None or not principal.is_agent or principal.user_id != task["agent_id"]
        ):
            raise ServiceError(
                "FORBIDDEN",
                "Only the task's agent can record escrow events",
                403,
                {},
            )

        try:
            new_status, new_payment = lifecycle.resolve_transition(
                action, task["status"], task["payment_status"]
            )
        except lifecycle.TransitionNotAllowedError as exc:
            raise ServiceError(
                "INVALID_STATUS",
                str(exc),
                409,
                {"status": exc.status, "payment_status": exc.payment_status},
            ) from exc

        now = _now_iso()
        updates: dict[str, Any] = {
            "status": new_status,
            "payment_status": new_payment,
            "updated_at": now,
        }
        if action == lifecycle.DEPOSIT:
            payment_token = data.get("payment_token") or self._config.default_token
            if payment_token not in self._token_symbols:
                raise ServiceError(
                    "INVALID_TOKEN",
                    f"Unsupported payment token: {payment_token}",
                    400,
                    {"allowed": sorted(self._token_symbols)},
                )
            amount = data.get("payment_amount_wei")
            if amount is not None and not (
                (isinstance(amount, int) and not isinstance(amount, bool) and amount >= 0)
                or (isinstance(amount, str) and amount.isdigit())
            ):
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    "payment_amount_wei must be a non-negative integer",
                    400,
                    {},
                )
            updates.update(
                {
                    "escrow_contract_address": self._config.contract_address,
                    "escrow_task_id": lifecycle.task_id_to_bytes32(task_id),
                    "payment_token": payment_token,
                    "payment_amount_wei": str(amount) if amount is not None else None,
                    "payment_chain_id": self._config.chain_id,
                    "deposit_tx_hash": tx_hash,
                }
            )
        elif action == lifecycle.RELEASE:
            updates["release_tx_hash"] = tx_hash
            updates["completed_at"] = task["completed_at"] or now
        else:
            # Refunds reuse the release hash column.
            updates["release_tx_hash"] = tx_hash

        changed = self._store.update_task(
            task_id,
            updates,
            expected_status=task["status"],
            expected_payment_status=task["payment_status"],
        )
        if changed == 0:
            raise ServiceError("INVALID_STATUS", "Task was modified concurrently", 409, {})

        self._logger.info(
            "Escrow event recorded",
            extra={
                "task_id": task_id,
                "action": action,
                "tx_hash": tx_hash,
                "status": new_status,
                "payment_status": new_payment,
                "admin": is_admin,
            },
        )
        return {
            "task_id": task_id,
            "action": action,
            "tx_hash": tx_hash,
            "status": new_status,
            "payment_status": new_payment,
        }
