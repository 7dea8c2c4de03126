"""
Composite task state machine.

A task carries two status dimensions: the work lifecycle (``status``) and the
payment mirror of the on-chain escrow (``payment_status``). Every change to
either dimension goes through one transition table so that the pair is
always updated together.
"""

from __future__ import annotations

from dataclasses import dataclass

TASK_STATUSES: tuple[str, ...] = (
    "open",
    "assigned",
    "in_progress",
    "pending_review",
    "completed",
    "disputed",
    "cancelled",
)

PAYMENT_STATUSES: tuple[str, ...] = (
    "pending_deposit",
    "escrowed",
    "released",
    "refunded",
    "disputed",
)

TERMINAL_STATUSES = frozenset({"completed", "cancelled"})

# Event names
ASSIGN = "assign"
START = "start"
SUBMIT_COMPLETION = "submit_completion"
APPROVE = "approve"
REJECT = "reject"
DISPUTE = "dispute"
CANCEL = "cancel"
DEPOSIT = "deposit"
RELEASE = "release"
REFUND = "refund"

ESCROW_EVENTS: tuple[str, ...] = (DEPOSIT, RELEASE, REFUND)

_ANY_PAYMENT = frozenset(PAYMENT_STATUSES)


@dataclass(frozen=True)
class Transition:
    """One row of the transition table. A None target leaves that dimension unchanged."""

    event: str
    from_statuses: frozenset[str]
    from_payments: frozenset[str]
    to_status: str | None
    to_payment: str | None

    def matches(self, status: str, payment_status: str) -> bool:
        return status in self.from_statuses and payment_status in self.from_payments


TRANSITIONS: tuple[Transition, ...] = (
    Transition(ASSIGN, frozenset({"open"}), _ANY_PAYMENT, "assigned", None),
    Transition(START, frozenset({"assigned"}), _ANY_PAYMENT, "in_progress", None),
    Transition(
        SUBMIT_COMPLETION,
        frozenset({"assigned", "in_progress"}),
        _ANY_PAYMENT,
        "pending_review",
        None,
    ),
    Transition(APPROVE, frozenset({"pending_review", "disputed"}), _ANY_PAYMENT, "completed", None),
    Transition(REJECT, frozenset({"pending_review"}), _ANY_PAYMENT, "in_progress", None),
    Transition(
        DISPUTE, frozenset({"pending_review"}), frozenset({"escrowed"}), "disputed", "disputed"
    ),
    Transition(DISPUTE, frozenset({"pending_review"}), frozenset({"pending_deposit"}), "disputed", None),
    Transition(CANCEL, frozenset({"open", "assigned"}), _ANY_PAYMENT, "cancelled", None),
    Transition(
        DEPOSIT,
        frozenset({"open", "assigned", "in_progress", "pending_review"}),
        frozenset({"pending_deposit"}),
        None,
        "escrowed",
    ),
    Transition(
        RELEASE,
        frozenset({"assigned", "in_progress", "pending_review", "disputed", "completed"}),
        frozenset({"escrowed", "disputed"}),
        "completed",
        "released",
    ),
    Transition(
        REFUND,
        frozenset({"open", "assigned", "in_progress", "pending_review", "disputed", "cancelled"}),
        frozenset({"escrowed", "disputed"}),
        "cancelled",
        "refunded",
    ),
)

KNOWN_EVENTS = frozenset(transition.event for transition in TRANSITIONS)


class UnknownEventError(ValueError):
    """Raised for an event name that has no row in the transition table."""


class TransitionNotAllowedError(Exception):
    """Raised when no row of the table accepts the current (status, payment_status) pair."""

    def __init__(self, event: str, status: str, payment_status: str) -> None:
        super().__init__(
            f"Cannot apply '{event}' to task in status '{status}' "
            f"with payment status '{payment_status}'"
        )
        self.event = event
        self.status = status
        self.payment_status = payment_status


def resolve_transition(event: str, status: str, payment_status: str) -> tuple[str, str]:
    """
    Return the (status, payment_status) pair produced by applying event.

    Raises:
        UnknownEventError: event is not in the table
        TransitionNotAllowedError: the current pair does not admit the event
    """
    if event not in KNOWN_EVENTS:
        raise UnknownEventError(f"Unknown event: {event}")

    for transition in TRANSITIONS:
        if transition.event == event and transition.matches(status, payment_status):
            new_status = transition.to_status if transition.to_status is not None else status
            new_payment = (
                transition.to_payment if transition.to_payment is not None else payment_status
            )
            return new_status, new_payment

    raise TransitionNotAllowedError(event, status, payment_status)


def allowed_events(status: str, payment_status: str) -> list[str]:
    """List the events the given pair admits, in table order without duplicates."""
    events: list[str] = []
    for transition in TRANSITIONS:
        if transition.matches(status, payment_status) and transition.event not in events:
            events.append(transition.event)
    return events


def task_id_to_bytes32(task_id: str) -> str:
    """
    Derive the on-chain bytes32 identifier for a task.

    The dashes are stripped, the ASCII bytes are hex-encoded, then the result
    is right-padded with zeros and cut to 32 bytes.
    """
    cleaned = task_id.replace("-", "")
    hex_value = cleaned.encode().hex()
    return "0x" + hex_value.ljust(64, "0")[:64]
