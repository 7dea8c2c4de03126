"""Unit tests for the composite task/payment transition table."""

from __future__ import annotations

import pytest

from human_farm_service.services import lifecycle
from human_farm_service.services.lifecycle import (
    PAYMENT_STATUSES,
    TERMINAL_STATUSES,
    TransitionNotAllowedError,
    UnknownEventError,
    allowed_events,
    resolve_transition,
    task_id_to_bytes32,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("event", "status", "payment", "expected"),
    [
        ("assign", "open", "pending_deposit", ("assigned", "pending_deposit")),
        ("start", "assigned", "escrowed", ("in_progress", "escrowed")),
        ("submit_completion", "assigned", "pending_deposit", ("pending_review", "pending_deposit")),
        ("submit_completion", "in_progress", "escrowed", ("pending_review", "escrowed")),
        ("approve", "pending_review", "escrowed", ("completed", "escrowed")),
        ("approve", "disputed", "disputed", ("completed", "disputed")),
        ("reject", "pending_review", "escrowed", ("in_progress", "escrowed")),
        ("dispute", "pending_review", "escrowed", ("disputed", "disputed")),
        ("dispute", "pending_review", "pending_deposit", ("disputed", "pending_deposit")),
        ("cancel", "open", "pending_deposit", ("cancelled", "pending_deposit")),
        ("deposit", "open", "pending_deposit", ("open", "escrowed")),
        ("release", "pending_review", "escrowed", ("completed", "released")),
        ("release", "completed", "escrowed", ("completed", "released")),
        ("refund", "disputed", "disputed", ("cancelled", "refunded")),
        ("refund", "cancelled", "escrowed", ("cancelled", "refunded")),
    ],
)
def test_allowed_transitions(event, status, payment, expected) -> None:
    """Table rows produce the documented target pair."""
    assert resolve_transition(event, status, payment) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    ("event", "status", "payment"),
    [
        ("release", "pending_review", "pending_deposit"),
        ("deposit", "open", "escrowed"),
        ("deposit", "completed", "pending_deposit"),
        ("refund", "open", "pending_deposit"),
        ("cancel", "pending_review", "pending_deposit"),
        ("assign", "assigned", "pending_deposit"),
        ("approve", "assigned", "pending_deposit"),
        ("start", "in_progress", "pending_deposit"),
    ],
)
def test_disallowed_transitions(event, status, payment) -> None:
    """Pairs without a row are refused with the offending state attached."""
    with pytest.raises(TransitionNotAllowedError) as exc_info:
        resolve_transition(event, status, payment)
    assert exc_info.value.status == status
    assert exc_info.value.payment_status == payment


@pytest.mark.unit
def test_unknown_event() -> None:
    """Events outside the table raise UnknownEventError."""
    with pytest.raises(UnknownEventError):
        resolve_transition("teleport", "open", "pending_deposit")


@pytest.mark.unit
def test_settled_tasks_are_final() -> None:
    """Once money has moved out of escrow no event applies."""
    assert allowed_events("completed", "released") == []
    assert allowed_events("cancelled", "refunded") == []


@pytest.mark.unit
def test_terminal_statuses_admit_only_escrow_settlement() -> None:
    """Completed and cancelled tasks only accept release or refund of held funds."""
    for status in TERMINAL_STATUSES:
        for payment in PAYMENT_STATUSES:
            events = set(allowed_events(status, payment))
            assert events <= {lifecycle.RELEASE, lifecycle.REFUND}


@pytest.mark.unit
def test_allowed_events_open_task() -> None:
    """A fresh task can be assigned, cancelled or funded."""
    assert allowed_events("open", "pending_deposit") == ["assign", "cancel", "deposit"]


@pytest.mark.unit
def test_allowed_events_has_no_duplicates() -> None:
    """Dispute has two rows but is listed once."""
    events = allowed_events("pending_review", "escrowed")
    assert events.count("dispute") == 1


@pytest.mark.unit
def test_task_id_to_bytes32_shape() -> None:
    """The on-chain id is 0x plus 64 hex characters."""
    value = task_id_to_bytes32("0f8fad5b-d9cb-469f-a165-70867728950e")
    assert value.startswith("0x")
    assert len(value) == 66
    int(value[2:], 16)


@pytest.mark.unit
def test_task_id_to_bytes32_encoding() -> None:
    """Dashes are dropped, ASCII is hex-encoded, and the rest is zero padding."""
    assert task_id_to_bytes32("ab-c") == "0x" + "616263".ljust(64, "0")


@pytest.mark.unit
def test_task_id_to_bytes32_truncates() -> None:
    """Ids longer than 32 ASCII bytes are cut."""
    value = task_id_to_bytes32("x" * 40)
    assert value == "0x" + "78" * 32
