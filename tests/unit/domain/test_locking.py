"""Workflow-exclusive lock semantics."""

from __future__ import annotations

import pytest

from ticketforge.domain.errors import AlreadyLockedError, InvalidStateTransitionError
from ticketforge.domain.lifecycle import TicketStatus
from ticketforge.domain.lock import UNLOCKED, LockedBy, lock_from_fields

from .. import at, make_draft, make_generating, ticket_in_status


@pytest.mark.parametrize("second_owner", ["wf-1", "wf-2"])
def test_lock_on_locked_ticket_raises_regardless_of_owner(second_owner: str) -> None:
    ticket = make_draft()
    ticket.lock("wf-1", now=at(10))

    with pytest.raises(AlreadyLockedError) as exc_info:
        ticket.lock(second_owner, now=at(11))

    assert exc_info.value.held_by == "wf-1"
    assert str(exc_info.value) == (
        "Ticket is already locked by workflow wf-1. Cannot start new workflow."
    )
    assert ticket.locked_by == "wf-1"
    assert ticket.locked_at == at(10)


def test_start_generating_on_locked_draft_raises_already_locked() -> None:
    ticket = make_draft()
    ticket.lock("wf-1", now=at(10))

    with pytest.raises(AlreadyLockedError) as exc_info:
        ticket.start_generating("wf-2", now=at(11))

    assert exc_info.value.trigger == "start_generating"
    assert ticket.status is TicketStatus.DRAFT
    assert ticket.locked_by == "wf-1"


def test_start_generating_records_holder_and_time() -> None:
    ticket = make_draft()

    ticket.start_generating("wf-7", now=at(20))

    assert ticket.lock_state == LockedBy(owner_id="wf-7", since=at(20))
    assert ticket.is_locked_by("wf-7")
    assert not ticket.is_locked_by("wf-8")


def test_unlock_outside_generation_releases_lock() -> None:
    ticket = make_draft()
    ticket.lock("wf-1", now=at(10))

    ticket.unlock(now=at(11))

    assert ticket.lock_state is UNLOCKED
    assert ticket.updated_at == at(11)


def test_unlock_on_unlocked_ticket_is_a_no_op() -> None:
    ticket = make_draft()
    before = ticket.to_dict()

    ticket.unlock(now=at(99))

    assert ticket.to_dict() == before


@pytest.mark.parametrize(
    "status",
    [
        TicketStatus.GENERATING,
        TicketStatus.SUSPENDED_FINDINGS,
        TicketStatus.SUSPENDED_QUESTIONS,
    ],
)
def test_unlock_is_rejected_while_generation_is_in_flight(status: TicketStatus) -> None:
    ticket = ticket_in_status(status)

    with pytest.raises(InvalidStateTransitionError, match="force_unlock"):
        ticket.unlock()

    assert ticket.locked_by == "wf-1"


def test_force_unlock_twice_is_idempotent() -> None:
    ticket = make_generating(run_id="wf-1")

    assert ticket.force_unlock(now=at(30)) == "wf-1"
    assert ticket.is_locked is False
    after_first = ticket.to_dict()

    assert ticket.force_unlock(now=at(31)) is None
    assert ticket.to_dict() == after_first


def test_force_unlock_keeps_status() -> None:
    ticket = make_generating(run_id="wf-1")

    ticket.force_unlock(now=at(30))

    assert ticket.status is TicketStatus.GENERATING
    assert ticket.locked_by is None
    assert ticket.locked_at is None


@pytest.mark.parametrize(
    "status", [TicketStatus.SUSPENDED_FINDINGS, TicketStatus.SUSPENDED_QUESTIONS]
)
def test_dead_run_in_suspended_state_is_failed_through_resume(status: TicketStatus) -> None:
    ticket = ticket_in_status(status)

    with pytest.raises(InvalidStateTransitionError):
        ticket.mark_as_failed("workflow wf-1 died", now=at(40))

    assert ticket.force_unlock(now=at(41)) == "wf-1"
    ticket.resume_generating(now=at(42))
    ticket.mark_as_failed("workflow wf-1 died", now=at(43))

    assert ticket.status is TicketStatus.FAILED
    assert ticket.failure_reason == "workflow wf-1 died"
    assert ticket.is_locked is False


def test_lock_age_is_measured_from_acquisition() -> None:
    lock = LockedBy(owner_id="wf-1", since=at(0))

    assert lock.age_seconds(at(90)) == 90.0


@pytest.mark.parametrize(
    ("locked_by", "locked_at"),
    [("wf-1", None), (None, "2026-02-01T12:00:00Z")],
)
def test_half_set_lock_fields_are_rejected(locked_by: object, locked_at: object) -> None:
    with pytest.raises(ValueError, match="both"):
        lock_from_fields(locked_by, locked_at)


def test_lock_fields_round_trip() -> None:
    assert lock_from_fields(None, None) is UNLOCKED
    assert lock_from_fields("wf-1", "2026-02-01T12:00:00Z") == LockedBy("wf-1", at(0))
