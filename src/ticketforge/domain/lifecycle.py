"""Ticket lifecycle: statuses, triggers, and the transition table.

Legality of every status change is decided here, once, by looking up
``(status, trigger)`` in :data:`TRANSITIONS`. Aggregate methods never compare
statuses ad hoc.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Final

from ticketforge.domain.errors import InvalidStateTransitionError


class TicketStatus(StrEnum):
    DRAFT = "draft"
    GENERATING = "generating"
    SUSPENDED_FINDINGS = "suspended-findings"
    SUSPENDED_QUESTIONS = "suspended-questions"
    VALIDATED = "validated"
    READY = "ready"
    FAILED = "failed"
    WAITING_FOR_APPROVAL = "waiting-for-approval"
    FORGED = "forged"
    EXECUTING = "executing"
    DRIFTED = "drifted"
    COMPLETE = "complete"
    CREATED = "created"


class Trigger(StrEnum):
    START_GENERATING = "start_generating"
    SUSPEND_FOR_FINDINGS = "suspend_for_findings_review"
    SUSPEND_FOR_QUESTIONS = "suspend_for_questions"
    RESUME_GENERATING = "resume_generating"
    VALIDATE = "validate"
    MARK_FAILED = "mark_as_failed"
    MARK_READY = "mark_ready"
    EXPORT = "export"
    APPROVE = "approve"
    START_IMPLEMENTATION = "start_implementation"
    DETECT_DRIFT = "mark_drifted"
    MARK_COMPLETE = "mark_complete"
    REVERT_TO_DRAFT = "revert_to_draft"


_S = TicketStatus
_T = Trigger

TRANSITIONS: Final[Mapping[tuple[TicketStatus, Trigger], TicketStatus]] = MappingProxyType(
    {
        (_S.DRAFT, _T.START_GENERATING): _S.GENERATING,
        (_S.GENERATING, _T.SUSPEND_FOR_FINDINGS): _S.SUSPENDED_FINDINGS,
        (_S.GENERATING, _T.SUSPEND_FOR_QUESTIONS): _S.SUSPENDED_QUESTIONS,
        (_S.SUSPENDED_FINDINGS, _T.RESUME_GENERATING): _S.GENERATING,
        (_S.SUSPENDED_QUESTIONS, _T.RESUME_GENERATING): _S.GENERATING,
        (_S.SUSPENDED_FINDINGS, _T.REVERT_TO_DRAFT): _S.DRAFT,
        (_S.GENERATING, _T.VALIDATE): _S.VALIDATED,
        (_S.GENERATING, _T.MARK_FAILED): _S.FAILED,
        (_S.FAILED, _T.REVERT_TO_DRAFT): _S.DRAFT,
        (_S.VALIDATED, _T.MARK_READY): _S.READY,
        (_S.READY, _T.EXPORT): _S.CREATED,
        (_S.WAITING_FOR_APPROVAL, _T.APPROVE): _S.FORGED,
        (_S.FORGED, _T.START_IMPLEMENTATION): _S.EXECUTING,
        (_S.READY, _T.DETECT_DRIFT): _S.DRIFTED,
        (_S.CREATED, _T.DETECT_DRIFT): _S.DRIFTED,
        (_S.FORGED, _T.DETECT_DRIFT): _S.DRIFTED,
        (_S.EXECUTING, _T.DETECT_DRIFT): _S.DRIFTED,
        (_S.DRAFT, _T.MARK_COMPLETE): _S.COMPLETE,
        (_S.COMPLETE, _T.REVERT_TO_DRAFT): _S.DRAFT,
    }
)

# Statuses whose stored snapshots are still trusted; only these can drift.
OPEN_STATUSES: Final[frozenset[TicketStatus]] = frozenset(
    source for (source, trigger) in TRANSITIONS if trigger is Trigger.DETECT_DRIFT
)

# A workflow run owns the ticket while it sits in one of these.
IN_FLIGHT_STATUSES: Final[frozenset[TicketStatus]] = frozenset(
    {
        TicketStatus.GENERATING,
        TicketStatus.SUSPENDED_FINDINGS,
        TicketStatus.SUSPENDED_QUESTIONS,
    }
)


def allowed_triggers(status: TicketStatus) -> tuple[Trigger, ...]:
    return tuple(trigger for (source, trigger) in TRANSITIONS if source is status)


def can_transition(status: TicketStatus, trigger: Trigger) -> bool:
    return (status, trigger) in TRANSITIONS


def resolve_transition(
    status: TicketStatus, trigger: Trigger, *, ticket_id: str | None = None
) -> TicketStatus:
    """Return the target status for ``trigger`` or raise without side effects."""

    target = TRANSITIONS.get((status, trigger))
    if target is None:
        raise InvalidStateTransitionError.for_edge(
            status=status.value,
            trigger=trigger.value,
            allowed=[item.value for item in allowed_triggers(status)],
            ticket_id=ticket_id,
        )
    return target


__all__ = [
    "IN_FLIGHT_STATUSES",
    "OPEN_STATUSES",
    "TRANSITIONS",
    "TicketStatus",
    "Trigger",
    "allowed_triggers",
    "can_transition",
    "resolve_transition",
]
