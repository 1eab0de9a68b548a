"""Transition-table behavior of the ticket aggregate."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ticketforge.domain.content import FindingSeverity, TicketType
from ticketforge.domain.errors import (
    AlreadyLockedError,
    InvalidStateTransitionError,
    MissingRequiredFieldsError,
    TicketDomainError,
    TicketErrorKind,
)
from ticketforge.domain.lifecycle import (
    IN_FLIGHT_STATUSES,
    OPEN_STATUSES,
    TRANSITIONS,
    TicketStatus,
    Trigger,
    allowed_triggers,
    can_transition,
)
from ticketforge.domain.ticket import Ticket

from .. import (
    WORKSPACE,
    at,
    code_snapshot,
    external_issue,
    finding,
    make_draft,
    make_generating,
    passing_results,
    question,
    ticket_in_status,
)

_TRIGGER_CALLS: dict[Trigger, Callable[[Ticket], object]] = {
    Trigger.START_GENERATING: lambda t: t.start_generating("wf-2", now=at(60)),
    Trigger.SUSPEND_FOR_FINDINGS: lambda t: t.suspend_for_findings_review(
        [finding()], now=at(60)
    ),
    Trigger.SUSPEND_FOR_QUESTIONS: lambda t: t.suspend_for_questions([question()], now=at(60)),
    Trigger.RESUME_GENERATING: lambda t: t.resume_generating(now=at(60)),
    Trigger.VALIDATE: lambda t: t.validate(passing_results(), now=at(60)),
    Trigger.MARK_FAILED: lambda t: t.mark_as_failed("generation crashed", now=at(60)),
    Trigger.MARK_READY: lambda t: t.mark_ready(code_snapshot(), now=at(60)),
    Trigger.EXPORT: lambda t: t.export(external_issue(), now=at(60)),
    Trigger.APPROVE: lambda t: t.approve(now=at(60)),
    Trigger.START_IMPLEMENTATION: lambda t: t.start_implementation("feature/pay-42", now=at(60)),
    Trigger.DETECT_DRIFT: lambda t: t.mark_drifted("Code snapshot changed", now=at(60)),
    Trigger.MARK_COMPLETE: lambda t: t.mark_complete("final tech spec", now=at(60)),
    Trigger.REVERT_TO_DRAFT: lambda t: t.revert_to_draft(now=at(60)),
}

_INVALID_PAIRS = sorted(
    (
        (status, trigger)
        for status in TicketStatus
        for trigger in Trigger
        if (status, trigger) not in TRANSITIONS
    ),
    key=lambda pair: (pair[0].value, pair[1].value),
)


def test_every_trigger_has_an_aggregate_method() -> None:
    assert set(_TRIGGER_CALLS) == set(Trigger)


def test_open_statuses_are_exactly_the_drift_sources() -> None:
    assert OPEN_STATUSES == {
        TicketStatus.READY,
        TicketStatus.CREATED,
        TicketStatus.FORGED,
        TicketStatus.EXECUTING,
    }


@pytest.mark.parametrize(
    ("source", "trigger", "target"),
    [(source, trigger, target) for (source, trigger), target in TRANSITIONS.items()],
    ids=lambda value: str(value),
)
def test_valid_edges_reach_their_target(
    source: TicketStatus, trigger: Trigger, target: TicketStatus
) -> None:
    ticket = ticket_in_status(source)

    _TRIGGER_CALLS[trigger](ticket)

    assert ticket.status is target
    assert ticket.updated_at == at(60)


@pytest.mark.parametrize(("status", "trigger"), _INVALID_PAIRS, ids=lambda value: str(value))
def test_invalid_pairs_raise_and_leave_ticket_untouched(
    status: TicketStatus, trigger: Trigger
) -> None:
    ticket = ticket_in_status(status)
    before = ticket.to_dict()

    if trigger is Trigger.DETECT_DRIFT:
        assert ticket.mark_drifted("Code snapshot changed", now=at(60)) is False
    else:
        with pytest.raises(InvalidStateTransitionError):
            _TRIGGER_CALLS[trigger](ticket)

    assert ticket.to_dict() == before


@settings(max_examples=75, deadline=None)
@given(st.lists(st.sampled_from(list(Trigger)), max_size=25))
def test_random_trigger_walks_follow_the_table(walk: list[Trigger]) -> None:
    ticket = make_draft()
    ticket.update_content(TicketType.FEATURE, ["AC1"], [], [], now=at(5))

    for trigger in walk:
        source = ticket.status
        before = ticket.to_dict()
        if can_transition(source, trigger):
            _TRIGGER_CALLS[trigger](ticket)
            assert ticket.status is TRANSITIONS[(source, trigger)]
        elif trigger is Trigger.DETECT_DRIFT:
            assert ticket.mark_drifted("Code snapshot changed", now=at(60)) is False
            assert ticket.to_dict() == before
        else:
            with pytest.raises(TicketDomainError):
                _TRIGGER_CALLS[trigger](ticket)
            assert ticket.to_dict() == before
        assert ticket.is_locked == (ticket.status in IN_FLIGHT_STATUSES)


def test_invalid_transition_error_lists_allowed_triggers() -> None:
    ticket = make_draft()

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        ticket.mark_as_failed("nope")

    error = exc_info.value
    assert error.kind is TicketErrorKind.INVALID_STATE_TRANSITION
    assert error.status == "draft"
    assert error.trigger == "mark_as_failed"
    assert error.allowed == ("start_generating", "mark_complete")
    assert error.ticket_id == ticket.id
    assert str(error) == (
        "Invalid transition from draft via mark_as_failed. "
        "Allowed: start_generating, mark_complete"
    )
    assert error.to_dict()["allowed"] == ["start_generating", "mark_complete"]


def test_errors_can_be_matched_on_kind() -> None:
    ticket = make_generating(run_id="wf-1")

    try:
        ticket.start_generating("wf-2")
    except TicketDomainError as exc:
        match exc.kind:
            case TicketErrorKind.ALREADY_LOCKED:
                outcome = "locked"
            case _:
                outcome = "other"
    assert outcome == "locked"


def test_allowed_triggers_for_terminal_drifted_is_empty() -> None:
    assert allowed_triggers(TicketStatus.DRIFTED) == ()
    assert ticket_in_status(TicketStatus.DRIFTED).allowed_triggers() == ()


def test_mark_as_failed_from_generating_releases_lock_and_records_reason() -> None:
    ticket = make_generating(run_id="wf-1")

    ticket.mark_as_failed("LLM provider timed out", now=at(30))

    assert ticket.status is TicketStatus.FAILED
    assert ticket.is_locked is False
    assert ticket.locked_by is None
    assert ticket.failure_reason == "LLM provider timed out"


def test_revert_from_failed_clears_failure_reason() -> None:
    ticket = make_generating()
    ticket.mark_as_failed("boom", now=at(30))

    ticket.revert_to_draft(now=at(31))

    assert ticket.status is TicketStatus.DRAFT
    assert ticket.failure_reason is None
    assert ticket.is_locked is False


def test_revert_from_suspended_findings_releases_lock() -> None:
    ticket = make_generating(run_id="wf-1")
    ticket.suspend_for_findings_review([finding()], now=at(30))

    ticket.revert_to_draft(now=at(31))

    assert ticket.status is TicketStatus.DRAFT
    assert ticket.is_locked is False


def test_revert_from_complete_discards_tech_spec() -> None:
    ticket = make_draft()
    ticket.mark_complete("# Tech spec", now=at(10))
    assert ticket.tech_spec == "# Tech spec"

    ticket.revert_to_draft(now=at(11))

    assert ticket.status is TicketStatus.DRAFT
    assert ticket.tech_spec is None


def test_suspension_keeps_lock_and_stores_findings_and_questions() -> None:
    ticket = make_generating(run_id="wf-1")

    ticket.suspend_for_findings_review([finding(FindingSeverity.HIGH)], now=at(30))
    assert ticket.status is TicketStatus.SUSPENDED_FINDINGS
    assert ticket.locked_by == "wf-1"
    assert [item.severity for item in ticket.pre_implementation_findings] == [
        FindingSeverity.HIGH
    ]

    ticket.resume_generating(now=at(31))
    ticket.suspend_for_questions([question()], now=at(32))
    assert ticket.status is TicketStatus.SUSPENDED_QUESTIONS
    assert ticket.locked_by == "wf-1"
    assert [item.id for item in ticket.questions] == ["q-1"]
    assert ticket.pre_implementation_findings


def test_findings_accept_plain_mappings() -> None:
    ticket = make_generating()

    ticket.suspend_for_findings_review(
        [
            {
                "category": "security",
                "severity": "critical",
                "description": "Card numbers are logged in plain text",
            }
        ]
    )

    assert ticket.pre_implementation_findings[0].is_critical


def test_validate_lists_every_missing_field() -> None:
    ticket = make_draft()
    ticket.start_generating("wf-1", now=at(2))
    before = ticket.to_dict()

    with pytest.raises(MissingRequiredFieldsError) as exc_info:
        ticket.validate([])

    assert exc_info.value.missing_fields == ("type", "acceptanceCriteria")
    assert exc_info.value.kind is TicketErrorKind.MISSING_REQUIRED_FIELDS
    assert ticket.to_dict() == before


@pytest.mark.parametrize(
    ("ticket_type", "criteria", "missing"),
    [
        (None, ["AC1"], ("type",)),
        (TicketType.BUG, [], ("acceptanceCriteria",)),
    ],
)
def test_validate_lists_the_single_missing_field(
    ticket_type: TicketType | None, criteria: list[str], missing: tuple[str, ...]
) -> None:
    ticket = make_draft()
    ticket.update_content(ticket_type, criteria, [], [], now=at(1))
    ticket.start_generating("wf-1", now=at(2))

    with pytest.raises(MissingRequiredFieldsError) as exc_info:
        ticket.validate([])

    assert exc_info.value.missing_fields == missing
    assert ticket.status is TicketStatus.GENERATING


def test_export_approve_and_implementation_store_their_payloads() -> None:
    ready = ticket_in_status(TicketStatus.READY)
    ready.export(external_issue(), now=at(10))
    assert ready.status is TicketStatus.CREATED
    assert ready.external_issue is not None
    assert ready.external_issue.issue_id == "PAY-42"

    waiting = ticket_in_status(TicketStatus.WAITING_FOR_APPROVAL)
    waiting.approve(now=at(10))
    waiting.start_implementation(
        "feature/pay-42", [{"question": "Feature flag?", "answer": "yes"}], now=at(11)
    )
    assert waiting.status is TicketStatus.EXECUTING
    assert waiting.implementation_branch == "feature/pay-42"
    assert [item.answer for item in waiting.qa_items] == ["yes"]


def test_start_implementation_rejects_invalid_branch_without_changes() -> None:
    ticket = ticket_in_status(TicketStatus.FORGED)
    before = ticket.to_dict()

    with pytest.raises(ValueError, match="branch"):
        ticket.start_implementation("feature/has space")

    assert ticket.to_dict() == before


def test_end_to_end_generation_scenario() -> None:
    ticket = Ticket.create_draft(WORKSPACE, "Add payment integration", now=at(0))
    assert ticket.status is TicketStatus.DRAFT
    assert ticket.is_locked is False

    ticket.start_generating("wf-1", now=at(1))
    assert ticket.status is TicketStatus.GENERATING
    assert ticket.locked_by == "wf-1"

    ticket.suspend_for_findings_review([finding(FindingSeverity.CRITICAL)], now=at(2))
    assert ticket.status is TicketStatus.SUSPENDED_FINDINGS
    assert ticket.locked_by == "wf-1"

    ticket.resume_generating(now=at(3))
    assert ticket.status is TicketStatus.GENERATING

    ticket.update_content("feature", ["AC1"], [], [], now=at(4))
    ticket.validate([], now=at(5))

    assert ticket.status is TicketStatus.VALIDATED
    assert ticket.is_locked is False
    assert ticket.readiness_score == 0


def test_already_locked_is_a_transition_error() -> None:
    assert issubclass(AlreadyLockedError, InvalidStateTransitionError)
