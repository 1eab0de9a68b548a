"""Shared deterministic builders for ticketforge unit tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Final

from ticketforge.domain import ids
from ticketforge.domain.content import (
    ExternalIssue,
    Finding,
    FindingCategory,
    FindingSeverity,
    IssuePlatform,
    Question,
    TicketType,
)
from ticketforge.domain.lifecycle import IN_FLIGHT_STATUSES, TicketStatus
from ticketforge.domain.lock import UNLOCKED, LockedBy
from ticketforge.domain.snapshots import ApiSnapshot, CodeSnapshot, RepositoryContext
from ticketforge.domain.ticket import Ticket
from ticketforge.domain.validation import ValidationResult, ValidatorType

BASE_TS: Final[datetime] = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)

WORKSPACE: Final[str] = "ws-1"
REPOSITORY: Final[str] = "acme/payments"
SHA_OLD: Final[str] = "3f2c1a9b7e4d8c6a5f0e1d2c3b4a59687766554a"
SHA_NEW: Final[str] = "9a8b7c6d5e4f30211203f4e5d6c7b8a9aabbccdd"
SPEC_HASH_OLD: Final[str] = "c0ffee" * 10 + "abcd"
SPEC_HASH_NEW: Final[str] = "deadbeef" * 8


def at(seconds: int) -> datetime:
    return BASE_TS + timedelta(seconds=seconds)


def ticket_id(seed: int) -> str:
    byte_value = (seed % 251) + 1
    return ids.generate_ticket_id(
        timestamp_ms=1_800_000_000_000 + seed,
        randbytes=lambda size: bytes([byte_value]) * size,
    )


def repository_context(
    repository: str = REPOSITORY, commit_sha: str = SHA_OLD
) -> RepositoryContext:
    return RepositoryContext(
        repository_full_name=repository,
        branch_name="main",
        commit_sha=commit_sha,
        is_default_branch=True,
        selected_at=BASE_TS,
    )


def code_snapshot(repository: str = REPOSITORY, commit_sha: str = SHA_OLD) -> CodeSnapshot:
    return CodeSnapshot(
        repository_full_name=repository,
        branch_name="main",
        commit_sha=commit_sha,
        captured_at=BASE_TS,
    )


def api_snapshot(spec_hash: str = SPEC_HASH_OLD) -> ApiSnapshot:
    return ApiSnapshot(
        spec_url="https://api.acme.test/openapi.json", hash=spec_hash, captured_at=BASE_TS
    )


def finding(severity: FindingSeverity = FindingSeverity.CRITICAL) -> Finding:
    return Finding(
        category=FindingCategory.GAP,
        severity=severity,
        description="Payment provider webhook retries are not specified",
        suggestion="Document retry and idempotency behavior",
        id="fnd-1",
        created_at=BASE_TS,
    )


def question() -> Question:
    return Question(id="q-1", text="Which currency is the default?")


def external_issue() -> ExternalIssue:
    return ExternalIssue(
        platform=IssuePlatform.LINEAR,
        issue_id="PAY-42",
        issue_url="https://linear.app/acme/issue/PAY-42",
    )


def passing_results() -> list[ValidationResult]:
    return [
        ValidationResult(
            criterion=ValidatorType.COMPLETENESS, passed=True, score=0.9, weight=0.5
        ),
        ValidationResult(criterion=ValidatorType.CLARITY, passed=True, score=0.8, weight=0.5),
    ]


def failing_results() -> list[ValidationResult]:
    return [
        ValidationResult(
            criterion=ValidatorType.TESTABILITY,
            passed=False,
            score=0.4,
            weight=1.0,
            issues=("acceptance criteria are not measurable",),
        ),
    ]


def make_draft(
    seed: int = 1,
    *,
    workspace_id: str = WORKSPACE,
    repository: str | None = REPOSITORY,
    commit_sha: str = SHA_OLD,
) -> Ticket:
    context = None if repository is None else repository_context(repository, commit_sha)
    return Ticket.create_draft(
        workspace_id,
        f"Add payment integration {seed}",
        "Wire the checkout flow to the payment provider.",
        context,
        ticket_id=ticket_id(seed),
        now=at(seed),
    )


def make_generating(
    seed: int = 1,
    *,
    run_id: str = "wf-1",
    workspace_id: str = WORKSPACE,
    repository: str | None = REPOSITORY,
) -> Ticket:
    ticket = make_draft(seed, workspace_id=workspace_id, repository=repository)
    ticket.update_content(TicketType.FEATURE, ["AC1"], [], ["src/payments"], now=at(seed + 1))
    ticket.start_generating(run_id, now=at(seed + 2))
    return ticket


def make_validated(
    seed: int = 1,
    *,
    workspace_id: str = WORKSPACE,
    repository: str | None = REPOSITORY,
) -> Ticket:
    ticket = make_generating(seed, workspace_id=workspace_id, repository=repository)
    ticket.validate(passing_results(), now=at(seed + 3))
    return ticket


def make_ready(
    seed: int = 1,
    *,
    commit_sha: str = SHA_OLD,
    spec_hash: str | None = None,
    repository: str = REPOSITORY,
    workspace_id: str = WORKSPACE,
) -> Ticket:
    ticket = make_validated(seed, repository=repository, workspace_id=workspace_id)
    ticket.mark_ready(
        code_snapshot(repository, commit_sha),
        None if spec_hash is None else api_snapshot(spec_hash),
        now=at(seed + 4),
    )
    return ticket


def ticket_in_status(status: TicketStatus, seed: int = 1) -> Ticket:
    """Build a ticket sitting in ``status`` with content that satisfies every guard."""

    lock = LockedBy(owner_id="wf-1", since=at(0)) if status in IN_FLIGHT_STATUSES else UNLOCKED
    return Ticket(
        id=ticket_id(seed),
        workspace_id=WORKSPACE,
        title="Add payment integration",
        created_at=BASE_TS,
        updated_at=BASE_TS,
        status=status,
        lock=lock,
        ticket_type=TicketType.FEATURE,
        acceptance_criteria=("AC1",),
        readiness_score=85,
        validation_results=passing_results(),
        code_snapshot=code_snapshot(),
        repository_context=repository_context(),
    )


__all__ = [
    "BASE_TS",
    "REPOSITORY",
    "SHA_NEW",
    "SHA_OLD",
    "SPEC_HASH_NEW",
    "SPEC_HASH_OLD",
    "WORKSPACE",
    "api_snapshot",
    "at",
    "code_snapshot",
    "external_issue",
    "failing_results",
    "finding",
    "make_draft",
    "make_generating",
    "make_ready",
    "make_validated",
    "passing_results",
    "question",
    "repository_context",
    "ticket_id",
    "ticket_in_status",
]
