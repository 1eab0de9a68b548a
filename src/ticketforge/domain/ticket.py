"""Ticket aggregate: the only legal mutation surface for ticket state.

Every public mutator follows the same shape: resolve the lifecycle edge and
validate every argument first, then assign. A raised error therefore leaves the
aggregate exactly as it was, and ``updated_at`` moves only on success.

The aggregate performs no I/O and never logs. Persisting after each call is the
caller's job (see :mod:`ticketforge.application.commands`).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Final, TypeVar

from ticketforge.constants import (
    MAX_PRE_IMPLEMENTATION_FINDINGS,
    MAX_QUESTIONS,
    READINESS_THRESHOLD,
    TICKET_RECORD_SCHEMA_VERSION,
    TITLE_MAX_LENGTH,
    TITLE_MIN_LENGTH,
)
from ticketforge.domain._fields import (
    as_datetime,
    as_enum,
    as_int,
    as_optional_datetime,
    as_optional_str,
    as_sequence,
    as_str,
    as_str_tuple,
    canonical_json,
    datetime_to_iso8601z,
    expect_object,
    fail,
    optional_iso8601z,
    utc_now,
)
from ticketforge.domain.content import (
    ExternalIssue,
    Finding,
    QAItem,
    Question,
    TicketPriority,
    TicketType,
)
from ticketforge.domain.errors import (
    AlreadyLockedError,
    InsufficientReadinessError,
    InvalidStateTransitionError,
    MissingRequiredFieldsError,
    ValidationFailedError,
)
from ticketforge.domain.ids import generate_ticket_id
from ticketforge.domain.lifecycle import (
    IN_FLIGHT_STATUSES,
    OPEN_STATUSES,
    TicketStatus,
    Trigger,
    allowed_triggers,
    resolve_transition,
)
from ticketforge.domain.lock import UNLOCKED, LockedBy, TicketLock, Unlocked, lock_from_fields
from ticketforge.domain.snapshots import (
    ApiSnapshot,
    CodeSnapshot,
    RepositoryContext,
    as_branch_name,
)
from ticketforge.domain.validation import (
    ValidationResult,
    calculate_readiness_score,
    has_critical_blockers,
    overall_validation_score,
    parse_validation_results,
    validation_passed,
)

_V = TypeVar("_V")

_TECH_SPEC_MAX: Final[int] = 1_000_000

_RECORD_REQUIRED: Final[set[str]] = {
    "id",
    "workspace_id",
    "status",
    "title",
    "created_at",
    "updated_at",
}
_RECORD_OPTIONAL: Final[set[str]] = {
    "schema_version",
    "locked_by",
    "locked_at",
    "description",
    "type",
    "priority",
    "acceptance_criteria",
    "assumptions",
    "repo_paths",
    "readiness_score",
    "validation_results",
    "code_snapshot",
    "api_snapshot",
    "pre_implementation_findings",
    "questions",
    "failure_reason",
    "drift_detected_at",
    "drift_reason",
    "repository_context",
    "external_issue",
    "implementation_branch",
    "qa_items",
    "tech_spec",
}


class Ticket:
    """Stateful ticket aggregate.

    Construct new tickets with :meth:`create_draft` and reload persisted ones
    with :meth:`from_dict`. Fields are read-only properties; they change only
    through the lifecycle and content methods below.
    """

    __slots__ = (
        "_id",
        "_workspace_id",
        "_status",
        "_lock",
        "_title",
        "_description",
        "_type",
        "_priority",
        "_acceptance_criteria",
        "_assumptions",
        "_repo_paths",
        "_readiness_score",
        "_validation_results",
        "_code_snapshot",
        "_api_snapshot",
        "_findings",
        "_questions",
        "_failure_reason",
        "_drift_detected_at",
        "_drift_reason",
        "_repository_context",
        "_external_issue",
        "_implementation_branch",
        "_qa_items",
        "_tech_spec",
        "_created_at",
        "_updated_at",
        "_revision",
    )

    def __init__(
        self,
        *,
        id: str,
        workspace_id: str,
        title: str,
        created_at: datetime,
        updated_at: datetime,
        status: TicketStatus = TicketStatus.DRAFT,
        lock: TicketLock = UNLOCKED,
        description: str | None = None,
        ticket_type: TicketType | None = None,
        priority: TicketPriority | None = None,
        acceptance_criteria: Sequence[str] = (),
        assumptions: Sequence[str] = (),
        repo_paths: Sequence[str] = (),
        readiness_score: int = 0,
        validation_results: Sequence[ValidationResult] = (),
        code_snapshot: CodeSnapshot | None = None,
        api_snapshot: ApiSnapshot | None = None,
        pre_implementation_findings: Sequence[Finding] = (),
        questions: Sequence[Question] = (),
        failure_reason: str | None = None,
        drift_detected_at: datetime | None = None,
        drift_reason: str | None = None,
        repository_context: RepositoryContext | None = None,
        external_issue: ExternalIssue | None = None,
        implementation_branch: str | None = None,
        qa_items: Sequence[QAItem] = (),
        tech_spec: str | None = None,
        revision: int = 0,
    ) -> None:
        self._id = as_str(id, "Ticket.id", max_len=128)
        self._workspace_id = as_str(workspace_id, "Ticket.workspace_id", max_len=128)
        self._status = as_enum(TicketStatus, status, "Ticket.status")
        if not isinstance(lock, (LockedBy, Unlocked)):
            fail("Ticket.lock", f"expected Unlocked or LockedBy, got {lock.__class__.__name__}")
        self._lock: TicketLock = lock
        self._title = _as_title(title)
        self._description = as_optional_str(description, "Ticket.description")
        self._type = (
            None if ticket_type is None else as_enum(TicketType, ticket_type, "Ticket.type")
        )
        self._priority = (
            None if priority is None else as_enum(TicketPriority, priority, "Ticket.priority")
        )
        self._acceptance_criteria = as_str_tuple(
            acceptance_criteria, "Ticket.acceptance_criteria"
        )
        self._assumptions = as_str_tuple(assumptions, "Ticket.assumptions")
        self._repo_paths = as_str_tuple(repo_paths, "Ticket.repo_paths")
        self._readiness_score = as_int(
            readiness_score, "Ticket.readiness_score", minimum=0, maximum=100
        )
        self._validation_results = parse_validation_results(
            validation_results, "Ticket.validation_results"
        )
        self._code_snapshot = _as_optional_instance(
            code_snapshot, CodeSnapshot, "Ticket.code_snapshot"
        )
        self._api_snapshot = _as_optional_instance(api_snapshot, ApiSnapshot, "Ticket.api_snapshot")
        self._findings = _as_findings(pre_implementation_findings)
        self._questions = _as_questions(questions)
        self._failure_reason = as_optional_str(failure_reason, "Ticket.failure_reason")
        self._drift_detected_at = as_optional_datetime(
            drift_detected_at, "Ticket.drift_detected_at"
        )
        self._drift_reason = as_optional_str(drift_reason, "Ticket.drift_reason")
        self._repository_context = _as_optional_instance(
            repository_context, RepositoryContext, "Ticket.repository_context"
        )
        self._external_issue = _as_optional_instance(
            external_issue, ExternalIssue, "Ticket.external_issue"
        )
        self._implementation_branch = (
            None
            if implementation_branch is None
            else as_branch_name(implementation_branch, "Ticket.implementation_branch")
        )
        self._qa_items = _as_qa_items(qa_items)
        self._tech_spec = as_optional_str(tech_spec, "Ticket.tech_spec", max_len=_TECH_SPEC_MAX)
        self._created_at = as_datetime(created_at, "Ticket.created_at")
        self._updated_at = as_datetime(updated_at, "Ticket.updated_at")
        self._revision = as_int(revision, "Ticket.revision", minimum=0)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create_draft(
        cls,
        workspace_id: str,
        title: str,
        description: str | None = None,
        repository_context: RepositoryContext | None = None,
        *,
        ticket_id: str | None = None,
        now: datetime | None = None,
    ) -> Ticket:
        """Create a new ticket in ``DRAFT``: unlocked, every collection empty."""

        created_at = _resolve_now(now)
        return cls(
            id=ticket_id if ticket_id is not None else generate_ticket_id(),
            workspace_id=workspace_id,
            title=title,
            description=description,
            repository_context=repository_context,
            created_at=created_at,
            updated_at=created_at,
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def workspace_id(self) -> str:
        return self._workspace_id

    @property
    def status(self) -> TicketStatus:
        return self._status

    @property
    def lock_state(self) -> TicketLock:
        return self._lock

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked

    @property
    def locked_by(self) -> str | None:
        return self._lock.owner_id if isinstance(self._lock, LockedBy) else None

    @property
    def locked_at(self) -> datetime | None:
        return self._lock.since if isinstance(self._lock, LockedBy) else None

    @property
    def title(self) -> str:
        return self._title

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def type(self) -> TicketType | None:
        return self._type

    @property
    def priority(self) -> TicketPriority | None:
        return self._priority

    @property
    def acceptance_criteria(self) -> tuple[str, ...]:
        return self._acceptance_criteria

    @property
    def assumptions(self) -> tuple[str, ...]:
        return self._assumptions

    @property
    def repo_paths(self) -> tuple[str, ...]:
        return self._repo_paths

    @property
    def readiness_score(self) -> int:
        return self._readiness_score

    @property
    def validation_results(self) -> tuple[ValidationResult, ...]:
        return self._validation_results

    @property
    def code_snapshot(self) -> CodeSnapshot | None:
        return self._code_snapshot

    @property
    def api_snapshot(self) -> ApiSnapshot | None:
        return self._api_snapshot

    @property
    def pre_implementation_findings(self) -> tuple[Finding, ...]:
        return self._findings

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._questions

    @property
    def failure_reason(self) -> str | None:
        return self._failure_reason

    @property
    def drift_detected_at(self) -> datetime | None:
        return self._drift_detected_at

    @property
    def drift_reason(self) -> str | None:
        return self._drift_reason

    @property
    def repository_context(self) -> RepositoryContext | None:
        return self._repository_context

    @property
    def external_issue(self) -> ExternalIssue | None:
        return self._external_issue

    @property
    def implementation_branch(self) -> str | None:
        return self._implementation_branch

    @property
    def qa_items(self) -> tuple[QAItem, ...]:
        return self._qa_items

    @property
    def tech_spec(self) -> str | None:
        return self._tech_spec

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def revision(self) -> int:
        """Persistence revision for optimistic concurrency; not domain state."""

        return self._revision

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def overall_validation_score(self) -> float:
        return overall_validation_score(self._validation_results)

    @property
    def validation_passed(self) -> bool:
        return validation_passed(self._validation_results)

    @property
    def has_critical_blockers(self) -> bool:
        return has_critical_blockers(self._validation_results)

    @property
    def is_open(self) -> bool:
        return self._status in OPEN_STATUSES

    @property
    def repository_full_name(self) -> str | None:
        if self._repository_context is not None:
            return self._repository_context.repository_full_name
        if self._code_snapshot is not None:
            return self._code_snapshot.repository_full_name
        return None

    def references_repository(self, repository_full_name: str) -> bool:
        return self.repository_full_name == repository_full_name

    def allowed_triggers(self) -> tuple[Trigger, ...]:
        return allowed_triggers(self._status)

    def is_locked_by(self, run_id: str) -> bool:
        return self._lock.is_held_by(run_id)

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def start_generating(self, run_id: str, *, now: datetime | None = None) -> None:
        """DRAFT -> GENERATING, acquiring the workflow lock for ``run_id``."""

        owner = as_str(run_id, "run_id", max_len=256)
        self._ensure_unlocked(Trigger.START_GENERATING)
        target = self._resolve(Trigger.START_GENERATING)
        moment = _resolve_now(now)

        self._lock = LockedBy(owner_id=owner, since=moment)
        self._apply(target, moment)

    def suspend_for_findings_review(
        self,
        findings: Iterable[Finding | Mapping[str, object]],
        *,
        now: datetime | None = None,
    ) -> None:
        """GENERATING -> SUSPENDED_FINDINGS. The lock stays with the current run."""

        target = self._resolve(Trigger.SUSPEND_FOR_FINDINGS)
        parsed = _as_findings(findings)
        moment = _resolve_now(now)

        self._findings = parsed
        self._apply(target, moment)

    def suspend_for_questions(
        self,
        questions: Iterable[Question | Mapping[str, object]],
        *,
        now: datetime | None = None,
    ) -> None:
        """GENERATING -> SUSPENDED_QUESTIONS. The lock stays with the current run."""

        target = self._resolve(Trigger.SUSPEND_FOR_QUESTIONS)
        parsed = _as_questions(questions)
        moment = _resolve_now(now)

        self._questions = parsed
        self._apply(target, moment)

    def resume_generating(self, *, now: datetime | None = None) -> None:
        """Back to GENERATING; findings and questions are kept as they are."""

        target = self._resolve(Trigger.RESUME_GENERATING)
        self._apply(target, _resolve_now(now))

    def validate(
        self,
        results: Iterable[ValidationResult | Mapping[str, object]],
        *,
        now: datetime | None = None,
    ) -> None:
        """GENERATING -> VALIDATED.

        Requires ``type`` and at least one acceptance criterion. Stores
        ``results``, derives ``readiness_score`` from them and releases the lock.
        An empty ``results`` list is accepted and yields a score of 0.
        """

        target = self._resolve(Trigger.VALIDATE)
        missing: list[str] = []
        if self._type is None:
            missing.append("type")
        if not self._acceptance_criteria:
            missing.append("acceptanceCriteria")
        if missing:
            raise MissingRequiredFieldsError(
                missing, ticket_id=self._id, status=self._status.value
            )
        try:
            parsed = parse_validation_results(list(results), "results")
        except ValueError as exc:
            raise ValidationFailedError(
                str(exc), ticket_id=self._id, status=self._status.value
            ) from exc
        moment = _resolve_now(now)

        self._validation_results = parsed
        self._readiness_score = calculate_readiness_score(parsed)
        self._lock = UNLOCKED
        self._apply(target, moment)

    def mark_as_failed(self, reason: str, *, now: datetime | None = None) -> None:
        """GENERATING -> FAILED, releasing the lock regardless of holder."""

        target = self._resolve(Trigger.MARK_FAILED)
        parsed_reason = as_str(reason, "reason")
        moment = _resolve_now(now)

        self._lock = UNLOCKED
        self._apply(target, moment)
        self._failure_reason = parsed_reason

    def mark_ready(
        self,
        code_snapshot: CodeSnapshot,
        api_snapshot: ApiSnapshot | None = None,
        *,
        now: datetime | None = None,
    ) -> None:
        """VALIDATED -> READY, storing the snapshots drift detection compares against."""

        target = self._resolve(Trigger.MARK_READY)
        if self._readiness_score < READINESS_THRESHOLD:
            raise InsufficientReadinessError(
                self._readiness_score,
                threshold=READINESS_THRESHOLD,
                ticket_id=self._id,
                status=self._status.value,
            )
        code = _as_instance(code_snapshot, CodeSnapshot, "code_snapshot")
        api = _as_optional_instance(api_snapshot, ApiSnapshot, "api_snapshot")
        moment = _resolve_now(now)

        self._code_snapshot = code
        self._api_snapshot = api
        self._apply(target, moment)

    def export(self, external_issue: ExternalIssue, *, now: datetime | None = None) -> None:
        target = self._resolve(Trigger.EXPORT)
        issue = _as_instance(external_issue, ExternalIssue, "external_issue")
        moment = _resolve_now(now)

        self._external_issue = issue
        self._apply(target, moment)

    def approve(self, *, now: datetime | None = None) -> None:
        target = self._resolve(Trigger.APPROVE)
        self._apply(target, _resolve_now(now))

    def start_implementation(
        self,
        branch: str,
        qa_items: Iterable[QAItem | Mapping[str, object]] | None = None,
        *,
        now: datetime | None = None,
    ) -> None:
        target = self._resolve(Trigger.START_IMPLEMENTATION)
        parsed_branch = as_branch_name(branch, "branch")
        parsed_items = _as_qa_items(qa_items or ())
        moment = _resolve_now(now)

        self._implementation_branch = parsed_branch
        self._qa_items = parsed_items
        self._apply(target, moment)

    def revert_to_draft(self, *, now: datetime | None = None) -> None:
        """Back to DRAFT from FAILED, SUSPENDED_FINDINGS or COMPLETE.

        Releases the lock. Reverting a COMPLETE ticket discards its finalized
        tech spec so it can be regenerated.
        """

        source = self._status
        target = self._resolve(Trigger.REVERT_TO_DRAFT)
        moment = _resolve_now(now)

        if source is TicketStatus.COMPLETE:
            self._tech_spec = None
        self._lock = UNLOCKED
        self._apply(target, moment)

    def mark_complete(self, tech_spec: str | None = None, *, now: datetime | None = None) -> None:
        target = self._resolve(Trigger.MARK_COMPLETE)
        parsed_spec = as_optional_str(tech_spec, "tech_spec", max_len=_TECH_SPEC_MAX)
        moment = _resolve_now(now)

        if parsed_spec is not None:
            self._tech_spec = parsed_spec
        self._apply(target, moment)

    def mark_drifted(self, reason: str, *, now: datetime | None = None) -> bool:
        """Flag the ticket as drifted.

        Only open tickets can drift; for any other status this returns ``False``
        and leaves the ticket untouched.
        """

        if self._status not in OPEN_STATUSES:
            return False
        target = self._resolve(Trigger.DETECT_DRIFT)
        parsed_reason = as_str(reason, "reason")
        moment = _resolve_now(now)

        self._drift_detected_at = moment
        self._drift_reason = parsed_reason
        self._apply(target, moment)
        return True

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock(self, run_id: str, *, now: datetime | None = None) -> None:
        owner = as_str(run_id, "run_id", max_len=256)
        self._ensure_unlocked(None)
        moment = _resolve_now(now)

        self._lock = LockedBy(owner_id=owner, since=moment)
        self._updated_at = moment

    def unlock(self, *, now: datetime | None = None) -> None:
        """Release the lock outside an in-flight generation.

        While the ticket is GENERATING or suspended, only a lifecycle edge or
        :meth:`force_unlock` may release it.
        """

        if not self._lock.is_locked:
            return
        if self._status in IN_FLIGHT_STATUSES:
            raise InvalidStateTransitionError(
                f"Cannot unlock ticket while status is {self._status.value}; "
                "complete the workflow step or use force_unlock",
                ticket_id=self._id,
                status=self._status.value,
            )
        moment = _resolve_now(now)
        self._lock = UNLOCKED
        self._updated_at = moment

    def force_unlock(self, *, now: datetime | None = None) -> str | None:
        """Operator recovery: drop the lock whoever holds it.

        Returns the previous holder, or ``None`` when the ticket was not locked
        (in which case nothing changes).
        """

        if not isinstance(self._lock, LockedBy):
            return None
        previous = self._lock.owner_id
        moment = _resolve_now(now)
        self._lock = UNLOCKED
        self._updated_at = moment
        return previous

    # ------------------------------------------------------------------
    # Content writes
    # ------------------------------------------------------------------

    def update_content(
        self,
        ticket_type: TicketType | str | None,
        acceptance_criteria: Iterable[str],
        assumptions: Iterable[str],
        repo_paths: Iterable[str],
        *,
        priority: TicketPriority | str | None = None,
        now: datetime | None = None,
    ) -> None:
        parsed_type = None if ticket_type is None else as_enum(TicketType, ticket_type, "type")
        parsed_criteria = as_str_tuple(list(acceptance_criteria), "acceptance_criteria")
        parsed_assumptions = as_str_tuple(list(assumptions), "assumptions")
        parsed_paths = as_str_tuple(list(repo_paths), "repo_paths")
        parsed_priority = (
            self._priority if priority is None else as_enum(TicketPriority, priority, "priority")
        )
        moment = _resolve_now(now)

        self._type = parsed_type
        self._acceptance_criteria = parsed_criteria
        self._assumptions = parsed_assumptions
        self._repo_paths = parsed_paths
        self._priority = parsed_priority
        self._updated_at = moment

    def answer_questions(
        self, answers: Mapping[str, str], *, now: datetime | None = None
    ) -> None:
        """Record answers keyed by question id; unknown ids are rejected."""

        known = {question.id for question in self._questions}
        unknown = sorted(key for key in answers if key not in known)
        if unknown:
            fail("answers", f"unknown question ids: {unknown}")
        updated = tuple(
            question.with_answer(as_str(answers[question.id], f"answers.{question.id}", min_len=0))
            if question.id in answers
            else question
            for question in self._questions
        )
        moment = _resolve_now(now)

        self._questions = updated
        self._updated_at = moment

    def set_repository_context(
        self, context: RepositoryContext | None, *, now: datetime | None = None
    ) -> None:
        parsed = _as_optional_instance(context, RepositoryContext, "repository_context")
        moment = _resolve_now(now)

        self._repository_context = parsed
        self._updated_at = moment

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def record_revision(self, revision: int) -> None:
        """Called by repositories after a successful compare-and-swap write."""

        self._revision = as_int(revision, "revision", minimum=0)

    def to_dict(self) -> dict[str, object]:
        return {
            "schema_version": TICKET_RECORD_SCHEMA_VERSION,
            "id": self._id,
            "workspace_id": self._workspace_id,
            "status": self._status.value,
            "locked_by": self.locked_by,
            "locked_at": optional_iso8601z(self.locked_at),
            "title": self._title,
            "description": self._description,
            "type": None if self._type is None else self._type.value,
            "priority": None if self._priority is None else self._priority.value,
            "acceptance_criteria": list(self._acceptance_criteria),
            "assumptions": list(self._assumptions),
            "repo_paths": list(self._repo_paths),
            "readiness_score": self._readiness_score,
            "validation_results": [result.to_dict() for result in self._validation_results],
            "code_snapshot": _optional_dict(self._code_snapshot),
            "api_snapshot": _optional_dict(self._api_snapshot),
            "pre_implementation_findings": [finding.to_dict() for finding in self._findings],
            "questions": [question.to_dict() for question in self._questions],
            "failure_reason": self._failure_reason,
            "drift_detected_at": optional_iso8601z(self._drift_detected_at),
            "drift_reason": self._drift_reason,
            "repository_context": _optional_dict(self._repository_context),
            "external_issue": _optional_dict(self._external_issue),
            "implementation_branch": self._implementation_branch,
            "qa_items": [item.to_dict() for item in self._qa_items],
            "tech_spec": self._tech_spec,
            "created_at": datetime_to_iso8601z(self._created_at),
            "updated_at": datetime_to_iso8601z(self._updated_at),
        }

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, revision: int = 0) -> Ticket:
        """Reconstitute a ticket from its flat record.

        Legacy validation results are normalized (percent scores, blank
        messages) and entries that cannot be parsed at all are dropped.
        """

        parsed = expect_object(data, "Ticket", required=_RECORD_REQUIRED, optional=_RECORD_OPTIONAL)
        schema_version = parsed.get("schema_version", TICKET_RECORD_SCHEMA_VERSION)
        if schema_version != TICKET_RECORD_SCHEMA_VERSION:
            fail(
                "Ticket.schema_version",
                f"unsupported record version {schema_version!r}; "
                f"expected {TICKET_RECORD_SCHEMA_VERSION}",
            )

        raw_type = parsed.get("type")
        raw_priority = parsed.get("priority")
        raw_branch = parsed.get("implementation_branch")
        return cls(
            id=as_str(parsed["id"], "Ticket.id", max_len=128),
            workspace_id=as_str(parsed["workspace_id"], "Ticket.workspace_id", max_len=128),
            status=as_enum(TicketStatus, parsed["status"], "Ticket.status"),
            lock=lock_from_fields(parsed.get("locked_by"), parsed.get("locked_at")),
            title=as_str(parsed["title"], "Ticket.title", max_len=TITLE_MAX_LENGTH),
            description=as_optional_str(parsed.get("description"), "Ticket.description"),
            ticket_type=(
                None if raw_type is None else as_enum(TicketType, raw_type, "Ticket.type")
            ),
            priority=(
                None
                if raw_priority is None
                else as_enum(TicketPriority, raw_priority, "Ticket.priority")
            ),
            acceptance_criteria=as_str_tuple(
                parsed.get("acceptance_criteria", ()), "Ticket.acceptance_criteria"
            ),
            assumptions=as_str_tuple(parsed.get("assumptions", ()), "Ticket.assumptions"),
            repo_paths=as_str_tuple(parsed.get("repo_paths", ()), "Ticket.repo_paths"),
            readiness_score=as_int(
                parsed.get("readiness_score", 0), "Ticket.readiness_score", minimum=0, maximum=100
            ),
            validation_results=parse_validation_results(
                parsed.get("validation_results", ()),
                "Ticket.validation_results",
                drop_invalid=True,
            ),
            code_snapshot=_optional_from_dict(
                parsed.get("code_snapshot"), CodeSnapshot.from_dict, "Ticket.code_snapshot"
            ),
            api_snapshot=_optional_from_dict(
                parsed.get("api_snapshot"), ApiSnapshot.from_dict, "Ticket.api_snapshot"
            ),
            pre_implementation_findings=_list_from_dict(
                parsed.get("pre_implementation_findings", ()),
                Finding.from_dict,
                "Ticket.pre_implementation_findings",
            ),
            questions=_list_from_dict(
                parsed.get("questions", ()), Question.from_dict, "Ticket.questions"
            ),
            failure_reason=as_optional_str(parsed.get("failure_reason"), "Ticket.failure_reason"),
            drift_detected_at=as_optional_datetime(
                parsed.get("drift_detected_at"), "Ticket.drift_detected_at"
            ),
            drift_reason=as_optional_str(parsed.get("drift_reason"), "Ticket.drift_reason"),
            repository_context=_optional_from_dict(
                parsed.get("repository_context"),
                RepositoryContext.from_dict,
                "Ticket.repository_context",
            ),
            external_issue=_optional_from_dict(
                parsed.get("external_issue"), ExternalIssue.from_dict, "Ticket.external_issue"
            ),
            implementation_branch=(
                None
                if raw_branch is None
                else as_str(raw_branch, "Ticket.implementation_branch", max_len=256)
            ),
            qa_items=_list_from_dict(
                parsed.get("qa_items", ()), QAItem.from_dict, "Ticket.qa_items"
            ),
            tech_spec=as_optional_str(
                parsed.get("tech_spec"), "Ticket.tech_spec", max_len=_TECH_SPEC_MAX
            ),
            created_at=as_datetime(parsed["created_at"], "Ticket.created_at"),
            updated_at=as_datetime(parsed["updated_at"], "Ticket.updated_at"),
            revision=revision,
        )

    def __repr__(self) -> str:
        return (
            f"Ticket(id={self._id!r}, workspace_id={self._workspace_id!r}, "
            f"status={self._status.value!r}, locked_by={self.locked_by!r}, "
            f"revision={self._revision})"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, trigger: Trigger) -> TicketStatus:
        return resolve_transition(self._status, trigger, ticket_id=self._id)

    def _ensure_unlocked(self, trigger: Trigger | None) -> None:
        if isinstance(self._lock, LockedBy):
            raise AlreadyLockedError(
                self._lock.owner_id,
                ticket_id=self._id,
                status=self._status.value,
                trigger=None if trigger is None else trigger.value,
            )

    def _apply(self, target: TicketStatus, moment: datetime) -> None:
        if self._status is TicketStatus.FAILED and target is not TicketStatus.FAILED:
            self._failure_reason = None
        self._status = target
        self._updated_at = moment


def _resolve_now(now: datetime | None) -> datetime:
    return utc_now() if now is None else as_datetime(now, "now")


def _as_title(value: object) -> str:
    return as_str(value, "Ticket.title", min_len=TITLE_MIN_LENGTH, max_len=TITLE_MAX_LENGTH)


def _as_instance(value: object, expected: type[_V], path: str) -> _V:
    if not isinstance(value, expected):
        fail(path, f"expected {expected.__name__}, got {type(value).__name__}")
    return value


def _as_optional_instance(value: object, expected: type[_V], path: str) -> _V | None:
    if value is None:
        return None
    return _as_instance(value, expected, path)


def _as_findings(values: Iterable[Finding | Mapping[str, object]]) -> tuple[Finding, ...]:
    items = as_sequence(list(values), "findings")
    if len(items) > MAX_PRE_IMPLEMENTATION_FINDINGS:
        fail(
            "findings",
            f"Maximum {MAX_PRE_IMPLEMENTATION_FINDINGS} pre-implementation findings allowed",
        )
    return tuple(
        item
        if isinstance(item, Finding)
        else Finding.from_dict(_as_mapping(item, f"findings[{i}]"))
        for i, item in enumerate(items)
    )


def _as_questions(values: Iterable[Question | Mapping[str, object]]) -> tuple[Question, ...]:
    items = as_sequence(list(values), "questions")
    if len(items) > MAX_QUESTIONS:
        fail("questions", f"Maximum {MAX_QUESTIONS} questions allowed")
    parsed = tuple(
        item
        if isinstance(item, Question)
        else Question.from_dict(_as_mapping(item, f"questions[{i}]"))
        for i, item in enumerate(items)
    )
    ids = [question.id for question in parsed]
    if len(set(ids)) != len(ids):
        fail("questions", "question ids must be unique")
    return parsed


def _as_qa_items(values: Iterable[QAItem | Mapping[str, object]]) -> tuple[QAItem, ...]:
    return tuple(
        item
        if isinstance(item, QAItem)
        else QAItem.from_dict(_as_mapping(item, f"qa_items[{i}]"))
        for i, item in enumerate(values)
    )


def _as_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        fail(path, f"expected object, got {type(value).__name__}")
    return value


def _optional_dict(
    value: CodeSnapshot | ApiSnapshot | RepositoryContext | ExternalIssue | None,
) -> dict[str, object] | None:
    return None if value is None else value.to_dict()


def _optional_from_dict(
    value: object, factory: Callable[[Mapping[str, object]], _V], path: str
) -> _V | None:
    if value is None:
        return None
    return factory(_as_mapping(value, path))


def _list_from_dict(
    value: object, factory: Callable[[Mapping[str, object]], _V], path: str
) -> list[_V]:
    return [
        factory(_as_mapping(item, f"{path}[{index}]"))
        for index, item in enumerate(as_sequence(value, path))
    ]


__all__ = ["Ticket"]
