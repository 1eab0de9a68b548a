"""Typed content carried by a ticket: findings, questions, export links and Q&A."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from ticketforge.domain._fields import (
    as_datetime,
    as_enum,
    as_optional_str,
    as_str,
    as_unit_interval,
    datetime_to_iso8601z,
    expect_object,
    utc_now,
)
from ticketforge.domain.ids import generate_finding_id


class TicketType(StrEnum):
    FEATURE = "feature"
    BUG = "bug"
    TASK = "task"


class TicketPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class FindingCategory(StrEnum):
    GAP = "gap"
    CONFLICT = "conflict"
    MISSING_DEPENDENCY = "missing-dependency"
    ARCHITECTURAL_MISMATCH = "architectural-mismatch"
    SECURITY = "security"


class FindingSeverity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IssuePlatform(StrEnum):
    LINEAR = "linear"
    JIRA = "jira"


@dataclass(frozen=True, slots=True)
class Finding:
    """Pre-implementation finding raised while a generation is suspended for review."""

    category: FindingCategory
    severity: FindingSeverity
    description: str
    suggestion: str = ""
    confidence: float = 1.0
    code_location: str | None = None
    evidence: str | None = None
    id: str = field(default_factory=generate_finding_id)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", as_str(self.id, "Finding.id", max_len=128))
        object.__setattr__(
            self, "category", as_enum(FindingCategory, self.category, "Finding.category")
        )
        object.__setattr__(
            self, "severity", as_enum(FindingSeverity, self.severity, "Finding.severity")
        )
        object.__setattr__(
            self,
            "description",
            as_str(self.description, "Finding.description", min_len=10, max_len=500),
        )
        object.__setattr__(
            self, "suggestion", as_str(self.suggestion, "Finding.suggestion", min_len=0)
        )
        object.__setattr__(
            self, "confidence", as_unit_interval(self.confidence, "Finding.confidence")
        )
        object.__setattr__(
            self, "code_location", as_optional_str(self.code_location, "Finding.code_location")
        )
        object.__setattr__(self, "evidence", as_optional_str(self.evidence, "Finding.evidence"))
        object.__setattr__(self, "created_at", as_datetime(self.created_at, "Finding.created_at"))

    @property
    def is_critical(self) -> bool:
        return self.severity is FindingSeverity.CRITICAL

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "category": self.category.value,
            "severity": self.severity.value,
            "description": self.description,
            "suggestion": self.suggestion,
            "confidence": self.confidence,
            "code_location": self.code_location,
            "evidence": self.evidence,
            "created_at": datetime_to_iso8601z(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Finding:
        parsed = expect_object(
            data,
            "Finding",
            required={"category", "severity", "description"},
            optional={"id", "created_at", "suggestion", "confidence", "code_location", "evidence"},
        )
        raw_id = parsed.get("id")
        raw_created_at = parsed.get("created_at")
        return cls(
            id=(
                generate_finding_id()
                if raw_id is None
                else as_str(raw_id, "Finding.id", max_len=128)
            ),
            category=as_enum(FindingCategory, parsed["category"], "Finding.category"),
            severity=as_enum(FindingSeverity, parsed["severity"], "Finding.severity"),
            description=as_str(parsed["description"], "Finding.description", max_len=500),
            suggestion=as_str(parsed.get("suggestion", ""), "Finding.suggestion", min_len=0),
            confidence=as_unit_interval(parsed.get("confidence", 1.0), "Finding.confidence"),
            code_location=as_optional_str(parsed.get("code_location"), "Finding.code_location"),
            evidence=as_optional_str(parsed.get("evidence"), "Finding.evidence"),
            created_at=(
                utc_now()
                if raw_created_at is None
                else as_datetime(raw_created_at, "Finding.created_at")
            ),
        )


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    text: str
    context: str = ""
    default_answer: str | None = None
    answer: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", as_str(self.id, "Question.id", max_len=128))
        object.__setattr__(self, "text", as_str(self.text, "Question.text"))
        object.__setattr__(self, "context", as_str(self.context, "Question.context", min_len=0))
        object.__setattr__(
            self, "default_answer", as_optional_str(self.default_answer, "Question.default_answer")
        )
        if self.answer is not None:
            object.__setattr__(
                self, "answer", as_str(self.answer, "Question.answer", min_len=0)
            )

    @property
    def is_answered(self) -> bool:
        return self.answer is not None

    def with_answer(self, answer: str) -> Question:
        return Question(
            id=self.id,
            text=self.text,
            context=self.context,
            default_answer=self.default_answer,
            answer=answer,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "text": self.text,
            "context": self.context,
            "default_answer": self.default_answer,
            "answer": self.answer,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Question:
        parsed = expect_object(
            data,
            "Question",
            required={"id", "text"},
            optional={"context", "default_answer", "answer"},
        )
        raw_answer = parsed.get("answer")
        return cls(
            id=as_str(parsed["id"], "Question.id", max_len=128),
            text=as_str(parsed["text"], "Question.text"),
            context=as_str(parsed.get("context", ""), "Question.context", min_len=0),
            default_answer=as_optional_str(parsed.get("default_answer"), "Question.default_answer"),
            answer=None if raw_answer is None else as_str(raw_answer, "Question.answer", min_len=0),
        )


@dataclass(frozen=True, slots=True)
class ExternalIssue:
    """Link to the issue created on an external tracker by ``Ticket.export``."""

    platform: IssuePlatform
    issue_id: str
    issue_url: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "platform", as_enum(IssuePlatform, self.platform, "ExternalIssue.platform")
        )
        object.__setattr__(
            self, "issue_id", as_str(self.issue_id, "ExternalIssue.issue_id", max_len=256)
        )
        object.__setattr__(
            self, "issue_url", as_str(self.issue_url, "ExternalIssue.issue_url", max_len=2048)
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "platform": self.platform.value,
            "issue_id": self.issue_id,
            "issue_url": self.issue_url,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ExternalIssue:
        parsed = expect_object(
            data, "ExternalIssue", required={"platform", "issue_id", "issue_url"}
        )
        return cls(
            platform=as_enum(IssuePlatform, parsed["platform"], "ExternalIssue.platform"),
            issue_id=as_str(parsed["issue_id"], "ExternalIssue.issue_id", max_len=256),
            issue_url=as_str(parsed["issue_url"], "ExternalIssue.issue_url", max_len=2048),
        )


@dataclass(frozen=True, slots=True)
class QAItem:
    """Review question/answer pair attached when implementation starts."""

    question: str
    answer: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "question", as_str(self.question, "QAItem.question"))
        object.__setattr__(self, "answer", as_str(self.answer, "QAItem.answer", min_len=0))

    def to_dict(self) -> dict[str, object]:
        return {"question": self.question, "answer": self.answer}

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> QAItem:
        parsed = expect_object(data, "QAItem", required={"question", "answer"})
        return cls(
            question=as_str(parsed["question"], "QAItem.question"),
            answer=as_str(parsed["answer"], "QAItem.answer", min_len=0),
        )


__all__ = [
    "ExternalIssue",
    "Finding",
    "FindingCategory",
    "FindingSeverity",
    "IssuePlatform",
    "QAItem",
    "Question",
    "TicketPriority",
    "TicketType",
]
