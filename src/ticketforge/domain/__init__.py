"""
ticketforge — domain layer

Purpose
- Ticket aggregate, its value objects, the lifecycle transition table, and the
  closed error taxonomy.

Functional requirements
- Domain objects are serializable to flat, versioned records.
- The domain layer performs no I/O and never logs.
"""

from ticketforge.domain.content import (
    ExternalIssue,
    Finding,
    FindingCategory,
    FindingSeverity,
    IssuePlatform,
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
    TicketDomainError,
    TicketErrorKind,
    ValidationFailedError,
)
from ticketforge.domain.lifecycle import OPEN_STATUSES, TRANSITIONS, TicketStatus, Trigger
from ticketforge.domain.lock import UNLOCKED, LockedBy, TicketLock, Unlocked
from ticketforge.domain.ports import TicketRepository
from ticketforge.domain.snapshots import ApiSnapshot, CodeSnapshot, RepositoryContext
from ticketforge.domain.ticket import Ticket
from ticketforge.domain.validation import (
    ValidationResult,
    ValidatorType,
    calculate_readiness_score,
    overall_validation_score,
)

__all__ = [
    "OPEN_STATUSES",
    "TRANSITIONS",
    "UNLOCKED",
    "AlreadyLockedError",
    "ApiSnapshot",
    "CodeSnapshot",
    "ExternalIssue",
    "Finding",
    "FindingCategory",
    "FindingSeverity",
    "InsufficientReadinessError",
    "InvalidStateTransitionError",
    "IssuePlatform",
    "LockedBy",
    "MissingRequiredFieldsError",
    "QAItem",
    "Question",
    "RepositoryContext",
    "Ticket",
    "TicketDomainError",
    "TicketErrorKind",
    "TicketLock",
    "TicketPriority",
    "TicketRepository",
    "TicketStatus",
    "TicketType",
    "Trigger",
    "Unlocked",
    "ValidationFailedError",
    "ValidationResult",
    "ValidatorType",
    "calculate_readiness_score",
    "overall_validation_score",
]
