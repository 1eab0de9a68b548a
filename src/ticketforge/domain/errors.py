"""Closed error taxonomy raised by the ticket aggregate.

Every error carries a ``kind`` drawn from :class:`TicketErrorKind` so callers can
either ``except`` a concrete class or ``match`` on the kind::

    try:
        ticket.start_generating(run_id)
    except TicketDomainError as exc:
        match exc.kind:
            case TicketErrorKind.ALREADY_LOCKED:
                ...

The aggregate raises these synchronously and never logs or retries; the
translation into user-visible failures happens at the CLI/service boundary.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from ticketforge.constants import READINESS_THRESHOLD


class TicketErrorKind(StrEnum):
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    ALREADY_LOCKED = "already_locked"
    MISSING_REQUIRED_FIELDS = "missing_required_fields"
    INSUFFICIENT_READINESS = "insufficient_readiness"
    VALIDATION_FAILED = "validation_failed"


class TicketDomainError(Exception):
    """Base class for every failure raised by the ticket aggregate."""

    kind: TicketErrorKind = TicketErrorKind.INVALID_STATE_TRANSITION

    def __init__(
        self,
        message: str,
        *,
        ticket_id: str | None = None,
        status: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.ticket_id = ticket_id
        self.status = status

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "ticket_id": self.ticket_id,
            "status": self.status,
        }


class InvalidStateTransitionError(TicketDomainError):
    kind = TicketErrorKind.INVALID_STATE_TRANSITION

    def __init__(
        self,
        message: str,
        *,
        ticket_id: str | None = None,
        status: str | None = None,
        trigger: str | None = None,
        allowed: Iterable[str] = (),
    ) -> None:
        super().__init__(message, ticket_id=ticket_id, status=status)
        self.trigger = trigger
        self.allowed = tuple(allowed)

    @classmethod
    def for_edge(
        cls,
        *,
        status: str,
        trigger: str,
        allowed: Iterable[str],
        ticket_id: str | None = None,
    ) -> InvalidStateTransitionError:
        allowed_tuple = tuple(allowed)
        allowed_text = ", ".join(allowed_tuple) if allowed_tuple else "none"
        return cls(
            f"Invalid transition from {status} via {trigger}. Allowed: {allowed_text}",
            ticket_id=ticket_id,
            status=status,
            trigger=trigger,
            allowed=allowed_tuple,
        )

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["trigger"] = self.trigger
        payload["allowed"] = list(self.allowed)
        return payload


class AlreadyLockedError(InvalidStateTransitionError):
    """Lock requested while another (or the same) workflow run already holds it."""

    kind = TicketErrorKind.ALREADY_LOCKED

    def __init__(
        self,
        held_by: str,
        *,
        ticket_id: str | None = None,
        status: str | None = None,
        trigger: str | None = None,
    ) -> None:
        super().__init__(
            f"Ticket is already locked by workflow {held_by}. Cannot start new workflow.",
            ticket_id=ticket_id,
            status=status,
            trigger=trigger,
        )
        self.held_by = held_by

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["held_by"] = self.held_by
        return payload


class MissingRequiredFieldsError(TicketDomainError):
    kind = TicketErrorKind.MISSING_REQUIRED_FIELDS

    def __init__(
        self,
        missing_fields: Iterable[str],
        *,
        ticket_id: str | None = None,
        status: str | None = None,
    ) -> None:
        fields = tuple(missing_fields)
        super().__init__(
            "Cannot transition to validated. Missing required fields: " + ", ".join(fields),
            ticket_id=ticket_id,
            status=status,
        )
        self.missing_fields = fields

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["missing_fields"] = list(self.missing_fields)
        return payload


class InsufficientReadinessError(TicketDomainError):
    kind = TicketErrorKind.INSUFFICIENT_READINESS

    def __init__(
        self,
        score: int,
        *,
        threshold: int = READINESS_THRESHOLD,
        ticket_id: str | None = None,
        status: str | None = None,
    ) -> None:
        super().__init__(
            f"Cannot mark ready. Readiness score {score} < {threshold}",
            ticket_id=ticket_id,
            status=status,
        )
        self.score = score
        self.threshold = threshold

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["score"] = self.score
        payload["threshold"] = self.threshold
        return payload


class ValidationFailedError(TicketDomainError):
    """Structured validation input was rejected before any state changed."""

    kind = TicketErrorKind.VALIDATION_FAILED


__all__ = [
    "AlreadyLockedError",
    "InsufficientReadinessError",
    "InvalidStateTransitionError",
    "MissingRequiredFieldsError",
    "TicketDomainError",
    "TicketErrorKind",
    "ValidationFailedError",
]
