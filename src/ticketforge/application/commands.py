"""
ticketforge — ticket command service

Purpose
- Package the load -> mutate -> save loop an external workflow orchestrator
  runs for every ticket step, plus operator recovery for stuck locks.

Functional requirements
- A mutation that raises leaves the stored ticket untouched.
- Saves go through the repository's compare-and-swap; a lost race surfaces as
  ``StaleTicketError`` for the caller to reload and retry.
- Generations whose lock outlives ``lock_timeout_seconds`` can be failed so
  the ticket can be reverted to draft and retried; one bad ticket id does
  not stop the rest of the batch.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

import structlog

from ticketforge.constants import DEFAULT_LOCK_TIMEOUT_SECONDS
from ticketforge.domain._fields import JSONValue, utc_now
from ticketforge.domain.errors import TicketDomainError
from ticketforge.domain.events import EventType
from ticketforge.domain.lifecycle import TicketStatus
from ticketforge.domain.lock import LockedBy
from ticketforge.domain.ports import TicketRepository
from ticketforge.domain.snapshots import RepositoryContext
from ticketforge.domain.ticket import Ticket
from ticketforge.observability.events import EventBus
from ticketforge.observability.logging import correlation_scope
from ticketforge.persistence.repositories import StaleTicketError, TicketNotFoundError

T = TypeVar("T")

# Per-ticket errors a sweep reports and moves past; storage errors still abort.
_SWEEP_ERRORS: tuple[type[Exception], ...] = (
    TicketDomainError,
    TicketNotFoundError,
    StaleTicketError,
)


@dataclass(frozen=True, slots=True)
class SweepFailure:
    ticket_id: str
    error_type: str
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"ticket_id": self.ticket_id, "error_type": self.error_type, "message": self.message}


@dataclass(frozen=True, slots=True)
class StaleGenerationSweep:
    """Outcome of ``fail_stale_generations`` over a batch of ticket ids."""

    failed: tuple[str, ...] = ()
    failures: tuple[SweepFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "failed": list(self.failed),
            "failures": [failure.to_dict() for failure in self.failures],
        }


class TicketCommandService:
    """Apply aggregate mutations and persist each one atomically."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
        lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        if lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be > 0")
        self._repository = repository
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock_timeout_seconds = lock_timeout_seconds

    @property
    def lock_timeout_seconds(self) -> int:
        return self._lock_timeout_seconds

    def load(self, ticket_id: str, workspace_id: str) -> Ticket:
        ticket = self._repository.find_by_id(ticket_id)
        if ticket is None or ticket.workspace_id != workspace_id:
            raise TicketNotFoundError(ticket_id, workspace_id)
        return ticket

    def create_draft(
        self,
        workspace_id: str,
        title: str,
        description: str | None = None,
        repository_context: RepositoryContext | None = None,
        *,
        now: datetime | None = None,
    ) -> Ticket:
        ticket = Ticket.create_draft(
            workspace_id, title, description, repository_context, now=now
        )
        self._save(ticket)
        return ticket

    def execute(self, ticket_id: str, workspace_id: str, mutate: Callable[[Ticket], T]) -> T:
        """Load the ticket, apply ``mutate`` and save it.

        Domain errors raised by ``mutate`` propagate and nothing is written.
        """

        with correlation_scope(workspace_id=workspace_id, ticket_id=ticket_id):
            ticket = self.load(ticket_id, workspace_id)
            result = mutate(ticket)
            self._save(ticket)
            return result

    def force_unlock(
        self, ticket_id: str, workspace_id: str, *, now: datetime | None = None
    ) -> str | None:
        """Drop a stuck lock. Returns the previous holder, ``None`` if it was unlocked."""

        with correlation_scope(workspace_id=workspace_id, ticket_id=ticket_id):
            ticket = self.load(ticket_id, workspace_id)
            previous = ticket.force_unlock(now=now)
            if previous is None:
                return None
            self._save(ticket)
            self._logger.warning(
                "ticket_lock_forced",
                ticket_id=ticket.id,
                previous_holder=previous,
                status=ticket.status.value,
            )
            self._publish(
                EventType.TICKET_LOCK_FORCED,
                {
                    "ticket_id": ticket.id,
                    "workspace_id": workspace_id,
                    "previous_holder": previous,
                    "status": ticket.status.value,
                },
            )
            return previous

    def fail_stale_generations(
        self,
        workspace_id: str,
        ticket_ids: Iterable[str],
        now: datetime | None = None,
    ) -> StaleGenerationSweep:
        """Mark GENERATING tickets whose lock is older than the timeout as failed.

        Suspended tickets are waiting on a human and are left alone. A ticket
        that cannot be loaded or saved is reported in ``failures`` and the
        rest of the batch is still checked.
        """

        moment = utc_now() if now is None else now
        failed: list[str] = []
        failures: list[SweepFailure] = []
        for ticket_id in ticket_ids:
            with correlation_scope(workspace_id=workspace_id, ticket_id=ticket_id):
                try:
                    timed_out = self._fail_if_stale(ticket_id, workspace_id, moment)
                except _SWEEP_ERRORS as exc:
                    failure = SweepFailure(
                        ticket_id=ticket_id, error_type=exc.__class__.__name__, message=str(exc)
                    )
                    failures.append(failure)
                    self._logger.warning(
                        "ticket_timeout_check_failed",
                        ticket_id=ticket_id,
                        error_type=failure.error_type,
                        error=failure.message,
                    )
                    continue
                if timed_out:
                    failed.append(ticket_id)
        return StaleGenerationSweep(failed=tuple(failed), failures=tuple(failures))

    def _fail_if_stale(self, ticket_id: str, workspace_id: str, moment: datetime) -> bool:
        ticket = self.load(ticket_id, workspace_id)
        lock = ticket.lock_state
        if ticket.status is not TicketStatus.GENERATING or not isinstance(lock, LockedBy):
            return False
        age = lock.age_seconds(moment)
        if age < self._lock_timeout_seconds:
            return False

        ticket.mark_as_failed(
            f"Generation timed out after {int(age)}s (locked by workflow {lock.owner_id})",
            now=moment,
        )
        self._save(ticket)
        self._logger.warning(
            "ticket_generation_timed_out",
            ticket_id=ticket.id,
            workflow_run_id=lock.owner_id,
            lock_age_seconds=int(age),
        )
        self._publish(
            EventType.TICKET_GENERATION_TIMED_OUT,
            {
                "ticket_id": ticket.id,
                "workspace_id": workspace_id,
                "workflow_run_id": lock.owner_id,
                "lock_age_seconds": int(age),
            },
        )
        return True

    def _save(self, ticket: Ticket) -> None:
        self._repository.save(ticket)
        self._logger.debug(
            "ticket_saved",
            ticket_id=ticket.id,
            status=ticket.status.value,
            revision=ticket.revision,
        )
        self._publish(
            EventType.TICKET_SAVED,
            {
                "ticket_id": ticket.id,
                "workspace_id": ticket.workspace_id,
                "status": ticket.status.value,
                "revision": ticket.revision,
            },
        )

    def _publish(self, event_type: EventType, payload: dict[str, object]) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, payload)


__all__ = ["StaleGenerationSweep", "SweepFailure", "TicketCommandService"]
