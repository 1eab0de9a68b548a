"""Ports the ticket core consumes from the outside world."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ticketforge.domain.ticket import Ticket


@runtime_checkable
class TicketRepository(Protocol):
    """Persistence contract for ticket aggregates.

    ``save`` must be a conditional write: implementations reject a save whose
    ``ticket.revision`` no longer matches the stored revision, so two workflow
    runs that both loaded an unlocked ticket cannot both win.
    """

    def save(self, ticket: Ticket) -> None: ...

    def find_by_id(self, ticket_id: str) -> Ticket | None: ...

    def find_open_by_workspace_and_repository(
        self, workspace_id: str, repository_full_name: str
    ) -> list[Ticket]: ...

    def delete(self, ticket_id: str, workspace_id: str) -> None: ...


__all__ = ["TicketRepository"]
