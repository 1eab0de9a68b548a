"""
ticketforge — persistence layer

Purpose
- SQLite state DB, checksummed migrations, and the ticket repository that
  implements the domain's ``TicketRepository`` port.

Functional requirements
- Ticket saves are compare-and-swap writes on ``revision``.
- Safe for concurrent readers; writers serialize through SQLite's WAL.
"""

from ticketforge.persistence.repositories import (
    StaleTicketError,
    TicketEventRepo,
    TicketNotFoundError,
    TicketRepo,
)
from ticketforge.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "StaleTicketError",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "TicketEventRepo",
    "TicketNotFoundError",
    "TicketRepo",
]
