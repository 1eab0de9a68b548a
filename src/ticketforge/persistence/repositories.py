"""
ticketforge — repositories

Purpose
- Ticket and ticket-event persistence on top of ``StateDB``.

Functional requirements
- ``TicketRepo.save`` is a conditional write keyed on ``Ticket.revision``; a
  lost race raises ``StaleTicketError`` and leaves the stored row untouched.
- Event rows are append-only.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Mapping
from typing import Final, cast

from ticketforge.domain import ids
from ticketforge.domain._fields import datetime_to_iso8601z, optional_iso8601z
from ticketforge.domain.events import EventType, TicketEvent
from ticketforge.domain.lifecycle import OPEN_STATUSES, TicketStatus
from ticketforge.domain.ticket import Ticket
from ticketforge.persistence.state_db import RowValue, SQLParams, StateDB

_MAX_PAGE_SIZE: Final[int] = 1_000

_OPEN_STATUS_VALUES: Final[tuple[str, ...]] = tuple(
    sorted(status.value for status in OPEN_STATUSES)
)


class StaleTicketError(RuntimeError):
    """Raised when a save loses the compare-and-swap on ``revision``."""

    def __init__(self, ticket_id: str, expected_revision: int) -> None:
        super().__init__(
            f"ticket {ticket_id} was modified concurrently "
            f"(expected revision {expected_revision}); reload and retry"
        )
        self.ticket_id = ticket_id
        self.expected_revision = expected_revision


class TicketNotFoundError(LookupError):
    def __init__(self, ticket_id: str, workspace_id: str | None = None) -> None:
        scope = "" if workspace_id is None else f" in workspace {workspace_id}"
        super().__init__(f"ticket not found: {ticket_id}{scope}")
        self.ticket_id = ticket_id
        self.workspace_id = workspace_id


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()

    @property
    def db(self) -> StateDB:
        return self._db

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")


class TicketRepo(_BaseRepo):
    """SQLite implementation of the ``TicketRepository`` port."""

    def save(self, ticket: Ticket) -> None:
        expected = ticket.revision
        next_revision = expected + 1
        params_common = (
            ticket.status.value,
            ticket.repository_full_name,
            ticket.locked_by,
            optional_iso8601z(ticket.locked_at),
            next_revision,
            ticket.to_json(),
            datetime_to_iso8601z(ticket.updated_at),
        )

        if expected == 0:
            try:
                self._db.execute(
                    """
                    INSERT INTO tickets (
                        status,
                        repository_full_name,
                        locked_by,
                        locked_at,
                        revision,
                        payload_json,
                        updated_at,
                        id,
                        workspace_id,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        *params_common,
                        ticket.id,
                        ticket.workspace_id,
                        datetime_to_iso8601z(ticket.created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise StaleTicketError(ticket.id, expected) from exc
        else:
            updated = self._db.execute(
                """
                UPDATE tickets
                SET status = ?,
                    repository_full_name = ?,
                    locked_by = ?,
                    locked_at = ?,
                    revision = ?,
                    payload_json = ?,
                    updated_at = ?
                WHERE id = ? AND workspace_id = ? AND revision = ?
                """,
                (*params_common, ticket.id, ticket.workspace_id, expected),
            )
            if updated != 1:
                raise StaleTicketError(ticket.id, expected)

        ticket.record_revision(next_revision)

    def find_by_id(self, ticket_id: str) -> Ticket | None:
        row = self._db.query_one(
            "SELECT payload_json, revision FROM tickets WHERE id = ?", (ticket_id,)
        )
        return None if row is None else _ticket_from_row(row)

    def get(self, ticket_id: str, workspace_id: str) -> Ticket:
        """Load a ticket scoped to its workspace or raise ``TicketNotFoundError``."""

        row = self._db.query_one(
            "SELECT payload_json, revision FROM tickets WHERE id = ? AND workspace_id = ?",
            (ticket_id, workspace_id),
        )
        if row is None:
            raise TicketNotFoundError(ticket_id, workspace_id)
        return _ticket_from_row(row)

    def find_open_by_workspace_and_repository(
        self, workspace_id: str, repository_full_name: str
    ) -> list[Ticket]:
        placeholders = ",".join("?" for _ in _OPEN_STATUS_VALUES)
        rows = self._db.query_all(
            f"""
            SELECT payload_json, revision
            FROM tickets
            WHERE workspace_id = ?
              AND repository_full_name = ?
              AND status IN ({placeholders})
            ORDER BY created_at ASC, id ASC
            """,
            (workspace_id, repository_full_name, *_OPEN_STATUS_VALUES),
        )
        return [_ticket_from_row(row) for row in rows]

    def list(
        self,
        workspace_id: str,
        *,
        status: TicketStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Ticket]:
        self._validate_page(limit, offset)
        sql = "SELECT payload_json, revision FROM tickets WHERE workspace_id = ?"
        params: list[object] = [workspace_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(TicketStatus(status).value)
        sql += " ORDER BY updated_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [_ticket_from_row(row) for row in rows]

    def delete(self, ticket_id: str, workspace_id: str) -> None:
        self._db.execute(
            "DELETE FROM tickets WHERE id = ? AND workspace_id = ?", (ticket_id, workspace_id)
        )


class TicketEventRepo(_BaseRepo):
    """Append-only store for published ticket events."""

    def add(self, event: TicketEvent) -> TicketEvent:
        self._db.execute(
            """
            INSERT INTO ticket_events (
                id,
                event_type,
                ticket_id,
                correlation_id,
                created_at,
                payload_json
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.event_type.value,
                event.ticket_id,
                event.correlation_id,
                datetime_to_iso8601z(event.timestamp),
                event.to_json(),
            ),
        )
        return event

    def get(self, event_id: str) -> TicketEvent | None:
        ids.validate_event_id(event_id)
        row = self._db.query_one(
            "SELECT payload_json FROM ticket_events WHERE id = ?", (event_id,)
        )
        if row is None:
            return None
        return TicketEvent.from_json(_row_text(row, "payload_json", "ticket_events.payload_json"))

    def list_for_ticket(
        self, ticket_id: str, *, limit: int = 100, offset: int = 0
    ) -> list[TicketEvent]:
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            """
            SELECT payload_json
            FROM ticket_events
            WHERE ticket_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (ticket_id, limit, offset),
        )
        return [
            TicketEvent.from_json(_row_text(row, "payload_json", "ticket_events.payload_json"))
            for row in rows
        ]

    def list(
        self,
        *,
        event_type: EventType | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[TicketEvent]:
        self._validate_page(limit, offset)
        sql = "SELECT payload_json FROM ticket_events"
        params: list[object] = []
        if event_type is not None:
            sql += " WHERE event_type = ?"
            params.append(EventType(event_type).value)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [
            TicketEvent.from_json(_row_text(row, "payload_json", "ticket_events.payload_json"))
            for row in rows
        ]

    def __call__(self, event: TicketEvent) -> None:
        """Adapter so the repo can be passed as ``EventBus(persist_event=...)``."""

        self.add(event)


def _ticket_from_row(row: Mapping[str, RowValue]) -> Ticket:
    payload = _load_json_object(
        _row_text(row, "payload_json", "tickets.payload_json"), "tickets.payload_json"
    )
    revision = row.get("revision")
    if not isinstance(revision, int):
        raise ValueError("tickets.revision: expected integer value")
    return Ticket.from_dict(payload, revision=revision)


def _row_text(row: Mapping[str, RowValue], key: str, path: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected text value")
    return value


def _load_json_object(payload: str, path: str) -> dict[str, object]:
    try:
        loaded = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: JSON root must be object")
    out: dict[str, object] = {}
    for key, value in loaded.items():
        if not isinstance(key, str):
            raise ValueError(f"{path}: key must be text")
        out[key] = value
    return out


__all__ = [
    "StaleTicketError",
    "TicketEventRepo",
    "TicketNotFoundError",
    "TicketRepo",
]
