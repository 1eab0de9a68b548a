"""
ticketforge — SQLite state DB

Purpose
- Owns the on-disk ticket store: the ``tickets`` table, the ``ticket_events``
  log and the checksummed migration history.

Functional requirements
- Migrations are idempotent; a recorded checksum that no longer matches the
  shipped statements stops the process instead of silently diverging.
- ``SQLITE_BUSY`` is retried with bounded exponential backoff.
- ``sqlite3.IntegrityError`` is never wrapped: repositories turn it into
  ``StaleTicketError``.
"""

from __future__ import annotations

import asyncio
import hashlib
import sqlite3
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Final, NoReturn

from ticketforge.constants import STATE_DB_SCHEMA_VERSION
from ticketforge.domain._fields import datetime_to_iso8601z, utc_now
from ticketforge.domain.events import EventType
from ticketforge.domain.lifecycle import TicketStatus

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None
Row = dict[str, RowValue]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25


class StateDBError(RuntimeError):
    """Base class for ticket store failures other than constraint violations."""


class StateDBBusyError(StateDBError):
    """The store stayed locked by another writer after every retry."""


class StateDBMigrationError(StateDBError):
    """The schema on disk cannot be brought to the version this build expects."""


class StateDBCorruptionError(StateDBError):
    """SQLite reported a damaged or foreign file."""


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class _Migration:
    version: int
    name: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        digest = hashlib.sha256(f"{self.version}:{self.name}\n".encode())
        for statement in self.statements:
            lines = (line.rstrip() for line in statement.strip().splitlines())
            digest.update("\n".join(lines).encode("utf-8") + b"\n--\n")
        return digest.hexdigest()


def _quoted(values: Iterable[str]) -> str:
    return ",".join(f"'{value}'" for value in sorted(values))


_HISTORY_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATIONS: Final[tuple[_Migration, ...]] = (
    _Migration(
        version=1,
        name="ticket_state_schema",
        statements=(
            _HISTORY_TABLE_SQL,
            f"""
            CREATE TABLE IF NOT EXISTS tickets (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                status TEXT NOT NULL
                    CHECK (status IN ({_quoted(item.value for item in TicketStatus)})),
                repository_full_name TEXT,
                locked_by TEXT,
                locked_at TEXT,
                revision INTEGER NOT NULL CHECK (revision >= 1),
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK ((locked_by IS NULL) = (locked_at IS NULL))
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS ticket_events (
                id TEXT PRIMARY KEY,
                event_type TEXT NOT NULL
                    CHECK (event_type IN ({_quoted(item.value for item in EventType)})),
                ticket_id TEXT,
                correlation_id TEXT,
                created_at TEXT NOT NULL,
                payload_json TEXT NOT NULL
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_tickets_workspace_repo_status
            ON tickets(workspace_id, repository_full_name, status)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_tickets_workspace_updated
            ON tickets(workspace_id, updated_at)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_ticket_events_ticket_created
            ON ticket_events(ticket_id, created_at DESC)
            """,
        ),
    ),
)


def _sqlite_codes(*names: str) -> frozenset[int]:
    return frozenset(
        code for code in (getattr(sqlite3, name, None) for name in names) if isinstance(code, int)
    )


# (error class, extended result codes, message fragments) checked in order.
_ERROR_KINDS: Final[tuple[tuple[type[StateDBError], frozenset[int], tuple[str, ...]], ...]] = (
    (
        StateDBCorruptionError,
        _sqlite_codes("SQLITE_CORRUPT", "SQLITE_NOTADB"),
        ("malformed", "file is not a database"),
    ),
    (
        StateDBBusyError,
        _sqlite_codes(
            "SQLITE_BUSY", "SQLITE_BUSY_RECOVERY", "SQLITE_BUSY_SNAPSHOT", "SQLITE_LOCKED"
        ),
        ("database is locked", "database table is locked", "database schema is locked"),
    ),
)


def classify_sqlite_error(exc: sqlite3.Error) -> type[StateDBError]:
    """Map a raw SQLite error onto the ticket store's error hierarchy."""

    code = getattr(exc, "sqlite_errorcode", None)
    message = str(exc).lower()
    for error_type, codes, fragments in _ERROR_KINDS:
        if code in codes or any(fragment in message for fragment in fragments):
            return error_type
    return StateDBError


class StateDB:
    """Ticket store on a single SQLite file in WAL mode.

    Each call opens and closes its own connection unless one is passed in, so
    an instance can be shared between the drift worker threads.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for name, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._backoff_seconds = busy_retry_backoff_ms / 1000.0
        self._savepoints = 0

    @property
    def path(self) -> Path:
        return self._path

    # -- connections ------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.Error as exc:
            conn.close()
            self._raise(exc, "configure connection")
        if mode is None or str(mode[0]).lower() != "wal":
            conn.close()
            raise StateDBError(f"{self._path}: journal_mode must be WAL, got {mode!r}")
        return conn

    @contextmanager
    def connection(self, conn: sqlite3.Connection | None = None) -> Iterator[sqlite3.Connection]:
        """Yield ``conn`` as-is, or a fresh connection closed on exit."""

        if conn is not None:
            yield conn
            return
        owned = self.connect()
        try:
            yield owned
        finally:
            owned.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Atomic block; nests as a savepoint inside an open transaction."""

        with self.connection(conn) as active:
            if active.in_transaction:
                self._savepoints += 1
                name = f"sp_{self._savepoints}"
                begin, commit = f"SAVEPOINT {name}", f"RELEASE SAVEPOINT {name}"
                rollback: tuple[str, ...] = (f"ROLLBACK TO SAVEPOINT {name}", commit)
            else:
                begin = "BEGIN IMMEDIATE" if immediate else "BEGIN"
                commit, rollback = "COMMIT", ("ROLLBACK",)

            self._run(active, begin, (), "begin transaction")
            try:
                yield active
            except Exception:
                for statement in rollback:
                    self._run(active, statement, (), "rollback transaction")
                raise
            self._run(active, commit, (), "commit transaction")

    # -- schema -----------------------------------------------------------

    def migrate(self) -> int:
        """Apply pending migrations and return the resulting schema version."""

        with self.connection() as conn:
            self._run(conn, _HISTORY_TABLE_SQL, (), "create schema_versions")
            applied = {record.version: record for record in self._history(conn)}
            newest = max(applied, default=0)
            if newest > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"{self._path}: database schema is newer than supported by this build "
                    f"(db={newest}, code={STATE_DB_SCHEMA_VERSION})"
                )
            for migration in _MIGRATIONS[:STATE_DB_SCHEMA_VERSION]:
                record = applied.get(migration.version)
                if record is None:
                    self._apply(conn, migration)
                elif record.checksum != migration.checksum:
                    raise StateDBMigrationError(
                        f"migration checksum mismatch for version {migration.version}: "
                        f"db={record.checksum} code={migration.checksum}"
                    )
            return self.schema_version(conn=conn)

    async def migrate_async(self) -> int:
        return await asyncio.to_thread(self.migrate)

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions", conn=conn
        )
        version = None if row is None else row["version"]
        if not isinstance(version, int):
            raise StateDBMigrationError("schema_versions.version must be an integer")
        return version

    def schema_history(self) -> list[MigrationRecord]:
        with self.connection() as conn:
            return self._history(conn)

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Problems reported by ``PRAGMA integrity_check``; empty when healthy."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({max_errors})")
        messages = tuple(str(row.get("integrity_check", "")) for row in rows)
        return () if messages == ("ok",) else messages

    # -- statements -------------------------------------------------------

    def execute(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> int:
        """Run one write statement and return the affected row count.

        Without ``conn`` the statement runs in its own immediate transaction.
        """

        if conn is not None:
            return self._run(conn, sql, params, "execute statement").rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params, "execute statement").rowcount

    def query_all(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> list[Row]:
        with self.connection(conn) as active:
            return [dict(row) for row in self._run(active, sql, params, "query").fetchall()]

    def query_one(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> Row | None:
        with self.connection(conn) as active:
            row = self._run(active, sql, params, "query").fetchone()
            return None if row is None else dict(row)

    async def execute_async(self, sql: str, params: SQLParams = ()) -> int:
        return await asyncio.to_thread(self.execute, sql, tuple(params))

    async def query_one_async(self, sql: str, params: SQLParams = ()) -> Row | None:
        return await asyncio.to_thread(self.query_one, sql, tuple(params))

    # -- internals --------------------------------------------------------

    def _apply(self, conn: sqlite3.Connection, migration: _Migration) -> None:
        operation = f"apply migration {migration.version}"
        with self.transaction(conn=conn) as tx:
            for statement in migration.statements:
                self._run(tx, statement, (), operation)
            self._run(
                tx,
                "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    migration.checksum,
                    datetime_to_iso8601z(utc_now()),
                ),
                operation,
            )

    def _history(self, conn: sqlite3.Connection) -> list[MigrationRecord]:
        cursor = self._run(
            conn,
            "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version",
            (),
            "load schema_versions",
        )
        records: list[MigrationRecord] = []
        for row in cursor.fetchall():
            version, name, checksum, applied_at = tuple(row)
            if not isinstance(version, int) or not all(
                isinstance(value, str) for value in (name, checksum, applied_at)
            ):
                raise StateDBMigrationError(f"malformed schema_versions row: {tuple(row)!r}")
            records.append(MigrationRecord(version, name, checksum, applied_at))
        return records

    def _run(
        self, conn: sqlite3.Connection, sql: str, params: SQLParams, operation: str
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                busy = classify_sqlite_error(exc) is StateDBBusyError
                if not busy or attempt >= self._busy_retry_limit:
                    self._raise(exc, operation)
                time.sleep(self._backoff_seconds * 2**attempt)
                attempt += 1

    def _raise(self, exc: sqlite3.Error, operation: str) -> NoReturn:
        error_type = classify_sqlite_error(exc)
        detail = f"{operation} failed for {self._path}: {exc}"
        if error_type is StateDBCorruptionError:
            detail += (
                ". Run `StateDB.integrity_check()` and restore the ticket store from a backup."
            )
        elif error_type is StateDBBusyError:
            detail += f" (after {self._busy_retry_limit + 1} attempt(s))"
        raise error_type(detail) from exc


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MigrationRecord",
    "Row",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "classify_sqlite_error",
]
