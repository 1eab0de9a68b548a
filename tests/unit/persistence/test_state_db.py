"""State DB migrations, pragmas and transaction behavior."""

from __future__ import annotations

import asyncio
import sqlite3
from typing import TYPE_CHECKING

import pytest

from ticketforge.constants import STATE_DB_SCHEMA_VERSION
from ticketforge.persistence.state_db import (
    StateDB,
    StateDBCorruptionError,
    StateDBMigrationError,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_migration_idempotence_schema_version_and_pragmas(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "ticketforge.sqlite3", busy_timeout_ms=4_321)

    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.path.parent.is_dir()

    with db.connection() as conn:
        tables = {
            str(row[0])
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {"schema_versions", "tickets", "ticket_events"}.issubset(tables)

        index_names = {
            str(row[0])
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")
        }
        assert "idx_tickets_workspace_repo_status" in index_names
        assert "idx_ticket_events_ticket_created" in index_names

        assert int(conn.execute("PRAGMA foreign_keys").fetchone()[0]) == 1
        assert str(conn.execute("PRAGMA journal_mode").fetchone()[0]).lower() == "wal"
        assert int(conn.execute("PRAGMA busy_timeout").fetchone()[0]) == 4_321

    history = db.schema_history()
    assert [record.version for record in history] == [1]
    assert history[0].name == "ticket_state_schema"
    assert len(history[0].checksum) == 64


def test_checksum_mismatch_is_rejected(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "ticketforge.sqlite3")
    db.migrate()
    db.execute("UPDATE schema_versions SET checksum = ? WHERE version = 1", ("0" * 64,))

    with pytest.raises(StateDBMigrationError, match="checksum mismatch"):
        StateDB(db.path).migrate()


def test_newer_database_schema_is_rejected(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "ticketforge.sqlite3")
    db.migrate()
    db.execute(
        """
        INSERT INTO schema_versions (version, name, checksum, applied_at)
        VALUES (?, ?, ?, ?)
        """,
        (STATE_DB_SCHEMA_VERSION + 1, "future", "f" * 64, "2026-02-01T12:00:00Z"),
    )

    with pytest.raises(StateDBMigrationError, match="newer than supported"):
        db.migrate()


def test_transaction_rolls_back_on_error(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "ticketforge.sqlite3")
    db.migrate()

    with pytest.raises(RuntimeError, match="boom"):
        with db.transaction() as conn:
            db.execute(
                """
                INSERT INTO ticket_events (id, event_type, created_at, payload_json)
                VALUES ('evt-1', 'TicketSaved', '2026-02-01T12:00:00Z', '{}')
                """,
                conn=conn,
            )
            raise RuntimeError("boom")

    row = db.query_one("SELECT COUNT(*) AS total FROM ticket_events")
    assert row == {"total": 0}


def test_nested_transaction_uses_savepoint(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "ticketforge.sqlite3")
    db.migrate()
    insert = """
        INSERT INTO ticket_events (id, event_type, created_at, payload_json)
        VALUES (?, 'TicketSaved', '2026-02-01T12:00:00Z', '{}')
    """

    with db.transaction() as conn:
        db.execute(insert, ("evt-outer",), conn=conn)
        with pytest.raises(ValueError):
            with db.transaction(conn=conn):
                db.execute(insert, ("evt-inner",), conn=conn)
                raise ValueError("inner failure")

    rows = db.query_all("SELECT id FROM ticket_events ORDER BY id")
    assert rows == [{"id": "evt-outer"}]


def test_check_constraints_reject_half_set_lock(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "ticketforge.sqlite3")
    db.migrate()

    with pytest.raises(sqlite3.IntegrityError):
        db.execute(
            """
            INSERT INTO tickets (
                id, workspace_id, status, locked_by, locked_at, revision,
                payload_json, created_at, updated_at
            ) VALUES ('aec-x', 'ws-1', 'draft', 'wf-1', NULL, 1, '{}', 'now', 'now')
            """
        )


def test_integrity_check_on_fresh_database(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "ticketforge.sqlite3")
    db.migrate()

    assert db.integrity_check() == ()
    with pytest.raises(ValueError):
        db.integrity_check(max_errors=0)


def test_corrupt_file_raises_actionable_error(tmp_path: Path) -> None:
    path = tmp_path / "ticketforge.sqlite3"
    path.write_bytes(b"this is not a sqlite database" * 64)

    with pytest.raises(StateDBCorruptionError, match="integrity_check"):
        StateDB(path).migrate()


@pytest.mark.parametrize(
    "kwargs",
    [{"busy_timeout_ms": -1}, {"busy_retry_limit": -1}, {"busy_retry_backoff_ms": -1}],
)
def test_constructor_rejects_negative_settings(tmp_path: Path, kwargs: dict[str, int]) -> None:
    with pytest.raises(ValueError, match="must be >= 0"):
        StateDB(tmp_path / "ticketforge.sqlite3", **kwargs)


def test_async_helpers_run_off_loop(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "ticketforge.sqlite3")

    async def scenario() -> dict[str, object] | None:
        await db.migrate_async()
        await db.execute_async(
            """
            INSERT INTO ticket_events (id, event_type, created_at, payload_json)
            VALUES ('evt-a', 'DriftScanCompleted', '2026-02-01T12:00:00Z', '{}')
            """
        )
        return await db.query_one_async("SELECT event_type FROM ticket_events")

    assert asyncio.run(scenario()) == {"event_type": "DriftScanCompleted"}
