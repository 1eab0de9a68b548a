"""JSON-lines logging sink, structlog routing, redaction and correlation."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

import pytest
import structlog

from ticketforge.observability.logging import (
    REDACTED_VALUE,
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    parse_log_level,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def handle(tmp_path: Path) -> Iterator[StructuredLoggingHandle]:
    active = setup_structured_logging(
        LoggingConfig(run_id="run-test", base_log_dir=tmp_path / "logs", level="INFO")
    )
    try:
        yield active
    finally:
        shutdown_logging(active)
        structlog.reset_defaults()


def _read_lines(handle: StructuredLoggingHandle) -> list[dict[str, object]]:
    shutdown_logging(handle)
    text = handle.log_path.read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines()]


def test_structlog_events_land_as_json_lines_with_correlation(
    handle: StructuredLoggingHandle, tmp_path: Path
) -> None:
    log = structlog.get_logger("ticketforge.drift.detector")

    with correlation_scope(workspace_id="ws-1", correlation_id="scan-1"):
        log.info("drift_ticket_flagged", ticket_id="aec-1", kind="code", checked=3)
    log.debug("drift_debug_detail", kind="code")

    assert handle.log_path == tmp_path / "logs" / "run-test" / "ticketforge.jsonl"
    lines = _read_lines(handle)
    assert len(lines) == 1
    record = lines[0]
    assert record["message"] == "drift_ticket_flagged"
    assert record["level"] == "INFO"
    assert record["logger"] == "ticketforge.drift.detector"
    assert record["run_id"] == "run-test"
    assert record["workspace_id"] == "ws-1"
    assert record["correlation_id"] == "scan-1"
    assert record["ticket_id"] == "aec-1"
    fields = record["fields"]
    assert isinstance(fields, dict)
    assert fields["kind"] == "code"
    assert fields["checked"] == 3
    assert "ticket_id" not in fields
    assert str(record["timestamp"]).endswith("Z")


def test_secrets_are_redacted_in_fields_and_messages(handle: StructuredLoggingHandle) -> None:
    log = structlog.get_logger("ticketforge.application.commands")

    log.warning(
        "provider_call_failed",
        api_key="sk-live-0123456789",
        detail="retry with password=hunter2 and Bearer abc.def",
    )

    record = _read_lines(handle)[0]
    fields = record["fields"]
    assert isinstance(fields, dict)
    assert fields["api_key"] == REDACTED_VALUE
    assert fields["detail"] == (
        f"retry with password={REDACTED_VALUE} and Bearer {REDACTED_VALUE}"
    )
    assert record["level"] == "WARNING"


def test_exceptions_are_rendered(handle: StructuredLoggingHandle) -> None:
    log = structlog.get_logger("ticketforge.drift.detector")

    try:
        raise RuntimeError("database unavailable")
    except RuntimeError:
        log.exception("drift_scan_crashed")

    record = _read_lines(handle)[0]
    assert record["level"] == "ERROR"
    assert "RuntimeError: database unavailable" in str(record["exception"])


def test_setup_replaces_previous_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(LoggingConfig(run_id="run-a", base_log_dir=tmp_path))
    second = setup_structured_logging(LoggingConfig(run_id="run-b", base_log_dir=tmp_path))
    try:
        assert first.is_shutdown
        assert get_active_logging_handle() is second
    finally:
        shutdown_logging(second)
        structlog.reset_defaults()
    assert get_active_logging_handle() is None


@pytest.mark.parametrize(
    "config",
    [
        LoggingConfig(run_id="  "),
        LoggingConfig(run_id="run", log_filename="nested/out.jsonl"),
        LoggingConfig(run_id="run", queue_size=0),
        LoggingConfig(run_id="run", level="chatty"),
    ],
)
def test_invalid_logging_config_is_rejected(config: LoggingConfig) -> None:
    with pytest.raises(ValueError):
        setup_structured_logging(config)


def test_correlation_scope_nests_and_restores() -> None:
    with correlation_scope(workspace_id="ws-1"):
        with correlation_scope(ticket_id="aec-1", workspace_id=None):
            assert get_correlation_context() == {"ticket_id": "aec-1"}
        assert get_correlation_context() == {"workspace_id": "ws-1"}
    assert get_correlation_context() == {}


def test_redactor_walks_nested_values() -> None:
    payload = {
        "headers": {"Authorization": "Bearer abc", "accept": "json"},
        "notes": ["token: xyz", "fine"],
        "count": 2,
    }

    assert default_log_redactor(payload) == {
        "headers": {"Authorization": REDACTED_VALUE, "accept": "json"},
        "notes": [f"token:{REDACTED_VALUE}", "fine"],
        "count": 2,
    }


@pytest.mark.parametrize(
    ("value", "expected"),
    [("debug", logging.DEBUG), (" Warning ", logging.WARNING), (logging.ERROR, logging.ERROR)],
)
def test_parse_log_level(value: int | str, expected: int) -> None:
    assert parse_log_level(value) == expected
