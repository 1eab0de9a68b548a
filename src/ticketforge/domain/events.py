"""Ticket event envelopes published to the observability event bus."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ticketforge.domain import ids
from ticketforge.domain._fields import (
    JSONValue,
    as_datetime,
    as_enum,
    as_optional_str,
    as_str,
    canonical_json,
    datetime_to_iso8601z,
    expect_object,
    fail,
)

_MAX_DEPTH = 16


class EventType(StrEnum):
    """Events emitted around ticket workflows and drift scans."""

    TICKET_SAVED = "TicketSaved"
    TICKET_DRIFTED = "TicketDrifted"
    TICKET_LOCK_FORCED = "TicketLockForced"
    TICKET_GENERATION_TIMED_OUT = "TicketGenerationTimedOut"

    DRIFT_CHECK_FAILED = "DriftCheckFailed"
    DRIFT_SCAN_COMPLETED = "DriftScanCompleted"


@dataclass(slots=True)
class TicketEvent:
    event_id: str
    event_type: EventType
    timestamp: datetime
    correlation_id: str | None
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        self.event_type = as_enum(EventType, self.event_type, "TicketEvent.event_type")
        self.timestamp = as_datetime(self.timestamp, "TicketEvent.timestamp")
        self.correlation_id = as_optional_str(
            self.correlation_id, "TicketEvent.correlation_id", max_len=256
        )
        self.payload = as_json_object(self.payload, "TicketEvent.payload")

    @property
    def ticket_id(self) -> str | None:
        value = self.payload.get("ticket_id")
        return value if isinstance(value, str) else None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": datetime_to_iso8601z(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": as_json_object(self.payload, "TicketEvent.payload"),
        }

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> TicketEvent:
        parsed = expect_object(
            data,
            "TicketEvent",
            required={"event_id", "event_type", "timestamp", "payload"},
            optional={"correlation_id"},
        )
        return cls(
            event_id=as_str(parsed["event_id"], "TicketEvent.event_id", max_len=128),
            event_type=as_enum(EventType, parsed["event_type"], "TicketEvent.event_type"),
            timestamp=as_datetime(parsed["timestamp"], "TicketEvent.timestamp"),
            correlation_id=as_optional_str(
                parsed.get("correlation_id"), "TicketEvent.correlation_id", max_len=256
            ),
            payload=as_json_object(parsed["payload"], "TicketEvent.payload"),
        )

    @classmethod
    def from_json(cls, raw: str) -> TicketEvent:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"TicketEvent: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("TicketEvent: JSON root must be an object")
        return cls.from_dict(parsed)


def as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        fail(path, "expected JSON object")
    return parsed


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_DEPTH:
        fail(path, "JSON nesting too deep")
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            fail(path, "float value must be finite")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{index}]", depth=depth + 1)
            for index, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        result: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                fail(path, "JSON object keys must be strings")
            result[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return result
    fail(path, f"unsupported JSON value type {type(value).__name__}")


__all__ = ["EventType", "TicketEvent", "as_json_object"]
