"""Strict field coercion helpers shared by the ticket domain models.

Every helper raises ``ValueError`` with a ``"<path>: <message>"`` prefix so that
failures point at the exact field of a persisted record that was rejected.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import NoReturn, TypeVar

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=Enum)

MAX_TEXT = 8192
MAX_COLLECTION = 512

_COMMIT_SHA_RE = re.compile(r"^[0-9a-f]{7,40}$")


def fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def canonical_json(value: object) -> str:
    """Deterministic JSON used for persistence payloads and equality checks."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def utc_now() -> datetime:
    return datetime.now(UTC)


def expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        fail(path, f"missing required fields: {missing}")

    return parsed


def as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        fail(path, f"must be <= {max_len} characters")
    return normalized


def as_optional_str(value: object, path: str, *, max_len: int = MAX_TEXT) -> str | None:
    if value is None:
        return None
    return as_str(value, path, max_len=max_len)


def as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    fail(path, f"expected boolean, got {type(value).__name__}")


def as_int(
    value: object,
    path: str,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        fail(path, f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        fail(path, f"must be <= {maximum}")
    return value


def as_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        fail(path, "must be finite")
    return parsed


def as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    return as_datetime(value, path)


def datetime_to_iso8601z(value: datetime) -> str:
    normalized = as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def optional_iso8601z(value: datetime | None) -> str | None:
    return None if value is None else datetime_to_iso8601z(value)


def as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    fail(path, f"expected array, got {type(value).__name__}")


def as_str_tuple(
    value: object,
    path: str,
    *,
    allow_empty: bool = True,
    max_len: int = MAX_TEXT,
) -> tuple[str, ...]:
    values = as_sequence(value, path)
    if not allow_empty and not values:
        fail(path, "must not be empty")
    if len(values) > MAX_COLLECTION:
        fail(path, f"too many items (>{MAX_COLLECTION})")
    return tuple(
        as_str(item, f"{path}[{index}]", max_len=max_len) for index, item in enumerate(values)
    )


def as_commit_sha(value: object, path: str) -> str:
    parsed = as_str(value, path, min_len=7, max_len=40, strip=False).lower()
    if not _COMMIT_SHA_RE.fullmatch(parsed):
        fail(path, "must be a hex commit SHA (7..40 chars)")
    return parsed


def as_unit_interval(value: object, path: str, *, legacy_percent: bool = False) -> float:
    """Clamp a number into ``[0, 1]``.

    With ``legacy_percent`` enabled, values above 1 are read as percentages
    (``85`` -> ``0.85``) before clamping.
    """

    parsed = as_float(value, path)
    if legacy_percent and parsed > 1:
        parsed = parsed / 100
    return min(1.0, max(0.0, parsed))


__all__ = [
    "JSONScalar",
    "JSONValue",
    "MAX_COLLECTION",
    "MAX_TEXT",
    "as_bool",
    "as_commit_sha",
    "as_datetime",
    "as_enum",
    "as_float",
    "as_int",
    "as_optional_datetime",
    "as_optional_str",
    "as_sequence",
    "as_str",
    "as_str_tuple",
    "as_unit_interval",
    "canonical_json",
    "datetime_to_iso8601z",
    "expect_object",
    "fail",
    "optional_iso8601z",
    "utc_now",
]
