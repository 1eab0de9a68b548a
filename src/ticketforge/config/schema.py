"""
ticketforge — config schema.

Purpose
- Typed shape, built-in defaults, and strict validation of ``ticketforge.toml``.

Functional requirements
- Unknown sections and fields are rejected with a deterministic path.
- All issues are collected before raising ``ConfigValidationError``.
- Schema version mismatches produce migration guidance.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict, cast

from ticketforge.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_DRIFT_MAX_CONCURRENCY,
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_STATE_DB,
    LOG_DIR,
)
from ticketforge.persistence.state_db import (
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_FieldKind = Literal["str", "path", "int", "bool", "level"]


class MetaConfig(TypedDict):
    schema_version: int


class PersistenceConfig(TypedDict):
    state_db_path: str
    busy_timeout_ms: int
    busy_retry_limit: int


class DriftConfig(TypedDict):
    max_concurrency: int


class WorkflowConfig(TypedDict):
    lock_timeout_seconds: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class TicketforgeConfig(TypedDict):
    meta: MetaConfig
    persistence: PersistenceConfig
    drift: DriftConfig
    workflow: WorkflowConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[TicketforgeConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "persistence": {
        "state_db_path": DEFAULT_STATE_DB.as_posix(),
        "busy_timeout_ms": DEFAULT_BUSY_TIMEOUT_MS,
        "busy_retry_limit": DEFAULT_BUSY_RETRY_LIMIT,
    },
    "drift": {"max_concurrency": DEFAULT_DRIFT_MAX_CONCURRENCY},
    "workflow": {"lock_timeout_seconds": DEFAULT_LOCK_TIMEOUT_SECONDS},
    "observability": {
        "log_level": "INFO",
        "log_dir": LOG_DIR.as_posix(),
        "log_to_stdout": False,
        "redact_secrets": True,
    },
}

# (kind, minimum) per field; minimum only applies to ints.
_SECTIONS: Final[dict[str, dict[str, tuple[_FieldKind, int | None]]]] = {
    "meta": {"schema_version": ("int", 1)},
    "persistence": {
        "state_db_path": ("path", None),
        "busy_timeout_ms": ("int", 0),
        "busy_retry_limit": ("int", 0),
    },
    "drift": {"max_concurrency": ("int", 1)},
    "workflow": {"lock_timeout_seconds": ("int", 1)},
    "observability": {
        "log_level": ("level", None),
        "log_dir": ("path", None),
        "log_to_stdout": ("bool", None),
        "redact_secrets": ("bool", None),
    },
}

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = tuple(
    (section, key)
    for section, fields in _SECTIONS.items()
    for key, (kind, _) in fields.items()
    if kind == "path"
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


def default_config() -> TicketforgeConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is older than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade ticketforge.toml to the current schema"
        )
    if found_version > CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is newer than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade the ticketforge runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> tuple[ConfigValidationIssue, ...]:
    """Return every validation issue, in section/field order; empty means valid."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return issues.items()

    for key in sorted(str(item) for item in config):
        if key not in _SECTIONS:
            issues.add(key, "unknown section")

    for section, fields in _SECTIONS.items():
        raw = config.get(section)
        if raw is None:
            issues.add(section, "missing required section")
            continue
        if not isinstance(raw, Mapping):
            issues.add(section, f"expected object, got {type(raw).__name__}")
            continue
        for key in sorted(str(item) for item in raw):
            if key not in fields:
                issues.add(f"{section}.{key}", "unknown field")
        for key, (kind, minimum) in fields.items():
            path = f"{section}.{key}"
            if key not in raw:
                issues.add(path, "missing required field")
                continue
            _check_value(raw[key], path, kind, minimum, issues)

    meta = config.get("meta")
    if isinstance(meta, Mapping):
        version = meta.get("schema_version")
        if isinstance(version, int) and not isinstance(version, bool) and version >= 1:
            if version != CONFIG_SCHEMA_VERSION:
                issues.add("meta.schema_version", migration_guidance(version))

    return issues.items()


def assert_valid_config(config: Mapping[str, object] | object) -> TicketforgeConfig:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    issues = validate_config(config)
    if issues or not isinstance(config, Mapping):
        raise ConfigValidationError(issues)
    normalized = merge_config({}, config)
    level = normalized["observability"]["log_level"]
    normalized["observability"]["log_level"] = level.strip().upper()
    return cast("TicketforgeConfig", normalized)


def _check_value(
    value: object,
    path: str,
    kind: _FieldKind,
    minimum: int | None,
    issues: _IssueCollector,
) -> None:
    if kind == "bool":
        if not isinstance(value, bool):
            issues.add(path, f"expected boolean, got {type(value).__name__}")
        return
    if kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {type(value).__name__}")
        elif minimum is not None and value < minimum:
            issues.add(path, f"must be >= {minimum}")
        return

    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return
    text = value.strip()
    if not text:
        issues.add(path, "must not be empty")
    elif kind == "path" and "\x00" in text:
        issues.add(path, "must not contain NUL bytes")
    elif kind == "level" and text.upper() not in LOG_LEVELS:
        issues.add(path, f"invalid value {value!r}; expected one of: {', '.join(LOG_LEVELS)}")


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        elif isinstance(value, Mapping):
            target[key] = merge_config({}, value)
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DriftConfig",
    "MetaConfig",
    "ObservabilityConfig",
    "PersistenceConfig",
    "TicketforgeConfig",
    "WorkflowConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
