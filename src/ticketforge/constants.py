"""Stable constants shared across the ticket lifecycle, persistence, and drift layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Readiness gates.
READINESS_THRESHOLD: Final[int] = 75
VALIDATION_PASS_THRESHOLD: Final[float] = 0.70

# Content limits carried by the ticket aggregate.
TITLE_MIN_LENGTH: Final[int] = 3
TITLE_MAX_LENGTH: Final[int] = 500
MAX_PRE_IMPLEMENTATION_FINDINGS: Final[int] = 10
MAX_QUESTIONS: Final[int] = 3

# Drift reasons quote abbreviated identifiers.
SHORT_SHA_LENGTH: Final[int] = 7

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1
TICKET_RECORD_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
DEFAULT_STATE_DB: Final[PurePosixPath] = STATE_DIR / "ticketforge.sqlite"
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Workflow recovery.
DEFAULT_LOCK_TIMEOUT_SECONDS: Final[int] = 1_800
DEFAULT_DRIFT_MAX_CONCURRENCY: Final[int] = 4

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_DRIFT_MAX_CONCURRENCY",
    "DEFAULT_LOCK_TIMEOUT_SECONDS",
    "DEFAULT_STATE_DB",
    "LOG_DIR",
    "MAX_PRE_IMPLEMENTATION_FINDINGS",
    "MAX_QUESTIONS",
    "READINESS_THRESHOLD",
    "SHORT_SHA_LENGTH",
    "STATE_DB_SCHEMA_VERSION",
    "STATE_DIR",
    "TICKET_RECORD_SCHEMA_VERSION",
    "TITLE_MAX_LENGTH",
    "TITLE_MIN_LENGTH",
    "VALIDATION_PASS_THRESHOLD",
]
