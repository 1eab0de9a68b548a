"""
ticketforge config package public API.

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``ticketforge.toml`` + ``TICKETFORGE_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from ticketforge.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from ticketforge.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    TicketforgeConfig,
    assert_valid_config,
    default_config,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "TicketforgeConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "validate_config",
]
