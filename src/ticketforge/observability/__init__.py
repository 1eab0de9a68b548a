"""Public observability primitives: structured logging, correlation, and the event bus."""

from ticketforge.observability.events import (
    DispatchError,
    EventBus,
    PersistenceCallback,
    Subscriber,
    build_event,
)
from ticketforge.observability.logging import (
    LoggingConfig,
    LogRedactor,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    reset_correlation_fields,
    set_correlation_fields,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LogRedactor",
    "LoggingConfig",
    "PersistenceCallback",
    "StructuredLoggingHandle",
    "Subscriber",
    "build_event",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
]
