"""Observability for cachescope: structured logging with scope context."""

from cachescope.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    configure_logging,
    correlation_id_var,
    get_logger,
    operation_var,
    scope_var,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "LogContext",
    "JsonFormatter",
    "ConsoleFormatter",
    "scope_var",
    "operation_var",
    "correlation_id_var",
]
