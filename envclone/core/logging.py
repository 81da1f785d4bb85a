"""Structured logging configuration for envclone.

This module configures structlog for consistent, machine-readable logging
across the comparator, the migration generator and the monitors.
"""

import logging
import sys
import time
from typing import Any

import structlog
from structlog.typing import EventDict


def add_app_context(
    _logger: Any, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Add application-specific context to log events."""
    event_dict["service"] = "envclone"
    event_dict["component"] = event_dict.get("logger", "unknown")
    return event_dict


def add_operation_context(
    _logger: Any, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach the bound clone operation id, if any, to every event."""
    operation_id = structlog.contextvars.get_contextvars().get("operation_id")
    if operation_id and "operation_id" not in event_dict:
        event_dict["operation_id"] = operation_id
    return event_dict


def configure_logging(
    environment: str = "development", log_level: str = "INFO", json_logs: bool = False
) -> None:
    """Configure structured logging for the application.

    Args:
        environment: Application environment (development/testing/production)
        log_level: Logging level (DEBUG/INFO/WARNING/ERROR)
        json_logs: Whether to output JSON format logs
    """
    # stdout is reserved for command output (SQL, JSON reports)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    if environment == "production":
        logging.getLogger("asyncio").setLevel(logging.WARNING)

    if json_logs or environment == "production":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        add_operation_context,
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables for operation tracing.

    Args:
        **kwargs: Context variables to bind (e.g., operation_id, user_id)
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


class TimedOperationLogger:
    """Logs the start, completion and failure of a unit of work with its duration."""

    def __init__(self, logger: structlog.stdlib.BoundLogger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: float | None = None

    @property
    def elapsed_ms(self) -> float:
        if self.start_time is None:
            return 0.0
        return round((time.perf_counter() - self.start_time) * 1000, 2)

    def __enter__(self) -> "TimedOperationLogger":
        self.start_time = time.perf_counter()
        self.logger.debug("Operation started", operation=self.operation)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.start_time is None:
            return

        if exc_type is None:
            self.logger.info(
                "Operation completed",
                operation=self.operation,
                duration_ms=self.elapsed_ms,
            )
        else:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=self.elapsed_ms,
                error=str(exc_val),
                error_type=exc_type.__name__,
            )

    def log_progress(self, message: str, **kwargs: Any) -> None:
        """Log operation progress with context."""
        self.logger.debug(message, operation=self.operation, **kwargs)
