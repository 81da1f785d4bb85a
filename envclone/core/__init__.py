"""Core infrastructure shared by every envclone component."""

from .config import EnvCloneSettings, load_settings
from .logging import (
    TimedOperationLogger,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)
from .runtime import (
    Clock,
    IdGenerator,
    SequentialIdGenerator,
    TimestampIdGenerator,
    utc_now,
)

__all__ = [
    "Clock",
    "EnvCloneSettings",
    "IdGenerator",
    "SequentialIdGenerator",
    "TimedOperationLogger",
    "TimestampIdGenerator",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "load_settings",
    "utc_now",
]
