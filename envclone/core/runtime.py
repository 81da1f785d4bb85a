"""Injectable identity and time sources.

Components that stamp ids or timestamps accept these so tests can make
their output deterministic.
"""

from collections.abc import Callable
from datetime import UTC, datetime
import itertools
import secrets
import string
import threading
from typing import Protocol

Clock = Callable[[], datetime]

_ALPHABET = string.ascii_lowercase + string.digits


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class IdGenerator(Protocol):
    """Produces unique identifiers for a given prefix."""

    def __call__(self, prefix: str) -> str: ...


class TimestampIdGenerator:
    """Ids of the form ``<prefix>_<YYYYmmddTHHMMSS>_<random>``."""

    def __init__(self, clock: Clock = utc_now, suffix_length: int = 6):
        self.clock = clock
        self.suffix_length = suffix_length

    def __call__(self, prefix: str) -> str:
        stamp = self.clock().strftime("%Y%m%dT%H%M%S")
        suffix = "".join(secrets.choice(_ALPHABET) for _ in range(self.suffix_length))
        return f"{prefix}_{stamp}_{suffix}"


class SequentialIdGenerator:
    """Deterministic ids of the form ``<prefix>_0001``, counted per prefix."""

    def __init__(self) -> None:
        self._counters: dict[str, itertools.count[int]] = {}
        self._lock = threading.Lock()

    def __call__(self, prefix: str) -> str:
        with self._lock:
            counter = self._counters.setdefault(prefix, itertools.count(1))
            return f"{prefix}_{next(counter):04d}"
