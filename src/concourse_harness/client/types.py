"""Version-independent value types passed to and returned from the client.

Each server build ships its own timestamp and operator classes. Test code
only ever sees these; the worker translates them into the build's own types
on the way in and back on the way out.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from datetime import datetime, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True, order=True)
class Timestamp:
    """A point in time with microsecond precision since the Unix epoch."""

    micros: int

    @classmethod
    def from_micros(cls, micros: int) -> Timestamp:
        return cls(int(micros))

    @classmethod
    def from_datetime(cls, value: datetime) -> Timestamp:
        """Build from a datetime; naive values are taken as UTC."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - _EPOCH
        return cls((delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds)

    @classmethod
    def now(cls) -> Timestamp:
        return cls(time.time_ns() // 1000)

    def to_datetime(self) -> datetime:
        seconds, micros = divmod(self.micros, 1_000_000)
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=micros)

    def __str__(self) -> str:
        return self.to_datetime().isoformat()


class Operator(enum.Enum):
    """Comparison operators for find queries, with their wire values."""

    EQUALS = 1
    NOT_EQUALS = 2
    GREATER_THAN = 3
    GREATER_THAN_OR_EQUALS = 4
    LESS_THAN = 5
    LESS_THAN_OR_EQUALS = 6
    BETWEEN = 7
    REGEX = 8
    NOT_REGEX = 9
    LINKS_TO = 10
