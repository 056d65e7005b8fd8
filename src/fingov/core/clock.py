"""Time helpers.

Governance rows store timestamps as integer epoch milliseconds. Every
component takes a ``Clock`` so tests can pin the current time.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], int]

MS_PER_DAY = 86_400_000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def days_to_ms(days: float) -> int:
    return int(days * MS_PER_DAY)


def ms_to_datetime(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def iso_timestamp(value: int) -> str:
    """Format epoch milliseconds as ISO 8601 UTC with millisecond precision.

    Example: ``2026-03-01T12:30:45.123Z``
    """
    dt = ms_to_datetime(value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class FixedClock:
    """Manually advanced clock for tests and replays."""

    def __init__(self, start_ms: int):
        self.current = start_ms

    def __call__(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms
