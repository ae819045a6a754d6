"""UTC time sources.

Every expiry and rate-limit window comparison goes through a clock object so
tests can pin and advance time. Datetimes are naive UTC, matching what the
database columns store.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def timestamp(self) -> float:
        return to_timestamp(self.now())


class ManualClock(SystemClock):
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._lock = threading.Lock()
        self._now = start or datetime(2026, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta: float) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


def to_timestamp(value: datetime) -> float:
    """Epoch seconds for a naive-UTC datetime."""
    return value.replace(tzinfo=timezone.utc).timestamp()


def from_timestamp(value: float) -> datetime:
    """Naive-UTC datetime for epoch seconds."""
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()
