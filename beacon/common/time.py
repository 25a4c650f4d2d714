"""Common time utilities."""

from __future__ import annotations

import datetime as dt
import threading
import time
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)
MS_PER_DAY = 24 * 3600 * 1000


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def epoch_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def from_epoch_ms(value: float) -> dt.datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + dt.timedelta(milliseconds=value)


class ServerClock:
    """Millisecond wall clock that never runs backwards within a process.

    Wall-clock adjustments (NTP steps) can move ``time.time`` backwards; the
    clock holds the last reading instead so ``server_time`` stamps are
    non-decreasing for every event ingested by this process.
    """

    def __init__(self, source: cabc.Callable[[], int] = epoch_ms) -> None:
        """Bind the clock to a millisecond time source."""
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        """Return the current time in epoch milliseconds."""
        reading = self._source()
        with self._lock:
            if reading > self._last:
                self._last = reading
            return self._last

