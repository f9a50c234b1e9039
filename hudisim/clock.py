"""Clock and identifier services.

All wall-clock reads and random identifiers go through objects injected
at table construction, so that one table's state never depends on a
process-wide counter and tests can pin time and ids.

Key types:
- Clock: ABC returning the current UTC datetime
- SystemClock: real wall clock
- ManualClock: deterministic clock that advances by a fixed step per read
- InstantTimeGenerator: strictly increasing yyyyMMddHHmmssSSS instant times
- IdGenerator: ABC for file group and file slice identifiers
- SequentialIdGenerator / RandomIdGenerator: concrete id strategies
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

INSTANT_TIME_FORMAT = "%Y%m%d%H%M%S"
INSTANT_TIME_LENGTH = 17

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------

class Clock(ABC):
    """Source of wall-clock time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...

    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""
        return _to_epoch_ms(self.now())


class SystemClock(Clock):
    """Real UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Deterministic clock for tests.

    Each read returns the current value and then advances it by
    ``step_ms``. A step of 0 freezes time, which is how tests provoke
    instant-time ties.
    """

    def __init__(
        self,
        start: Optional[datetime] = None,
        step_ms: float = 1.0,
    ):
        if start is None:
            start = datetime(2025, 8, 10, tzinfo=timezone.utc)
        elif start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._current = start
        self._step = timedelta(milliseconds=step_ms)

    def now(self) -> datetime:
        value = self._current
        self._current = self._current + self._step
        return value

    def advance(self, ms: float) -> None:
        """Move the clock forward without reading it."""
        self._current = self._current + timedelta(milliseconds=ms)

    def set_step(self, step_ms: float) -> None:
        self._step = timedelta(milliseconds=step_ms)


def _to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(milliseconds=1)


# ---------------------------------------------------------------------------
# Instant times
# ---------------------------------------------------------------------------

def format_instant_time(epoch_ms: int) -> str:
    """Format epoch milliseconds as a fixed-width yyyyMMddHHmmssSSS string."""
    moment = _EPOCH + timedelta(milliseconds=epoch_ms)
    return f"{moment.strftime(INSTANT_TIME_FORMAT)}{epoch_ms % 1000:03d}"


def instant_to_datetime(instant_time: Optional[str]) -> Optional[datetime]:
    """Parse an instant time back into a UTC datetime.

    Returns None for empty or unparseable input rather than raising,
    since callers use this for display only.
    """
    if not instant_time:
        return None
    try:
        base = datetime.strptime(instant_time[:14], INSTANT_TIME_FORMAT)
        millis = int(instant_time[14:INSTANT_TIME_LENGTH] or "0")
    except ValueError:
        return None
    return base.replace(tzinfo=timezone.utc) + timedelta(milliseconds=millis)


class InstantTimeGenerator:
    """Generates strictly increasing instant times from a Clock.

    Instant times are fixed-width, so lexicographic order is chronological
    order. When the clock has not moved past the previously issued time
    (same millisecond, or a clock that went backwards) the generator
    issues the previous time plus one millisecond instead.
    """

    def __init__(self, clock: Clock):
        self._clock = clock
        self._last_ms: Optional[int] = None

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def last(self) -> Optional[str]:
        """Most recently issued instant time, or None."""
        if self._last_ms is None:
            return None
        return format_instant_time(self._last_ms)

    def next(self) -> str:
        now_ms = self._clock.now_ms()
        if self._last_ms is not None and now_ms <= self._last_ms:
            logger.debug(f"Instant time tie at {now_ms}; bumping past {self._last_ms}")
            now_ms = self._last_ms + 1
        self._last_ms = now_ms
        return format_instant_time(now_ms)


# ---------------------------------------------------------------------------
# Identifier generation
# ---------------------------------------------------------------------------

class IdGenerator(ABC):
    """Issues identifiers for file groups and file slices.

    Scoped to a single table: two tables never share generator state.
    """

    def __init__(self):
        self._group_counter = 0

    def file_group_id(self) -> str:
        """Next file group id (fg-1, fg-2, ...)."""
        self._group_counter += 1
        return f"fg-{self._group_counter}"

    @abstractmethod
    def file_slice_id(self, kind: str, group_id: str, instant_time: str) -> str:
        """Unique id for a new base or delta slice of ``group_id``."""
        ...


class SequentialIdGenerator(IdGenerator):
    """Deterministic ids: slice suffix is a per-table counter."""

    def __init__(self):
        super().__init__()
        self._slice_counter = 0

    def file_slice_id(self, kind: str, group_id: str, instant_time: str) -> str:
        self._slice_counter += 1
        return f"{kind}-{group_id}-{instant_time}-{self._slice_counter}"


class RandomIdGenerator(IdGenerator):
    """Random slice suffixes drawn from a numpy RandomState.

    Suffixes are retried until unique within this generator.
    """

    def __init__(self, rng: Optional[np.random.RandomState] = None):
        super().__init__()
        self._rng = rng if rng is not None else np.random.RandomState()
        self._issued: set[str] = set()

    def file_slice_id(self, kind: str, group_id: str, instant_time: str) -> str:
        while True:
            suffix = f"{self._rng.randint(0, 2**31 - 1):08x}"
            slice_id = f"{kind}-{group_id}-{instant_time}-{suffix}"
            if slice_id not in self._issued:
                self._issued.add(slice_id)
                return slice_id
