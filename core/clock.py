"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single time source for partition aging, execution windows,
re-evaluation intervals and audit timestamps.

- Every component receives a clock by injection
- Partition ages are computed against clock.today()
- Window checks use clock.now().time()

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only
- Mockable, so aging scenarios run without waiting
- Thread-safe

============================================================
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Optional
import threading
import time


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the engine clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        pass

    def today(self) -> date:
        """Get current UTC date."""
        return self.now().date()

    def time_of_day(self) -> dt_time:
        """Get the current wall-clock time (UTC), without date."""
        return self.now().time().replace(microsecond=0)

    def days_since(self, moment: datetime) -> float:
        """Fractional days elapsed since a moment."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return (self.now() - moment).total_seconds() / 86400.0


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Wall clock, UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Manually driven clock.

    Lets tests age partitions past a threshold or step in and
    out of an execution window deterministically.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        initial_time = initial_time or datetime.now(timezone.utc)
        if initial_time.tzinfo is None:
            initial_time = initial_time.replace(tzinfo=timezone.utc)
        self._time = initial_time
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        with self._lock:
            return self._time.timestamp()

    def set_time(self, new_time: datetime) -> None:
        """Jump to an absolute time."""
        with self._lock:
            if new_time.tzinfo is None:
                new_time = new_time.replace(tzinfo=timezone.utc)
            self._time = new_time

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Move time forward.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)
