"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a unified, testable clock abstraction for the risk guard.

- All time-related operations MUST use this clock
- Enables deterministic testing
- Ensures consistent timestamps across all modules
- Knows the market calendar (trading date, next session open)

============================================================
DESIGN PRINCIPLES
============================================================
- Timestamps are UTC
- Trading dates are market-local (see core.constants.MARKET_TIMEZONE)
- Mockable for testing
- Thread-safe

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Generator, Optional
import math
import threading
import time as _time

from .constants import (
    MARKET_OPEN_TIME,
    MARKET_TIMEZONE,
    MIN_BALANCE_CACHE_TTL_SECONDS,
)


# ============================================================
# MARKET CALENDAR
# ============================================================

def trading_date_for(
    moment: datetime,
    market_tz: tzinfo = MARKET_TIMEZONE,
) -> date:
    """Market-local calendar date of an instant."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(market_tz).date()


def next_market_open(
    moment: datetime,
    open_time: time = MARKET_OPEN_TIME,
    market_tz: tzinfo = MARKET_TIMEZONE,
) -> datetime:
    """
    Next session open strictly after the market-local time of day.

    At or after today's open the next open is tomorrow's.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(market_tz)
    candidate = local.replace(
        hour=open_time.hour,
        minute=open_time.minute,
        second=0,
        microsecond=0,
    )
    if local >= candidate:
        candidate = candidate + timedelta(days=1)
    return candidate


def seconds_until_next_market_open(
    moment: datetime,
    open_time: time = MARKET_OPEN_TIME,
    market_tz: tzinfo = MARKET_TIMEZONE,
    minimum_seconds: int = MIN_BALANCE_CACHE_TTL_SECONDS,
) -> int:
    """Whole seconds until the next open, never below minimum_seconds."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = next_market_open(moment, open_time, market_tz) - moment
    return max(math.floor(delta.total_seconds()), minimum_seconds)


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds, for measuring elapsed time."""
        pass

    def trading_date(self) -> date:
        """Market-local date of the current instant."""
        return trading_date_for(self.now())


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """
    Production clock using actual system time.

    All times are in UTC.
    """

    def now(self) -> datetime:
        """Get current UTC datetime."""
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return _time.monotonic()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests. The monotonic
    reading advances together with the wall clock.
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
        self._monotonic = 0.0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        """Get current (mocked) datetime."""
        with self._lock:
            return self._time

    def monotonic(self) -> float:
        with self._lock:
            return self._monotonic

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            if new_time.tzinfo is None:
                new_time = new_time.replace(tzinfo=timezone.utc)
            self._monotonic += max((new_time - self._time).total_seconds(), 0.0)
            self._time = new_time

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            delta = timedelta(seconds=seconds, **kwargs)
            self._time = self._time + delta
            self._monotonic += delta.total_seconds()

    @contextmanager
    def freeze(self, at_time: Optional[datetime] = None) -> Generator[None, None, None]:
        """
        Context manager to freeze time.

        Args:
            at_time: Time to freeze at (defaults to current)
        """
        with self._lock:
            original_time = self._time
            if at_time:
                if at_time.tzinfo is None:
                    at_time = at_time.replace(tzinfo=timezone.utc)
                self._time = at_time

        try:
            yield
        finally:
            with self._lock:
                self._time = original_time


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    # Protocols
    "ClockProtocol",

    # Implementations
    "SystemClock",
    "MockClock",

    # Market calendar
    "trading_date_for",
    "next_market_open",
    "seconds_until_next_market_open",
]
