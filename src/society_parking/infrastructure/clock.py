# File: src/society_parking/infrastructure/clock.py
"""
Clock abstraction so expiry comparisons can be driven from tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
import threading


class Clock(ABC):
    """Supplies the current time"""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    """Wall clock in local time, matching the dates users type into booking forms"""

    def now(self) -> datetime:
        return datetime.now()


class FixedClock(Clock):
    """Manually driven clock for tests"""

    def __init__(self, current: datetime):
        self._current = current
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set(self, current: datetime) -> None:
        with self._lock:
            self._current = current

    def advance(self, delta: timedelta) -> datetime:
        with self._lock:
            self._current = self._current + delta
            return self._current
