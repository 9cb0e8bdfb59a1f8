# File: src/society_parking/application/expiry_sweeper.py
"""
Expiry Sweeper

Policy for when the Booking Ledger's expire_elapsed runs: opportunistically
before slot-availability reads, and from a coarse timer hook that only
sweeps once the configured interval has passed. Owns no thread.
"""

from datetime import datetime, timedelta
from typing import Optional
import logging
import threading

from ..infrastructure.clock import Clock
from .booking_ledger import BookingLedger


class ExpirySweeper:
    """Drives BookingLedger.expire_elapsed"""

    def __init__(self, ledger: BookingLedger, clock: Clock,
                 interval: timedelta = timedelta(minutes=5)):
        self.ledger = ledger
        self.clock = clock
        self.interval = interval
        self.last_sweep_at: Optional[datetime] = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def sweep(self) -> int:
        """Expire elapsed bookings now"""
        now = self.clock.now()
        with self._lock:
            self.last_sweep_at = now

        expired = self.ledger.expire_elapsed(now)
        if expired:
            self.logger.info(f"Expired {expired} booking(s)")
        return expired

    def is_due(self) -> bool:
        with self._lock:
            return self.last_sweep_at is None or self.clock.now() - self.last_sweep_at >= self.interval

    def sweep_if_due(self) -> int:
        """Timer hook: sweep only when the interval has elapsed since the last sweep"""
        if not self.is_due():
            return 0
        return self.sweep()
