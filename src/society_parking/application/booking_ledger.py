# File: src/society_parking/application/booking_ledger.py
"""
Booking Ledger

Manages the visitor booking lifecycle and delegates slot state to the
Slot Registry. Every state change pairs the booking write with the slot
transition in one unit of work:

- book:    slot AVAILABLE -> RESERVED  + booking created ACTIVE
- cancel:  slot -> AVAILABLE           + booking ACTIVE -> CANCELLED
- expire:  slot -> AVAILABLE           + booking ACTIVE -> COMPLETED

Lost optimistic-concurrency races are retried a bounded number of times.
"""

from datetime import datetime
from typing import Callable, List, Optional
import logging

from ..domain.exceptions import (
    AlreadyTerminalError, BookingFailedError, InvalidBookingError, InvalidWindowError,
    NotFoundError, NoSlotAvailableError, SlotNotAvailableError, TransactionConflictError
)
from ..domain.models import Booking, BookingWindow, normalize_vehicle_id
from ..infrastructure.clock import Clock
from ..infrastructure.document_store import DocumentStore
from ..infrastructure.repositories import BookingRepository, UnitOfWork
from .slot_registry import SlotRegistry


def _required_text(value: Optional[str], field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidBookingError(field)
    return value.strip()


class BookingLedger:
    """Owns visitor booking records"""

    def __init__(
        self,
        store: DocumentStore,
        registry: SlotRegistry,
        clock: Clock,
        max_booking_attempts: int = 3,
        max_transition_attempts: int = 3
    ):
        if max_booking_attempts < 1 or max_transition_attempts < 1:
            raise ValueError("Attempt limits must be at least 1")

        self.store = store
        self.registry = registry
        self.clock = clock
        self.max_booking_attempts = max_booking_attempts
        self.max_transition_attempts = max_transition_attempts
        self.bookings = BookingRepository(store)
        self.logger = logging.getLogger(self.__class__.__name__)

    # ========================================================================
    # BOOK
    # ========================================================================

    def book(
        self,
        requester: str,
        visitor_name: str,
        vehicle_id: str,
        date: str,
        start_time: str,
        end_time: str,
        requester_name: Optional[str] = None,
        visitor_phone: Optional[str] = None,
        purpose: Optional[str] = None
    ) -> Booking:
        """
        Book a visitor slot

        Use Case: Visitor Booking
        1. Validate the request fields and the window (start before end,
           date not in the past)
        2. Pick the lowest-numbered available visitor slot
        3. Reserve it and create the ACTIVE booking in one transaction
        4. On a lost race, retry with a fresh candidate

        Raises: InvalidBookingError, InvalidWindowError,
                BookingFailedError("no slots" | "contention")
        """
        requester = _required_text(requester, "requester")
        visitor_name = _required_text(visitor_name, "visitor_name")
        vehicle_id = normalize_vehicle_id(_required_text(vehicle_id, "vehicle_id"))

        window = BookingWindow(date=date, start_time=start_time, end_time=end_time)
        now = self.clock.now()
        if window.day < now.date():
            raise InvalidWindowError(f"Booking date {window.date} is in the past")

        details = {
            "requester_name": requester_name,
            "visitor_phone": visitor_phone,
            "purpose": purpose,
        }

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_booking_attempts + 1):
            try:
                with self.registry.unit_of_work() as uow:
                    slot = self.registry.find_available_visitor_slot(uow)
                    booking = Booking.open(
                        requester=requester,
                        visitor_name=visitor_name,
                        vehicle_id=vehicle_id,
                        window=window,
                        slot=slot,
                        created_at=now,
                        **details
                    )
                    self.registry.reserve(slot.id, requester, window, booking.id, uow=uow)
                    uow.bookings.add(booking)
            except NoSlotAvailableError as e:
                self.logger.info(f"No visitor slot for {requester} on {window}")
                raise BookingFailedError(BookingFailedError.NO_SLOTS, e) from e
            except (SlotNotAvailableError, TransactionConflictError) as e:
                last_error = e
                self.logger.warning(f"Booking attempt {attempt} lost a race: {e}")
                continue

            self.logger.info(f"Booking {booking.id} created: {booking.slot_number} for {requester} on {window}")
            return booking

        raise BookingFailedError(BookingFailedError.CONTENTION, last_error) from last_error

    # ========================================================================
    # LIFECYCLE TRANSITIONS
    # ========================================================================

    def _transition(self, booking_id: str, action: Callable[[Booking, datetime], None],
                    now: datetime, skip_inactive: bool = False) -> Optional[Booking]:
        """
        Apply a terminal transition and release the booking's slot atomically

        With skip_inactive a booking that is no longer ACTIVE (or no longer
        elapsed) is skipped and None returned, instead of raising.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_transition_attempts + 1):
            try:
                with self.registry.unit_of_work() as uow:
                    booking = self._load(uow, booking_id)
                    if skip_inactive and (not booking.is_active or not booking.has_elapsed(now)):
                        return None
                    action(booking, now)
                    self.registry.release(booking.slot_id, uow=uow, booking_id=booking.id)
                    uow.bookings.update(booking)
                return booking
            except TransactionConflictError as e:
                last_error = e
                self.logger.warning(f"Transition of booking {booking_id} conflicted (attempt {attempt}): {e}")

        raise last_error

    def _load(self, uow: UnitOfWork, booking_id: str) -> Booking:
        booking = uow.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    def cancel(self, booking_id: str) -> Booking:
        """
        ACTIVE -> CANCELLED, releasing the slot

        Raises: NotFoundError, AlreadyTerminalError
        """
        booking = self._transition(booking_id, lambda b, now: b.cancel(now), self.clock.now())
        self.logger.info(f"Booking {booking_id} cancelled, slot {booking.slot_number} released")
        return booking

    def complete(self, booking_id: str) -> Booking:
        """
        ACTIVE -> COMPLETED, releasing the slot

        Raises: NotFoundError, AlreadyTerminalError
        """
        booking = self._transition(booking_id, lambda b, now: b.complete(now), self.clock.now())
        self.logger.info(f"Booking {booking_id} completed, slot {booking.slot_number} released")
        return booking

    def expire_elapsed(self, now: Optional[datetime] = None) -> int:
        """
        Complete every ACTIVE booking whose window ended strictly before now

        Bookings moved out of ACTIVE by a concurrent cancel or sweep are
        skipped. Returns the number of bookings this call completed.
        """
        now = now or self.clock.now()
        expired = 0

        for candidate in self.bookings.find_active_ended_before(now):
            try:
                booking = self._transition(
                    candidate.id, lambda b, at: b.complete(at), now, skip_inactive=True
                )
            except (NotFoundError, AlreadyTerminalError, TransactionConflictError) as e:
                self.logger.debug(f"Skipping expiry of booking {candidate.id}: {e}")
                continue

            if booking is not None:
                expired += 1
                self.logger.info(f"Booking {booking.id} expired, slot {booking.slot_number} released")

        return expired

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    def list_for_user(self, requester: str) -> List[Booking]:
        """Bookings of a requester, newest first"""
        return self.bookings.find_by_requester(requester)

    def list_all(self) -> List[Booking]:
        """All bookings, newest first"""
        return self.bookings.list_all()
