#!/usr/bin/env python3
"""
Booking Ledger Unit Tests

Tests for the visitor booking lifecycle: booking, cancellation, expiry and
their effect on visitor slot state.
"""

import unittest
from unittest.mock import patch
from datetime import datetime, timedelta

from society_parking.application.booking_ledger import BookingLedger
from society_parking.application.slot_registry import SlotRegistry
from society_parking.domain.exceptions import (
    AlreadyTerminalError, BookingFailedError, InvalidBookingError, InvalidWindowError,
    NotFoundError, ParkingError, SlotNotAvailableError, TransactionConflictError
)
from society_parking.domain.models import BookingStatus, SlotStatus
from society_parking.infrastructure.clock import FixedClock
from society_parking.infrastructure.document_store import InMemoryDocumentStore


NOW = datetime(2025, 6, 1, 7, 0)


class BookingLedgerTestBase(unittest.TestCase):
    visitor_slots = 2

    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.clock = FixedClock(NOW)
        self.registry = SlotRegistry(self.store, self.clock)
        self.registry.initialize(2, self.visitor_slots)
        self.ledger = BookingLedger(self.store, self.registry, self.clock)

    def book(self, requester="alice", start="08:00", end="10:00", date="2025-06-01"):
        return self.ledger.book(
            requester=requester,
            visitor_name="Bob",
            vehicle_id="mh12 ab 1234",
            date=date,
            start_time=start,
            end_time=end
        )

    def slot_status(self, number: str) -> SlotStatus:
        return next(s.status for s in self.registry.list_all() if s.slot_number == number)


# ============================================================================
# BOOK
# ============================================================================

class TestBook(BookingLedgerTestBase):
    """Tests for creating visitor bookings"""

    def test_book_reserves_lowest_slot(self):
        booking = self.book()

        self.assertEqual(booking.slot_number, "V-01")
        self.assertEqual(booking.status, BookingStatus.ACTIVE)
        self.assertEqual(booking.vehicle_id, "MH12AB1234")
        self.assertEqual(booking.created_at, NOW)

        slot = self.registry.get(booking.slot_id)
        self.assertEqual(slot.status, SlotStatus.RESERVED)
        self.assertEqual(slot.reservation.holder, "alice")
        self.assertEqual(slot.booking_id, booking.id)
        self.assertEqual(self.ledger.get(booking.id).slot_id, slot.id)

    def test_book_until_full(self):
        """V-01, then V-02, then no slots"""
        self.assertEqual(self.book().slot_number, "V-01")
        self.assertEqual(self.book(requester="carol").slot_number, "V-02")

        with self.assertRaises(BookingFailedError) as ctx:
            self.book(requester="dave")
        self.assertEqual(ctx.exception.reason, BookingFailedError.NO_SLOTS)
        self.assertEqual(len(self.ledger.list_all()), 2)

    def test_past_date_is_rejected(self):
        with self.assertRaises(InvalidWindowError):
            self.book(date="2025-05-31")
        self.assertEqual(self.ledger.list_all(), [])
        self.assertEqual(self.slot_status("V-01"), SlotStatus.AVAILABLE)

    def test_today_with_past_times_is_accepted(self):
        self.clock.set(datetime(2025, 6, 1, 12, 0))
        self.assertEqual(self.book(start="08:00", end="09:00").status, BookingStatus.ACTIVE)

    def test_start_must_precede_end(self):
        for start, end in [("10:00", "10:00"), ("11:00", "10:00")]:
            with self.subTest(start=start, end=end):
                with self.assertRaises(InvalidWindowError):
                    self.book(start=start, end=end)
        self.assertEqual(self.ledger.list_all(), [])

    def test_lost_races_fail_with_contention(self):
        with patch.object(self.registry, 'reserve', side_effect=SlotNotAvailableError("V-01", "reserved")) as reserve:
            with self.assertRaises(BookingFailedError) as ctx:
                self.book()

        self.assertEqual(ctx.exception.reason, BookingFailedError.CONTENTION)
        self.assertIsInstance(ctx.exception.cause, SlotNotAvailableError)
        self.assertEqual(reserve.call_count, 3)
        self.assertEqual(self.ledger.list_all(), [])

    def test_lost_race_is_retried(self):
        original = self.registry.reserve
        calls = []

        def flaky_reserve(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise TransactionConflictError("slot changed")
            return original(*args, **kwargs)

        with patch.object(self.registry, 'reserve', side_effect=flaky_reserve):
            booking = self.book()

        self.assertEqual(len(calls), 2)
        self.assertEqual(booking.slot_number, "V-01")
        self.assertEqual(len(self.ledger.list_all()), 1)

    def test_missing_request_fields_are_rejected(self):
        """Blank or missing names fail with a parking error before any write"""
        for field, value in [("visitor_name", None), ("visitor_name", "   "),
                             ("requester", ""), ("vehicle_id", None), ("vehicle_id", " ")]:
            with self.subTest(field=field, value=value):
                kwargs = dict(requester="alice", visitor_name="Bob", vehicle_id="MH12AB1234",
                              date="2025-06-01", start_time="08:00", end_time="10:00")
                kwargs[field] = value
                with self.assertRaises(InvalidBookingError) as ctx:
                    self.ledger.book(**kwargs)
                self.assertEqual(ctx.exception.field, field)
                self.assertIsInstance(ctx.exception, ParkingError)

        self.assertEqual(self.ledger.list_all(), [])
        self.assertEqual(self.slot_status("V-01"), SlotStatus.AVAILABLE)

    def test_visitor_name_is_trimmed(self):
        booking = self.ledger.book("alice", "  Bob ", "MH12AB1234", "2025-06-01", "08:00", "10:00")
        self.assertEqual(booking.visitor_name, "Bob")

    def test_attempt_limits_must_be_positive(self):
        with self.assertRaises(ValueError):
            BookingLedger(self.store, self.registry, self.clock, max_booking_attempts=0)


# ============================================================================
# CANCEL AND COMPLETE
# ============================================================================

class TestCancelAndComplete(BookingLedgerTestBase):
    """Tests for terminal transitions"""

    def test_cancel_frees_slot(self):
        booking = self.book()
        self.clock.advance(timedelta(minutes=10))

        cancelled = self.ledger.cancel(booking.id)

        self.assertEqual(cancelled.status, BookingStatus.CANCELLED)
        self.assertEqual(cancelled.cancelled_at, NOW + timedelta(minutes=10))
        self.assertEqual(self.slot_status("V-01"), SlotStatus.AVAILABLE)
        self.assertEqual(
            [b.status for b in self.ledger.list_for_user("alice")], [BookingStatus.CANCELLED]
        )
        self.assertEqual(self.book(requester="carol").slot_number, "V-01")

    def test_second_cancel_fails(self):
        booking = self.book()
        self.ledger.cancel(booking.id)

        with patch.object(self.registry, 'release', wraps=self.registry.release) as release:
            with self.assertRaises(AlreadyTerminalError):
                self.ledger.cancel(booking.id)
            release.assert_not_called()

        self.assertEqual(self.ledger.get(booking.id).status, BookingStatus.CANCELLED)

    def test_complete(self):
        booking = self.book()
        completed = self.ledger.complete(booking.id)

        self.assertEqual(completed.status, BookingStatus.COMPLETED)
        self.assertEqual(self.slot_status("V-01"), SlotStatus.AVAILABLE)
        with self.assertRaises(AlreadyTerminalError):
            self.ledger.cancel(booking.id)

    def test_unknown_booking(self):
        with self.assertRaises(NotFoundError):
            self.ledger.cancel("missing")
        with self.assertRaises(NotFoundError):
            self.ledger.get("missing")

    def test_cancel_does_not_free_slot_held_by_another_booking(self):
        booking = self.book()
        slot = self.registry.get(booking.slot_id)
        self.registry.release(slot.id)
        other = self.book(requester="carol")
        self.assertEqual(other.slot_id, slot.id)

        self.ledger.cancel(booking.id)

        self.assertEqual(self.registry.get(slot.id).booking_id, other.id)
        self.assertEqual(self.slot_status("V-01"), SlotStatus.RESERVED)


# ============================================================================
# EXPIRY
# ============================================================================

class TestExpireElapsed(BookingLedgerTestBase):
    """Tests for completing bookings whose window has ended"""

    def test_nothing_expires_before_window_end(self):
        self.book()
        self.assertEqual(self.ledger.expire_elapsed(datetime(2025, 6, 1, 9, 0)), 0)
        self.assertEqual(self.ledger.expire_elapsed(datetime(2025, 6, 1, 10, 0)), 0)
        self.assertEqual(self.slot_status("V-01"), SlotStatus.RESERVED)

    def test_elapsed_booking_is_completed(self):
        booking = self.book()
        later = self.book(requester="carol", start="12:00", end="14:00")

        expired = self.ledger.expire_elapsed(datetime(2025, 6, 1, 11, 0))

        self.assertEqual(expired, 1)
        self.assertEqual(self.ledger.get(booking.id).status, BookingStatus.COMPLETED)
        self.assertEqual(self.ledger.get(booking.id).completed_at, datetime(2025, 6, 1, 11, 0))
        self.assertEqual(self.ledger.get(later.id).status, BookingStatus.ACTIVE)
        self.assertEqual(self.slot_status("V-01"), SlotStatus.AVAILABLE)
        self.assertEqual(self.slot_status("V-02"), SlotStatus.RESERVED)

        self.assertEqual(self.ledger.expire_elapsed(datetime(2025, 6, 1, 11, 0)), 0)

    def test_expiry_uses_clock_by_default(self):
        self.book()
        self.clock.set(datetime(2025, 6, 1, 10, 1))
        self.assertEqual(self.ledger.expire_elapsed(), 1)

    def test_cancelled_bookings_are_skipped(self):
        booking = self.book()
        self.ledger.cancel(booking.id)

        self.assertEqual(self.ledger.expire_elapsed(datetime(2025, 6, 2, 0, 0)), 0)
        self.assertEqual(self.ledger.get(booking.id).status, BookingStatus.CANCELLED)


# ============================================================================
# QUERIES
# ============================================================================

class TestQueries(BookingLedgerTestBase):
    """Tests for booking listings"""

    visitor_slots = 3

    def test_lists_are_newest_first(self):
        first = self.book()
        self.clock.advance(timedelta(minutes=1))
        other = self.book(requester="carol")
        self.clock.advance(timedelta(minutes=1))
        second = self.book()

        self.assertEqual([b.id for b in self.ledger.list_for_user("alice")], [second.id, first.id])
        self.assertEqual([b.id for b in self.ledger.list_all()], [second.id, other.id, first.id])
        self.assertEqual(self.ledger.list_for_user("nobody"), [])


if __name__ == '__main__':
    unittest.main()
