# File: src/society_parking/application/parking_service.py
"""
Society Parking Application Service

Entry point for the UI layer. Wires the Slot Registry, Booking Ledger and
Expiry Sweeper over one document store and exposes the parking use cases:

1. Slot setup and resident assignment
2. Visitor booking, cancellation and listing
3. Occupancy statistics
4. Live slot and booking feeds for the UI

Errors from the core are raised unchanged; the UI maps each error kind to
a message.
"""

from datetime import timedelta
from typing import Callable, List, Optional
import logging

from ..config import ParkingConfig
from ..domain.models import Occupant, slot_sort_key
from ..infrastructure.clock import Clock, SystemClock
from ..infrastructure.document_store import DocumentStore, InMemoryDocumentStore, Subscription
from ..infrastructure.messaging import (
    EventBus, MessageQueue, RedisMessageQueue, InMemoryMessageQueue, NotificationEventHandler
)
from ..infrastructure.repositories import Mapper, SLOTS_COLLECTION, BOOKINGS_COLLECTION
from .booking_ledger import BookingLedger
from .dtos import BookingDTO, BookingRequestDTO, ParkingSlotDTO, ParkingStatsDTO
from .expiry_sweeper import ExpirySweeper
from .slot_registry import SlotRegistry


class ParkingService:
    """
    Main application service for society parking

    Reads that show slot availability run an expiry sweep first, so an
    elapsed booking never keeps its slot past the next read.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Optional[Clock] = None,
        config: Optional[ParkingConfig] = None,
        event_bus: Optional[EventBus] = None,
        message_queue: Optional[MessageQueue] = None
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or ParkingConfig()
        self.event_bus = event_bus or EventBus()
        self.message_queue = message_queue

        self.registry = SlotRegistry(store, self.clock, self.event_bus)
        self.ledger = BookingLedger(
            store, self.registry, self.clock,
            max_booking_attempts=self.config.max_booking_attempts,
            max_transition_attempts=self.config.max_transition_attempts
        )
        self.sweeper = ExpirySweeper(
            self.ledger, self.clock, timedelta(minutes=self.config.sweep_interval_minutes)
        )

        self.logger.info("ParkingService initialized")

    # ========================================================================
    # SLOTS
    # ========================================================================

    def initialize_slots(self, resident_count: Optional[int] = None,
                         visitor_count: Optional[int] = None) -> List[ParkingSlotDTO]:
        """One-time setup of the slot inventory; raises AlreadyInitializedError"""
        resident_count = self.config.resident_slot_count if resident_count is None else resident_count
        visitor_count = self.config.visitor_slot_count if visitor_count is None else visitor_count
        slots = self.registry.initialize(resident_count, visitor_count)
        return [ParkingSlotDTO.from_domain(s) for s in slots]

    def is_initialized(self) -> bool:
        return self.registry.is_initialized()

    def list_slots(self) -> List[ParkingSlotDTO]:
        self.sweeper.sweep()
        return [ParkingSlotDTO.from_domain(s) for s in self.registry.list_all()]

    def find_available_visitor_slot(self) -> ParkingSlotDTO:
        """Raises NoSlotAvailableError when every visitor slot is taken"""
        self.sweeper.sweep()
        return ParkingSlotDTO.from_domain(self.registry.find_available_visitor_slot())

    def assign_resident(self, slot_id: str, resident_id: str, name: Optional[str] = None,
                        flat_number: Optional[str] = None) -> ParkingSlotDTO:
        occupant = Occupant(resident_id=resident_id, name=name, flat_number=flat_number)
        return ParkingSlotDTO.from_domain(self.registry.assign_resident(slot_id, occupant))

    def release_slot(self, slot_id: str) -> bool:
        """
        Free a resident slot; idempotent

        A reserved visitor slot is freed by cancelling its booking instead,
        so the booking and the slot change together.
        """
        slot = self.registry.get(slot_id)
        if slot.booking_id is not None:
            booking = self.ledger.get(slot.booking_id)
            if booking.is_active:
                self.ledger.cancel(booking.id)
                return True
        return self.registry.release(slot_id)

    def get_stats(self) -> ParkingStatsDTO:
        self.sweeper.sweep()
        return ParkingStatsDTO.from_slots(self.registry.list_all())

    # ========================================================================
    # BOOKINGS
    # ========================================================================

    def book_visitor_parking(self, request: BookingRequestDTO) -> BookingDTO:
        """
        Book a visitor slot for the requested window

        Use Case: Visitor Booking
        1. Sweep elapsed bookings so their slots count as free
        2. Reserve the lowest-numbered free visitor slot and record the booking

        Raises: InvalidWindowError, BookingFailedError
        """
        self.logger.info(f"Processing visitor booking for {request.requester}")
        self.sweeper.sweep()

        booking = self.ledger.book(
            requester=request.requester,
            visitor_name=request.visitor_name,
            vehicle_id=request.vehicle_id,
            date=request.date,
            start_time=request.start_time,
            end_time=request.end_time,
            requester_name=request.requester_name,
            visitor_phone=request.visitor_phone,
            purpose=request.purpose
        )
        return BookingDTO.from_domain(booking)

    def cancel_booking(self, booking_id: str) -> BookingDTO:
        """Raises: NotFoundError, AlreadyTerminalError"""
        return BookingDTO.from_domain(self.ledger.cancel(booking_id))

    def complete_booking(self, booking_id: str) -> BookingDTO:
        return BookingDTO.from_domain(self.ledger.complete(booking_id))

    def get_booking(self, booking_id: str) -> BookingDTO:
        return BookingDTO.from_domain(self.ledger.get(booking_id))

    def list_bookings_for_user(self, requester: str) -> List[BookingDTO]:
        return [BookingDTO.from_domain(b) for b in self.ledger.list_for_user(requester)]

    def list_bookings(self) -> List[BookingDTO]:
        return [BookingDTO.from_domain(b) for b in self.ledger.list_all()]

    def expire_elapsed(self) -> int:
        return self.sweeper.sweep()

    def tick(self) -> int:
        """Coarse timer hook; sweeps at most once per configured interval"""
        return self.sweeper.sweep_if_due()

    # ========================================================================
    # LIVE FEEDS
    # ========================================================================

    def subscribe_to_slots(self, callback: Callable[[List[ParkingSlotDTO]], None]) -> Subscription:
        """Push the full sorted slot list now and after every slot change"""
        def on_snapshot(documents):
            slots = sorted(
                (Mapper.document_to_slot(d) for d in documents),
                key=lambda s: slot_sort_key(s.slot_number)
            )
            callback([ParkingSlotDTO.from_domain(s) for s in slots])

        return self.store.subscribe(SLOTS_COLLECTION, None, on_snapshot)

    def subscribe_to_user_bookings(self, requester: str,
                                   callback: Callable[[List[BookingDTO]], None]) -> Subscription:
        """Push a requester's bookings, newest first, now and after every change"""
        def on_snapshot(documents):
            bookings = sorted(
                (Mapper.document_to_booking(d) for d in documents),
                key=lambda b: b.created_at,
                reverse=True
            )
            callback([BookingDTO.from_domain(b) for b in bookings])

        return self.store.subscribe(BOOKINGS_COLLECTION, {"requester": requester}, on_snapshot)

    def close(self) -> None:
        if self.message_queue is not None:
            self.message_queue.close()
        self.store.close()
        self.logger.info("ParkingService closed")


# ============================================================================
# FACTORY
# ============================================================================

class ParkingServiceFactory:
    """Factory for creating parking service instances"""

    @staticmethod
    def create_store(config: ParkingConfig) -> DocumentStore:
        if config.store_backend == "mongo":
            from ..infrastructure.mongo_store import MongoDocumentStore
            return MongoDocumentStore(config.mongo_url, database=config.mongo_database)
        return InMemoryDocumentStore()

    @staticmethod
    def create_message_queue(config: ParkingConfig) -> Optional[MessageQueue]:
        if config.redis_url:
            return RedisMessageQueue(config.redis_url)
        return None

    @staticmethod
    def create(config: Optional[ParkingConfig] = None, clock: Optional[Clock] = None,
               store: Optional[DocumentStore] = None,
               message_queue: Optional[MessageQueue] = None) -> ParkingService:
        """Create a service from configuration (environment when not given)"""
        config = config or ParkingConfig.from_env()
        store = store or ParkingServiceFactory.create_store(config)
        queue = message_queue or ParkingServiceFactory.create_message_queue(config)

        event_bus = EventBus()
        if queue is not None:
            event_bus.subscribe_all(NotificationEventHandler(queue, config.notification_channel))

        return ParkingService(store, clock=clock, config=config, event_bus=event_bus, message_queue=queue)

    @staticmethod
    def create_in_memory(config: Optional[ParkingConfig] = None,
                         clock: Optional[Clock] = None) -> ParkingService:
        """In-memory service with an in-memory notification queue (for testing)"""
        return ParkingServiceFactory.create(
            config=config or ParkingConfig(),
            clock=clock,
            store=InMemoryDocumentStore(),
            message_queue=InMemoryMessageQueue()
        )
