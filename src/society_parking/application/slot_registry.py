# File: src/society_parking/application/slot_registry.py
"""
Slot Registry

Source of truth for the slot inventory and slot status. It is the only
component that writes ParkingSlot.status.

Mutating operations accept an optional unit of work so the Booking Ledger
can pair a slot transition with a booking write in one transaction. Without
one, each operation runs in its own unit of work.
"""

from typing import List, Optional
import logging

from ..domain.exceptions import (
    AlreadyInitializedError, NotFoundError, NoSlotAvailableError,
    SlotNotAvailableError, DuplicateDocumentError, TransactionConflictError
)
from ..domain.models import (
    ParkingSlot, BookingWindow, Occupant, SlotKind, SlotStatus, generate_slot_inventory
)
from ..infrastructure.clock import Clock
from ..infrastructure.document_store import DocumentStore
from ..infrastructure.messaging import EventBus
from ..infrastructure.repositories import (
    ParkingSlotRepository, DocumentUnitOfWork, UnitOfWork, ensure_indexes
)


class SlotRegistry:
    """Owns the fixed inventory of parking slots"""

    def __init__(self, store: DocumentStore, clock: Clock, event_bus: Optional[EventBus] = None):
        self.store = store
        self.clock = clock
        self.event_bus = event_bus
        self.slots = ParkingSlotRepository(store)
        self.logger = logging.getLogger(self.__class__.__name__)

        ensure_indexes(store)

    def unit_of_work(self) -> DocumentUnitOfWork:
        return DocumentUnitOfWork(self.store, self.event_bus)

    # ========================================================================
    # SETUP
    # ========================================================================

    def is_initialized(self) -> bool:
        return self.slots.has_any()

    def initialize(self, resident_count: int, visitor_count: int) -> List[ParkingSlot]:
        """
        Create resident_count Resident slots (R-001...) and visitor_count
        Visitor slots (V-01...), all AVAILABLE.

        One-time setup: raises AlreadyInitializedError when any slot exists,
        including when a concurrent initializer got there first.
        """
        inventory = generate_slot_inventory(resident_count, visitor_count, created_at=self.clock.now())

        try:
            with self.unit_of_work() as uow:
                if uow.slots.has_any():
                    raise AlreadyInitializedError("Parking slots are already initialized")
                for slot in inventory:
                    uow.slots.add(slot)
        except (DuplicateDocumentError, TransactionConflictError) as e:
            raise AlreadyInitializedError("Parking slots were initialized concurrently") from e

        self.logger.info(f"Initialized {resident_count} resident and {visitor_count} visitor slots")
        return inventory

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get(self, slot_id: str) -> ParkingSlot:
        slot = self.slots.get(slot_id)
        if slot is None:
            raise NotFoundError("Slot", slot_id)
        return slot

    def list_all(self) -> List[ParkingSlot]:
        """All slots ordered by slot number (numeric on the suffix)"""
        return self.slots.list_all()

    def find_available_visitor_slot(self, uow: Optional[UnitOfWork] = None) -> ParkingSlot:
        """Lowest-numbered AVAILABLE Visitor slot"""
        repository = uow.slots if uow is not None else self.slots
        candidates = repository.find_available(SlotKind.VISITOR)
        if not candidates:
            raise NoSlotAvailableError("No visitor slot is available")
        return candidates[0]

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def _load(self, uow: UnitOfWork, slot_id: str) -> ParkingSlot:
        slot = uow.slots.get(slot_id)
        if slot is None:
            raise NotFoundError("Slot", slot_id)
        return slot

    def reserve(self, slot_id: str, holder: str, window: BookingWindow, booking_id: str,
                uow: Optional[UnitOfWork] = None) -> ParkingSlot:
        """
        AVAILABLE -> RESERVED for a Visitor slot

        The status is re-read inside the unit of work, so a caller that lost
        a race sees SlotNotAvailableError (or a conflict at commit).
        """
        if uow is None:
            with self.unit_of_work() as own:
                return self.reserve(slot_id, holder, window, booking_id, uow=own)

        slot = self._load(uow, slot_id)
        slot.reserve(holder, booking_id, window, now=self.clock.now())
        if not uow.slots.update(slot, expected={"status": SlotStatus.AVAILABLE.value}):
            raise SlotNotAvailableError(slot.slot_number, "changed concurrently")

        self.logger.info(f"Slot {slot.slot_number} reserved by {holder} for booking {booking_id}")
        return slot

    def release(self, slot_id: str, uow: Optional[UnitOfWork] = None,
                booking_id: Optional[str] = None) -> bool:
        """
        RESERVED/OCCUPIED -> AVAILABLE

        Idempotent: releasing an AVAILABLE slot is a no-op and returns False.
        When booking_id is given, a slot reserved for a different booking is
        left alone.
        """
        if uow is None:
            with self.unit_of_work() as own:
                return self.release(slot_id, uow=own, booking_id=booking_id)

        slot = self._load(uow, slot_id)
        if booking_id is not None and slot.booking_id not in (None, booking_id):
            self.logger.warning(
                f"Slot {slot.slot_number} is held by booking {slot.booking_id}, not {booking_id}; not releasing"
            )
            return False

        if not slot.release(now=self.clock.now()):
            self.logger.debug(f"Slot {slot.slot_number} already available")
            return False

        uow.slots.update(slot)
        self.logger.info(f"Slot {slot.slot_number} released")
        return True

    def assign_resident(self, slot_id: str, occupant: Occupant,
                        uow: Optional[UnitOfWork] = None) -> ParkingSlot:
        """AVAILABLE -> OCCUPIED for a Resident slot"""
        if uow is None:
            with self.unit_of_work() as own:
                return self.assign_resident(slot_id, occupant, uow=own)

        slot = self._load(uow, slot_id)
        slot.assign(occupant, now=self.clock.now())
        if not uow.slots.update(slot, expected={"status": SlotStatus.AVAILABLE.value}):
            raise SlotNotAvailableError(slot.slot_number, "changed concurrently")

        self.logger.info(f"Slot {slot.slot_number} assigned to resident {occupant.resident_id}")
        return slot
