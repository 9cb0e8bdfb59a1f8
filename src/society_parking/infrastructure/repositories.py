# File: src/society_parking/infrastructure/repositories.py
"""
Repository Pattern Implementation for Society Parking

Repositories provide a collection-like interface over the document store
for the two aggregates, ParkingSlot and Booking, and the Mapper converts
between documents and entities. The Mapper fails loudly on missing or
invalid fields instead of defaulting them.

Repositories work against any DocumentSource: the store itself for plain
reads, or a Transaction when used through a DocumentUnitOfWork.

Collections:
- parkingSlots
- parkingBookings
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict, Any, Callable, Generic, TypeVar
import logging

from ..domain.exceptions import MalformedRecordError, InvalidWindowError
from ..domain.models import (
    AggregateRoot, ParkingSlot, Booking, BookingWindow, Occupant, Reservation,
    SlotKind, SlotStatus, BookingStatus, slot_sort_key
)
from .document_store import DocumentSource, DocumentStore, Transaction, Document

SLOTS_COLLECTION = "parkingSlots"
BOOKINGS_COLLECTION = "parkingBookings"

T = TypeVar('T', bound=AggregateRoot)


# ============================================================================
# MAPPER
# ============================================================================

class Mapper:
    """Maps between entities and stored documents"""

    @staticmethod
    def _require(document: Document, collection: str, *fields: str) -> None:
        missing = [f for f in fields if document.get(f) in (None, "")]
        if missing:
            raise MalformedRecordError(collection, document.get("id"), f"missing {', '.join(missing)}")

    @staticmethod
    def slot_to_document(slot: ParkingSlot) -> Document:
        reservation = None
        if slot.reservation:
            reservation = {
                "holder": slot.reservation.holder,
                "booking_id": slot.reservation.booking_id,
                **slot.reservation.window.to_dict(),
                "reserved_until": slot.reservation.window.ends_at,
            }

        return {
            "id": slot.id,
            "slot_number": slot.slot_number,
            "kind": slot.kind.value,
            "level": slot.level,
            "status": slot.status.value,
            "assigned_occupant": slot.assigned_occupant.to_dict() if slot.assigned_occupant else None,
            "reservation": reservation,
            "created_at": slot.created_at,
            "updated_at": slot.updated_at,
        }

    @staticmethod
    def document_to_slot(document: Document) -> ParkingSlot:
        Mapper._require(document, SLOTS_COLLECTION, "id", "slot_number", "kind", "level", "status")
        doc_id = document["id"]
        try:
            kind = SlotKind(document["kind"])
            status = SlotStatus(document["status"])

            occupant = None
            occupant_doc = document.get("assigned_occupant")
            if occupant_doc:
                occupant = Occupant(
                    resident_id=occupant_doc["resident_id"],
                    name=occupant_doc.get("name"),
                    flat_number=occupant_doc.get("flat_number")
                )

            reservation = None
            reservation_doc = document.get("reservation")
            if reservation_doc:
                reservation = Reservation(
                    holder=reservation_doc["holder"],
                    booking_id=reservation_doc["booking_id"],
                    window=BookingWindow(
                        date=reservation_doc["date"],
                        start_time=reservation_doc["start_time"],
                        end_time=reservation_doc["end_time"]
                    )
                )

            return ParkingSlot(
                id=doc_id,
                slot_number=document["slot_number"],
                kind=kind,
                level=document["level"],
                status=status,
                assigned_occupant=occupant,
                reservation=reservation,
                created_at=document.get("created_at"),
                updated_at=document.get("updated_at")
            )
        except (KeyError, ValueError, InvalidWindowError) as e:
            raise MalformedRecordError(SLOTS_COLLECTION, doc_id, str(e)) from e

    @staticmethod
    def booking_to_document(booking: Booking) -> Document:
        return {
            "id": booking.id,
            "requester": booking.requester,
            "requester_name": booking.requester_name,
            "visitor_name": booking.visitor_name,
            "visitor_phone": booking.visitor_phone,
            "vehicle_id": booking.vehicle_id,
            "purpose": booking.purpose,
            **booking.window.to_dict(),
            # Stored so the expiry sweep can use a range query
            "ends_at": booking.window.ends_at,
            "slot_id": booking.slot_id,
            "slot_number": booking.slot_number,
            "status": booking.status.value,
            "created_at": booking.created_at,
            "cancelled_at": booking.cancelled_at,
            "completed_at": booking.completed_at,
        }

    @staticmethod
    def document_to_booking(document: Document) -> Booking:
        Mapper._require(
            document, BOOKINGS_COLLECTION,
            "id", "requester", "visitor_name", "vehicle_id", "date", "start_time",
            "end_time", "slot_id", "slot_number", "status", "created_at"
        )
        doc_id = document["id"]
        if not isinstance(document["created_at"], datetime):
            raise MalformedRecordError(BOOKINGS_COLLECTION, doc_id, "created_at is not a timestamp")
        try:
            return Booking(
                id=doc_id,
                requester=document["requester"],
                requester_name=document.get("requester_name"),
                visitor_name=document["visitor_name"],
                visitor_phone=document.get("visitor_phone"),
                vehicle_id=document["vehicle_id"],
                purpose=document.get("purpose"),
                window=BookingWindow(
                    date=document["date"],
                    start_time=document["start_time"],
                    end_time=document["end_time"]
                ),
                slot_id=document["slot_id"],
                slot_number=document["slot_number"],
                status=BookingStatus(document["status"]),
                created_at=document["created_at"],
                cancelled_at=document.get("cancelled_at"),
                completed_at=document.get("completed_at")
            )
        except (ValueError, InvalidWindowError) as e:
            raise MalformedRecordError(BOOKINGS_COLLECTION, doc_id, str(e)) from e


# ============================================================================
# REPOSITORIES
# ============================================================================

class Repository(ABC, Generic[T]):
    """Base repository over a document source"""

    collection: str = ""

    def __init__(self, source: DocumentSource,
                 on_write: Optional[Callable[[AggregateRoot], None]] = None):
        self.source = source
        self._on_write = on_write
        self._logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def to_domain(self, document: Document) -> T:
        pass

    @abstractmethod
    def to_document(self, entity: T) -> Document:
        pass

    def _track(self, entity: T) -> None:
        if self._on_write:
            self._on_write(entity)

    def get(self, id: str) -> Optional[T]:
        document = self.source.get(self.collection, id)
        return self.to_domain(document) if document else None

    def find(self, filters: Optional[Dict[str, Any]] = None) -> List[T]:
        return [self.to_domain(d) for d in self.source.find(self.collection, filters)]

    def add(self, entity: T) -> T:
        self.source.insert(self.collection, self.to_document(entity))
        self._track(entity)
        self._logger.debug(f"Added entity {entity.id}")
        return entity

    def update(self, entity: T, expected: Optional[Dict[str, Any]] = None) -> bool:
        document = self.to_document(entity)
        document.pop("id")
        updated = self.source.update(self.collection, entity.id, document, expected)
        if updated:
            self._track(entity)
            self._logger.debug(f"Updated entity {entity.id}")
        return updated


class ParkingSlotRepository(Repository[ParkingSlot]):
    """Repository for parking slots"""

    collection = SLOTS_COLLECTION

    def to_domain(self, document: Document) -> ParkingSlot:
        return Mapper.document_to_slot(document)

    def to_document(self, entity: ParkingSlot) -> Document:
        return Mapper.slot_to_document(entity)

    def list_all(self) -> List[ParkingSlot]:
        """All slots ordered by slot number"""
        return sorted(self.find(), key=lambda s: slot_sort_key(s.slot_number))

    def find_available(self, kind: SlotKind) -> List[ParkingSlot]:
        """Available slots of a kind ordered by slot number"""
        slots = self.find({"kind": kind.value, "status": SlotStatus.AVAILABLE.value})
        return sorted(slots, key=lambda s: slot_sort_key(s.slot_number))

    def has_any(self) -> bool:
        return len(self.source.find(self.collection)) > 0


class BookingRepository(Repository[Booking]):
    """Repository for visitor bookings"""

    collection = BOOKINGS_COLLECTION

    def to_domain(self, document: Document) -> Booking:
        return Mapper.document_to_booking(document)

    def to_document(self, entity: Booking) -> Document:
        return Mapper.booking_to_document(entity)

    @staticmethod
    def newest_first(bookings: List[Booking]) -> List[Booking]:
        return sorted(bookings, key=lambda b: b.created_at, reverse=True)

    def list_all(self) -> List[Booking]:
        return self.newest_first(self.find())

    def find_by_requester(self, requester: str) -> List[Booking]:
        return self.newest_first(self.find({"requester": requester}))

    def find_active_ended_before(self, now: datetime) -> List[Booking]:
        """Active bookings whose window ended strictly before now"""
        candidates = self.find({"status": BookingStatus.ACTIVE.value, "ends_at": {"$lt": now}})
        return [b for b in candidates if b.has_elapsed(now)]


def ensure_indexes(store: DocumentStore) -> None:
    """Create the indexes the parking core relies on"""
    store.create_index(SLOTS_COLLECTION, "slot_number", unique=True)
    store.create_index(SLOTS_COLLECTION, "status")
    store.create_index(BOOKINGS_COLLECTION, "requester")
    store.create_index(BOOKINGS_COLLECTION, "status")


# ============================================================================
# UNIT OF WORK PATTERN
# ============================================================================

class UnitOfWork(ABC):
    """Unit of Work pattern for transaction management"""

    @abstractmethod
    def __enter__(self) -> 'UnitOfWork':
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @property
    @abstractmethod
    def slots(self) -> ParkingSlotRepository:
        pass

    @property
    @abstractmethod
    def bookings(self) -> BookingRepository:
        pass


class DocumentUnitOfWork(UnitOfWork):
    """
    Unit of Work over a document store transaction

    Aggregates written through its repositories have their domain events
    published on the event bus only after the transaction committed.
    """

    def __init__(self, store: DocumentStore, event_bus: Optional[Any] = None):
        self.store = store
        self.event_bus = event_bus
        self._transaction: Optional[Transaction] = None
        self._touched: List[AggregateRoot] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self) -> 'DocumentUnitOfWork':
        self._transaction = self.store.begin()
        self._touched = []
        self._slots = ParkingSlotRepository(self._transaction, self._remember)
        self._bookings = BookingRepository(self._transaction, self._remember)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self._logger.debug(f"Rolling back unit of work: {exc_val}")
            self.rollback()
        else:
            self.commit()

    def _remember(self, aggregate: AggregateRoot) -> None:
        if aggregate not in self._touched:
            self._touched.append(aggregate)

    def commit(self) -> None:
        try:
            self._transaction.commit()
        except Exception:
            self._discard_events()
            raise
        self._logger.debug("Transaction committed")
        self._publish_events()

    def rollback(self) -> None:
        self._transaction.rollback()
        self._discard_events()
        self._logger.debug("Transaction rolled back")

    def _discard_events(self) -> None:
        for aggregate in self._touched:
            aggregate.clear_events()
        self._touched = []

    def _publish_events(self) -> None:
        touched, self._touched = self._touched, []
        for aggregate in touched:
            for event in aggregate.clear_events():
                if self.event_bus is not None:
                    self.event_bus.publish(event)

    @property
    def slots(self) -> ParkingSlotRepository:
        return self._slots

    @property
    def bookings(self) -> BookingRepository:
        return self._bookings
