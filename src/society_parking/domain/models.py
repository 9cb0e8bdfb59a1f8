# File: src/society_parking/domain/models.py
"""
Domain Models for Society Parking
Following Domain-Driven Design (DDD) principles with rich domain models

This module contains:
1. Value Objects: BookingWindow, Occupant, Reservation
2. Entities/Aggregates: ParkingSlot, Booking
3. Enums: SlotKind, SlotStatus, BookingStatus
4. Domain Events: raised on every slot and booking state transition

The Slot Registry is the only writer of ParkingSlot.status; the Booking
Ledger is the only writer of Booking.status. Both go through the methods
below so the invariants are checked in one place.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple, Union
from datetime import datetime, date, time
from enum import Enum
import logging
import re
import uuid

from .exceptions import (
    InvalidWindowError, SlotNotAvailableError, WrongSlotKindError,
    AlreadyTerminalError
)


DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

RESIDENT_PREFIX = "R"
VISITOR_PREFIX = "V"


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class SlotKind(str, Enum):
    """Kind of parking slot"""
    RESIDENT = "resident"   # Permanently assignable to one resident
    VISITOR = "visitor"     # Bookable for a time window

    @property
    def prefix(self) -> str:
        return RESIDENT_PREFIX if self == SlotKind.RESIDENT else VISITOR_PREFIX

    @property
    def label_width(self) -> int:
        """Zero padding used for slot labels (R-001, V-01)"""
        return 3 if self == SlotKind.RESIDENT else 2


class SlotStatus(str, Enum):
    """Current status of a parking slot"""
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"


class BookingStatus(str, Enum):
    """
    Booking lifecycle: ACTIVE -> CANCELLED | COMPLETED
    Both CANCELLED and COMPLETED are terminal.
    """
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self != BookingStatus.ACTIVE


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class BookingWindow:
    """
    Value Object: the reserved window of a visitor booking
    Stored as the date/time strings the user entered, validated on creation
    """
    date: str
    start_time: str
    end_time: str

    def __post_init__(self):
        try:
            day = datetime.strptime(self.date, DATE_FORMAT).date()
            start = datetime.strptime(self.start_time, TIME_FORMAT).time()
            end = datetime.strptime(self.end_time, TIME_FORMAT).time()
        except (TypeError, ValueError) as e:
            raise InvalidWindowError(
                f"Invalid booking window {self.date} {self.start_time}-{self.end_time}: {e}"
            ) from e

        if start >= end:
            raise InvalidWindowError(
                f"Start time {self.start_time} must be before end time {self.end_time}"
            )

        # Normalise to the canonical zero-padded form
        object.__setattr__(self, 'date', day.strftime(DATE_FORMAT))
        object.__setattr__(self, 'start_time', start.strftime(TIME_FORMAT))
        object.__setattr__(self, 'end_time', end.strftime(TIME_FORMAT))

    @property
    def day(self) -> date:
        return datetime.strptime(self.date, DATE_FORMAT).date()

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.day, datetime.strptime(self.start_time, TIME_FORMAT).time())

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.day, datetime.strptime(self.end_time, TIME_FORMAT).time())

    def has_elapsed(self, now: datetime) -> bool:
        """True once the window end is strictly before now"""
        return self.ends_at < now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }

    def __str__(self) -> str:
        return f"{self.date} {self.start_time}-{self.end_time}"


@dataclass(frozen=True)
class Occupant:
    """Value Object: the resident a Resident slot is assigned to"""
    resident_id: str
    name: Optional[str] = None
    flat_number: Optional[str] = None

    def __post_init__(self):
        if not self.resident_id or not str(self.resident_id).strip():
            raise ValueError("Occupant resident_id cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resident_id": self.resident_id,
            "name": self.name,
            "flat_number": self.flat_number,
        }


@dataclass(frozen=True)
class Reservation:
    """Value Object: who holds a Visitor slot, for which booking and window"""
    holder: str
    booking_id: str
    window: BookingWindow

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holder": self.holder,
            "booking_id": self.booking_id,
            "window": self.window.to_dict(),
            # Matches the original reservedUntil field, handy for display
            "reserved_until": f"{self.window.date} {self.window.end_time}",
        }


# ============================================================================
# SLOT NUMBERS
# ============================================================================

_SLOT_NUMBER_RE = re.compile(r'^([A-Z]+)-(\S+)$')


def format_slot_number(kind: SlotKind, index: int) -> str:
    """Format the human readable label of the index-th slot of a kind"""
    if index < 1:
        raise ValueError(f"Slot index must be positive, got {index}")
    return f"{kind.prefix}-{index:0{kind.label_width}d}"


def slot_sort_key(slot_number: str) -> Tuple[str, int, Union[int, str]]:
    """
    Sort key for slot labels: prefix first, then the suffix numerically,
    falling back to lexicographic order for non-numeric suffixes.
    Keeps V-100 after V-99.
    """
    match = _SLOT_NUMBER_RE.match(slot_number or "")
    if not match:
        return (slot_number or "", 1, "")
    prefix, suffix = match.groups()
    if suffix.isdigit():
        return (prefix, 0, int(suffix))
    return (prefix, 1, suffix)


def level_for_resident_slot(index: int, resident_count: int) -> str:
    """First half of the resident slots is on the Ground level, the rest on First"""
    ground_count = (resident_count + 1) // 2
    return "Ground" if index <= ground_count else "First"


# ============================================================================
# DOMAIN EVENTS
# ============================================================================

class DomainEvent(ABC):
    """
    Base class for all domain events
    Events represent something that happened in the domain
    """

    def __init__(self, timestamp: Optional[datetime] = None):
        self.event_id = str(uuid.uuid4())
        self.timestamp = timestamp or datetime.now()
        self.version = "1.0"

    @property
    @abstractmethod
    def event_type(self) -> str:
        pass

    @abstractmethod
    def payload(self) -> Dict[str, Any]:
        pass

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "data": self.payload(),
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp}"


class SlotEvent(DomainEvent):
    """Base for events about a single slot"""

    def __init__(self, slot_id: str, slot_number: str, timestamp: Optional[datetime] = None):
        super().__init__(timestamp)
        self.slot_id = slot_id
        self.slot_number = slot_number

    def payload(self) -> Dict[str, Any]:
        return {"slot_id": self.slot_id, "slot_number": self.slot_number}


class SlotReservedEvent(SlotEvent):
    event_type = "parking.slot_reserved"

    def __init__(self, slot_id: str, slot_number: str, holder: str, booking_id: str,
                 timestamp: Optional[datetime] = None):
        super().__init__(slot_id, slot_number, timestamp)
        self.holder = holder
        self.booking_id = booking_id

    def payload(self) -> Dict[str, Any]:
        data = super().payload()
        data.update({"holder": self.holder, "booking_id": self.booking_id})
        return data


class SlotAssignedEvent(SlotEvent):
    event_type = "parking.slot_assigned"

    def __init__(self, slot_id: str, slot_number: str, resident_id: str,
                 timestamp: Optional[datetime] = None):
        super().__init__(slot_id, slot_number, timestamp)
        self.resident_id = resident_id

    def payload(self) -> Dict[str, Any]:
        data = super().payload()
        data["resident_id"] = self.resident_id
        return data


class SlotReleasedEvent(SlotEvent):
    event_type = "parking.slot_released"

    def __init__(self, slot_id: str, slot_number: str, previous_status: SlotStatus,
                 timestamp: Optional[datetime] = None):
        super().__init__(slot_id, slot_number, timestamp)
        self.previous_status = previous_status

    def payload(self) -> Dict[str, Any]:
        data = super().payload()
        data["previous_status"] = self.previous_status.value
        return data


class BookingEvent(DomainEvent):
    """Base for booking lifecycle events"""

    def __init__(self, booking_id: str, requester: str, slot_id: str, slot_number: str,
                 timestamp: Optional[datetime] = None):
        super().__init__(timestamp)
        self.booking_id = booking_id
        self.requester = requester
        self.slot_id = slot_id
        self.slot_number = slot_number

    def payload(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "requester": self.requester,
            "slot_id": self.slot_id,
            "slot_number": self.slot_number,
        }


class BookingCreatedEvent(BookingEvent):
    event_type = "parking.booking_created"


class BookingCancelledEvent(BookingEvent):
    event_type = "parking.booking_cancelled"


class BookingCompletedEvent(BookingEvent):
    event_type = "parking.booking_completed"


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides common functionality for entities with identity
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


class AggregateRoot(Entity):
    """
    Base class for aggregate roots
    Collects domain events until the unit of work has committed
    """

    def __init__(self, id: Optional[str] = None):
        super().__init__(id)
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    def _add_domain_event(self, event: DomainEvent) -> None:
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.__class__.__name__}")

    @property
    def events(self) -> List[DomainEvent]:
        return list(self._changes)

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    def _validate_invariants(self) -> None:
        pass


class ParkingSlot(AggregateRoot):
    """
    Aggregate: a single physical parking space

    Resident slots move between AVAILABLE and OCCUPIED (assigned occupant).
    Visitor slots move between AVAILABLE and RESERVED (booking reservation).
    """

    def __init__(
        self,
        slot_number: str,
        kind: SlotKind,
        level: str,
        status: SlotStatus = SlotStatus.AVAILABLE,
        assigned_occupant: Optional[Occupant] = None,
        reservation: Optional[Reservation] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self._slot_number = slot_number
        self.kind = kind
        self.level = level
        self.status = status
        self.assigned_occupant = assigned_occupant
        self.reservation = reservation
        self.created_at = created_at
        self.updated_at = updated_at

        self._validate_invariants()

    @property
    def slot_number(self) -> str:
        """Immutable label"""
        return self._slot_number

    @property
    def booking_id(self) -> Optional[str]:
        return self.reservation.booking_id if self.reservation else None

    def _validate_invariants(self) -> None:
        if not _SLOT_NUMBER_RE.match(self._slot_number or ""):
            raise ValueError(f"Invalid slot number: {self._slot_number!r}")

        if self.kind == SlotKind.RESIDENT:
            if self.status == SlotStatus.RESERVED:
                raise ValueError(f"Resident slot {self._slot_number} cannot be reserved")
            if (self.assigned_occupant is not None) != (self.status == SlotStatus.OCCUPIED):
                raise ValueError(
                    f"Resident slot {self._slot_number}: occupant must be set iff status is occupied"
                )
            if self.reservation is not None:
                raise ValueError(f"Resident slot {self._slot_number} cannot hold a reservation")
        else:
            if (self.reservation is not None) != (self.status == SlotStatus.RESERVED):
                raise ValueError(
                    f"Visitor slot {self._slot_number}: reservation must be set iff status is reserved"
                )
            if self.assigned_occupant is not None:
                raise ValueError(f"Visitor slot {self._slot_number} cannot have an occupant")

    def reserve(self, holder: str, booking_id: str, window: BookingWindow,
                now: Optional[datetime] = None) -> None:
        """
        AVAILABLE -> RESERVED for Visitor slots
        Raises: WrongSlotKindError, SlotNotAvailableError
        """
        if self.kind != SlotKind.VISITOR:
            raise WrongSlotKindError(self._slot_number, SlotKind.VISITOR.value, self.kind.value)
        if self.status != SlotStatus.AVAILABLE:
            raise SlotNotAvailableError(self._slot_number, self.status.value)

        self.reservation = Reservation(holder=holder, booking_id=booking_id, window=window)
        self.status = SlotStatus.RESERVED
        self.updated_at = now or datetime.now()
        self._add_domain_event(SlotReservedEvent(self.id, self._slot_number, holder, booking_id, now))

    def assign(self, occupant: Occupant, now: Optional[datetime] = None) -> None:
        """
        AVAILABLE -> OCCUPIED for Resident slots
        Raises: WrongSlotKindError, SlotNotAvailableError
        """
        if self.kind != SlotKind.RESIDENT:
            raise WrongSlotKindError(self._slot_number, SlotKind.RESIDENT.value, self.kind.value)
        if self.status != SlotStatus.AVAILABLE:
            raise SlotNotAvailableError(self._slot_number, self.status.value)

        self.assigned_occupant = occupant
        self.status = SlotStatus.OCCUPIED
        self.updated_at = now or datetime.now()
        self._add_domain_event(SlotAssignedEvent(self.id, self._slot_number, occupant.resident_id, now))

    def release(self, now: Optional[datetime] = None) -> bool:
        """
        RESERVED/OCCUPIED -> AVAILABLE
        Returns: False when the slot was already available (no-op)
        """
        if self.status == SlotStatus.AVAILABLE:
            return False

        previous = self.status
        self.reservation = None
        self.assigned_occupant = None
        self.status = SlotStatus.AVAILABLE
        self.updated_at = now or datetime.now()
        self._add_domain_event(SlotReleasedEvent(self.id, self._slot_number, previous, now))
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slot_number": self._slot_number,
            "kind": self.kind.value,
            "level": self.level,
            "status": self.status.value,
            "assigned_occupant": self.assigned_occupant.to_dict() if self.assigned_occupant else None,
            "reservation": self.reservation.to_dict() if self.reservation else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __str__(self) -> str:
        return f"Slot {self._slot_number} ({self.kind.value}, {self.level}) - {self.status.value}"


class Booking(AggregateRoot):
    """
    Aggregate: a time-bounded visitor reservation of one Visitor slot

    The slot reference is set at creation and never reassigned. Once the
    booking is terminal only the terminal timestamp is ever written.
    """

    def __init__(
        self,
        requester: str,
        visitor_name: str,
        vehicle_id: str,
        window: BookingWindow,
        slot_id: str,
        slot_number: str,
        created_at: datetime,
        status: BookingStatus = BookingStatus.ACTIVE,
        requester_name: Optional[str] = None,
        visitor_phone: Optional[str] = None,
        purpose: Optional[str] = None,
        cancelled_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self.requester = requester
        self.requester_name = requester_name
        self.visitor_name = visitor_name
        self.visitor_phone = visitor_phone
        self.vehicle_id = vehicle_id
        self.purpose = purpose
        self.window = window
        self._slot_id = slot_id
        self.slot_number = slot_number
        self.status = status
        self.created_at = created_at
        self.cancelled_at = cancelled_at
        self.completed_at = completed_at

        self._validate_invariants()

    @classmethod
    def open(cls, requester: str, visitor_name: str, vehicle_id: str, window: BookingWindow,
             slot: ParkingSlot, created_at: datetime, id: Optional[str] = None,
             **details: Any) -> 'Booking':
        """Create a new ACTIVE booking against a slot and raise BookingCreated"""
        booking = cls(
            requester=requester,
            visitor_name=visitor_name,
            vehicle_id=vehicle_id,
            window=window,
            slot_id=slot.id,
            slot_number=slot.slot_number,
            created_at=created_at,
            id=id,
            **details
        )
        booking._add_domain_event(
            BookingCreatedEvent(booking.id, requester, slot.id, slot.slot_number, created_at)
        )
        return booking

    @property
    def slot_id(self) -> str:
        return self._slot_id

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.ACTIVE

    @property
    def terminal_at(self) -> Optional[datetime]:
        return self.cancelled_at or self.completed_at

    def _validate_invariants(self) -> None:
        if not self.requester:
            raise ValueError("Booking requester cannot be empty")
        if not self.visitor_name or not self.visitor_name.strip():
            raise ValueError("Visitor name cannot be empty")
        if not self.vehicle_id or not self.vehicle_id.strip():
            raise ValueError("Vehicle id cannot be empty")
        if not self._slot_id:
            raise ValueError("Booking must reference a slot")

    def _ensure_active(self) -> None:
        if self.status.is_terminal:
            raise AlreadyTerminalError(self.id, self.status.value)

    def cancel(self, now: datetime) -> None:
        """ACTIVE -> CANCELLED"""
        self._ensure_active()
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = now
        self._add_domain_event(
            BookingCancelledEvent(self.id, self.requester, self._slot_id, self.slot_number, now)
        )

    def complete(self, now: datetime) -> None:
        """ACTIVE -> COMPLETED"""
        self._ensure_active()
        self.status = BookingStatus.COMPLETED
        self.completed_at = now
        self._add_domain_event(
            BookingCompletedEvent(self.id, self.requester, self._slot_id, self.slot_number, now)
        )

    def has_elapsed(self, now: datetime) -> bool:
        return self.window.has_elapsed(now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "requester": self.requester,
            "requester_name": self.requester_name,
            "visitor_name": self.visitor_name,
            "visitor_phone": self.visitor_phone,
            "vehicle_id": self.vehicle_id,
            "purpose": self.purpose,
            **self.window.to_dict(),
            "slot_id": self._slot_id,
            "slot_number": self.slot_number,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __str__(self) -> str:
        return f"Booking {self.id} for {self.visitor_name} in {self.slot_number} ({self.status.value})"


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def normalize_vehicle_id(vehicle_id: str) -> str:
    """Upper-case and strip whitespace from a registration number"""
    return re.sub(r'\s+', '', vehicle_id or "").upper()


def generate_slot_inventory(resident_count: int, visitor_count: int,
                            created_at: Optional[datetime] = None) -> List[ParkingSlot]:
    """
    Generate the initial slot inventory, all AVAILABLE
    Useful for initializing the registry
    """
    if resident_count < 0 or visitor_count < 0:
        raise ValueError("Slot counts cannot be negative")

    slots = []
    for i in range(1, resident_count + 1):
        slots.append(ParkingSlot(
            slot_number=format_slot_number(SlotKind.RESIDENT, i),
            kind=SlotKind.RESIDENT,
            level=level_for_resident_slot(i, resident_count),
            created_at=created_at,
            updated_at=created_at
        ))

    for i in range(1, visitor_count + 1):
        slots.append(ParkingSlot(
            slot_number=format_slot_number(SlotKind.VISITOR, i),
            kind=SlotKind.VISITOR,
            level="Ground",
            created_at=created_at,
            updated_at=created_at
        ))

    return slots
