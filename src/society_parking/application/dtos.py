# File: src/society_parking/application/dtos.py
"""
Data Transfer Objects (DTOs) for Society Parking

1. Input DTOs - booking requests coming from the UI layer
2. Output DTOs - slot, booking and statistics views handed back to it

DTO Principles:
- Validation at creation
- No business logic, only data
- Serialization/deserialization support
"""

from typing import Dict, List, Optional, Any
from datetime import datetime
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..domain.models import Booking, ParkingSlot, SlotKind, SlotStatus, normalize_vehicle_id


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        return self.model_dump(exclude_none=exclude_none, **kwargs)

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        return cls(**json.loads(json_str))


# ============================================================================
# BOOKING DTOs
# ============================================================================

class BookingRequestDTO(BaseDTO):
    """
    Visitor parking request as submitted by a resident

    Date and times are kept as the strings the form sends; the booking
    ledger validates the window itself.
    """
    requester: str = Field(min_length=1, description="Stable id of the requesting resident")
    requester_name: Optional[str] = Field(default=None, description="Display name of the requester")
    visitor_name: str = Field(min_length=1, max_length=100, description="Visitor name")
    visitor_phone: Optional[str] = Field(default=None, max_length=20, description="Visitor phone")
    vehicle_id: str = Field(min_length=1, max_length=20, description="Vehicle registration number")
    date: str = Field(description="Booking date (YYYY-MM-DD)")
    start_time: str = Field(description="Start time (HH:MM)")
    end_time: str = Field(description="End time (HH:MM)")
    purpose: Optional[str] = Field(default=None, max_length=200, description="Purpose of visit")

    @field_validator('vehicle_id')
    @classmethod
    def validate_vehicle_id(cls, v: str) -> str:
        """Normalise registration numbers and require alphanumerics"""
        v = normalize_vehicle_id(v)
        if not v.replace('-', '').isalnum():
            raise ValueError("Vehicle number must be alphanumeric")
        return v

    @field_validator('visitor_phone')
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.replace('+', '').replace('-', '').replace(' ', '').isdigit():
            raise ValueError("Invalid phone number")
        return v or None


class BookingDTO(BaseDTO):
    """Complete booking DTO"""
    id: str
    requester: str
    requester_name: Optional[str] = None
    visitor_name: str
    visitor_phone: Optional[str] = None
    vehicle_id: str
    purpose: Optional[str] = None
    date: str
    start_time: str
    end_time: str
    slot_id: str
    slot_number: str
    status: str
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, booking: Booking) -> 'BookingDTO':
        return cls(
            id=booking.id,
            requester=booking.requester,
            requester_name=booking.requester_name,
            visitor_name=booking.visitor_name,
            visitor_phone=booking.visitor_phone,
            vehicle_id=booking.vehicle_id,
            purpose=booking.purpose,
            date=booking.window.date,
            start_time=booking.window.start_time,
            end_time=booking.window.end_time,
            slot_id=booking.slot_id,
            slot_number=booking.slot_number,
            status=booking.status.value,
            created_at=booking.created_at,
            cancelled_at=booking.cancelled_at,
            completed_at=booking.completed_at,
        )


# ============================================================================
# SLOT DTOs
# ============================================================================

class ParkingSlotDTO(BaseDTO):
    """Flattened view of a parking slot"""
    id: str
    slot_number: str
    kind: str
    level: str
    status: str
    assigned_to: Optional[str] = Field(default=None, description="Resident id of the occupant")
    assigned_name: Optional[str] = None
    flat_number: Optional[str] = None
    reserved_by: Optional[str] = Field(default=None, description="Requester holding the reservation")
    booking_id: Optional[str] = None
    reserved_until: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, slot: ParkingSlot) -> 'ParkingSlotDTO':
        occupant = slot.assigned_occupant
        reservation = slot.reservation
        return cls(
            id=slot.id,
            slot_number=slot.slot_number,
            kind=slot.kind.value,
            level=slot.level,
            status=slot.status.value,
            assigned_to=occupant.resident_id if occupant else None,
            assigned_name=occupant.name if occupant else None,
            flat_number=occupant.flat_number if occupant else None,
            reserved_by=reservation.holder if reservation else None,
            booking_id=reservation.booking_id if reservation else None,
            reserved_until=reservation.window.ends_at if reservation else None,
            updated_at=slot.updated_at,
        )


class ParkingStatsDTO(BaseDTO):
    """Slot counts by kind and status"""
    total_slots: int = Field(ge=0)
    resident_slots: int = Field(ge=0)
    visitor_slots: int = Field(ge=0)
    available: int = Field(ge=0)
    reserved: int = Field(ge=0)
    occupied: int = Field(ge=0)

    @classmethod
    def from_slots(cls, slots: List[ParkingSlot]) -> 'ParkingStatsDTO':
        return cls(
            total_slots=len(slots),
            resident_slots=sum(1 for s in slots if s.kind == SlotKind.RESIDENT),
            visitor_slots=sum(1 for s in slots if s.kind == SlotKind.VISITOR),
            available=sum(1 for s in slots if s.status == SlotStatus.AVAILABLE),
            reserved=sum(1 for s in slots if s.status == SlotStatus.RESERVED),
            occupied=sum(1 for s in slots if s.status == SlotStatus.OCCUPIED),
        )
