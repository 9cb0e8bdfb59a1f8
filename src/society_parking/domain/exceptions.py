# File: src/society_parking/domain/exceptions.py
"""
Error kinds for the parking core.

Every operation fails fast with one of these. The UI layer maps them to
user-facing messages; nothing here retries on the caller's behalf.
"""

from typing import Optional


class ParkingError(Exception):
    """Base exception for parking errors"""
    pass


class NotFoundError(ParkingError):
    """Raised when a slot or booking id is unknown"""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class AlreadyInitializedError(ParkingError):
    """Raised when the slot inventory already exists"""
    pass


class SlotNotAvailableError(ParkingError):
    """Raised when a slot is not in the Available state"""

    def __init__(self, slot_number: str, status: str):
        super().__init__(f"Slot {slot_number} is not available (status: {status})")
        self.slot_number = slot_number
        self.status = status


class NoSlotAvailableError(ParkingError):
    """Raised when no visitor slot is free"""
    pass


class WrongSlotKindError(ParkingError):
    """Raised when an operation targets a slot of the wrong kind"""

    def __init__(self, slot_number: str, expected: str, actual: str):
        super().__init__(f"Slot {slot_number} is a {actual} slot, expected {expected}")
        self.slot_number = slot_number
        self.expected = expected
        self.actual = actual


class InvalidWindowError(ParkingError):
    """Raised for malformed or past booking windows"""
    pass


class AlreadyTerminalError(ParkingError):
    """Raised when a booking has already been cancelled or completed"""

    def __init__(self, booking_id: str, status: str):
        super().__init__(f"Booking {booking_id} is already {status}")
        self.booking_id = booking_id
        self.status = status


class InvalidBookingError(ParkingError):
    """Raised when a booking request is missing its requester, visitor or vehicle"""

    def __init__(self, field: str):
        super().__init__(f"Booking request needs a non-empty {field}")
        self.field = field


class BookingFailedError(ParkingError):
    """Raised when a visitor booking cannot be made"""

    NO_SLOTS = "no slots"
    CONTENTION = "contention"

    def __init__(self, reason: str, cause: Optional[Exception] = None):
        super().__init__(f"Booking failed: {reason}")
        self.reason = reason
        self.cause = cause


class MalformedRecordError(ParkingError):
    """Raised when a stored document cannot be mapped to an entity"""

    def __init__(self, collection: str, doc_id: Optional[str], detail: str):
        super().__init__(f"Malformed {collection} record {doc_id}: {detail}")
        self.collection = collection
        self.doc_id = doc_id
        self.detail = detail


# ============================================================================
# STORE ERRORS
# ============================================================================

class DocumentStoreError(ParkingError):
    """Base exception for document store failures"""
    pass


class TransactionConflictError(DocumentStoreError):
    """Raised when a transaction lost an optimistic concurrency race"""
    pass


class DuplicateDocumentError(DocumentStoreError):
    """Raised when an insert violates a unique index"""
    pass
