"""Typed errors raised by the booking engine.

Caller errors (not found, unavailable slot, illegal transition, unknown service)
are raised before any mutation. PersistenceFailure reports a durable-store
problem and carries the collection that failed.
"""
from typing import Optional


class BookingError(Exception):
    """Base class for every error the engine raises."""
    code = "BOOKING_ERROR"


class NotFoundError(BookingError):
    """Raised when an id does not resolve to a record."""
    code = "NOT_FOUND"
    entity = "record"

    def __init__(self, entity_id: str):
        super().__init__(f"{self.entity.capitalize()} '{entity_id}' not found")
        self.entity_id = entity_id


class ClientNotFound(NotFoundError):
    entity = "client"


class SlotNotFound(NotFoundError):
    entity = "time slot"


class AppointmentNotFound(NotFoundError):
    entity = "appointment"


class SlotUnavailable(BookingError):
    """Raised on a double-booking attempt or a slot that can no longer be booked."""
    code = "SLOT_UNAVAILABLE"

    def __init__(self, slot_id: str, reason: str = "is no longer available"):
        super().__init__(f"Time slot '{slot_id}' {reason}")
        self.slot_id = slot_id


class InvalidTransition(BookingError):
    """Raised when an appointment status change is not allowed."""
    code = "INVALID_TRANSITION"

    def __init__(self, appointment_id: str, current, intended):
        super().__init__(
            f"Appointment '{appointment_id}' cannot go from "
            f"{getattr(current, 'value', current)} to {getattr(intended, 'value', intended)}"
        )
        self.appointment_id = appointment_id
        self.current = current
        self.intended = intended


class InvalidService(BookingError):
    """Raised when a service label is not in the catalogue."""
    code = "INVALID_SERVICE"

    def __init__(self, service: str):
        super().__init__(f"Service '{service}' is not offered")
        self.service = service


class PersistenceFailure(BookingError):
    """Raised (strict mode) or reported (best-effort mode) when storage fails."""
    code = "PERSISTENCE_FAILURE"

    def __init__(self, collection: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"Could not persist '{collection}': {message}")
        self.collection = collection
        self.cause = cause
