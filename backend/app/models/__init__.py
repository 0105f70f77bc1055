from backend.app.models.availability_override import AvailabilityOverride
from backend.app.models.availability_window import AvailabilityWindow
from backend.app.models.booking import (
    ACTIVE_BOOKING_STATUSES,
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_PENDING,
    Booking,
)
from backend.app.models.booking_type import BookingType
from backend.app.models.slot_ledger import SlotLedgerEntry

__all__ = [
    "ACTIVE_BOOKING_STATUSES",
    "AvailabilityOverride",
    "AvailabilityWindow",
    "BOOKING_CANCELLED",
    "BOOKING_CONFIRMED",
    "BOOKING_PENDING",
    "Booking",
    "BookingType",
    "SlotLedgerEntry",
]
