"""Models module exporting all database models."""

from .audit import AuditAction, AuditEntry, EntityType, ImmutableAuditEntryError
from .booking import Booking, BookingRoom, BookingStatus
from .hold import HoldState, ReservationHold
from .inventory import RoomType
from .notification import NotificationEvent, NotificationType
from .payment import Payment, PaymentEvent, PaymentStatus, VerificationStatus

__all__ = [
    # Inventory
    "RoomType",

    # Holds
    "ReservationHold",
    "HoldState",

    # Bookings
    "Booking",
    "BookingRoom",
    "BookingStatus",

    # Payments
    "Payment",
    "PaymentEvent",
    "PaymentStatus",
    "VerificationStatus",

    # Audit
    "AuditEntry",
    "AuditAction",
    "EntityType",
    "ImmutableAuditEntryError",

    # Notifications
    "NotificationEvent",
    "NotificationType",
]
