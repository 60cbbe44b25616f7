"""Service layer package."""

from .audit_service import AuditService
from .booking_service import BookingService
from .hold_service import HoldService
from .inventory_service import InventoryService
from .notification_service import NotificationService
from .payment_service import PaymentService
from .reconciliation_service import ReconciliationService

__all__ = [
    "AuditService",
    "BookingService",
    "HoldService",
    "InventoryService",
    "NotificationService",
    "PaymentService",
    "ReconciliationService",
]
