"""Background workers for the reservation core."""

from .hold_expiry_worker import HoldExpiryWorker
from .reconciliation_worker import ReconciliationWorker

__all__ = ["HoldExpiryWorker", "ReconciliationWorker"]
