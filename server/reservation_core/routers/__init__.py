"""FastAPI routers package."""

from .audit import router as audit_router
from .booking import router as booking_router
from .health import router as health_router
from .hold import router as hold_router
from .inventory import router as inventory_router
from .metrics import router as metrics_router
from .payment import router as payment_router

__all__ = [
    "audit_router",
    "booking_router",
    "health_router",
    "hold_router",
    "inventory_router",
    "metrics_router",
    "payment_router",
]
