"""Notification outbox: "please notify" events written inside a transition."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.observability import metrics_collector
from ..models.notification import NotificationEvent, NotificationType
from ..models.payment import Payment

logger = logging.getLogger(__name__)

# Audience of each notification type
AUDIENCE = {
    NotificationType.PAYMENT_CONFIRMED: "GUEST",
    NotificationType.PAYMENT_FAILED: "GUEST",
    NotificationType.PAYMENT_VERIFIED: "GUEST",
    NotificationType.PAYMENT_FLAGGED: "CASHIER",
    NotificationType.PAYMENT_REFUNDED: "GUEST",
    NotificationType.PAYMENT_REQUIRES_ATTENTION: "CASHIER",
}


class NotificationService:
    """Queues notification events; delivery happens elsewhere."""

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    def queue_for_payment(
        self,
        event_type: NotificationType,
        payment: Payment,
        message: Optional[str] = None,
    ) -> NotificationEvent:
        """Add a notification about ``payment`` to the current transaction."""
        event = NotificationEvent(
            event_type=event_type.value,
            role=AUDIENCE[event_type],
            booking_id=payment.booking_id,
            payment_id=payment.id,
            message=message or _default_message(event_type, payment),
            created_at=self.clock.now(),
        )
        self.db.add(event)
        metrics_collector.record_notification(event_type.value)

        logger.info(
            "Notification queued",
            extra={
                "event_type": event_type.value,
                "payment_id": str(payment.id),
                "booking_id": str(payment.booking_id),
            }
        )
        return event

    async def list_for_payment(self, payment_id, event_type: Optional[NotificationType] = None) -> list[NotificationEvent]:
        stmt = select(NotificationEvent).where(NotificationEvent.payment_id == payment_id)
        if event_type is not None:
            stmt = stmt.where(NotificationEvent.event_type == event_type.value)
        stmt = stmt.order_by(NotificationEvent.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def pending(self, limit: int = 100) -> list[NotificationEvent]:
        """Undelivered events, oldest first."""
        stmt = (
            select(NotificationEvent)
            .where(NotificationEvent.delivered_at.is_(None))
            .order_by(NotificationEvent.created_at)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())


def _default_message(event_type: NotificationType, payment: Payment) -> str:
    ref = str(payment.booking_id)
    if event_type == NotificationType.PAYMENT_CONFIRMED:
        return f"Payment received. Booking {ref} is confirmed."
    if event_type == NotificationType.PAYMENT_FAILED:
        return f"Payment for booking {ref} did not go through and the booking was cancelled."
    if event_type == NotificationType.PAYMENT_VERIFIED:
        return f"Your payment for booking {ref} has been verified."
    if event_type == NotificationType.PAYMENT_FLAGGED:
        return f"Payment {payment.id} was flagged: {payment.flag_reason or 'no reason given'}"
    if event_type == NotificationType.PAYMENT_REFUNDED:
        return f"Payment for booking {ref} has been refunded."
    return f"Payment {payment.id} needs manual attention: {payment.attention_reason or 'unknown reason'}"
