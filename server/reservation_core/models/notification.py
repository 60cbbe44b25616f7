"""Notification outbox model definition."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class NotificationType(str, Enum):
    """Kinds of notification the core asks the delivery layer to send."""
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_FLAGGED = "payment_flagged"
    PAYMENT_REFUNDED = "payment_refunded"
    PAYMENT_REQUIRES_ATTENTION = "payment_requires_attention"


class NotificationEvent(Base):
    """
    A "please notify" request written with the transition that caused it.

    Delivery (e-mail, push, dashboards) happens outside this service and sets
    ``delivered_at``.
    """

    __tablename__ = "notification_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_type: Mapped[NotificationType] = mapped_column(String(40), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    payment_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_notification_events_undelivered", "delivered_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<NotificationEvent(id={self.id}, event_type={self.event_type}, payment_id={self.payment_id})>"
