"""Payment model definition."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class VerificationStatus(str, Enum):
    """Manual verification status of a paid payment."""
    UNVERIFIED = "UNVERIFIED"
    VERIFIED = "VERIFIED"
    FLAGGED = "FLAGGED"


class PaymentEvent(str, Enum):
    """Events accepted by the payment state machine."""
    PROVIDER_PAID = "provider_paid"
    PROVIDER_FAILED = "provider_failed"
    LEASE_EXPIRED = "lease_expired"
    VERIFY = "verify"
    FLAG = "flag"
    NOTE = "note"
    REFUND = "refund"


PROVIDER_EVENTS = frozenset({
    PaymentEvent.PROVIDER_PAID,
    PaymentEvent.PROVIDER_FAILED,
    PaymentEvent.LEASE_EXPIRED,
})

MANUAL_EVENTS = frozenset({
    PaymentEvent.VERIFY,
    PaymentEvent.FLAG,
    PaymentEvent.NOTE,
    PaymentEvent.REFUND,
})


class Payment(Base):
    """Payment for one booking, tracked through an external provider."""

    __tablename__ = "payments"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Amount in minor units
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PHP")

    # State
    status: Mapped[PaymentStatus] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING, index=True
    )
    verification_status: Mapped[VerificationStatus] = mapped_column(
        String(20), nullable=False, default=VerificationStatus.UNVERIFIED
    )

    # Provider
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="paymongo")
    provider_ref: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    # Manual review
    verified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    flagged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    flag_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # Lifecycle timestamps
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Reconciliation bookkeeping
    reconcile_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_reconcile_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_reconciled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    needs_attention: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attention_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        CheckConstraint("reconcile_attempts >= 0", name="ck_payment_reconcile_attempts_non_negative"),
        CheckConstraint(
            "verification_status = 'UNVERIFIED' OR status IN ('PAID', 'REFUNDED')",
            name="ck_payment_verification_requires_paid"
        ),
        Index("ix_payments_status_next_reconcile_at", "status", "next_reconcile_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, booking_id={self.booking_id}, amount={self.amount}, "
            f"status={self.status}, verification_status={self.verification_status})>"
        )
