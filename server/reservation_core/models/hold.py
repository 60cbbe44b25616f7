"""Reservation hold model definition."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base


class HoldState(str, Enum):
    """Hold state enumeration."""
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"


TERMINAL_HOLD_STATES = frozenset({HoldState.COMMITTED, HoldState.RELEASED, HoldState.EXPIRED})


class ReservationHold(Base):
    """
    Leased reservation of room inventory pending payment.

    Covers the half-open night range [check_in, check_out).
    """

    __tablename__ = "reservation_holds"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    room_type_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("room_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Reserved range and quantity
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Lease
    state: Mapped[HoldState] = mapped_column(String(20), nullable=False, default=HoldState.ACTIVE)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    release_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_hold_quantity_positive"),
        CheckConstraint("check_in < check_out", name="ck_hold_range_not_empty"),
        Index("ix_reservation_holds_room_type_state", "room_type_id", "state"),
        Index("ix_reservation_holds_state_expires_at", "state", "expires_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_HOLD_STATES

    def __repr__(self) -> str:
        return (
            f"<ReservationHold(id={self.id}, room_type_id={self.room_type_id}, "
            f"quantity={self.quantity}, state={self.state}, expires_at={self.expires_at})>"
        )
