"""Booking and booking line model definitions."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    DRAFT = "DRAFT"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class Booking(Base):
    """A guest's stay request covering one date range and one or more room lines."""

    __tablename__ = "bookings"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Guest
    guest_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    guest_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Stay
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.DRAFT,
        index=True
    )

    # Price in minor units
    total_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PHP")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("check_in < check_out", name="ck_booking_range_not_empty"),
        CheckConstraint("total_price >= 0", name="ck_booking_total_price_non_negative"),
        CheckConstraint("length(guest_ref) > 0", name="ck_booking_guest_ref_not_empty"),
    )

    # Relationships
    rooms: Mapped[list["BookingRoom"]] = relationship(
        "BookingRoom",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BookingRoom.position",
    )

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, guest_ref='{self.guest_ref}', "
            f"check_in={self.check_in}, check_out={self.check_out}, status={self.status})>"
        )


class BookingRoom(Base):
    """One room type line of a booking."""

    __tablename__ = "booking_rooms"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    room_type_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("room_types.id", ondelete="RESTRICT"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_booking_room_quantity_positive"),
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="rooms")

    def __repr__(self) -> str:
        return f"<BookingRoom(room_type_id={self.room_type_id}, quantity={self.quantity})>"
