"""Room inventory model definition."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base


class RoomType(Base):
    """A bookable room type and the number of physical rooms behind it."""

    __tablename__ = "room_types"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Room type details
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Nightly price in minor units
    price_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PHP")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("total_quantity >= 0", name="ck_room_type_total_quantity_non_negative"),
        CheckConstraint("price_amount >= 0", name="ck_room_type_price_non_negative"),
        CheckConstraint("length(name) > 0", name="ck_room_type_name_not_empty"),
    )

    def __repr__(self) -> str:
        return f"<RoomType(id={self.id}, name='{self.name}', total_quantity={self.total_quantity})>"
