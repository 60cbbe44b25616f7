"""Audit entry model definition."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, BigInteger, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class AuditAction(str, Enum):
    """Audit action enumeration."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CANCEL = "CANCEL"
    VERIFY = "VERIFY"
    FLAG = "FLAG"
    NOTE = "NOTE"


class EntityType(str, Enum):
    """Tags for the entities whose snapshots are recorded."""
    RESERVATION_HOLD = "ReservationHold"
    PAYMENT = "Payment"
    BOOKING = "Booking"
    ROOM_TYPE = "RoomType"


class AuditEntry(Base):
    """
    Append-only record of one state transition.

    ``before`` and ``after`` hold opaque snapshots tagged by ``entity_type``;
    rendering rules live on the read side.
    """

    __tablename__ = "audit_entries"

    # Monotonic append order; ties on timestamp are broken by id
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    # Actor
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(32), nullable=False)

    # What changed
    action: Mapped[AuditAction] = mapped_column(String(16), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    before: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_entries_entity", "entity_type", "entity_id", "timestamp"),
        Index("ix_audit_entries_actor", "actor_id", "timestamp"),
        Index("ix_audit_entries_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEntry(id={self.id}, action={self.action}, entity_type={self.entity_type}, "
            f"entity_id={self.entity_id}, actor_id={self.actor_id})>"
        )


class ImmutableAuditEntryError(RuntimeError):
    """Raised when code tries to modify or delete a written audit entry."""


@event.listens_for(AuditEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise ImmutableAuditEntryError(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableAuditEntryError(f"Audit entry {target.id} cannot be deleted")
