"""Room inventory service: room types and derived availability."""

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.exceptions import ConflictError, NotFoundError
from ..models.audit import AuditAction, EntityType
from ..models.hold import HoldState, ReservationHold
from ..models.inventory import RoomType
from ..schemas.common import Actor
from ..schemas.inventory import CreateRoomTypeRequest
from .audit_service import AuditService, commit_or_fail
from .snapshots import room_type_snapshot

logger = logging.getLogger(__name__)


def parse_uuid(value: str | UUID) -> Optional[UUID]:
    """Parse an id from a request; None when it is not a UUID."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def peak_quantity(holds: Iterable[ReservationHold], check_in: date, check_out: date) -> int:
    """
    Highest number of rooms held on any single night of [check_in, check_out).

    Holds are half-open ranges, so a hold ending on a day and another starting
    on the same day never share a night.
    """
    deltas: dict[date, int] = defaultdict(int)
    for hold in holds:
        start = max(hold.check_in, check_in)
        end = min(hold.check_out, check_out)
        if start < end:
            deltas[start] += hold.quantity
            deltas[end] -= hold.quantity

    running = peak = 0
    for day in sorted(deltas):
        running += deltas[day]
        peak = max(peak, running)
    return peak


class InventoryService:
    """Service for room types and availability."""

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    async def create_room_type(self, request: CreateRoomTypeRequest, actor: Actor) -> RoomType:
        """
        Register a room type.

        Args:
            request: Room type creation request
            actor: Administrator creating the room type

        Returns:
            Created room type

        Raises:
            ConflictError: If a room type with the same name exists
        """
        existing = await self.db.execute(select(RoomType).where(RoomType.name == request.name))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(detail=f"Room type '{request.name}' already exists")

        room_type = RoomType(
            name=request.name,
            total_quantity=request.total_quantity,
            price_amount=request.price.amount,
            currency=request.price.currency,
        )
        self.db.add(room_type)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(detail=f"Room type '{request.name}' already exists") from e

        await AuditService(self.db, self.clock).record(
            actor,
            AuditAction.CREATE,
            EntityType.ROOM_TYPE,
            room_type.id,
            before=None,
            after=room_type_snapshot(room_type),
        )
        await commit_or_fail(self.db, EntityType.ROOM_TYPE, room_type.id)

        logger.info(
            "Room type created",
            extra={
                "room_type_id": str(room_type.id),
                "name": room_type.name,
                "total_quantity": room_type.total_quantity,
                "actor_id": actor.id,
            }
        )
        return room_type

    async def get_room_type(self, room_type_id: str | UUID) -> Optional[RoomType]:
        parsed = parse_uuid(room_type_id)
        if parsed is None:
            return None
        result = await self.db.execute(select(RoomType).where(RoomType.id == parsed))
        return result.scalar_one_or_none()

    async def get_room_type_or_raise(self, room_type_id: str | UUID) -> RoomType:
        room_type = await self.get_room_type(room_type_id)
        if room_type is None:
            raise NotFoundError(resource_type="room type", resource_id=str(room_type_id))
        return room_type

    async def list_room_types(self) -> list[RoomType]:
        result = await self.db.execute(select(RoomType).order_by(RoomType.name))
        return list(result.scalars().all())

    async def blocking_holds(
        self,
        room_type_id: UUID,
        check_in: date,
        check_out: date,
        now: Optional[datetime] = None,
    ) -> list[ReservationHold]:
        """Committed holds and unexpired active holds overlapping the range."""
        now = now or self.clock.now()
        stmt = select(ReservationHold).where(
            ReservationHold.room_type_id == room_type_id,
            ReservationHold.check_in < check_out,
            ReservationHold.check_out > check_in,
            or_(
                ReservationHold.state == HoldState.COMMITTED.value,
                and_(
                    ReservationHold.state == HoldState.ACTIVE.value,
                    ReservationHold.expires_at > now,
                ),
            ),
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def reserved_quantity(
        self,
        room_type_id: UUID,
        check_in: date,
        check_out: date,
        now: Optional[datetime] = None,
    ) -> int:
        holds = await self.blocking_holds(room_type_id, check_in, check_out, now)
        return peak_quantity(holds, check_in, check_out)

    async def availability(self, room_type_id: str, check_in: date, check_out: date) -> dict:
        """
        Rooms of a type that can still be held for every night of the range.

        Raises:
            NotFoundError: If the room type does not exist
        """
        room_type = await self.get_room_type_or_raise(room_type_id)
        reserved = await self.reserved_quantity(room_type.id, check_in, check_out)
        return {
            "room_type_id": str(room_type.id),
            "check_in": check_in,
            "check_out": check_out,
            "total_quantity": room_type.total_quantity,
            "reserved_quantity": reserved,
            "available_quantity": max(room_type.total_quantity - reserved, 0),
        }
