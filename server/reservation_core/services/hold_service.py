"""Reservation hold manager: serialized availability checks and leased holds."""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.database import is_postgres
from ..core.exceptions import ValidationError
from ..core.locks import room_type_locks
from ..core.observability import metrics_collector
from ..models.audit import AuditAction, EntityType
from ..models.booking import Booking
from ..models.hold import HoldState, ReservationHold
from ..schemas.common import SYSTEM_ACTOR, Actor
from .audit_service import AuditService, commit_or_fail
from .inventory_service import InventoryService, parse_uuid
from .results import OperationResult
from .snapshots import hold_snapshot

logger = logging.getLogger(__name__)


class HoldService:
    """
    Reservation hold manager.

    Every operation that reads availability or changes a hold's state runs
    inside the room type's critical section: an in-process keyed lock, plus a
    transaction-scoped advisory lock when running on PostgreSQL. The audit
    entry is written in the same transaction as the state change.

    Methods take ``commit=False`` when the caller composes them into a larger
    transaction (checkout, payment transitions) and commits itself. The keyed
    lock is then released before that commit, so only the advisory lock covers
    the gap.
    """

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.inventory = InventoryService(db, clock)
        self.audit = AuditService(db, clock)

    async def _lock_room_type(self, room_type_id: UUID) -> None:
        # Serializes across processes; the lock is released at transaction end
        if is_postgres(self.db):
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:room_type_id))"),
                {"room_type_id": str(room_type_id)}
            )

    async def _reload(self, hold_id: UUID) -> Optional[ReservationHold]:
        stmt = (
            select(ReservationHold)
            .where(ReservationHold.id == hold_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def _lease_seconds(self, lease_seconds: Optional[int]) -> int:
        if lease_seconds is None:
            return settings.hold_lease_seconds
        if not settings.hold_lease_min_seconds <= lease_seconds <= settings.hold_lease_max_seconds:
            raise ValidationError(
                detail="Lease duration is outside the allowed window",
                violations=[{
                    "path": "lease_seconds",
                    "message": (
                        f"must be between {settings.hold_lease_min_seconds} "
                        f"and {settings.hold_lease_max_seconds}"
                    ),
                }],
            )
        return lease_seconds

    async def get_hold(self, hold_id: str | UUID) -> Optional[ReservationHold]:
        parsed = parse_uuid(hold_id)
        if parsed is None:
            return None
        result = await self.db.execute(select(ReservationHold).where(ReservationHold.id == parsed))
        return result.scalar_one_or_none()

    async def holds_for_booking(self, booking_id: UUID) -> list[ReservationHold]:
        stmt = (
            select(ReservationHold)
            .where(ReservationHold.booking_id == booking_id)
            .order_by(ReservationHold.created_at, ReservationHold.id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def acquire_hold(
        self,
        room_type_id: str | UUID,
        check_in: date,
        check_out: date,
        quantity: int,
        booking_id: str | UUID,
        actor: Actor,
        lease_seconds: Optional[int] = None,
        commit: bool = True,
    ) -> OperationResult[ReservationHold]:
        """
        Reserve ``quantity`` rooms of a type for [check_in, check_out).

        Re-acquiring for the same booking, room type and range while an active
        hold exists returns that hold unchanged.

        Args:
            room_type_id: Room type to reserve
            check_in: First night
            check_out: Departure day (exclusive)
            quantity: Rooms to hold
            booking_id: Owning booking
            actor: Who asks for the hold
            lease_seconds: Lease duration; configured default when None
            commit: Commit before leaving the critical section

        Returns:
            OperationResult: OK with the hold, NOT_FOUND for an unknown room
            type or booking, or INSUFFICIENT_AVAILABILITY with the available
            quantity in ``detail``

        Raises:
            ValidationError: If the range, quantity or lease is invalid
            AuditWriteFailure: If the audit entry could not be written
        """
        if check_in >= check_out:
            raise ValidationError(
                detail="check_in must be before check_out",
                violations=[{"path": "check_out", "message": "must be after check_in"}],
            )
        if quantity < 1:
            raise ValidationError(
                detail="quantity must be positive",
                violations=[{"path": "quantity", "message": "must be at least 1"}],
            )
        lease = self._lease_seconds(lease_seconds)

        room_type_uuid = parse_uuid(room_type_id)
        booking_uuid = parse_uuid(booking_id)
        if room_type_uuid is None:
            return OperationResult.not_found(resource_type="room type", resource_id=str(room_type_id))
        if booking_uuid is None:
            return OperationResult.not_found(resource_type="booking", resource_id=str(booking_id))

        async with room_type_locks.hold(room_type_uuid):
            await self._lock_room_type(room_type_uuid)

            room_type = await self.inventory.get_room_type(room_type_uuid)
            if room_type is None:
                return OperationResult.not_found(resource_type="room type", resource_id=str(room_type_id))

            booking = await self.db.get(Booking, booking_uuid)
            if booking is None:
                return OperationResult.not_found(resource_type="booking", resource_id=str(booking_id))

            now = self.clock.now()

            existing = await self.db.execute(
                select(ReservationHold).where(
                    ReservationHold.booking_id == booking_uuid,
                    ReservationHold.room_type_id == room_type_uuid,
                    ReservationHold.check_in == check_in,
                    ReservationHold.check_out == check_out,
                    ReservationHold.state == HoldState.ACTIVE.value,
                    ReservationHold.expires_at > now,
                )
            )
            current = existing.scalars().first()
            if current is not None:
                logger.info(
                    "Active hold already exists for booking - returning existing hold",
                    extra={
                        "hold_id": str(current.id),
                        "booking_id": str(booking_uuid),
                        "room_type_id": str(room_type_uuid),
                    }
                )
                return OperationResult.success(current, changed=False)

            reserved = await self.inventory.reserved_quantity(room_type_uuid, check_in, check_out, now)
            available = room_type.total_quantity - reserved
            if available < quantity:
                if commit:
                    # Ends the read transaction and any advisory lock
                    await self.db.commit()
                metrics_collector.record_hold_rejected(str(room_type_uuid))
                logger.info(
                    "Hold rejected - insufficient availability",
                    extra={
                        "room_type_id": str(room_type_uuid),
                        "check_in": check_in.isoformat(),
                        "check_out": check_out.isoformat(),
                        "requested_quantity": quantity,
                        "available_quantity": max(available, 0),
                        "booking_id": str(booking_uuid),
                    }
                )
                return OperationResult.insufficient(
                    room_type_id=str(room_type_uuid),
                    requested_quantity=quantity,
                    available_quantity=max(available, 0),
                )

            hold = ReservationHold(
                id=uuid4(),
                room_type_id=room_type_uuid,
                booking_id=booking_uuid,
                check_in=check_in,
                check_out=check_out,
                quantity=quantity,
                state=HoldState.ACTIVE.value,
                expires_at=now + timedelta(seconds=lease),
            )
            self.db.add(hold)

            await self.audit.record(
                actor,
                AuditAction.CREATE,
                EntityType.RESERVATION_HOLD,
                hold.id,
                before=None,
                after=hold_snapshot(hold),
            )
            if commit:
                await commit_or_fail(self.db, EntityType.RESERVATION_HOLD, hold.id)

        metrics_collector.record_hold_created(str(room_type_uuid))
        logger.info(
            "Hold created successfully",
            extra={
                "hold_id": str(hold.id),
                "room_type_id": str(room_type_uuid),
                "booking_id": str(booking_uuid),
                "quantity": quantity,
                "expires_at": hold.expires_at.isoformat(),
                "remaining_quantity": available - quantity,
            }
        )
        return OperationResult.success(hold)

    async def commit_hold(
        self,
        hold_id: str | UUID,
        actor: Actor,
        commit: bool = True,
    ) -> OperationResult[ReservationHold]:
        """
        Move an active hold to COMMITTED.

        Committing an already committed hold succeeds without change. A
        released or expired hold, or an active hold whose lease has lapsed
        before the sweep reached it, is ALREADY_RESOLVED: its rooms may
        already belong to someone else.

        Returns:
            OperationResult: OK, NOT_FOUND or ALREADY_RESOLVED
        """
        hold = await self.get_hold(hold_id)
        if hold is None:
            return OperationResult.not_found(resource_type="hold", resource_id=str(hold_id))

        async with room_type_locks.hold(hold.room_type_id):
            await self._lock_room_type(hold.room_type_id)
            hold = await self._reload(hold.id)
            now = self.clock.now()

            if hold.state == HoldState.COMMITTED.value:
                logger.info("Hold already committed", extra={"hold_id": str(hold.id)})
                return OperationResult.success(hold, changed=False)

            if hold.state != HoldState.ACTIVE.value or hold.expires_at <= now:
                logger.info(
                    "Commit ignored - hold already resolved",
                    extra={
                        "hold_id": str(hold.id),
                        "state": hold.state,
                        "expires_at": hold.expires_at.isoformat(),
                    }
                )
                return OperationResult.already_resolved(hold)

            before = hold_snapshot(hold)
            hold.state = HoldState.COMMITTED.value
            hold.resolved_at = now

            await self.audit.record(
                actor,
                AuditAction.UPDATE,
                EntityType.RESERVATION_HOLD,
                hold.id,
                before=before,
                after=hold_snapshot(hold),
            )
            if commit:
                await commit_or_fail(self.db, EntityType.RESERVATION_HOLD, hold.id)

        metrics_collector.record_hold_resolved(HoldState.COMMITTED.value)
        logger.info(
            "Hold committed",
            extra={"hold_id": str(hold.id), "booking_id": str(hold.booking_id), "actor_id": actor.id}
        )
        return OperationResult.success(hold)

    async def release_hold(
        self,
        hold_id: str | UUID,
        reason: str,
        actor: Actor,
        commit: bool = True,
    ) -> OperationResult[ReservationHold]:
        """
        Move an active hold to RELEASED, freeing its rooms.

        Released, expired and committed holds are returned unchanged as
        ALREADY_RESOLVED.

        Returns:
            OperationResult: OK, NOT_FOUND or ALREADY_RESOLVED
        """
        hold = await self.get_hold(hold_id)
        if hold is None:
            return OperationResult.not_found(resource_type="hold", resource_id=str(hold_id))

        async with room_type_locks.hold(hold.room_type_id):
            await self._lock_room_type(hold.room_type_id)
            hold = await self._reload(hold.id)

            if hold.state != HoldState.ACTIVE.value:
                logger.info(
                    "Release ignored - hold already resolved",
                    extra={"hold_id": str(hold.id), "state": hold.state}
                )
                return OperationResult.already_resolved(hold)

            before = hold_snapshot(hold)
            hold.state = HoldState.RELEASED.value
            hold.release_reason = reason
            hold.resolved_at = self.clock.now()

            await self.audit.record(
                actor,
                AuditAction.CANCEL,
                EntityType.RESERVATION_HOLD,
                hold.id,
                before=before,
                after=hold_snapshot(hold),
            )
            if commit:
                await commit_or_fail(self.db, EntityType.RESERVATION_HOLD, hold.id)

        metrics_collector.record_hold_resolved(HoldState.RELEASED.value)
        logger.info(
            "Hold released",
            extra={"hold_id": str(hold.id), "reason": reason, "actor_id": actor.id}
        )
        return OperationResult.success(hold)

    async def expire_holds(self, batch_size: Optional[int] = None) -> list[ReservationHold]:
        """
        Lease sweep: move active holds past their lease to EXPIRED.

        This is the only code path that produces EXPIRED holds. Candidates are
        re-checked inside their room type's critical section, so a hold that
        was committed or released in the meantime is left alone. Each room
        type's batch commits on its own.

        Args:
            batch_size: Maximum holds examined; configured default when None

        Returns:
            list[ReservationHold]: Holds that were expired
        """
        now = self.clock.now()
        stmt = (
            select(ReservationHold.id, ReservationHold.room_type_id)
            .where(
                ReservationHold.state == HoldState.ACTIVE.value,
                ReservationHold.expires_at <= now,
            )
            .order_by(ReservationHold.expires_at)
            .limit(batch_size or settings.hold_sweep_batch_size)
        )
        candidates = (await self.db.execute(stmt)).all()

        by_room_type: dict[UUID, list[UUID]] = defaultdict(list)
        for hold_id, room_type_id in candidates:
            by_room_type[room_type_id].append(hold_id)

        expired: list[ReservationHold] = []
        for room_type_id, hold_ids in by_room_type.items():
            async with room_type_locks.hold(room_type_id):
                await self._lock_room_type(room_type_id)
                batch = []
                for hold_id in hold_ids:
                    hold = await self._reload(hold_id)
                    if hold is None or hold.state != HoldState.ACTIVE.value or hold.expires_at > now:
                        continue

                    before = hold_snapshot(hold)
                    hold.state = HoldState.EXPIRED.value
                    hold.release_reason = "lease expired"
                    hold.resolved_at = now

                    await self.audit.record(
                        SYSTEM_ACTOR,
                        AuditAction.UPDATE,
                        EntityType.RESERVATION_HOLD,
                        hold.id,
                        before=before,
                        after=hold_snapshot(hold),
                        summary="Hold expired",
                    )
                    batch.append(hold)

                await commit_or_fail(self.db, EntityType.RESERVATION_HOLD, room_type_id)
            expired.extend(batch)

        if expired:
            metrics_collector.record_hold_resolved(HoldState.EXPIRED.value, len(expired))
            logger.info(
                "Expired holds",
                extra={"expired_count": len(expired), "timestamp": now.isoformat()}
            )

        active = await self.db.execute(
            select(func.count()).select_from(ReservationHold).where(
                ReservationHold.state == HoldState.ACTIVE.value
            )
        )
        metrics_collector.set_active_holds(active.scalar_one())

        return expired
