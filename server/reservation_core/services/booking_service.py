"""Booking service: checkout and booking lookups."""

import logging
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import InsufficientAvailabilityError, NotFoundError, ValidationError
from ..models.audit import AuditAction, EntityType
from ..models.booking import Booking, BookingRoom, BookingStatus
from ..models.hold import ReservationHold
from ..models.inventory import RoomType
from ..models.payment import Payment, PaymentStatus, VerificationStatus
from ..schemas.common import Actor
from ..schemas.booking import CheckoutRequest
from .audit_service import AuditService, commit_or_fail
from .hold_service import HoldService
from .inventory_service import parse_uuid
from .results import Outcome
from .snapshots import booking_snapshot, payment_snapshot

logger = logging.getLogger(__name__)


async def load_room_names(db: AsyncSession, room_type_ids: Iterable[UUID]) -> dict[str, str]:
    """Room type id -> name for the booking snapshot."""
    ids = list(room_type_ids)
    if not ids:
        return {}
    result = await db.execute(select(RoomType.id, RoomType.name).where(RoomType.id.in_(ids)))
    return {str(room_type_id): name for room_type_id, name in result.all()}


class BookingService:
    """Service for booking-related operations."""

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.holds = HoldService(db, clock)
        self.audit = AuditService(db, clock)

    async def checkout(
        self,
        request: CheckoutRequest,
        actor: Actor,
    ) -> tuple[Booking, Payment, list[ReservationHold]]:
        """
        Start checkout: create the booking, hold every room line and open a
        pending payment, all in one transaction.

        Args:
            request: Checkout request
            actor: Guest (or staff member) checking out

        Returns:
            tuple: The PENDING_PAYMENT booking, its PENDING payment and its holds

        Raises:
            NotFoundError: If a room type does not exist
            ValidationError: If room lines mix currencies or the lease is out of bounds
            InsufficientAvailabilityError: If any line cannot be held; nothing is kept
        """
        room_types: dict[UUID, RoomType] = {}
        for line in request.rooms:
            room_type_id = parse_uuid(line.room_type_id)
            room_type = await self.db.get(RoomType, room_type_id) if room_type_id else None
            if room_type is None:
                raise NotFoundError(resource_type="room type", resource_id=line.room_type_id)
            room_types[room_type.id] = room_type

        currencies = {room_type.currency for room_type in room_types.values()}
        if len(currencies) > 1:
            raise ValidationError(
                detail="All rooms of a booking must be priced in the same currency",
                violations=[{"path": "rooms", "message": f"mixed currencies: {sorted(currencies)}"}],
            )
        currency = currencies.pop() if currencies else settings.default_currency

        nights = (request.check_out - request.check_in).days
        booking = Booking(
            id=uuid4(),
            guest_ref=actor.id,
            guest_name=request.guest_name or actor.name,
            check_in=request.check_in,
            check_out=request.check_out,
            status=BookingStatus.DRAFT.value,
            currency=currency,
        )
        total = 0
        for position, line in enumerate(request.rooms):
            room_type = room_types[parse_uuid(line.room_type_id)]
            booking.rooms.append(BookingRoom(
                room_type_id=room_type.id,
                position=position,
                quantity=line.quantity,
                unit_price=room_type.price_amount,
            ))
            total += room_type.price_amount * line.quantity * nights
        booking.total_price = total
        self.db.add(booking)

        room_names = {str(room_type.id): room_type.name for room_type in room_types.values()}
        draft = booking_snapshot(booking, room_names)
        await self.audit.record(
            actor, AuditAction.CREATE, EntityType.BOOKING, booking.id,
            before=None, after=draft,
        )

        # The keyed room type lock is released before this transaction commits;
        # the PostgreSQL advisory xact lock is what keeps the lines isolated until then
        holds: list[ReservationHold] = []
        for line in request.rooms:
            result = await self.holds.acquire_hold(
                room_type_id=line.room_type_id,
                check_in=request.check_in,
                check_out=request.check_out,
                quantity=line.quantity,
                booking_id=booking.id,
                actor=actor,
                lease_seconds=request.lease_seconds,
                commit=False,
            )
            if result.outcome == Outcome.INSUFFICIENT_AVAILABILITY:
                await self.db.rollback()
                logger.info(
                    "Checkout rejected - insufficient availability",
                    extra={"guest_ref": actor.id, **result.detail}
                )
                raise InsufficientAvailabilityError(**result.detail)
            if not result.ok:
                await self.db.rollback()
                raise NotFoundError(
                    resource_type=result.detail.get("resource_type", "room type"),
                    resource_id=result.detail.get("resource_id"),
                )
            holds.append(result.value)

        booking.status = BookingStatus.PENDING_PAYMENT.value
        await self.audit.record(
            actor, AuditAction.UPDATE, EntityType.BOOKING, booking.id,
            before=draft, after=booking_snapshot(booking, room_names),
        )

        payment = Payment(
            id=uuid4(),
            booking_id=booking.id,
            amount=total,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            verification_status=VerificationStatus.UNVERIFIED.value,
            notes=[],
            reconcile_attempts=0,
            needs_attention=False,
            provider=settings.provider_name,
            provider_ref=request.provider_ref,
        )
        self.db.add(payment)
        await self.audit.record(
            actor, AuditAction.CREATE, EntityType.PAYMENT, payment.id,
            before=None, after=payment_snapshot(payment),
        )

        await commit_or_fail(self.db, EntityType.BOOKING, booking.id)

        logger.info(
            "Checkout started",
            extra={
                "booking_id": str(booking.id),
                "payment_id": str(payment.id),
                "guest_ref": actor.id,
                "total_price": total,
                "hold_count": len(holds),
            }
        )
        return booking, payment, holds

    async def get_booking(self, booking_id: str | UUID) -> Booking:
        """
        Get a booking by ID.

        Raises:
            NotFoundError: If the booking does not exist
        """
        parsed = parse_uuid(booking_id)
        booking = None
        if parsed is not None:
            stmt = (
                select(Booking)
                .where(Booking.id == parsed)
                .execution_options(populate_existing=True)
            )
            booking = (await self.db.execute(stmt)).scalar_one_or_none()

        if booking is None:
            logger.warning("Booking not found", extra={"booking_id": str(booking_id)})
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def payments_for_booking(self, booking_id: UUID) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .order_by(Payment.created_at, Payment.id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_details(self, booking_id: str | UUID) -> tuple[Booking, list[ReservationHold], list[Payment]]:
        """A booking with its holds and payments."""
        booking = await self.get_booking(booking_id)
        holds = await self.holds.holds_for_booking(booking.id)
        payments = await self.payments_for_booking(booking.id)
        return booking, holds, payments
