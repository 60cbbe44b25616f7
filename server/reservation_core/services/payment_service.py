"""Payment lifecycle engine: the single entry point for every payment state change."""

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.exceptions import ValidationError
from ..core.locks import payment_locks
from ..core.observability import metrics_collector
from ..models.audit import AuditAction, EntityType
from ..models.booking import Booking, BookingStatus
from ..models.hold import HoldState
from ..models.notification import NotificationType
from ..models.payment import Payment, PaymentEvent, PaymentStatus, VerificationStatus
from ..schemas.common import Actor
from .audit_service import AuditService, commit_or_fail
from .booking_service import load_room_names
from .hold_service import HoldService
from .inventory_service import parse_uuid
from .notification_service import NotificationService
from .results import OperationResult
from .snapshots import booking_snapshot, payment_snapshot

logger = logging.getLogger(__name__)

PAYMENT_AUDIT_ACTIONS = {
    PaymentEvent.PROVIDER_PAID: AuditAction.UPDATE,
    PaymentEvent.PROVIDER_FAILED: AuditAction.UPDATE,
    PaymentEvent.LEASE_EXPIRED: AuditAction.CANCEL,
    PaymentEvent.VERIFY: AuditAction.VERIFY,
    PaymentEvent.FLAG: AuditAction.FLAG,
    PaymentEvent.NOTE: AuditAction.NOTE,
    PaymentEvent.REFUND: AuditAction.UPDATE,
}


def is_duplicate(payment: Payment, event: PaymentEvent) -> bool:
    """True when ``event`` has already been applied and the payment is where it would lead."""
    status = payment.status
    verification = payment.verification_status
    if event == PaymentEvent.PROVIDER_PAID:
        return status == PaymentStatus.PAID
    if event in (PaymentEvent.PROVIDER_FAILED, PaymentEvent.LEASE_EXPIRED):
        return status == PaymentStatus.FAILED
    if event == PaymentEvent.VERIFY:
        return status == PaymentStatus.PAID and verification == VerificationStatus.VERIFIED
    if event == PaymentEvent.FLAG:
        return status == PaymentStatus.PAID and verification == VerificationStatus.FLAGGED
    if event == PaymentEvent.REFUND:
        return status == PaymentStatus.REFUNDED
    return False


def is_allowed(payment: Payment, event: PaymentEvent) -> bool:
    """True when the state machine has an edge for ``event`` out of the current state."""
    status = payment.status
    verification = payment.verification_status
    if event in (PaymentEvent.PROVIDER_PAID, PaymentEvent.PROVIDER_FAILED, PaymentEvent.LEASE_EXPIRED):
        return status == PaymentStatus.PENDING
    if event in (PaymentEvent.VERIFY, PaymentEvent.FLAG):
        return status == PaymentStatus.PAID and verification == VerificationStatus.UNVERIFIED
    if event in (PaymentEvent.NOTE, PaymentEvent.REFUND):
        return status == PaymentStatus.PAID
    return False


class PaymentService:
    """
    Payment lifecycle engine.

    Webhooks, the reconciliation poller, the lease sweep and staff actions all
    go through :meth:`transition`. A transition runs under the payment's keyed
    lock; side effects on holds take the room type locks afterwards, so the
    lock order is always payment then room type. The payment change, its hold
    and booking side effects, their audit entries and any notification events
    are committed together.
    """

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.holds = HoldService(db, clock)
        self.audit = AuditService(db, clock)
        self.notifications = NotificationService(db, clock)

    async def get_payment(self, payment_id: str | UUID) -> Optional[Payment]:
        parsed = parse_uuid(payment_id)
        if parsed is None:
            return None
        stmt = (
            select(Payment)
            .where(Payment.id == parsed)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_provider_ref(self, provider_ref: str) -> Optional[Payment]:
        result = await self.db.execute(select(Payment).where(Payment.provider_ref == provider_ref))
        return result.scalar_one_or_none()

    async def latest_for_booking(self, booking_id: str | UUID) -> Optional[Payment]:
        parsed = parse_uuid(booking_id)
        if parsed is None:
            return None
        stmt = (
            select(Payment)
            .where(Payment.booking_id == parsed)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def transition(
        self,
        payment_id: str | UUID,
        event: PaymentEvent,
        payload: Optional[dict[str, Any]],
        actor: Actor,
    ) -> OperationResult[Payment]:
        """
        Apply one event to a payment.

        Args:
            payment_id: Payment to change
            event: Event to apply
            payload: Event data; ``reason`` for flag and refund, ``text`` for note
            actor: Who applies the event

        Returns:
            OperationResult: OK (``changed`` is False for a duplicate event),
            NOT_FOUND or INVALID_TRANSITION with the current payment

        Raises:
            ValidationError: If a note has no text
            AuditWriteFailure: If the transition could not be recorded; nothing
                is applied
        """
        payload = payload or {}
        event = PaymentEvent(event)
        parsed = parse_uuid(payment_id)
        if parsed is None:
            return OperationResult.not_found(resource_type="payment", resource_id=str(payment_id))

        async with payment_locks.hold(parsed):
            payment = await self.get_payment(parsed)
            if payment is None:
                return OperationResult.not_found(resource_type="payment", resource_id=str(payment_id))

            if is_duplicate(payment, event):
                metrics_collector.record_payment_transition(event.value, "duplicate")
                logger.info(
                    "Duplicate payment event ignored",
                    extra={"payment_id": str(payment.id), "event": event.value, "status": payment.status}
                )
                return OperationResult.success(payment, changed=False)

            if not is_allowed(payment, event):
                metrics_collector.record_payment_transition(event.value, "invalid")
                logger.warning(
                    "Invalid payment transition",
                    extra={
                        "payment_id": str(payment.id),
                        "event": event.value,
                        "status": payment.status,
                        "verification_status": payment.verification_status,
                        "actor_id": actor.id,
                    }
                )
                return OperationResult.invalid(
                    payment,
                    status=payment.status,
                    verification_status=payment.verification_status,
                    event=event.value,
                )

            if event == PaymentEvent.NOTE and not str(payload.get("text") or "").strip():
                raise ValidationError(
                    detail="A note needs text",
                    violations=[{"path": "payload.text", "message": "must not be empty"}],
                )

            now = self.clock.now()
            before = payment_snapshot(payment)
            notification: Optional[NotificationType] = None

            if event == PaymentEvent.PROVIDER_PAID:
                payment.status = PaymentStatus.PAID.value
                payment.paid_at = now
                notification = await self._confirm_booking(payment, actor)
            elif event in (PaymentEvent.PROVIDER_FAILED, PaymentEvent.LEASE_EXPIRED):
                payment.status = PaymentStatus.FAILED.value
                payment.failed_at = now
                await self._cancel_booking(payment, event, actor)
                notification = NotificationType.PAYMENT_FAILED
            elif event == PaymentEvent.VERIFY:
                payment.verification_status = VerificationStatus.VERIFIED.value
                payment.verified_by = actor.id
                payment.verified_at = now
                notification = NotificationType.PAYMENT_VERIFIED
            elif event == PaymentEvent.FLAG:
                payment.verification_status = VerificationStatus.FLAGGED.value
                payment.flagged_by = actor.id
                payment.flag_reason = payload.get("reason") or "unspecified"
                notification = NotificationType.PAYMENT_FLAGGED
            elif event == PaymentEvent.NOTE:
                note = {"author": actor.id, "text": str(payload["text"]).strip(), "at": now.isoformat()}
                payment.notes = [*(payment.notes or []), note]
            elif event == PaymentEvent.REFUND:
                payment.status = PaymentStatus.REFUNDED.value
                payment.refunded_at = now
                if payload.get("reason"):
                    payment.notes = [
                        *(payment.notes or []),
                        {"author": actor.id, "text": f"Refund: {payload['reason']}", "at": now.isoformat()},
                    ]
                notification = NotificationType.PAYMENT_REFUNDED

            await self.audit.record(
                actor,
                PAYMENT_AUDIT_ACTIONS[event],
                EntityType.PAYMENT,
                payment.id,
                before=before,
                after=payment_snapshot(payment),
            )
            if notification is not None:
                self.notifications.queue_for_payment(notification, payment)

            await commit_or_fail(self.db, EntityType.PAYMENT, payment.id)

        metrics_collector.record_payment_transition(event.value, "applied")
        logger.info(
            "Payment transition applied",
            extra={
                "payment_id": str(payment.id),
                "booking_id": str(payment.booking_id),
                "event": event.value,
                "status": payment.status,
                "verification_status": payment.verification_status,
                "actor_id": actor.id,
                "actor_role": actor.role.value,
            }
        )
        return OperationResult.success(payment)

    async def _load_booking(self, booking_id: UUID) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _set_booking_status(self, booking: Booking, status: BookingStatus, actor: Actor) -> None:
        room_names = await load_room_names(self.db, (line.room_type_id for line in booking.rooms))
        before = booking_snapshot(booking, room_names)
        booking.status = status.value
        await self.audit.record(
            actor,
            AuditAction.CANCEL if status == BookingStatus.CANCELLED else AuditAction.UPDATE,
            EntityType.BOOKING,
            booking.id,
            before=before,
            after=booking_snapshot(booking, room_names),
        )

    async def _confirm_booking(self, payment: Payment, actor: Actor) -> NotificationType:
        """
        Commit the booking's holds and confirm it.

        When a hold already lapsed or was resolved, the money is still
        recorded but the booking is left unconfirmed and the payment is
        surfaced for manual attention.
        """
        now = self.clock.now()
        holds = await self.holds.holds_for_booking(payment.booking_id)
        lost = [
            hold for hold in holds
            if hold.state in (HoldState.RELEASED, HoldState.EXPIRED)
            or (hold.state == HoldState.ACTIVE and hold.expires_at <= now)
        ]

        committed = []
        if not lost:
            for hold in holds:
                if hold.state != HoldState.ACTIVE:
                    continue
                result = await self.holds.commit_hold(hold.id, actor, commit=False)
                if result.ok:
                    committed.append(hold)
                else:
                    lost.append(hold)

        if lost:
            reason = (
                "Payment received after the reservation hold lapsed; "
                f"{len(lost)} hold(s) no longer reserve rooms"
            )
            if committed:
                # Committed holds cannot be released again
                reason += f"; {len(committed)} hold(s) were committed and still reserve rooms"
            payment.needs_attention = True
            payment.attention_reason = reason
            logger.warning(
                "Payment received for lapsed holds",
                extra={
                    "payment_id": str(payment.id),
                    "booking_id": str(payment.booking_id),
                    "lost_hold_ids": [str(hold.id) for hold in lost],
                    "committed_hold_ids": [str(hold.id) for hold in committed],
                }
            )
            return NotificationType.PAYMENT_REQUIRES_ATTENTION

        booking = await self._load_booking(payment.booking_id)
        if booking is not None and booking.status in (BookingStatus.DRAFT, BookingStatus.PENDING_PAYMENT):
            await self._set_booking_status(booking, BookingStatus.CONFIRMED, actor)
        return NotificationType.PAYMENT_CONFIRMED

    async def _cancel_booking(self, payment: Payment, event: PaymentEvent, actor: Actor) -> None:
        """Release the booking's active holds and cancel it."""
        reason = "lease expired" if event == PaymentEvent.LEASE_EXPIRED else "payment failed"
        for hold in await self.holds.holds_for_booking(payment.booking_id):
            if hold.state == HoldState.ACTIVE:
                await self.holds.release_hold(hold.id, reason, actor, commit=False)

        booking = await self._load_booking(payment.booking_id)
        if booking is not None and booking.status in (BookingStatus.DRAFT, BookingStatus.PENDING_PAYMENT):
            await self._set_booking_status(booking, BookingStatus.CANCELLED, actor)
