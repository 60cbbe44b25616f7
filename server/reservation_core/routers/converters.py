"""Model to schema conversion and outcome mapping shared by the routers."""

from typing import Any

from ..core.exceptions import InsufficientAvailabilityError, InvalidTransitionError, NotFoundError
from ..models.audit import AuditEntry as AuditEntryModel
from ..models.booking import Booking as BookingModel
from ..models.hold import ReservationHold
from ..models.inventory import RoomType as RoomTypeModel
from ..models.payment import Payment as PaymentModel
from ..schemas.audit import AuditActor, AuditEntry, AuditEntryDetail, AuditGroup, FieldChange
from ..schemas.booking import Booking, BookingRoomLine
from ..schemas.common import Money
from ..schemas.hold import Hold
from ..schemas.inventory import RoomType
from ..schemas.payment import Payment, PaymentNote
from ..services.audit_humanizer import ActorGroup, diff, humanize
from ..services.results import OperationResult, Outcome


def raise_for_outcome(result: OperationResult, resource_type: str, resource_id: Any) -> None:
    """Turn a NOT_FOUND, INSUFFICIENT_AVAILABILITY or INVALID_TRANSITION outcome into its problem."""
    if result.outcome == Outcome.NOT_FOUND:
        raise NotFoundError(
            resource_type=result.detail.get("resource_type", resource_type),
            resource_id=str(result.detail.get("resource_id", resource_id)),
        )
    if result.outcome == Outcome.INSUFFICIENT_AVAILABILITY:
        raise InsufficientAvailabilityError(**result.detail)
    if result.outcome == Outcome.INVALID_TRANSITION:
        payment = result.value
        raise InvalidTransitionError(
            payment_id=str(payment.id),
            event=result.detail.get("event", ""),
            current_status=str(payment.status),
            verification_status=str(payment.verification_status),
        )


def convert_hold(hold: ReservationHold) -> Hold:
    return Hold(
        id=str(hold.id),
        room_type_id=str(hold.room_type_id),
        booking_id=str(hold.booking_id),
        check_in=hold.check_in,
        check_out=hold.check_out,
        quantity=hold.quantity,
        state=hold.state,
        expires_at=hold.expires_at,
        release_reason=hold.release_reason,
        resolved_at=hold.resolved_at,
    )


def convert_payment(payment: PaymentModel) -> Payment:
    return Payment(
        id=str(payment.id),
        booking_id=str(payment.booking_id),
        amount=Money(amount=payment.amount, currency=payment.currency),
        status=payment.status,
        verification_status=payment.verification_status,
        provider=payment.provider,
        provider_ref=payment.provider_ref,
        verified_by=payment.verified_by,
        verified_at=payment.verified_at,
        flag_reason=payment.flag_reason,
        notes=[PaymentNote(**note) for note in (payment.notes or [])],
        reconcile_attempts=payment.reconcile_attempts or 0,
        next_reconcile_at=payment.next_reconcile_at,
        needs_attention=bool(payment.needs_attention),
        attention_reason=payment.attention_reason,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


def convert_booking(booking: BookingModel) -> Booking:
    return Booking(
        id=str(booking.id),
        guest_ref=booking.guest_ref,
        guest_name=booking.guest_name,
        check_in=booking.check_in,
        check_out=booking.check_out,
        status=booking.status,
        total_price=Money(amount=booking.total_price, currency=booking.currency),
        rooms=[
            BookingRoomLine(room_type_id=str(line.room_type_id), quantity=line.quantity)
            for line in booking.rooms
        ],
        created_at=booking.created_at,
    )


def convert_room_type(room_type: RoomTypeModel) -> RoomType:
    return RoomType(
        id=str(room_type.id),
        name=room_type.name,
        total_quantity=room_type.total_quantity,
        price=Money(amount=room_type.price_amount, currency=room_type.currency),
        created_at=room_type.created_at,
    )


def _actor(entry: AuditEntryModel) -> AuditActor:
    return AuditActor(id=entry.actor_id, name=entry.actor_name, role=entry.actor_role)


def convert_audit_entry(entry: AuditEntryModel, detail: bool = False) -> AuditEntry:
    """
    Render an entry for display.

    Entries with both snapshots carry their field changes; CREATE and DELETE
    style entries carry the humanized snapshot instead.
    """
    if entry.before is not None and entry.after is not None:
        changes = [FieldChange(**change.as_dict()) for change in diff(entry.before, entry.after, entry.entity_type)]
        details = {}
    else:
        changes = []
        details = humanize(entry.after if entry.after is not None else entry.before, entry.entity_type)

    fields = dict(
        id=entry.id,
        timestamp=entry.timestamp,
        actor=_actor(entry),
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        summary=entry.summary,
        changes=changes,
        details=details,
    )
    if detail:
        return AuditEntryDetail(**fields, before=entry.before, after=entry.after)
    return AuditEntry(**fields)


def convert_audit_group(group: ActorGroup) -> AuditGroup:
    timestamps = [entry.timestamp for entry in group.entries]
    return AuditGroup(
        actor=AuditActor(id=group.actor_id, name=group.actor_name, role=group.actor_role),
        started_at=min(timestamps),
        ended_at=max(timestamps),
        entries=[convert_audit_entry(entry) for entry in group.entries],
    )
