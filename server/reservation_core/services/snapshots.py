"""JSON snapshots of entities for the audit log."""

from datetime import date, datetime
from typing import Any, Mapping, Optional

from ..models.booking import Booking
from ..models.hold import ReservationHold
from ..models.inventory import RoomType
from ..models.payment import Payment


def _iso(value: Optional[date | datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def hold_snapshot(hold: ReservationHold) -> dict[str, Any]:
    return {
        "id": _str(hold.id),
        "room_type_id": _str(hold.room_type_id),
        "booking_id": _str(hold.booking_id),
        "check_in": _iso(hold.check_in),
        "check_out": _iso(hold.check_out),
        "quantity": hold.quantity,
        "state": _enum(hold.state),
        "expires_at": _iso(hold.expires_at),
        "release_reason": hold.release_reason,
        "resolved_at": _iso(hold.resolved_at),
    }


def payment_snapshot(payment: Payment) -> dict[str, Any]:
    """Full payment state; reconciliation retry counters are left out."""
    return {
        "id": _str(payment.id),
        "booking_id": _str(payment.booking_id),
        "amount": payment.amount,
        "currency": payment.currency,
        "status": _enum(payment.status),
        "verification_status": _enum(payment.verification_status),
        "provider": payment.provider,
        "provider_ref": payment.provider_ref,
        "verified_by": payment.verified_by,
        "verified_at": _iso(payment.verified_at),
        "flagged_by": payment.flagged_by,
        "flag_reason": payment.flag_reason,
        "notes": [dict(note) for note in (payment.notes or [])],
        "paid_at": _iso(payment.paid_at),
        "failed_at": _iso(payment.failed_at),
        "refunded_at": _iso(payment.refunded_at),
        "needs_attention": bool(payment.needs_attention),
        "attention_reason": payment.attention_reason,
    }


def booking_snapshot(
    booking: Booking,
    room_names: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """
    Booking state with its room lines.

    Args:
        booking: Booking with ``rooms`` loaded
        room_names: Optional room type id -> name, stored so the trail stays
            readable if a room type is renamed later
    """
    room_names = room_names or {}
    return {
        "id": _str(booking.id),
        "guest_ref": booking.guest_ref,
        "guest_name": booking.guest_name,
        "check_in": _iso(booking.check_in),
        "check_out": _iso(booking.check_out),
        "status": _enum(booking.status),
        "total_price": booking.total_price,
        "currency": booking.currency,
        "rooms": [
            {
                "room_type_id": str(line.room_type_id),
                "name": room_names.get(str(line.room_type_id)),
                "quantity": line.quantity,
                "unit_price": line.unit_price,
            }
            for line in booking.rooms
        ],
    }


def room_type_snapshot(room_type: RoomType) -> dict[str, Any]:
    return {
        "id": _str(room_type.id),
        "name": room_type.name,
        "total_quantity": room_type.total_quantity,
        "price_amount": room_type.price_amount,
        "currency": room_type.currency,
    }


def _enum(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))
