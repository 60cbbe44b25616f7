"""Concurrency tests for holds and payment events."""

import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select

from reservation_core.core.locks import KeyedLocks, room_type_locks
from reservation_core.models.audit import AuditEntry
from reservation_core.models.hold import HoldState
from reservation_core.models.notification import NotificationEvent, NotificationType
from reservation_core.models.payment import PaymentEvent, PaymentStatus
from reservation_core.schemas.common import SYSTEM_ACTOR
from reservation_core.services.hold_service import HoldService
from reservation_core.services.inventory_service import InventoryService
from reservation_core.services.payment_service import PaymentService
from reservation_core.services.results import Outcome

CHECK_IN = date(2026, 12, 20)
CHECK_OUT = date(2026, 12, 23)


@pytest.mark.asyncio
async def test_concurrent_holds_no_overbooking(test_session, clock, guest, create_room_type, create_booking):
    """Test that concurrent hold requests never hold more rooms than exist."""
    room_type = await create_room_type("Garden Villa", total_quantity=7)
    bookings = [await create_booking() for _ in range(20)]
    holds = HoldService(test_session, clock)

    async def acquire(booking):
        return await holds.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, booking.id, guest)

    results = await asyncio.gather(*(acquire(booking) for booking in bookings))

    granted = [r for r in results if r.outcome == Outcome.OK]
    rejected = [r for r in results if r.outcome == Outcome.INSUFFICIENT_AVAILABILITY]
    assert len(granted) == 7
    assert len(rejected) == 13
    assert all(r.detail["available_quantity"] == 0 for r in rejected)

    availability = await InventoryService(test_session, clock).availability(str(room_type.id), CHECK_IN, CHECK_OUT)
    assert availability["available_quantity"] == 0
    assert len(room_type_locks) == 0


@pytest.mark.asyncio
async def test_concurrent_mixed_quantities(test_session, clock, guest, create_room_type, create_booking):
    """Test that granted quantities never exceed the room count."""
    room_type = await create_room_type("Family Suite", total_quantity=10)
    requests = [(await create_booking(), quantity) for quantity in [3, 4, 2, 5, 1, 3, 2, 4]]
    holds = HoldService(test_session, clock)

    results = await asyncio.gather(*(
        holds.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, quantity, booking.id, guest)
        for booking, quantity in requests
    ))

    held = sum(r.value.quantity for r in results if r.outcome == Outcome.OK)
    assert held <= 10
    availability = await InventoryService(test_session, clock).availability(str(room_type.id), CHECK_IN, CHECK_OUT)
    assert availability["available_quantity"] == 10 - held


@pytest.mark.asyncio
async def test_last_room_goes_to_one_guest(test_session, clock, guest, other_guest, create_room_type, create_booking):
    """Test that one room is held once, and freed again on release."""
    room_type = await create_room_type("Beachfront Villa", total_quantity=1)
    first, second = await create_booking(actor=guest), await create_booking(actor=other_guest)
    holds = HoldService(test_session, clock)

    a, b = await asyncio.gather(
        holds.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, first.id, guest),
        holds.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, second.id, other_guest),
    )
    assert {a.outcome, b.outcome} == {Outcome.OK, Outcome.INSUFFICIENT_AVAILABILITY}
    winner, loser = (a, second) if a.ok else (b, first)

    released = await holds.release_hold(winner.value.id, "guest cancelled", guest)
    assert released.value.state == HoldState.RELEASED

    retry = await holds.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, loser.id, guest)
    assert retry.ok


@pytest.mark.asyncio
async def test_concurrent_duplicate_paid_events(test_session, clock, create_room_type, checkout):
    """Test that a burst of identical provider events applies once."""
    room_type = await create_room_type()
    booking, payment, holds = await checkout((room_type, 2))
    payments = PaymentService(test_session, clock)

    results = await asyncio.gather(*(
        payments.transition(payment.id, PaymentEvent.PROVIDER_PAID, {}, SYSTEM_ACTOR) for _ in range(5)
    ))

    assert [r.outcome for r in results] == [Outcome.OK] * 5
    assert sum(r.changed for r in results) == 1
    assert results[-1].value.status == PaymentStatus.PAID

    notifications = await test_session.execute(
        select(func.count()).select_from(NotificationEvent).where(
            NotificationEvent.event_type == NotificationType.PAYMENT_CONFIRMED.value
        )
    )
    assert notifications.scalar_one() == 1

    updates = await test_session.execute(
        select(func.count()).select_from(AuditEntry).where(
            AuditEntry.entity_type == "Payment",
            AuditEntry.entity_id == str(payment.id),
            AuditEntry.action == "UPDATE",
        )
    )
    assert updates.scalar_one() == 1


@pytest.mark.asyncio
async def test_keyed_locks_serialize_same_key():
    """Test that the same key runs one at a time and different keys overlap."""
    locks = KeyedLocks("test")
    inside = {"a": 0, "b": 0}
    peak = {"a": 0, "b": 0}

    async def work(key):
        async with locks.hold(key):
            inside[key] += 1
            peak[key] = max(peak[key], inside[key])
            await asyncio.sleep(0.01)
            inside[key] -= 1

    await asyncio.gather(*(work("a") for _ in range(5)), *(work("b") for _ in range(5)))

    assert peak == {"a": 1, "b": 1}
    assert len(locks) == 0
    assert not locks.is_locked("a")


@pytest.mark.asyncio
async def test_different_keys_do_not_wait():
    """Test that a held key does not block another key."""
    locks = KeyedLocks("test")

    async with locks.hold("room-1"):
        assert locks.is_locked("room-1")
        await asyncio.wait_for(_enter(locks, "room-2"), timeout=1)


async def _enter(locks, key):
    async with locks.hold(key):
        return True
