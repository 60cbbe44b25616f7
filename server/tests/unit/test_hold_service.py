"""Unit tests for the reservation hold manager."""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from reservation_core.core.config import settings
from reservation_core.core.exceptions import ValidationError
from reservation_core.models.audit import AuditAction, EntityType
from reservation_core.models.hold import HoldState
from reservation_core.schemas.common import SYSTEM_ACTOR
from reservation_core.services.audit_service import AuditService
from reservation_core.services.hold_service import HoldService
from reservation_core.services.results import Outcome

CHECK_IN = date(2026, 12, 20)
CHECK_OUT = date(2026, 12, 23)


@pytest.mark.asyncio
async def test_acquire_hold_creates_active_hold(test_session, clock, guest, create_room_type, create_booking):
    """Test that acquiring a hold creates an ACTIVE hold with a lease."""
    room_type = await create_room_type(total_quantity=3)
    booking = await create_booking()

    result = await HoldService(test_session, clock).acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 2, booking.id, guest
    )

    assert result.outcome == Outcome.OK
    assert result.changed is True
    hold = result.value
    assert hold.state == HoldState.ACTIVE
    assert hold.quantity == 2
    assert hold.expires_at == clock.now() + timedelta(seconds=settings.hold_lease_seconds)

    history = await AuditService(test_session).history(EntityType.RESERVATION_HOLD, hold.id)
    assert [entry.action for entry in history] == [AuditAction.CREATE.value]
    assert history[0].actor_id == guest.id
    assert history[0].before is None
    assert history[0].after["state"] == "ACTIVE"


@pytest.mark.asyncio
async def test_acquire_hold_custom_lease(test_session, clock, guest, create_room_type, create_booking):
    """Test that an explicit lease duration sets the expiry."""
    room_type = await create_room_type()
    booking = await create_booking()

    result = await HoldService(test_session, clock).acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, booking.id, guest, lease_seconds=90
    )

    assert result.value.expires_at == clock.now() + timedelta(seconds=90)


@pytest.mark.asyncio
async def test_acquire_hold_insufficient_availability(test_session, clock, guest, create_room_type, create_booking):
    """Test that a hold beyond the remaining quantity is rejected."""
    room_type = await create_room_type(total_quantity=2)
    first = await create_booking()
    second = await create_booking()
    service = HoldService(test_session, clock)

    assert (await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 2, first.id, guest)).ok

    result = await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, second.id, guest)

    assert result.outcome == Outcome.INSUFFICIENT_AVAILABILITY
    assert result.value is None
    assert result.detail["requested_quantity"] == 1
    assert result.detail["available_quantity"] == 0
    assert result.detail["room_type_id"] == str(room_type.id)


@pytest.mark.asyncio
async def test_adjacent_ranges_do_not_compete(test_session, clock, guest, create_room_type, create_booking):
    """Test that a stay ending on a day and one starting that day share no night."""
    room_type = await create_room_type(total_quantity=1)
    first = await create_booking()
    second = await create_booking()
    service = HoldService(test_session, clock)

    assert (await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, first.id, guest)).ok
    result = await service.acquire_hold(
        room_type.id, CHECK_OUT, CHECK_OUT + timedelta(days=2), 1, second.id, guest
    )

    assert result.ok


@pytest.mark.asyncio
async def test_availability_uses_busiest_night(test_session, clock, guest, create_room_type, create_booking):
    """Test that holds on different nights of a range do not add up."""
    room_type = await create_room_type(total_quantity=2)
    service = HoldService(test_session, clock)
    dec_20, dec_22, dec_24 = date(2026, 12, 20), date(2026, 12, 22), date(2026, 12, 24)

    assert (await service.acquire_hold(room_type.id, dec_20, dec_22, 1, (await create_booking()).id, guest)).ok
    assert (await service.acquire_hold(room_type.id, dec_22, dec_24, 1, (await create_booking()).id, guest)).ok

    # Every night of the long stay has one free room
    result = await service.acquire_hold(room_type.id, dec_20, dec_24, 1, (await create_booking()).id, guest)
    assert result.ok

    # Now every night is full
    result = await service.acquire_hold(room_type.id, dec_20, dec_24, 1, (await create_booking()).id, guest)
    assert result.outcome == Outcome.INSUFFICIENT_AVAILABILITY


@pytest.mark.asyncio
async def test_reacquire_returns_existing_hold(test_session, clock, guest, create_room_type, create_booking):
    """Test that acquiring again for the same booking and range is a no-op."""
    room_type = await create_room_type(total_quantity=2)
    booking = await create_booking()
    service = HoldService(test_session, clock)

    first = await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 2, booking.id, guest)
    second = await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 2, booking.id, guest)

    assert second.ok
    assert second.changed is False
    assert second.value.id == first.value.id
    history = await AuditService(test_session).history(EntityType.RESERVATION_HOLD, first.value.id)
    assert len(history) == 1


@pytest.mark.asyncio
async def test_acquire_hold_unknown_room_type(test_session, clock, guest, create_booking):
    """Test that unknown or malformed room type ids are NOT_FOUND."""
    booking = await create_booking()
    service = HoldService(test_session, clock)

    result = await service.acquire_hold(uuid4(), CHECK_IN, CHECK_OUT, 1, booking.id, guest)
    assert result.outcome == Outcome.NOT_FOUND

    result = await service.acquire_hold("not-a-room-type", CHECK_IN, CHECK_OUT, 1, booking.id, guest)
    assert result.outcome == Outcome.NOT_FOUND


@pytest.mark.asyncio
async def test_acquire_hold_unknown_booking(test_session, clock, guest, create_room_type):
    """Test that a hold needs an existing booking."""
    room_type = await create_room_type()

    result = await HoldService(test_session, clock).acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, uuid4(), guest
    )

    assert result.outcome == Outcome.NOT_FOUND
    assert result.detail["resource_type"] == "booking"


@pytest.mark.asyncio
async def test_acquire_hold_rejects_bad_input(test_session, clock, guest, create_room_type, create_booking):
    """Test that empty ranges, zero quantities and out-of-bounds leases raise."""
    room_type = await create_room_type()
    booking = await create_booking()
    service = HoldService(test_session, clock)

    with pytest.raises(ValidationError):
        await service.acquire_hold(room_type.id, CHECK_OUT, CHECK_IN, 1, booking.id, guest)
    with pytest.raises(ValidationError):
        await service.acquire_hold(room_type.id, CHECK_IN, CHECK_IN, 1, booking.id, guest)
    with pytest.raises(ValidationError):
        await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 0, booking.id, guest)
    with pytest.raises(ValidationError):
        await service.acquire_hold(
            room_type.id, CHECK_IN, CHECK_OUT, 1, booking.id, guest,
            lease_seconds=settings.hold_lease_max_seconds + 1,
        )


@pytest.mark.asyncio
async def test_commit_hold_is_idempotent(test_session, clock, guest, create_room_type, create_booking):
    """Test that committing twice changes the hold once."""
    room_type = await create_room_type()
    booking = await create_booking()
    service = HoldService(test_session, clock)
    hold = (await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, booking.id, guest)).value

    first = await service.commit_hold(hold.id, guest)
    second = await service.commit_hold(hold.id, guest)

    assert first.ok and first.changed
    assert first.value.state == HoldState.COMMITTED
    assert first.value.resolved_at == clock.now()
    assert second.ok and second.changed is False

    history = await AuditService(test_session).history(EntityType.RESERVATION_HOLD, hold.id)
    assert [entry.action for entry in history] == ["CREATE", "UPDATE"]


@pytest.mark.asyncio
async def test_release_hold_frees_rooms(test_session, clock, guest, create_room_type, create_booking):
    """Test that releasing a hold makes its rooms available again."""
    room_type = await create_room_type(total_quantity=1)
    first = await create_booking()
    second = await create_booking()
    service = HoldService(test_session, clock)
    hold = (await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, first.id, guest)).value

    released = await service.release_hold(hold.id, "guest changed plans", guest)

    assert released.ok
    assert released.value.state == HoldState.RELEASED
    assert released.value.release_reason == "guest changed plans"
    assert (await service.acquire_hold(room_type.id, CHECK_IN, CHECK_OUT, 1, second.id, guest)).ok

    history = await AuditService(test_session).history(EntityType.RESERVATION_HOLD, hold.id)
    assert history[-1].action == AuditAction.CANCEL.value


@pytest.mark.asyncio
async def test_resolved_holds_are_not_reopened(test_session, clock, guest, create_room_type, create_booking):
    """Test that terminal holds answer ALREADY_RESOLVED and stay as they are."""
    room_type = await create_room_type(total_quantity=2)
    service = HoldService(test_session, clock)
    released = (await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, (await create_booking()).id, guest
    )).value
    committed = (await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, (await create_booking()).id, guest
    )).value
    await service.release_hold(released.id, "cancelled", guest)
    await service.commit_hold(committed.id, guest)

    again = await service.release_hold(released.id, "cancelled twice", guest)
    assert again.outcome == Outcome.ALREADY_RESOLVED
    assert again.value.release_reason == "cancelled"

    commit_released = await service.commit_hold(released.id, guest)
    assert commit_released.outcome == Outcome.ALREADY_RESOLVED
    assert commit_released.value.state == HoldState.RELEASED

    release_committed = await service.release_hold(committed.id, "too late", guest)
    assert release_committed.outcome == Outcome.ALREADY_RESOLVED
    assert release_committed.value.state == HoldState.COMMITTED


@pytest.mark.asyncio
async def test_commit_after_lease_lapsed(test_session, clock, guest, create_room_type, create_booking):
    """Test that a hold whose lease ran out cannot be committed before the sweep."""
    room_type = await create_room_type()
    booking = await create_booking()
    service = HoldService(test_session, clock)
    hold = (await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, booking.id, guest, lease_seconds=60
    )).value

    clock.advance(61)
    result = await service.commit_hold(hold.id, guest)

    assert result.outcome == Outcome.ALREADY_RESOLVED
    assert result.value.state == HoldState.ACTIVE


@pytest.mark.asyncio
async def test_unknown_hold_is_not_found(test_session, clock, guest):
    """Test that commit and release of unknown holds are NOT_FOUND."""
    service = HoldService(test_session, clock)

    assert (await service.commit_hold(uuid4(), guest)).outcome == Outcome.NOT_FOUND
    assert (await service.release_hold("bogus", "x", guest)).outcome == Outcome.NOT_FOUND


@pytest.mark.asyncio
async def test_lapsed_holds_do_not_block(test_session, clock, guest, create_room_type, create_booking):
    """Test that an ACTIVE hold past its lease no longer counts against availability."""
    room_type = await create_room_type(total_quantity=1)
    service = HoldService(test_session, clock)
    assert (await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, (await create_booking()).id, guest, lease_seconds=60
    )).ok

    clock.advance(60)
    result = await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, (await create_booking()).id, guest
    )

    assert result.ok


@pytest.mark.asyncio
async def test_expire_holds_sweep(test_session, clock, guest, create_room_type, create_booking):
    """Test that the sweep expires lapsed ACTIVE holds and nothing else."""
    room_type = await create_room_type(total_quantity=3)
    service = HoldService(test_session, clock)
    short = (await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, (await create_booking()).id, guest, lease_seconds=60
    )).value
    committed = (await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, (await create_booking()).id, guest, lease_seconds=60
    )).value
    long = (await service.acquire_hold(
        room_type.id, CHECK_IN, CHECK_OUT, 1, (await create_booking()).id, guest, lease_seconds=3600
    )).value
    await service.commit_hold(committed.id, guest)

    clock.advance(120)
    expired = await service.expire_holds()

    assert [hold.id for hold in expired] == [short.id]
    assert short.state == HoldState.EXPIRED
    assert short.release_reason == "lease expired"
    assert committed.state == HoldState.COMMITTED
    assert long.state == HoldState.ACTIVE

    history = await AuditService(test_session).history(EntityType.RESERVATION_HOLD, short.id)
    assert history[-1].actor_id == SYSTEM_ACTOR.id
    assert history[-1].summary == "Hold expired"

    assert await service.expire_holds() == []


@pytest.mark.asyncio
async def test_holds_for_booking(test_session, clock, guest, create_room_type, create_booking):
    """Test listing the holds of one booking."""
    deluxe = await create_room_type("Deluxe Room")
    suite = await create_room_type("Family Suite")
    booking = await create_booking()
    other = await create_booking()
    service = HoldService(test_session, clock)
    await service.acquire_hold(deluxe.id, CHECK_IN, CHECK_OUT, 1, booking.id, guest)
    await service.acquire_hold(suite.id, CHECK_IN, CHECK_OUT, 1, booking.id, guest)
    await service.acquire_hold(deluxe.id, CHECK_IN, CHECK_OUT, 1, other.id, guest)

    holds = await service.holds_for_booking(booking.id)

    assert {hold.room_type_id for hold in holds} == {deluxe.id, suite.id}
