"""Hold router for acquiring, committing and releasing reservation holds."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.dependencies import ClockDependency, CurrentActor, DatabaseSession, ProviderActor
from ..core.exceptions import AuthorizationError
from ..schemas.common import Actor, ActorRole
from ..schemas.hold import AcquireHoldRequest, AcquireHoldResponse, HoldResponse, ReleaseHoldRequest
from ..services.booking_service import BookingService
from ..services.hold_service import HoldService
from ..services.results import OperationResult, Outcome
from .converters import convert_hold, raise_for_outcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/hold", tags=["hold"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = DatabaseSession
ACTOR_DEPENDENCY = CurrentActor
RESOLVER_DEPENDENCY = ProviderActor
CLOCK_DEPENDENCY = ClockDependency


def _hold_response(result: OperationResult, hold_id: str) -> JSONResponse:
    raise_for_outcome(result, "hold", hold_id)
    response_data = HoldResponse(
        hold=convert_hold(result.value),
        already_resolved=result.outcome == Outcome.ALREADY_RESOLVED or not result.changed,
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/acquire", response_model=AcquireHoldResponse)
async def acquire_hold(
    request: AcquireHoldRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Hold rooms of one type for a date range.

    Guests may only hold rooms for their own bookings. Fails with 409
    INSUFFICIENT_AVAILABILITY when the room type cannot cover the quantity
    on every night of the range.
    """
    if actor.role == ActorRole.GUEST:
        booking = await BookingService(db, clock).get_booking(request.booking_id)
        if booking.guest_ref != actor.id:
            logger.warning(
                "Guest attempted to hold rooms for another guest's booking",
                extra={"booking_id": request.booking_id, "actor_id": actor.id}
            )
            raise AuthorizationError(detail="Guests may only hold rooms for their own bookings")

    result = await HoldService(db, clock).acquire_hold(
        room_type_id=request.room_type_id,
        check_in=request.check_in,
        check_out=request.check_out,
        quantity=request.quantity,
        booking_id=request.booking_id,
        actor=actor,
        lease_seconds=request.lease_seconds,
    )
    raise_for_outcome(result, "room type", request.room_type_id)

    hold = result.value
    response_data = AcquireHoldResponse(
        hold_id=str(hold.id),
        expires_at=hold.expires_at,
        hold=convert_hold(hold),
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/{hold_id}/commit", response_model=HoldResponse)
async def commit_hold(
    hold_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = RESOLVER_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Commit an active hold. Requires the SYSTEM or SUPERADMIN role.

    Holds are committed by a successful payment; this endpoint exists for
    operators. Committing twice is a no-op. Released or expired holds are
    returned with ``already_resolved`` set.
    """
    result = await HoldService(db, clock).commit_hold(hold_id, actor)
    return _hold_response(result, hold_id)


@router.post("/{hold_id}/release", response_model=HoldResponse)
async def release_hold(
    hold_id: str,
    request: ReleaseHoldRequest | None = None,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = RESOLVER_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Release an active hold, returning its rooms to availability.

    Requires the SYSTEM or SUPERADMIN role. Holds that are already resolved
    are returned unchanged with ``already_resolved`` set.
    """
    reason = request.reason if request is not None else "released"
    result = await HoldService(db, clock).release_hold(hold_id, reason, actor)
    return _hold_response(result, hold_id)
