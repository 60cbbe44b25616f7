"""Booking router for checkout and booking lookups."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.dependencies import ClockDependency, CurrentActor, DatabaseSession, ProviderDependency
from ..core.exceptions import NotFoundError
from ..schemas.booking import BookingDetails, CheckoutRequest, CheckoutResponse, GetBookingRequest
from ..schemas.common import SYSTEM_ACTOR, Actor, ActorRole
from ..schemas.payment import PaymentResponse
from ..services.booking_service import BookingService
from ..services.payment_provider import PaymentProvider
from ..services.reconciliation_service import ReconciliationService
from .converters import convert_booking, convert_hold, convert_payment, raise_for_outcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = DatabaseSession
ACTOR_DEPENDENCY = CurrentActor
CLOCK_DEPENDENCY = ClockDependency
PROVIDER_DEPENDENCY = ProviderDependency


@router.post("/checkout", response_model=CheckoutResponse)
async def checkout(
    request: CheckoutRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Start checkout.

    Creates the booking, holds every room line and opens a pending payment.
    Nothing is kept if any line cannot be held.
    """
    booking, payment, holds = await BookingService(db, clock).checkout(request, actor)

    response_data = CheckoutResponse(
        booking=convert_booking(booking),
        payment=convert_payment(payment),
        holds=[convert_hold(hold) for hold in holds],
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/get", response_model=BookingDetails)
async def get_booking(
    request: GetBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Get a booking with its holds and payments.

    Guests only see their own bookings.
    """
    booking, holds, payments = await BookingService(db, clock).get_details(request.booking_id)
    if actor.role == ActorRole.GUEST and booking.guest_ref != actor.id:
        raise NotFoundError(resource_type="booking", resource_id=request.booking_id)

    logger.info(
        "Booking retrieved successfully",
        extra={"booking_id": request.booking_id, "actor_id": actor.id}
    )

    response_data = BookingDetails(
        booking=convert_booking(booking),
        holds=[convert_hold(hold) for hold in holds],
        payments=[convert_payment(payment) for payment in payments],
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/{booking_id}/reconcile", response_model=PaymentResponse)
async def reconcile_booking(
    booking_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
) -> JSONResponse:
    """Reconcile the latest payment of a booking with the provider."""
    logger.info(
        "Reconciliation requested",
        extra={"booking_id": booking_id, "actor_id": actor.id, "actor_role": actor.role.value}
    )
    result = await ReconciliationService(db, provider, clock).reconcile(booking_id, SYSTEM_ACTOR)
    raise_for_outcome(result, "payment", booking_id)

    response_data = PaymentResponse(payment=convert_payment(result.value), changed=result.changed)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
