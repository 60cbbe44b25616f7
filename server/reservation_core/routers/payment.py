"""Payment router: lifecycle transitions, reconciliation and provider webhooks."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.dependencies import ClockDependency, CurrentActor, DatabaseSession, ProviderDependency
from ..core.exceptions import AuthorizationError
from ..models.payment import MANUAL_EVENTS
from ..schemas.common import SYSTEM_ACTOR, Actor, ActorRole
from ..schemas.payment import PaymentResponse, TransitionRequest, WebhookAck
from ..services.payment_provider import PaymentProvider
from ..services.payment_service import PaymentService
from ..services.reconciliation_service import ReconciliationService
from ..services.results import Outcome
from .converters import convert_payment, raise_for_outcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payment", tags=["payment"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = DatabaseSession
ACTOR_DEPENDENCY = CurrentActor
CLOCK_DEPENDENCY = ClockDependency
PROVIDER_DEPENDENCY = ProviderDependency
SIGNATURE_HEADER = Header(None, alias="Paymongo-Signature")

MANUAL_EVENT_ROLES = frozenset({ActorRole.CASHIER, ActorRole.SUPERADMIN})
PROVIDER_EVENT_ROLES = frozenset({ActorRole.SYSTEM, ActorRole.SUPERADMIN})


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
    signature: Optional[str] = SIGNATURE_HEADER,
) -> JSONResponse:
    """
    Receive a provider event.

    The signature is checked over the raw body. Duplicates, unknown
    references and events that no longer apply are acknowledged with 200 so
    the provider stops retrying.
    """
    body = await request.body()
    result = await ReconciliationService(db, provider, clock).handle_webhook(body, signature)

    payment = result.value if result.outcome in (Outcome.OK, Outcome.INVALID_TRANSITION) else None
    ack = WebhookAck(
        received=True,
        payment_id=str(payment.id) if payment is not None else None,
        changed=result.ok and result.changed,
    )
    return JSONResponse(status_code=200, content=ack.model_dump(mode="json"))


@router.post("/{payment_id}/transition", response_model=PaymentResponse)
async def transition_payment(
    payment_id: str,
    request: TransitionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Apply an event to a payment.

    Staff events (verify, flag, note, refund) need the CASHIER or SUPERADMIN
    role; provider events need SYSTEM or SUPERADMIN. Repeating an event that
    was already applied returns the payment with ``changed`` false.
    """
    allowed = MANUAL_EVENT_ROLES if request.event in MANUAL_EVENTS else PROVIDER_EVENT_ROLES
    if actor.role not in allowed:
        raise AuthorizationError(
            detail=f"Event '{request.event.value}' is not permitted for role {actor.role.value}",
            required_roles=sorted(role.value for role in allowed),
        )

    result = await PaymentService(db, clock).transition(payment_id, request.event, request.payload, actor)
    raise_for_outcome(result, "payment", payment_id)

    response_data = PaymentResponse(payment=convert_payment(result.value), changed=result.changed)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/{payment_id}/reconcile", response_model=PaymentResponse)
async def reconcile_payment(
    payment_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
) -> JSONResponse:
    """
    Ask the provider for the payment's status and apply it.

    When the provider is unreachable the last known local state is returned.
    """
    logger.info(
        "Reconciliation requested",
        extra={"payment_id": payment_id, "actor_id": actor.id, "actor_role": actor.role.value}
    )
    result = await ReconciliationService(db, provider, clock).reconcile_payment(payment_id, SYSTEM_ACTOR)
    raise_for_outcome(result, "payment", payment_id)

    response_data = PaymentResponse(payment=convert_payment(result.value), changed=result.changed)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
