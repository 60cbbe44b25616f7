"""Reconciliation poller and webhook intake: converge local payments with the provider."""

import hashlib
import hmac
import json
import logging
import random
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import ValidationError, WebhookSignatureError
from ..core.locks import payment_locks
from ..core.observability import metrics_collector
from ..models.audit import AuditAction, EntityType
from ..models.notification import NotificationType
from ..models.payment import Payment, PaymentEvent, PaymentStatus
from ..schemas.common import SYSTEM_ACTOR, Actor
from .audit_service import AuditService, commit_or_fail
from .notification_service import NotificationService
from .payment_provider import PaymentProvider, ProviderUnreachable
from .payment_service import PaymentService
from .results import OperationResult, Outcome
from .snapshots import payment_snapshot

logger = logging.getLogger(__name__)

PROVIDER_STATUS_EVENTS = {
    "paid": PaymentEvent.PROVIDER_PAID,
    "failed": PaymentEvent.PROVIDER_FAILED,
    "cancelled": PaymentEvent.PROVIDER_FAILED,
    "expired": PaymentEvent.PROVIDER_FAILED,
}

WEBHOOK_EVENTS = {
    "payment.paid": PaymentEvent.PROVIDER_PAID,
    "payment.failed": PaymentEvent.PROVIDER_FAILED,
    "source.expired": PaymentEvent.PROVIDER_FAILED,
}


def event_for_status(status: str) -> Optional[PaymentEvent]:
    """Payment event implied by a provider status; None while still in flight."""
    return PROVIDER_STATUS_EVENTS.get((status or "").lower())


def backoff_delay(
    attempts: int,
    base: float,
    maximum: float,
    jitter: float = 0.0,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Delay before the next attempt after ``attempts`` consecutive failures.

    ``min(base * 2 ** (attempts - 1), maximum)``, then scaled by a random
    factor in ``[1 - jitter, 1 + jitter]`` and capped at ``maximum`` again.
    """
    attempts = max(attempts, 1)
    delay = min(base * (2 ** (attempts - 1)), maximum)
    if jitter > 0:
        rng = rng or random
        delay *= 1 + rng.uniform(-jitter, jitter)
    return max(0.0, min(delay, maximum))


def parse_signature_header(header: str) -> dict[str, str]:
    """Split ``t=<ts>,te=<sig>,li=<sig>`` into its parts."""
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key] = value
    return parts


def sign_payload(secret: str, timestamp: str, body: bytes) -> str:
    message = timestamp.encode() + b"." + body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(header: Optional[str], body: bytes, secret: str, livemode: bool = False) -> None:
    """
    Check the provider's signature over ``"<timestamp>.<raw body>"``.

    Raises:
        WebhookSignatureError: If the header is missing, malformed or does not match
    """
    if not header:
        raise WebhookSignatureError("Missing Paymongo-Signature header")
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")

    parts = parse_signature_header(header)
    timestamp = parts.get("t")
    signature = parts.get("li") if livemode else parts.get("te")
    if not timestamp or not signature:
        raise WebhookSignatureError("Malformed Paymongo-Signature header")

    expected = sign_payload(secret, timestamp, body)
    if not hmac.compare_digest(expected, signature):
        raise WebhookSignatureError()


class ReconciliationService:
    """
    Pulls payment status from the provider and feeds it into the payment engine.

    Provider outages are counted per payment and retried with exponential
    backoff. Once the configured number of attempts is reached the payment
    stays PENDING but is marked for manual attention.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: PaymentProvider,
        clock: Clock = system_clock,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.provider = provider
        self.clock = clock
        self.rng = rng
        self.payments = PaymentService(db, clock)
        self.audit = AuditService(db, clock)
        self.notifications = NotificationService(db, clock)

    async def reconcile(self, booking_id: str | UUID, actor: Actor = SYSTEM_ACTOR) -> OperationResult[Payment]:
        """
        Converge the latest payment of a booking with the provider.

        Args:
            booking_id: Booking whose latest payment is reconciled
            actor: Who asked; provider-driven transitions are recorded as this actor

        Returns:
            OperationResult: OK with the payment (``changed`` tells whether a
            transition was applied), or NOT_FOUND when the booking has no payment
        """
        payment = await self.payments.latest_for_booking(booking_id)
        if payment is None:
            return OperationResult.not_found(resource_type="payment", booking_id=str(booking_id))

        if payment.status != PaymentStatus.PENDING:
            metrics_collector.record_reconciliation("settled")
            logger.debug(
                "Reconcile skipped - payment already settled",
                extra={"payment_id": str(payment.id), "status": payment.status}
            )
            return OperationResult.success(payment, changed=False)

        if not payment.provider_ref:
            metrics_collector.record_reconciliation("no_reference")
            logger.info(
                "Reconcile skipped - payment has no provider reference",
                extra={"payment_id": str(payment.id)}
            )
            return OperationResult.success(payment, changed=False)

        try:
            provider_status = await self.provider.fetch_status(payment.provider_ref)
        except ProviderUnreachable as e:
            metrics_collector.record_reconciliation("unreachable")
            return await self._record_failure(payment.id, e)

        event = event_for_status(provider_status.status)
        if event is None:
            metrics_collector.record_reconciliation("pending")
            payment = await self._record_poll(payment.id)
            logger.debug(
                "Provider reports payment still in flight",
                extra={"payment_id": str(payment.id), "provider_status": provider_status.status}
            )
            return OperationResult.success(payment, changed=False)

        result = await self.payments.transition(payment.id, event, {"provider_status": provider_status.status}, actor)
        if result.outcome == Outcome.OK:
            await self._record_poll(payment.id)
        metrics_collector.record_reconciliation(event.value if result.changed else "unchanged")
        logger.info(
            "Payment reconciled",
            extra={
                "payment_id": str(payment.id),
                "booking_id": str(payment.booking_id),
                "provider_status": provider_status.status,
                "event": event.value,
                "outcome": result.outcome.value,
                "changed": result.changed,
            }
        )
        return result

    async def reconcile_payment(self, payment_id: str | UUID, actor: Actor = SYSTEM_ACTOR) -> OperationResult[Payment]:
        """Reconcile by payment id; resolves the payment to its booking."""
        payment = await self.payments.get_payment(payment_id)
        if payment is None:
            return OperationResult.not_found(resource_type="payment", resource_id=str(payment_id))
        return await self.reconcile(payment.booking_id, actor)

    async def _record_poll(self, payment_id: UUID) -> Payment:
        """Reset the failure counter after the provider answered."""
        async with payment_locks.hold(payment_id):
            payment = await self.payments.get_payment(payment_id)
            payment.last_reconciled_at = self.clock.now()
            payment.reconcile_attempts = 0
            payment.next_reconcile_at = None
            await self.db.commit()
        return payment

    async def _record_failure(self, payment_id: UUID, error: ProviderUnreachable) -> OperationResult[Payment]:
        now = self.clock.now()
        async with payment_locks.hold(payment_id):
            payment = await self.payments.get_payment(payment_id)
            payment.reconcile_attempts = (payment.reconcile_attempts or 0) + 1
            attempts = payment.reconcile_attempts
            delay = backoff_delay(
                attempts,
                settings.reconcile_backoff_base_seconds,
                settings.reconcile_backoff_max_seconds,
                settings.reconcile_backoff_jitter,
                self.rng,
            )
            payment.next_reconcile_at = now + timedelta(seconds=delay)

            escalate = attempts >= settings.reconcile_max_attempts and not payment.needs_attention
            if escalate:
                before = payment_snapshot(payment)
                payment.needs_attention = True
                payment.attention_reason = (
                    f"Provider unreachable after {attempts} reconciliation attempts: {error.reason}"
                )
                await self.audit.record(
                    SYSTEM_ACTOR,
                    AuditAction.NOTE,
                    EntityType.PAYMENT,
                    payment.id,
                    before=before,
                    after=payment_snapshot(payment),
                    summary=f"Payment needs attention: provider unreachable after {attempts} attempts",
                )
                self.notifications.queue_for_payment(NotificationType.PAYMENT_REQUIRES_ATTENTION, payment)
                await commit_or_fail(self.db, EntityType.PAYMENT, payment.id)
            else:
                await self.db.commit()

        log = logger.error if escalate else logger.warning
        log(
            "Provider unreachable during reconciliation",
            extra={
                "payment_id": str(payment.id),
                "provider": error.provider,
                "reason": error.reason,
                "attempts": attempts,
                "next_reconcile_at": payment.next_reconcile_at.isoformat(),
                "needs_attention": payment.needs_attention,
            }
        )
        return OperationResult.success(payment, changed=False)

    async def due_payments(self, limit: Optional[int] = None) -> list[Payment]:
        """Pending payments whose next poll is due and that are not waiting on staff."""
        now = self.clock.now()
        stmt = (
            select(Payment)
            .where(
                Payment.status == PaymentStatus.PENDING.value,
                Payment.needs_attention.is_(False),
                Payment.provider_ref.is_not(None),
                or_(Payment.next_reconcile_at.is_(None), Payment.next_reconcile_at <= now),
            )
            .order_by(Payment.created_at)
            .limit(limit or settings.reconcile_batch_size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> OperationResult[Payment]:
        """
        Verify and apply a provider webhook.

        Unknown event types and unknown references are acknowledged without
        change, since the provider retries anything that is not a 2xx.

        Raises:
            WebhookSignatureError: If the signature does not verify
            ValidationError: If the body is not a provider event
        """
        verify_webhook_signature(signature, body, settings.provider_webhook_secret)

        try:
            document: dict[str, Any] = json.loads(body)
            attributes = document["data"]["attributes"]
            event_type = attributes["type"]
            resource = attributes.get("data") or {}
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Malformed webhook body", extra={"error": str(e)})
            raise ValidationError(
                detail="Webhook body is not a provider event",
                violations=[{"path": "data.attributes", "message": str(e)}],
            ) from e

        event = WEBHOOK_EVENTS.get(event_type)
        if event is None:
            logger.info("Webhook event type ignored", extra={"event_type": event_type})
            return OperationResult.success(None, changed=False)

        provider_ref = resource.get("id")
        source = ((resource.get("attributes") or {}).get("source") or {}).get("id")
        payment = None
        for ref in (provider_ref, source):
            if ref:
                payment = await self.payments.get_by_provider_ref(ref)
                if payment is not None:
                    break

        if payment is None:
            logger.warning(
                "Webhook for unknown payment reference",
                extra={"event_type": event_type, "provider_ref": provider_ref}
            )
            return OperationResult.not_found(resource_type="payment", provider_ref=provider_ref)

        result = await self.payments.transition(payment.id, event, {"webhook_event": event_type}, SYSTEM_ACTOR)
        if result.outcome == Outcome.INVALID_TRANSITION:
            logger.warning(
                "Webhook event does not apply to payment",
                extra={"payment_id": str(payment.id), "event_type": event_type, **result.detail}
            )
        return result
