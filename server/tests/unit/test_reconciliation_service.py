"""Unit tests for reconciliation with the payment provider."""

import json
import random
from datetime import timedelta
from uuid import uuid4

import pytest

from reservation_core.core.config import settings
from reservation_core.core.exceptions import ValidationError, WebhookSignatureError
from reservation_core.models.audit import AuditAction, EntityType
from reservation_core.models.hold import HoldState
from reservation_core.models.notification import NotificationType
from reservation_core.models.payment import PaymentEvent, PaymentStatus
from reservation_core.services.audit_service import AuditService
from reservation_core.services.notification_service import NotificationService
from reservation_core.services.reconciliation_service import (
    ReconciliationService,
    backoff_delay,
    event_for_status,
    parse_signature_header,
    sign_payload,
    verify_webhook_signature,
)
from reservation_core.services.results import Outcome


@pytest.mark.parametrize(
    "status,event",
    [
        ("paid", PaymentEvent.PROVIDER_PAID),
        ("PAID", PaymentEvent.PROVIDER_PAID),
        ("failed", PaymentEvent.PROVIDER_FAILED),
        ("cancelled", PaymentEvent.PROVIDER_FAILED),
        ("expired", PaymentEvent.PROVIDER_FAILED),
        ("pending", None),
        ("chargeable", None),
        ("", None),
    ],
)
def test_event_for_status(status, event):
    """Test mapping provider statuses to payment events."""
    assert event_for_status(status) == event


def test_backoff_delay_doubles_until_cap():
    """Test exponential growth of the retry delay."""
    assert backoff_delay(1, 30, 1800) == 30
    assert backoff_delay(2, 30, 1800) == 60
    assert backoff_delay(4, 30, 1800) == 240
    assert backoff_delay(20, 30, 1800) == 1800
    assert backoff_delay(0, 30, 1800) == 30


def test_backoff_delay_jitter_stays_in_bounds():
    """Test that jitter scales the delay by at most the given fraction."""
    rng = random.Random(7)
    for attempts in range(1, 8):
        nominal = min(30 * 2 ** (attempts - 1), 600)
        delay = backoff_delay(attempts, 30, 600, jitter=0.2, rng=rng)
        assert nominal * 0.8 <= delay <= min(nominal * 1.2, 600)


def test_signature_round_trip():
    """Test that a correctly signed body verifies and a tampered one does not."""
    body = b'{"data": {}}'
    signature = sign_payload("secret", "1700000000", body)
    header = f"t=1700000000,te={signature},li="

    verify_webhook_signature(header, body, "secret")

    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(header, b'{"data": {"x": 1}}', "secret")
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(header, body, "other-secret")


def test_signature_header_problems():
    """Test that missing, malformed and live-mode-mismatched headers are rejected."""
    body = b"{}"
    signature = sign_payload("secret", "1", body)

    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(None, body, "secret")
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature("garbage", body, "secret")
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(f"t=1,te={signature}", body, "")
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(f"t=1,te={signature},li=", body, "secret", livemode=True)

    verify_webhook_signature(f"t=1,te=,li={signature}", body, "secret", livemode=True)


def test_parse_signature_header():
    """Test splitting the signature header into parts."""
    assert parse_signature_header("t=1, te=abc ,li=") == {"t": "1", "te": "abc", "li": ""}


@pytest.mark.asyncio
async def test_reconcile_converges_once(test_session, clock, provider, create_room_type, checkout):
    """Test that repeated reconciliation of a paid payment has one effect."""
    room_type = await create_room_type()
    booking, payment, holds = await checkout((room_type, 1), provider_ref="src_paid")
    provider.set_status("src_paid", "paid")
    service = ReconciliationService(test_session, provider, clock)

    results = [await service.reconcile(booking.id) for _ in range(3)]

    assert [result.changed for result in results] == [True, False, False]
    assert all(result.value.status == PaymentStatus.PAID for result in results)
    assert holds[0].state == HoldState.COMMITTED

    hold_history = await AuditService(test_session).history(EntityType.RESERVATION_HOLD, holds[0].id)
    commits = [entry for entry in hold_history if entry.after and entry.after["state"] == "COMMITTED"
               and entry.before["state"] == "ACTIVE"]
    assert len(commits) == 1

    confirmed = await NotificationService(test_session).list_for_payment(
        payment.id, NotificationType.PAYMENT_CONFIRMED
    )
    assert len(confirmed) == 1
    # Settled payments are not sent to the provider again
    assert provider.calls["src_paid"] == 1


@pytest.mark.asyncio
async def test_reconcile_failed_status(test_session, clock, provider, create_room_type, checkout):
    """Test that a failed provider status fails the payment and frees the rooms."""
    room_type = await create_room_type()
    booking, payment, holds = await checkout((room_type, 1), provider_ref="src_failed")
    provider.set_status("src_failed", "expired")

    result = await ReconciliationService(test_session, provider, clock).reconcile(booking.id)

    assert result.value.status == PaymentStatus.FAILED
    assert holds[0].state == HoldState.RELEASED


@pytest.mark.asyncio
async def test_reconcile_pending_status(test_session, clock, provider, create_room_type, checkout):
    """Test that an in-flight provider status only records the poll."""
    room_type = await create_room_type()
    booking, payment, _ = await checkout((room_type, 1), provider_ref="src_pending")

    result = await ReconciliationService(test_session, provider, clock).reconcile(booking.id)

    assert result.ok and result.changed is False
    assert result.value.status == PaymentStatus.PENDING
    assert result.value.last_reconciled_at == clock.now()
    assert result.value.reconcile_attempts == 0


@pytest.mark.asyncio
async def test_reconcile_without_reference(test_session, clock, provider, create_room_type, checkout):
    """Test that a payment without provider reference is left alone."""
    room_type = await create_room_type()
    booking, _, _ = await checkout((room_type, 1))

    result = await ReconciliationService(test_session, provider, clock).reconcile(booking.id)

    assert result.ok and result.changed is False
    assert provider.calls == {}


@pytest.mark.asyncio
async def test_reconcile_unknown_booking(test_session, clock, provider):
    """Test that reconciling a booking without payment is NOT_FOUND."""
    result = await ReconciliationService(test_session, provider, clock).reconcile(uuid4())
    assert result.outcome == Outcome.NOT_FOUND


@pytest.mark.asyncio
async def test_provider_outage_backs_off_then_needs_attention(
    test_session, clock, provider, create_room_type, checkout
):
    """Test that provider failures back off and finally surface the payment."""
    room_type = await create_room_type()
    booking, payment, _ = await checkout((room_type, 1), provider_ref="src_down")
    provider.unreachable = True
    service = ReconciliationService(test_session, provider, clock, rng=random.Random(1))

    for attempt in range(1, settings.reconcile_max_attempts):
        result = await service.reconcile(booking.id)
        assert result.ok and result.changed is False
        assert result.value.status == PaymentStatus.PENDING
        assert result.value.reconcile_attempts == attempt
        assert result.value.next_reconcile_at > clock.now()
        assert result.value.needs_attention is False

    result = await service.reconcile(booking.id)
    assert result.value.reconcile_attempts == settings.reconcile_max_attempts
    assert result.value.needs_attention is True
    assert "unreachable" in result.value.attention_reason

    # Further failures do not notify again
    await service.reconcile(booking.id)
    attention = await NotificationService(test_session).list_for_payment(
        payment.id, NotificationType.PAYMENT_REQUIRES_ATTENTION
    )
    assert len(attention) == 1

    history = await AuditService(test_session).history(EntityType.PAYMENT, payment.id)
    notes = [entry for entry in history if entry.action == AuditAction.NOTE.value]
    assert len(notes) == 1
    assert notes[0].summary.startswith("Payment needs attention")

    assert await service.due_payments() == []


@pytest.mark.asyncio
async def test_provider_recovery_resets_attempts(test_session, clock, provider, create_room_type, checkout):
    """Test that a successful poll clears the failure counter."""
    room_type = await create_room_type()
    booking, _, _ = await checkout((room_type, 1), provider_ref="src_flaky")
    service = ReconciliationService(test_session, provider, clock)

    provider.unreachable = True
    failed = await service.reconcile(booking.id)
    assert failed.value.reconcile_attempts == 1

    provider.unreachable = False
    recovered = await service.reconcile(booking.id)
    assert recovered.value.reconcile_attempts == 0
    assert recovered.value.next_reconcile_at is None


@pytest.mark.asyncio
async def test_due_payments_respects_backoff(test_session, clock, provider, create_room_type, checkout):
    """Test that payments backing off are not due until their next poll time."""
    room_type = await create_room_type(total_quantity=3)
    booking, payment, _ = await checkout((room_type, 1), provider_ref="src_a")
    await checkout((room_type, 1))
    service = ReconciliationService(test_session, provider, clock)

    assert [p.id for p in await service.due_payments()] == [payment.id]

    provider.unreachable = True
    failed = await service.reconcile(booking.id)
    assert await service.due_payments() == []

    clock.current = failed.value.next_reconcile_at + timedelta(seconds=1)
    assert [p.id for p in await service.due_payments()] == [payment.id]


@pytest.mark.asyncio
async def test_webhook_marks_payment_paid(test_session, clock, provider, create_room_type, checkout, signed_webhook):
    """Test that a signed payment.paid webhook confirms the booking once."""
    room_type = await create_room_type()
    _, payment, holds = await checkout((room_type, 1), provider_ref="pay_123")
    service = ReconciliationService(test_session, provider, clock)

    body, signature = signed_webhook("payment.paid", "pay_123")
    first = await service.handle_webhook(body, signature)
    second = await service.handle_webhook(body, signature)

    assert first.ok and first.changed
    assert first.value.id == payment.id
    assert first.value.status == PaymentStatus.PAID
    assert second.ok and second.changed is False
    assert holds[0].state == HoldState.COMMITTED


@pytest.mark.asyncio
async def test_webhook_matches_source_reference(
    test_session, clock, provider, create_room_type, checkout, signed_webhook
):
    """Test that a webhook is matched through the payment's source id."""
    room_type = await create_room_type()
    _, payment, _ = await checkout((room_type, 1), provider_ref="src_gcash_1")

    body, signature = signed_webhook("payment.failed", "pay_unknown", source_id="src_gcash_1")
    result = await ReconciliationService(test_session, provider, clock).handle_webhook(body, signature)

    assert result.value.id == payment.id
    assert result.value.status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_webhook_after_failure_is_invalid(
    test_session, clock, provider, create_room_type, checkout, signed_webhook
):
    """Test that payment.paid for a FAILED payment is reported, not applied."""
    room_type = await create_room_type()
    _, payment, _ = await checkout((room_type, 1), provider_ref="pay_late")
    service = ReconciliationService(test_session, provider, clock)
    await service.handle_webhook(*signed_webhook("payment.failed", "pay_late"))

    result = await service.handle_webhook(*signed_webhook("payment.paid", "pay_late"))

    assert result.outcome == Outcome.INVALID_TRANSITION
    assert result.value.status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_webhook_ignores_unknown_events(test_session, clock, provider, signed_webhook):
    """Test that unhandled event types and unknown references change nothing."""
    service = ReconciliationService(test_session, provider, clock)

    ignored = await service.handle_webhook(*signed_webhook("checkout_session.payment.paid", "cs_1"))
    assert ignored.ok and ignored.value is None and ignored.changed is False

    unknown = await service.handle_webhook(*signed_webhook("payment.paid", "pay_nobody"))
    assert unknown.outcome == Outcome.NOT_FOUND


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature_and_body(test_session, clock, provider, signed_webhook):
    """Test that unsigned and malformed webhooks raise."""
    service = ReconciliationService(test_session, provider, clock)
    body, signature = signed_webhook("payment.paid", "pay_1")

    with pytest.raises(WebhookSignatureError):
        await service.handle_webhook(body + b" ", signature)
    with pytest.raises(WebhookSignatureError):
        await service.handle_webhook(body, None)

    bad_body = json.dumps({"data": {"id": "evt"}}).encode()
    timestamp = "1700000000"
    header = f"t={timestamp},te={sign_payload(settings.provider_webhook_secret, timestamp, bad_body)}"
    with pytest.raises(ValidationError):
        await service.handle_webhook(bad_body, header)
