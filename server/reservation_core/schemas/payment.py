"""Payment Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.payment import PaymentEvent, PaymentStatus, VerificationStatus
from .common import Money


class TransitionRequest(BaseModel):
    """Request schema for a payment event."""

    event: PaymentEvent = Field(..., description="Event to apply")
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Event data: 'reason' for flag, 'text' for note, 'reason' for refund"
    )


class PaymentNote(BaseModel):
    """One entry of a payment's append-only notes."""

    author: str = Field(..., description="Actor who wrote the note")
    text: str = Field(..., description="Note text")
    at: datetime = Field(..., description="When the note was added")


class Payment(BaseModel):
    """Payment response schema."""

    id: str = Field(..., description="Unique payment ID")
    booking_id: str = Field(..., description="Booking paid for")
    amount: Money
    status: PaymentStatus = Field(..., description="Payment status")
    verification_status: VerificationStatus = Field(..., description="Manual verification status")
    provider: str = Field(..., description="Payment provider")
    provider_ref: Optional[str] = Field(None, description="Provider reference id")
    verified_by: Optional[str] = Field(None, description="Verifier actor id")
    verified_at: Optional[datetime] = Field(None, description="Verification time")
    flag_reason: Optional[str] = Field(None, description="Reason given when flagged")
    notes: List[PaymentNote] = Field(default_factory=list)
    reconcile_attempts: int = Field(0, description="Consecutive provider failures")
    next_reconcile_at: Optional[datetime] = Field(None, description="Next scheduled reconciliation")
    needs_attention: bool = Field(False, description="Surfaced for manual follow-up")
    attention_reason: Optional[str] = Field(None, description="Why manual follow-up is needed")
    created_at: datetime
    updated_at: datetime


class PaymentResponse(BaseModel):
    """Response schema for transitions and reconciliations."""

    payment: Payment
    changed: bool = Field(..., description="False when the call was an idempotent no-op")


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider."""

    received: bool = True
    payment_id: Optional[str] = None
    changed: bool = False
