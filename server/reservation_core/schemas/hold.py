"""Reservation hold Pydantic schemas."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ..models.hold import HoldState


class AcquireHoldRequest(BaseModel):
    """Request schema for acquiring a hold."""

    room_type_id: str = Field(..., description="Room type to reserve")
    check_in: date = Field(..., description="First night (inclusive)")
    check_out: date = Field(..., description="Departure day (exclusive)")
    quantity: int = Field(..., ge=1, le=50, description="Number of rooms to hold")
    booking_id: str = Field(..., description="Booking that owns the hold")
    lease_seconds: Optional[int] = Field(None, ge=1, description="Lease duration; server default when omitted")

    @model_validator(mode="after")
    def validate_range(self) -> "AcquireHoldRequest":
        if self.check_in >= self.check_out:
            raise ValueError("check_in must be before check_out")
        return self


class ReleaseHoldRequest(BaseModel):
    """Request schema for releasing a hold."""

    reason: str = Field("released", min_length=1, max_length=500, description="Why the hold is released")


class Hold(BaseModel):
    """Hold response schema."""

    id: str = Field(..., description="Unique hold ID")
    room_type_id: str = Field(..., description="Reserved room type")
    booking_id: str = Field(..., description="Owning booking")
    check_in: date = Field(..., description="First night (inclusive)")
    check_out: date = Field(..., description="Departure day (exclusive)")
    quantity: int = Field(..., ge=1, description="Rooms held")
    state: HoldState = Field(..., description="Hold state")
    expires_at: datetime = Field(..., description="Lease expiry (UTC)")
    release_reason: Optional[str] = Field(None, description="Reason given when released or expired")
    resolved_at: Optional[datetime] = Field(None, description="When the hold left ACTIVE")


class AcquireHoldResponse(BaseModel):
    """Response schema for a successful acquire."""

    hold_id: str = Field(..., description="Unique hold ID")
    expires_at: datetime = Field(..., description="Lease expiry (UTC)")
    hold: Hold


class HoldResponse(BaseModel):
    """Response schema for commit and release."""

    hold: Hold
    already_resolved: bool = Field(False, description="True when the call changed nothing")
