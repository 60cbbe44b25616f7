"""Booking-related Pydantic schemas."""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.booking import BookingStatus
from .common import Money
from .hold import Hold
from .payment import Payment


class BookingRoomLine(BaseModel):
    """One room type line of a booking."""

    room_type_id: str = Field(..., description="Room type")
    quantity: int = Field(..., ge=1, le=50, description="Rooms of this type")


class CheckoutRequest(BaseModel):
    """Request schema for starting checkout."""

    check_in: date = Field(..., description="First night (inclusive)")
    check_out: date = Field(..., description="Departure day (exclusive)")
    rooms: List[BookingRoomLine] = Field(..., min_length=1, max_length=10, description="Rooms to reserve")
    guest_name: Optional[str] = Field(None, max_length=200, description="Guest display name")
    provider_ref: Optional[str] = Field(None, max_length=255, description="Provider checkout reference")
    lease_seconds: Optional[int] = Field(None, ge=1, description="Hold lease; server default when omitted")

    @model_validator(mode="after")
    def validate_request(self) -> "CheckoutRequest":
        if self.check_in >= self.check_out:
            raise ValueError("check_in must be before check_out")
        room_type_ids = [line.room_type_id for line in self.rooms]
        if len(set(room_type_ids)) != len(room_type_ids):
            raise ValueError("each room type may appear only once")
        return self


class GetBookingRequest(BaseModel):
    """Request schema for getting a booking."""

    booking_id: str = Field(..., description="Booking to retrieve")


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    guest_ref: str = Field(..., description="Guest reference")
    guest_name: Optional[str] = Field(None, description="Guest display name")
    check_in: date
    check_out: date
    status: BookingStatus = Field(..., description="Booking status")
    total_price: Money
    rooms: List[BookingRoomLine]
    created_at: datetime = Field(..., description="Booking creation time (ISO 8601)")


class CheckoutResponse(BaseModel):
    """Response schema for a started checkout."""

    booking: Booking
    payment: Payment
    holds: List[Hold]


class BookingDetails(BaseModel):
    """A booking with its holds and payments."""

    booking: Booking
    holds: List[Hold]
    payments: List[Payment]
