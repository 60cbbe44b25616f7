"""Inventory-related Pydantic schemas."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from .common import Money


class CreateRoomTypeRequest(BaseModel):
    """Request schema for registering a room type."""

    name: str = Field(..., min_length=1, max_length=200, description="Room type name")
    total_quantity: int = Field(..., ge=0, le=10000, description="Physical rooms of this type")
    price: Money = Field(..., description="Nightly price")


class RoomType(BaseModel):
    """Room type response schema."""

    id: str = Field(..., description="Unique room type ID")
    name: str = Field(..., description="Room type name")
    total_quantity: int = Field(..., ge=0, description="Physical rooms of this type")
    price: Money
    created_at: datetime


class Availability(BaseModel):
    """Availability of one room type over a date range."""

    room_type_id: str
    check_in: date
    check_out: date
    total_quantity: int = Field(..., description="Physical rooms of this type")
    reserved_quantity: int = Field(..., description="Peak nightly quantity held or committed")
    available_quantity: int = Field(..., description="Rooms that can still be held for the whole range")
