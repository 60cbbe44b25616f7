"""Common Pydantic schemas."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Money(BaseModel):
    """Money representation with amount in minor units."""

    amount: int = Field(..., ge=0, description="Amount in minor units (e.g., centavos)")
    currency: str = Field(..., min_length=3, max_length=3, pattern=r"^[A-Z]{3}$", description="ISO 4217 currency code")


class Violation(BaseModel):
    """Validation error violation."""

    path: str = Field(..., description="JSON path to the invalid field")
    message: str = Field(..., description="Validation error message")


class Problem(BaseModel):
    """RFC 9457 Problem Details response."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: Optional[str] = Field(None, description="Application-specific error code")
    retryable: Optional[bool] = Field(None, description="Whether the operation can be retried")
    request_id: Optional[str] = Field(None, description="Request ID for debugging")
    violations: Optional[List[Violation]] = Field(None, description="Validation errors")


class ActorRole(str, Enum):
    """Roles that can act on reservations and payments."""
    GUEST = "GUEST"
    CASHIER = "CASHIER"
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"
    SYSTEM = "SYSTEM"


class Actor(BaseModel):
    """Identity recorded on every audit entry."""

    id: str = Field(..., min_length=1, description="Stable actor identifier")
    name: str = Field(..., min_length=1, description="Display name at the time of the action")
    role: ActorRole = Field(..., description="Role at the time of the action")

    model_config = {"frozen": True}


SYSTEM_ACTOR = Actor(id="system", name="System", role=ActorRole.SYSTEM)
