"""Health-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health status enumeration."""
    HEALTHY = "healthy"
    READY = "ready"
    DEGRADED = "degraded"


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: HealthStatus = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current server time (ISO 8601)")
    version: str = Field("1.0.0", description="API version")


class ReadinessResponse(BaseModel):
    """Readiness check response schema."""

    status: HealthStatus = Field(..., description="Ready or degraded")
    checks: Dict[str, str] = Field(..., description="Result of each dependency check")
    workers: Dict[str, bool] = Field(default_factory=dict, description="Background worker state")
