"""Health check response schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health status indicators."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(..., description="Check timestamp")


class SchedulerHealth(BaseModel):
    """Retention scheduler status."""

    running: bool
    last_sweep_users: int | None = None
    last_sweep_deleted_rows: int | None = None


class HealthDetailResponse(HealthResponse):
    """Health response with scheduler status."""

    scheduler: SchedulerHealth | None = None
