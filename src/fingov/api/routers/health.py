"""Health check and metrics endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST

from fingov import __version__
from fingov.api.schemas.health import (
    HealthDetailResponse,
    HealthResponse,
    HealthStatus,
    SchedulerHealth,
)
from fingov.observability.metrics import get_metrics

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Basic health check",
    description="Returns basic liveness status. No authentication required.",
)
async def health_check() -> HealthResponse:
    """Basic liveness check endpoint."""
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        version=__version__,
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/health/detail",
    response_model=HealthDetailResponse,
    summary="Health check with scheduler status",
)
async def health_detail(request: Request) -> HealthDetailResponse:
    """Liveness plus the state of the retention scheduler.

    Reports degraded when the scheduler is configured but not running.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    scheduler_health = None
    status = HealthStatus.HEALTHY
    if scheduler is not None:
        summary = scheduler.last_summary
        scheduler_health = SchedulerHealth(
            running=scheduler.running,
            last_sweep_users=summary.user_count if summary else None,
            last_sweep_deleted_rows=summary.deleted.total_rows if summary else None,
        )
        if not scheduler.running:
            status = HealthStatus.DEGRADED

    return HealthDetailResponse(
        status=status,
        version=__version__,
        timestamp=datetime.now(UTC),
        scheduler=scheduler_health,
    )


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)
