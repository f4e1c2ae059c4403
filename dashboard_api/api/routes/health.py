from __future__ import annotations

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from dashboard_api.core.config import settings
from dashboard_api.schemas.health import (
    DependencyCheck,
    DetailedHealthResponse,
    HealthResponse,
    LivenessResponse,
    RateLimiterStats,
    ReadinessResponse,
)

router = APIRouter(prefix="/health", tags=["Health"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Basic health check.

    Fast and dependency-free, meant for load balancers.
    """

    return HealthResponse(timestamp=_now_iso())


@router.get("/live", response_model=LivenessResponse)
def liveness() -> LivenessResponse:
    return LivenessResponse()


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    response_model_exclude_none=True,
    responses={503: {"model": ReadinessResponse}},
)
def readiness():
    """Readiness probe.

    Production always requires a configured database. Elsewhere the service
    may run in demo mode without one when APP_ALLOW_DEMO_MODE is set.
    """

    if settings.app.database_configured:
        return ReadinessResponse(ready=True)

    if settings.is_production or not settings.app.allow_demo_mode:
        return JSONResponse(
            status_code=503,
            content=ReadinessResponse(ready=False, reason="Database not configured").model_dump(
                exclude_none=True
            ),
        )

    return ReadinessResponse(ready=True, mode="demo")


@router.get("/detailed", response_model=DetailedHealthResponse)
def detailed_health(request: Request) -> DetailedHealthResponse:
    """Detailed health including configuration checks and limiter usage.

    A missing database degrades the status unless demo mode is allowed or the
    service runs in production (where readiness already fails).
    """

    database = DependencyCheck(
        status="configured" if settings.app.database_configured else "not_configured"
    )
    degraded = (
        database.status == "not_configured"
        and not settings.app.allow_demo_mode
        and not settings.is_production
    )

    registry = getattr(request.app.state, "rate_limits", None)
    rate_limiters = {
        name: RateLimiterStats(**stats) for name, stats in (registry.stats() if registry else {}).items()
    }

    started_at = getattr(request.app.state, "started_at", None)
    uptime = time.monotonic() - started_at if started_at is not None else 0.0

    return DetailedHealthResponse(
        status="degraded" if degraded else "healthy",
        timestamp=_now_iso(),
        environment=settings.app_env,
        version=settings.app.version,
        uptime_seconds=round(uptime, 3),
        checks={"database": database},
        rate_limiters=rate_limiters,
    )
