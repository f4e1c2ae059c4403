"""Pydantic schemas for health and readiness responses."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: str = Field(..., description="ISO-8601 UTC timestamp of the check.")


class LivenessResponse(BaseModel):
    alive: bool = True


class ReadinessResponse(BaseModel):
    """Readiness of the service to accept traffic.

    ``mode`` is ``"demo"`` when the service runs without a database, and
    ``reason`` explains why it is not ready.
    """

    ready: bool
    mode: Literal["demo"] | None = None
    reason: str | None = None


class DependencyCheck(BaseModel):
    status: Literal["configured", "not_configured"]


class RateLimiterStats(BaseModel):
    window_ms: int
    max_requests: int
    entries: int = Field(..., description="Keys currently tracked by the limiter.")


class DetailedHealthResponse(BaseModel):
    """System health for monitoring dashboards."""

    status: Literal["healthy", "degraded"]
    timestamp: str
    environment: str
    version: str
    uptime_seconds: float
    checks: dict[str, DependencyCheck]
    rate_limiters: dict[str, RateLimiterStats] = Field(default_factory=dict)
