"""Application factory for the dashboard API.

Centralizes app construction (metadata, middleware, handlers, routers,
rate limits) to keep it testable: every call builds fresh limiters, so apps
created in different tests never share quota state.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard_api.api.routes import health_router, webhooks_router
from dashboard_api.core.config import Settings, parse_csv, settings
from dashboard_api.core.exception_handlers import setup_exception_handlers
from dashboard_api.core.logging import configure_logging
from dashboard_api.core.middleware import request_logging_middleware, security_headers_middleware
from dashboard_api.core.openapi import apply_openapi_customizations
from dashboard_api.core.rate_limit import (
    RATE_LIMIT_HEADERS,
    RateLimitRegistry,
    build_rate_limit_registry,
    install_rate_limits,
)

logger = logging.getLogger(__name__)

DEV_ORIGINS = ["http://localhost:3000", "http://localhost:3001", "http://localhost:5173"]
DEFAULT_PRODUCTION_ORIGINS = ["https://youtube-learning.app"]


def _allowed_origins(app_settings: Settings) -> list[str]:
    if app_settings.is_production:
        return parse_csv(app_settings.app.allowed_origins) or DEFAULT_PRODUCTION_ORIGINS
    return DEV_ORIGINS


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry: RateLimitRegistry = app.state.rate_limits
    registry.start()
    logger.info(
        "app.started",
        extra={
            "environment": settings.app_env,
            "rate_limit_enabled": settings.rate_limit.enabled,
            "database_configured": settings.app.database_configured,
        },
    )
    try:
        yield
    finally:
        registry.stop()
        logger.info("app.stopped")


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="YouTube Dashboard API",
        description=(
            "Backend of the YouTube analysis dashboard. Every /api route is "
            "rate limited per caller and reports its quota through "
            "X-RateLimit-* headers."
        ),
        version=cfg.app.version,
        lifespan=lifespan,
    )
    app.state.started_at = time.monotonic()
    app.state.rate_limits = build_rate_limit_registry(cfg)

    # Middleware: the last one added runs first
    if cfg.rate_limit.enabled:
        install_rate_limits(app, app.state.rate_limits, cfg)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(cfg),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Webhook-Secret"],
        expose_headers=[cfg.log.request_id_header, *RATE_LIMIT_HEADERS],
        max_age=86400,
    )
    app.middleware("http")(security_headers_middleware)
    app.middleware("http")(request_logging_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(webhooks_router, prefix="/api")

    apply_openapi_customizations(app)

    return app
