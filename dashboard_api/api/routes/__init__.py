from __future__ import annotations

from dashboard_api.api.routes.health import router as health_router
from dashboard_api.api.routes.webhooks import router as webhooks_router

__all__ = ["health_router", "webhooks_router"]
