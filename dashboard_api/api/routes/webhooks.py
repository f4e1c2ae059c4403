from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from dashboard_api.core.auth import verify_webhook_secret
from dashboard_api.schemas.webhooks import WebhookAck, WebhookPing

logger = logging.getLogger(__name__)

# Rate limits for /api/webhooks are enforced by middleware mounted in the app factory
router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"],
    dependencies=[Depends(verify_webhook_secret)],
)


@router.post("/ping", response_model=WebhookAck)
async def webhook_ping(payload: WebhookPing | None = None) -> WebhookAck:
    """Acknowledge a connectivity check from the automation workflow.

    Args:
        payload: Optional ping body carrying an event name.

    Returns:
        WebhookAck echoing the event name.
    """

    event = payload.event if payload else None
    logger.info("webhook.ping", extra={"event": event})
    return WebhookAck(event=event)
