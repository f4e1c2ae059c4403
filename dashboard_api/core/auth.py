"""Webhook secret authentication.

Automation webhooks (n8n) must present the shared secret configured in
APP_WEBHOOK_SECRET. The secret is accepted from, in order:
- the ``X-Webhook-Secret`` header
- an ``Authorization: Bearer <secret>`` header
- a ``secret`` query parameter

When no secret is configured, authentication is skipped (development setups).
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Request

from dashboard_api.core.config import settings
from dashboard_api.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_webhook_secret(request: Request) -> str | None:
    """Return the secret supplied by the caller, if any.

    Examples:
        X-Webhook-Secret: s3cret        -> "s3cret"
        Authorization: Bearer s3cret    -> "s3cret"
        POST /api/webhooks/ping?secret=s3cret -> "s3cret"
    """

    header_secret = request.headers.get("x-webhook-secret")
    if header_secret:
        return header_secret

    authorization = request.headers.get("authorization")
    if authorization and authorization.startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX):].strip()
        if token:
            return token

    return request.query_params.get("secret") or None


def validate_webhook_secret(provided_secret: str | None, expected_secret: str | None) -> None:
    """Compare the provided secret with the configured one.

    Pure validation logic without FastAPI dependencies for easy testing.

    Args:
        provided_secret: Secret extracted from the request.
        expected_secret: Configured secret; None disables the check.

    Raises:
        AuthenticationAppError: If the secret is missing or does not match.
    """

    if not expected_secret:
        return

    if not provided_secret:
        logger.warning("webhook_auth.rejected", extra={"reason": "missing_secret"})
        raise AuthenticationAppError(
            code="missing_webhook_secret",
            message="Unauthorized: Missing webhook secret",
        )

    if not hmac.compare_digest(provided_secret.encode(), expected_secret.encode()):
        logger.warning(
            "webhook_auth.rejected",
            extra={"reason": "invalid_secret", "secret_length": len(provided_secret)},
        )
        raise AuthenticationAppError(
            code="invalid_webhook_secret",
            message="Unauthorized: Invalid webhook secret",
        )


async def verify_webhook_secret(request: Request) -> None:
    """FastAPI dependency guarding webhook routes.

    Usage:
        router = APIRouter(dependencies=[Depends(verify_webhook_secret)])

    Raises:
        AuthenticationAppError: 401 when the secret is missing or invalid.
    """

    expected = settings.app.webhook_secret
    if not expected:
        logger.warning(
            "webhook_auth.skipped",
            extra={"reason": "webhook_secret_not_configured"},
        )
        return

    validate_webhook_secret(extract_webhook_secret(request), expected)
    logger.debug("webhook_auth.success")
