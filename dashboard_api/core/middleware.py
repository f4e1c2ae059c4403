"""HTTP middleware for request logging, correlation and security headers.

Usage:
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(security_headers_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from dashboard_api.core.config import settings
from dashboard_api.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), interest-cohort=()",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


async def request_logging_middleware(request: Request, call_next) -> Response:
    """Correlate and log every request.

    Reuses the caller's ``X-Request-ID`` (LOG_REQUEST_ID_HEADER) or mints a
    UUID4, binds it to the logging context, and logs ``http.request`` on the
    way in and ``http.response`` on the way out. Responses are logged at
    warning from 400 and at error from 500; an exception escaping the app is
    logged as ``http.error`` and re-raised for the exception handlers.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)

    request_fields = {
        "request_method": request.method,
        "request_path": request.url.path,
    }
    logger.info(
        "http.request",
        extra={**request_fields, "user_agent": request.headers.get("user-agent", "unknown")},
    )

    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    except Exception as exc:
        logger.error(
            "http.error",
            extra={**request_fields, "error_type": type(exc).__name__, "error_msg": str(exc)},
        )
        raise
    finally:
        clear_request_id()
    duration_ms = (time.perf_counter() - started) * 1000

    logger.log(
        _level_for_status(response.status_code),
        "http.response",
        extra={
            **request_fields,
            "request_id": request_id,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "content_length": response.headers.get("content-length"),
        },
    )

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


def _level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


async def security_headers_middleware(request: Request, call_next) -> Response:
    """Add browser hardening headers to every response.

    ``Strict-Transport-Security`` is only sent in production, where the API
    is served over HTTPS.
    """

    response: Response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = HSTS_VALUE
    return response
