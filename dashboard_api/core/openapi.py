"""OpenAPI customization.

Enriches the generated schema with:
- the ``X-Webhook-Secret`` security scheme, required on webhook routes only
- tag descriptions
- the 429 response (with quota headers) on every rate limited route
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from dashboard_api.core.rate_limit import HEADER_RETRY_AFTER, RATE_LIMIT_HEADERS

_TAGS = [
    {"name": "Health", "description": "Liveness, readiness and detailed health checks."},
    {"name": "Webhooks", "description": "Callbacks from the analysis automation workflow."},
]

_INTEGER_HEADER = {"schema": {"type": "integer"}}


def _too_many_requests_response() -> Dict[str, Any]:
    headers = {name: dict(_INTEGER_HEADER) for name in (*RATE_LIMIT_HEADERS, HEADER_RETRY_AFTER)}
    return {
        "description": "Too many requests",
        "headers": headers,
        "content": {
            "application/json": {
                "schema": {
                    "type": "object",
                    "properties": {
                        "error": {"type": "string", "example": "Too many requests"},
                        "retryAfter": {"type": "integer", "example": 42},
                    },
                }
            }
        },
    }


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with security, tags and 429 docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "WebhookSecret",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-Webhook-Secret",
                "description": "Shared secret configured for the automation workflow.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in _TAGS:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if not path.startswith("/api/"):
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                method_obj.setdefault("responses", {}).setdefault(
                    "429", _too_many_requests_response()
                )
                if path.startswith("/api/webhooks/"):
                    method_obj["security"] = [{"WebhookSecret": []}]

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
