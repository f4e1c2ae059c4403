"""Tests for global exception handlers.

Validates that application errors map to the right HTTP status codes with a
consistent error body, and that unexpected errors never leak internals.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dashboard_api.core.errors import AppError, AuthenticationAppError
from dashboard_api.core.exception_handlers import (
    general_exception_handler,
    setup_exception_handlers,
)


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    @pytest.mark.parametrize(
        "error, expected_status",
        [
            (AppError(code="bad_input", message="Bad input"), 400),
            (AuthenticationAppError(code="invalid_webhook_secret", message="Nope"), 401),
        ],
    )
    def test_status_codes(
        self, client: TestClient, app_with_handlers: FastAPI, error: AppError, expected_status: int
    ) -> None:
        @app_with_handlers.get("/boom")
        async def endpoint():
            raise error

        response = client.get("/boom")

        assert response.status_code == expected_status
        data = response.json()
        assert data["error"]["code"] == error.code
        assert data["error"]["message"] == error.message
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_details_are_included_when_present(self, client: TestClient, app_with_handlers: FastAPI) -> None:
        @app_with_handlers.get("/details")
        async def endpoint():
            raise AppError(
                code="bad_event",
                message="Unknown event",
                details={"hint": "Use video-analyzed or channel-analyzed"},
            )

        data = client.get("/details").json()

        assert data["error"]["details"]["hint"].startswith("Use video-analyzed")


class TestGeneralExceptionHandler:
    def test_registered(self, app_with_handlers: FastAPI) -> None:
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_returns_generic_body(self) -> None:
        request = AsyncMock()
        request.url.path = "/api/webhooks/ping"
        request.method = "POST"

        exc = RuntimeError("database connection failed")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "database connection" not in data["error"]["message"]
        assert "RuntimeError" not in bytes(response.body).decode()

    def test_unexpected_route_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI) -> None:
        @app_with_handlers.get("/crash")
        async def endpoint():
            raise KeyError("secret-internal-key")

        response = client.get("/crash")

        assert response.status_code == 500
        assert "secret-internal-key" not in response.text
