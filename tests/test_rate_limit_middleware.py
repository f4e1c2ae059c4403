"""Tests for the HTTP rate limit middleware.

A minimal FastAPI app is built per test with a single limit mounted, so each
test starts from an empty store.
"""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import Mock

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from dashboard_api.core.logging import hash_identifier
from dashboard_api.core.rate_limit import (
    RateLimit,
    create_api_rate_limit,
    create_rate_limit,
    create_strict_rate_limit,
    create_webhook_rate_limit,
    default_key_generator,
)


def _build_app(limit: RateLimit, *prefixes: str) -> tuple[FastAPI, Mock]:
    app = FastAPI()
    handler_calls = Mock()

    @app.get("/test")
    async def endpoint() -> dict:
        handler_calls()
        return {"ok": True}

    @app.get("/open")
    async def open_endpoint() -> dict:
        return {"ok": True}

    app.middleware("http")(limit.middleware(*prefixes))
    return app, handler_calls


def _client(limit: RateLimit, *prefixes: str) -> tuple[TestClient, Mock]:
    app, handler_calls = _build_app(limit, *prefixes)
    return TestClient(app), handler_calls


def _ip(address: str) -> dict[str, str]:
    return {"x-forwarded-for": address}


class TestAdmission:
    def test_allows_requests_under_the_limit(self) -> None:
        client, _ = _client(create_rate_limit(window_ms=60_000, max_requests=5))

        for _ in range(5):
            assert client.get("/test", headers=_ip("192.168.1.1")).status_code == 200

    def test_fourth_request_is_rejected(self) -> None:
        client, handler_calls = _client(create_rate_limit(window_ms=60_000, max_requests=3))

        responses = [client.get("/test", headers=_ip("192.168.1.2")) for _ in range(4)]

        assert [r.status_code for r in responses] == [200, 200, 200, 429]
        assert [r.headers["X-RateLimit-Remaining"] for r in responses[:3]] == ["2", "1", "0"]

        blocked = responses[3]
        body = blocked.json()
        assert body["error"] == "Too many requests"
        assert isinstance(body["retryAfter"], int)
        assert 1 <= body["retryAfter"] <= 60
        assert handler_calls.call_count == 3

    def test_rejection_carries_quota_and_retry_headers(self) -> None:
        client, _ = _client(create_rate_limit(window_ms=30_000, max_requests=1))
        client.get("/test", headers=_ip("192.168.1.5"))

        blocked = client.get("/test", headers=_ip("192.168.1.5"))

        assert blocked.status_code == 429
        retry_after = int(blocked.headers["Retry-After"])
        assert 0 < retry_after <= 30
        assert blocked.headers["X-RateLimit-Reset"] == blocked.headers["Retry-After"]
        assert blocked.headers["X-RateLimit-Limit"] == "1"
        assert blocked.headers["X-RateLimit-Remaining"] == "0"
        assert blocked.json()["retryAfter"] == retry_after

    def test_admitted_response_has_quota_headers_only(self) -> None:
        client, _ = _client(create_rate_limit(window_ms=60_000, max_requests=10))

        response = client.get("/test", headers=_ip("192.168.1.3"))

        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        assert response.headers["X-RateLimit-Reset"] == "60"
        assert "Retry-After" not in response.headers

    def test_remaining_counts_down(self) -> None:
        client, _ = _client(create_rate_limit(window_ms=60_000, max_requests=5))

        for i in range(5):
            response = client.get("/test", headers=_ip("192.168.1.201"))
            assert int(response.headers["X-RateLimit-Remaining"]) == 4 - i

    def test_admits_again_after_window(self, clock: Mock) -> None:
        client, _ = _client(create_rate_limit(window_ms=1_000, max_requests=2, clock=clock))
        headers = _ip("192.168.1.4")

        client.get("/test", headers=headers)
        client.get("/test", headers=headers)
        assert client.get("/test", headers=headers).status_code == 429

        clock.return_value += 1_100
        response = client.get("/test", headers=headers)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "1"


class TestKeys:
    def test_tracks_different_ips_separately(self) -> None:
        client, _ = _client(create_rate_limit(window_ms=60_000, max_requests=2))

        for _ in range(2):
            client.get("/test", headers=_ip("10.0.0.1"))

        assert client.get("/test", headers=_ip("10.0.0.1")).status_code == 429
        assert client.get("/test", headers=_ip("10.0.0.2")).status_code == 200

    def test_custom_key_generator(self) -> None:
        limit = create_rate_limit(
            window_ms=60_000,
            max_requests=2,
            key_generator=lambda request: request.headers.get("x-api-key") or "default",
        )
        client, _ = _client(limit)
        key_1 = {"x-api-key": "key-1", "x-forwarded-for": "192.168.1.1"}
        key_2 = {"x-api-key": "key-2", "x-forwarded-for": "192.168.1.1"}

        for _ in range(2):
            assert client.get("/test", headers=key_1).status_code == 200

        assert client.get("/test", headers=key_1).status_code == 429
        assert client.get("/test", headers=key_2).status_code == 200

    def test_uses_real_ip_as_fallback(self) -> None:
        client, _ = _client(create_rate_limit(window_ms=60_000, max_requests=2))

        for _ in range(2):
            assert client.get("/test", headers={"x-real-ip": "172.16.0.1"}).status_code == 200

        assert client.get("/test", headers={"x-real-ip": "172.16.0.1"}).status_code == 429
        assert client.get("/test", headers={"x-real-ip": "172.16.0.2"}).status_code == 200

    def test_requests_without_origin_share_unknown_bucket(self) -> None:
        limit = create_rate_limit(window_ms=60_000, max_requests=2)
        client, _ = _client(limit)

        for _ in range(2):
            assert client.get("/test").status_code == 200

        assert client.get("/test").status_code == 429
        assert limit.limiter.stats()["entries"] == 1

    def test_default_key_generator_priority(self) -> None:
        def request_with(headers: dict[str, str]) -> Request:
            raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
            return Request({"type": "http", "headers": raw})

        both = {"X-Forwarded-For": "1.1.1.1", "X-Real-IP": "2.2.2.2"}
        assert default_key_generator(request_with(both)) == "1.1.1.1"
        assert default_key_generator(request_with({"X-Real-IP": "2.2.2.2"})) == "2.2.2.2"
        assert default_key_generator(request_with({})) == "unknown"


class TestPathPrefixes:
    def test_paths_outside_prefix_are_not_counted(self) -> None:
        limit = create_rate_limit(window_ms=60_000, max_requests=1)
        client, _ = _client(limit, "/test")

        for _ in range(3):
            response = client.get("/open", headers=_ip("10.1.1.1"))
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers

        assert client.get("/test", headers=_ip("10.1.1.1")).status_code == 200
        assert client.get("/test", headers=_ip("10.1.1.1")).status_code == 429

    def test_prefix_does_not_match_partial_segment(self) -> None:
        limit = create_rate_limit(window_ms=60_000, max_requests=1)
        client, _ = _client(limit, "/te")

        for _ in range(2):
            assert client.get("/test").status_code == 200


class TestPreconfigured:
    @pytest.mark.parametrize(
        "factory, expected_limit",
        [
            (create_api_rate_limit, "100"),
            (create_webhook_rate_limit, "30"),
            (create_strict_rate_limit, "10"),
        ],
    )
    def test_limits(self, factory, expected_limit: str) -> None:
        client, _ = _client(factory())

        response = client.get("/test", headers=_ip("192.168.1.100"))

        assert response.headers["X-RateLimit-Limit"] == expected_limit
        assert response.headers["X-RateLimit-Reset"] == "60"

    def test_each_factory_call_gets_its_own_store(self) -> None:
        first = create_strict_rate_limit()
        second = create_strict_rate_limit()

        first.limiter.consume("k")

        assert len(first.limiter) == 1
        assert len(second.limiter) == 0

    def test_invalid_policy_fails_at_construction(self) -> None:
        with pytest.raises(ValueError):
            create_rate_limit(window_ms=0, max_requests=10)
        with pytest.raises(ValueError):
            create_rate_limit(window_ms=60_000, max_requests=0)


class TestLogging:
    def test_rejection_logs_one_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        client, _ = _client(create_rate_limit(window_ms=60_000, max_requests=1, name="tiny"))

        with caplog.at_level(logging.WARNING, logger="dashboard_api.core.rate_limit"):
            client.get("/test", headers=_ip("192.168.9.9"))
            client.get("/test", headers=_ip("192.168.9.9"))

        records = [r for r in caplog.records if r.getMessage() == "rate_limit.exceeded"]
        assert len(records) == 1
        record = records[0]
        assert record.levelno == logging.WARNING
        assert record.limiter == "tiny"
        assert record.count == 2
        assert record.limit == 1
        assert record.key == "192.168.9.9"
        assert record.key_hash == hash_identifier("192.168.9.9")


@pytest.mark.asyncio
async def test_concurrent_requests_admit_exactly_the_limit() -> None:
    app, handler_calls = _build_app(create_rate_limit(window_ms=60_000, max_requests=5))
    transport = httpx.ASGITransport(app=app)

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        responses = await asyncio.gather(
            *(client.get("/test", headers=_ip("192.168.1.200")) for _ in range(10))
        )

    statuses = [r.status_code for r in responses]
    assert statuses.count(200) == 5
    assert statuses.count(429) == 5
    assert handler_calls.call_count == 5
