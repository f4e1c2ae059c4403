"""Rate limiting for the HTTP layer.

This module wires the rate limiting adapter into FastAPI as HTTP middleware.

Each ``RateLimit`` owns its own limiter and store, so the api, webhook and
strict policies never share counters. On every checked request the quota
headers are attached; a rejected request gets a 429 response straight from the
middleware and the wrapped handler never runs.

Keys default to the caller's network origin: ``X-Forwarded-For``, then
``X-Real-IP``, then the shared ``"unknown"`` bucket.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from dashboard_api.adapters.rate_limit.base import RateLimitResult
from dashboard_api.adapters.rate_limit.in_memory import (
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    InMemoryRateLimiter,
    monotonic_ms,
)
from dashboard_api.core.config import Settings, parse_csv
from dashboard_api.core.logging import hash_identifier

logger = logging.getLogger(__name__)

KeyGenerator = Callable[[Request], str]

UNKNOWN_KEY = "unknown"
TOO_MANY_REQUESTS = "Too many requests"

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"

RATE_LIMIT_HEADERS = (HEADER_LIMIT, HEADER_REMAINING, HEADER_RESET)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Named window/limit pair."""

    name: str
    window_ms: int
    max_requests: int


API_POLICY = RateLimitPolicy(name="api", window_ms=60_000, max_requests=100)
WEBHOOK_POLICY = RateLimitPolicy(name="webhook", window_ms=60_000, max_requests=30)
STRICT_POLICY = RateLimitPolicy(name="strict", window_ms=60_000, max_requests=10)


def default_key_generator(request: Request) -> str:
    """Derive the limiter key from the request's network origin.

    Args:
        request: Incoming request.

    Returns:
        The ``X-Forwarded-For`` value, else ``X-Real-IP``, else ``"unknown"``.
    """

    return (
        request.headers.get("x-forwarded-for")
        or request.headers.get("x-real-ip")
        or UNKNOWN_KEY
    )


class RateLimit:
    """One independently configured rate limit applied to HTTP requests.

    Attributes:
        policy: Window and limit this instance enforces.
        limiter: Backing limiter owning the per-key store.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        *,
        key_generator: KeyGenerator | None = None,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.policy = policy
        self.limiter = InMemoryRateLimiter(
            window_ms=policy.window_ms,
            max_requests=policy.max_requests,
            clock=clock,
        )
        self._key_generator = key_generator or default_key_generator

    @property
    def name(self) -> str:
        return self.policy.name

    def check(self, request: Request) -> RateLimitResult:
        """Count the request against its key and decide admission.

        Rejection is a normal outcome, reported through ``result.allowed``.

        Args:
            request: Incoming request.

        Returns:
            RateLimitResult for the request's key.
        """

        key = self._key_generator(request) or UNKNOWN_KEY
        result = self.limiter.consume(key)
        if not result.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "limiter": self.name,
                    "key": key,
                    "key_hash": hash_identifier(key),
                    "count": result.count,
                    "limit": result.limit,
                    "retry_after_s": result.retry_after_seconds,
                    "request_path": request.url.path,
                },
            )
        return result

    @staticmethod
    def build_headers(result: RateLimitResult) -> dict[str, str]:
        """Quota headers for a checked request (``Retry-After`` only when rejected)."""

        headers = {
            HEADER_LIMIT: str(result.limit),
            HEADER_REMAINING: str(result.remaining),
            HEADER_RESET: str(result.reset_seconds),
        }
        if not result.allowed:
            headers[HEADER_RETRY_AFTER] = str(result.retry_after_seconds)
        return headers

    @classmethod
    def build_rejection(cls, result: RateLimitResult) -> JSONResponse:
        """429 response for a rejected request."""

        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": TOO_MANY_REQUESTS, "retryAfter": result.retry_after_seconds},
            headers=cls.build_headers(result),
        )

    def middleware(self, *path_prefixes: str):
        """Build an HTTP middleware enforcing this limit.

        Args:
            path_prefixes: Paths the limit applies to; all paths when omitted.

        Returns:
            Coroutine function usable with ``app.middleware("http")``.
        """

        prefixes = tuple(path_prefixes)

        async def rate_limit_middleware(request: Request, call_next) -> Response:
            if prefixes and not any(_path_matches(request.url.path, p) for p in prefixes):
                return await call_next(request)

            result = self.check(request)
            if not result.allowed:
                return self.build_rejection(result)

            response: Response = await call_next(request)
            # A more specific limit further down the stack already reported its quota
            for name, value in self.build_headers(result).items():
                response.headers.setdefault(name, value)
            return response

        rate_limit_middleware.__name__ = f"{self.name}_rate_limit_middleware"
        return rate_limit_middleware


def _path_matches(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def create_rate_limit(
    *,
    window_ms: int,
    max_requests: int,
    key_generator: KeyGenerator | None = None,
    name: str = "custom",
    clock: Callable[[], int] = monotonic_ms,
) -> RateLimit:
    """Create a rate limit with an ad-hoc policy.

    Raises:
        ValueError: If window_ms or max_requests are not positive integers.
    """

    policy = RateLimitPolicy(name=name, window_ms=window_ms, max_requests=max_requests)
    return RateLimit(policy, key_generator=key_generator, clock=clock)


def create_api_rate_limit(**kwargs) -> RateLimit:
    """General API limit: 100 requests per minute."""
    return RateLimit(API_POLICY, **kwargs)


def create_webhook_rate_limit(**kwargs) -> RateLimit:
    """Automation webhook limit: 30 requests per minute."""
    return RateLimit(WEBHOOK_POLICY, **kwargs)


def create_strict_rate_limit(**kwargs) -> RateLimit:
    """Sensitive endpoint limit: 10 requests per minute."""
    return RateLimit(STRICT_POLICY, **kwargs)


class RateLimitRegistry:
    """Named rate limits of one application and their background sweepers."""

    def __init__(
        self,
        limits: Iterable[RateLimit] = (),
        *,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._limits: dict[str, RateLimit] = {}
        self._sweep_interval_seconds = sweep_interval_seconds
        for limit in limits:
            self.register(limit)

    def __getitem__(self, name: str) -> RateLimit:
        return self._limits[name]

    def __contains__(self, name: object) -> bool:
        return name in self._limits

    def __iter__(self):
        return iter(self._limits.values())

    def register(self, limit: RateLimit) -> None:
        if limit.name in self._limits:
            raise ValueError(f"rate limit {limit.name!r} already registered")
        self._limits[limit.name] = limit

    def start(self) -> None:
        """Start the sweeper of every registered limit."""

        for limit in self._limits.values():
            limit.limiter.start_sweeper(self._sweep_interval_seconds)
        logger.info(
            "rate_limit.sweepers_started",
            extra={
                "limiters": sorted(self._limits),
                "interval_s": self._sweep_interval_seconds,
            },
        )

    def stop(self) -> None:
        for limit in self._limits.values():
            limit.limiter.stop_sweeper()

    def stats(self) -> dict[str, dict[str, int]]:
        return {name: limit.limiter.stats() for name, limit in self._limits.items()}


def build_rate_limit_registry(app_settings: Settings) -> RateLimitRegistry:
    """Create the api, webhook and strict limits for one application."""

    return RateLimitRegistry(
        [
            create_api_rate_limit(),
            create_webhook_rate_limit(),
            create_strict_rate_limit(),
        ],
        sweep_interval_seconds=app_settings.rate_limit.sweep_interval_seconds,
    )


def install_rate_limits(app, registry: RateLimitRegistry, app_settings: Settings) -> None:
    """Mount the rate limit middleware on the application.

    Starlette runs the most recently added middleware first, so the general
    api limit (added last) is checked before the webhook and strict limits.
    """

    strict_paths = parse_csv(app_settings.rate_limit.strict_paths)
    if strict_paths:
        app.middleware("http")(registry["strict"].middleware(*strict_paths))
    app.middleware("http")(registry["webhook"].middleware("/api/webhooks"))
    app.middleware("http")(registry["api"].middleware("/api"))
