"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock guards the store for both request checks and the
  background sweep.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from dashboard_api.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitEntry,
    RateLimitResult,
)

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


def monotonic_ms() -> int:
    """Monotonic clock in whole milliseconds."""
    return time.monotonic_ns() // 1_000_000


class InMemoryRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests per key over a fixed window.

    A key's window starts with its first request and lasts ``window_ms``. Every
    request inside the window increments the counter before it is compared
    with ``max_requests``, so a rejected request still spends a slot and
    immediate retries keep being counted.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        window_ms: int,
        max_requests: int,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            window_ms: Window length in milliseconds.
            max_requests: Maximum admitted requests per key per window.
            clock: Time source returning milliseconds.

        Raises:
            ValueError: If window_ms or max_requests are invalid.
        """
        if not _is_positive_int(window_ms):
            raise ValueError("window_ms must be a positive integer")
        if not _is_positive_int(max_requests):
            raise ValueError("max_requests must be a positive integer")

        self._window_ms = window_ms
        self._max_requests = max_requests
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, RateLimitEntry] = {}
        self._sweeper: threading.Thread | None = None
        self._stop_sweeper = threading.Event()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryRateLimiter(window_ms={self._window_ms}, "
            f"max_requests={self._max_requests}, entries={len(self._entries)})"
        )

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def consume(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and decide admission.

        Args:
            key: Non-empty identifier the quota is tracked against.

        Returns:
            RateLimitResult with the decision and the quota metadata.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now):
                entry = RateLimitEntry(count=1, window_end_ms=now + self._window_ms)
                self._entries[key] = entry
            else:
                entry.count += 1

            count = entry.count
            window_end_ms = entry.window_end_ms

        allowed = count <= self._max_requests
        reset_seconds = math.ceil((window_end_ms - now) / 1000)
        return RateLimitResult(
            allowed=allowed,
            key=key,
            count=count,
            limit=self._max_requests,
            remaining=max(0, self._max_requests - count),
            reset_seconds=reset_seconds,
            retry_after_seconds=None if allowed else reset_seconds,
        )

    def purge_expired(self) -> int:
        """Remove every entry whose window has already ended.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired_keys = [k for k, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]
            remaining = len(self._entries)

        if expired_keys:
            logger.debug(
                "rate_limit.sweep",
                extra={"removed": len(expired_keys), "entries": remaining},
            )
        return len(expired_keys)

    def reset(self) -> None:
        """Drop all tracked keys."""
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "window_ms": self._window_ms,
                "max_requests": self._max_requests,
                "entries": len(self._entries),
            }

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def start_sweeper(self, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        """Start the background thread purging expired entries.

        The sweep only bounds memory held by keys that stopped sending
        requests; stale entries are also replaced lazily on next access.

        Args:
            interval_seconds: Delay between two sweeps.

        Raises:
            ValueError: If interval_seconds is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.sweeper_running:
            return

        self._stop_sweeper.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            args=(interval_seconds,),
            name="rate-limit-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def stop_sweeper(self, timeout: float | None = 5.0) -> None:
        """Stop the background sweeper and wait for it to exit."""
        sweeper = self._sweeper
        if sweeper is None:
            return
        self._stop_sweeper.set()
        sweeper.join(timeout)
        self._sweeper = None

    def _sweep_loop(self, interval_seconds: float) -> None:
        while not self._stop_sweeper.wait(interval_seconds):
            self.purge_expired()


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
