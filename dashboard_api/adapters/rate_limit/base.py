"""Rate limiter interfaces.

The API layer depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped later with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class RateLimitEntry:
    """Quota state for one key within its current window.

    Attributes:
        count: Requests counted in the current window, including rejected ones.
        window_end_ms: Clock value (milliseconds) at which the window expires.
    """

    count: int
    window_end_ms: int

    def is_expired(self, now_ms: int) -> bool:
        """Expired from the window-end millisecond on.

        Deliberately not a strict `<`: the boundary millisecond opens a new
        window, so a rejection never reports Retry-After: 0.
        """

        return self.window_end_ms <= now_ms


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single quota check.

    Attributes:
        allowed: Whether the request is admitted.
        key: Key the request was counted against.
        count: Counter value after this request was counted.
        limit: Max requests per window.
        remaining: Quota left in the current window (never negative).
        reset_seconds: Seconds until the window resets, rounded up.
        retry_after_seconds: Suggested wait in seconds when rejected.
    """

    allowed: bool
    key: str
    count: int
    limit: int
    remaining: int
    reset_seconds: int
    retry_after_seconds: int | None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def consume(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and decide whether it is admitted.

        Args:
            key: Identity the quota is tracked against (IP, API key, ...).

        Returns:
            RateLimitResult describing the decision and quota state.
        """
        raise NotImplementedError

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop entries whose window has ended.

        Returns:
            Number of entries removed.
        """
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> dict[str, int]:
        """Return lightweight limiter metrics without exposing keys."""
        raise NotImplementedError
