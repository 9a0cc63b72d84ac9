"""Rate limiter interfaces.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the quota store can later move to a shared backend (e.g., Redis) without
touching the middleware.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class QuotaRecord:
    """Accounting state for one client key.

    Attributes:
        key: Client identifier the quota belongs to.
        points_consumed: Points registered within the current window.
        window_start: UNIX epoch seconds when the window opened.
        window_expiry: UNIX epoch seconds when the window closes.
    """

    key: str
    points_consumed: int
    window_start: float
    window_expiry: float

    def is_expired(self, now: float) -> bool:
        return now >= self.window_expiry


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max points per window.
        remaining: Points left in the current window after this attempt
            (0 when blocked).
        ms_before_next: Milliseconds until the window resets (always >= 1).
        reset_at: UNIX epoch seconds when the current window resets.
    """

    allowed: bool
    limit: int
    remaining: int
    ms_before_next: int
    reset_at: float


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for a given key.

        Args:
            key: Unique identifier (e.g., client IP address).
            cost: Points to consume (default 1).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> QuotaRecord | None:
        """Return a snapshot of the live quota record for ``key``, if any."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Forget ``key``'s quota. Returns True if a record was removed."""
        raise NotImplementedError
