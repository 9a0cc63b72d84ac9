"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit,
  and restarting the process resets every quota.
- Thread-safe: check-and-consume happens under a single lock.
- Each key's window opens on its first request and lasts ``window_seconds``;
  expiry is evaluated lazily on access, never with timers.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, QuotaRecord, RateLimitResult

logger = logging.getLogger(__name__)


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per key.

    Limits requests per key within a window of time (e.g., 100 requests per
    60 seconds). The window is anchored at the key's first request rather
    than at wall-clock boundaries, so a fresh client always gets the full
    window.

    Expired records are reset on their next access. Records of clients that
    never come back are dropped by a sweep that runs at most once per window
    duration, piggybacking on ``consume`` calls.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of allowed points per window.
            window_seconds: Size of the window in seconds.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If limit or window_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, QuotaRecord] = {}
        self._next_sweep_at: float | None = None

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _open_window_locked(self, key: str, now: float) -> QuotaRecord:
        """Return the key's live record, starting a new window if needed."""
        record = self._records.get(key)
        if record is None or record.is_expired(now):
            record = QuotaRecord(
                key=key,
                points_consumed=0,
                window_start=now,
                window_expiry=now + self._window_seconds,
            )
            self._records[key] = record
        return record

    def _sweep_expired_locked(self, now: float) -> None:
        if self._next_sweep_at is not None and now < self._next_sweep_at:
            return

        expired = [key for key, record in self._records.items() if record.is_expired(now)]
        for key in expired:
            del self._records[key]
        self._next_sweep_at = now + self._window_seconds

        if expired:
            logger.debug(
                "rate_limit.sweep",
                extra={"evicted": len(expired), "tracked": len(self._records)},
            )

    def _build_result(self, record: QuotaRecord, *, allowed: bool, now: float) -> RateLimitResult:
        ms_before_next = max(1, int(math.ceil((record.window_expiry - now) * 1000)))
        return RateLimitResult(
            allowed=allowed,
            limit=self._limit,
            remaining=max(0, self._limit - record.points_consumed),
            ms_before_next=ms_before_next,
            reset_at=record.window_expiry,
        )

    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for the provided key.

        Checks the current window usage and, if the request fits, records it.
        A blocked attempt leaves the record untouched.

        Args:
            key: Unique identifier for rate limiting (e.g., client IP).
            cost: Points to consume (default 1).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or cost is invalid.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            now = self._clock()
            self._sweep_expired_locked(now)
            record = self._open_window_locked(key, now)

            if record.points_consumed + cost <= self._limit:
                record.points_consumed += cost
                return self._build_result(record, allowed=True, now=now)

            return self._build_result(record, allowed=False, now=now)

    def get(self, key: str) -> QuotaRecord | None:
        with self._lock:
            record = self._records.get(key)
            if record is None or record.is_expired(self._clock()):
                return None
            return dataclasses.replace(record)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None
