"""Rate limiting middleware gating every inbound request.

This module wires the rate limiting adapter into the HTTP pipeline.

Design goals:
- Explicit state: the limiter instance is built once by the app factory and
  handed to the gate, so tests construct their own isolated instances.
- Swap-friendly: storage backend can be replaced (e.g., Redis) behind
  ``AbstractRateLimiter``.
- Quota exhaustion is a normal outcome (a ``RateLimitDecision``), never an
  exception leaking past the middleware.

Rate limiting strategy:
- One fixed-window quota per client address.
- Clients without a resolvable address share the ``anonymous`` bucket.
- Quota headers are sent on 429 responses only; allowed requests pass through
  untouched.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.core.config import RateLimitSettings
from app.core.errors import ServiceUnavailableAppError
from app.core.exception_handlers import app_error_handler
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)

RATE_LIMIT_ERROR = "Too many requests"
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_reset_timestamp(moment: datetime) -> str:
    """Render ``moment`` as ISO-8601 UTC with milliseconds, e.g. ``2026-10-18T12:00:59.123Z``."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of gating one request.

    Attributes:
        allowed: Whether the request may continue down the pipeline.
        key: Client key the request was accounted under.
        decided_at: UTC time the decision was taken.
        result: Limiter outcome; None when the limiter itself failed.
    """

    allowed: bool
    key: str
    decided_at: datetime
    result: RateLimitResult | None = None

    @property
    def quota_exceeded(self) -> bool:
        return not self.allowed and self.result is not None

    @property
    def retry_after_seconds(self) -> int:
        """Seconds until a new point is available, rounded half-up, never below 1."""
        ms_before_next = self.result.ms_before_next if self.result else 0
        return max(1, int(math.floor(ms_before_next / 1000 + 0.5)))

    @property
    def reset_at(self) -> datetime:
        ms_before_next = self.result.ms_before_next if self.result else 0
        return self.decided_at + timedelta(milliseconds=ms_before_next)

    def headers(self) -> dict[str, str]:
        """Quota headers for a rejected request; allowed requests get none."""
        if self.allowed or self.result is None:
            return {}
        return {
            "Retry-After": str(self.retry_after_seconds),
            "X-RateLimit-Limit": str(self.result.limit),
            "X-RateLimit-Remaining": str(self.result.remaining),
            "X-RateLimit-Reset": format_reset_timestamp(self.reset_at),
        }

    def to_response(self) -> JSONResponse:
        """Build the 429 response for a rejected request."""
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": RATE_LIMIT_ERROR, "message": RATE_LIMIT_MESSAGE},
            headers=self.headers(),
        )


class RateLimitGate:
    """HTTP middleware enforcing a per-client request quota.

    Usage:
        gate = RateLimitGate(limiter)
        app.middleware("http")(gate)

    ``handle`` takes the decision; calling the gate applies it to the
    pipeline (forward on success, respond 429 on exhaustion).
    """

    def __init__(
        self,
        limiter: AbstractRateLimiter,
        *,
        fallback_key: str = "anonymous",
        trust_forwarded_for: bool = False,
        fail_open: bool = True,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.limiter = limiter
        self.fallback_key = fallback_key
        self.trust_forwarded_for = trust_forwarded_for
        self.fail_open = fail_open
        self._now = now

    @classmethod
    def from_settings(
        cls, cfg: RateLimitSettings, limiter: AbstractRateLimiter | None = None
    ) -> "RateLimitGate":
        if limiter is None:
            limiter = build_rate_limiter(cfg)
        return cls(
            limiter,
            fallback_key=cfg.fallback_key,
            trust_forwarded_for=cfg.trust_forwarded_for,
            fail_open=cfg.fail_open,
        )

    def client_key(self, request: Request) -> str:
        """Resolve the quota key for a request.

        The first X-Forwarded-For hop is only honoured when the service is
        configured to sit behind a trusted proxy.
        """
        if self.trust_forwarded_for:
            forwarded = request.headers.get("x-forwarded-for", "")
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

        if request.client and request.client.host:
            return request.client.host
        return self.fallback_key

    def handle(self, request: Request) -> RateLimitDecision:
        """Consume one point for the requesting client and decide its fate.

        Args:
            request: Incoming request.

        Returns:
            RateLimitDecision. On limiter faults the decision follows the
            fail-open/fail-closed policy and carries no result.
        """
        key = self.client_key(request)
        key_hash = hash_identifier(key)

        try:
            result = self.limiter.consume(key)
        except Exception as exc:
            logger.exception(
                "rate_limit.error",
                extra={
                    "key_hash": key_hash,
                    "error_type": type(exc).__name__,
                    "fail_open": self.fail_open,
                },
            )
            return RateLimitDecision(allowed=self.fail_open, key=key, decided_at=self._now())

        decision = RateLimitDecision(
            allowed=result.allowed, key=key, decided_at=self._now(), result=result
        )

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                },
            )
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "retry_after_s": decision.retry_after_seconds,
                    "request_path": request.url.path,
                },
            )
        return decision

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        decision = self.handle(request)
        if decision.allowed:
            return await call_next(request)

        if decision.quota_exceeded:
            return decision.to_response()

        return await app_error_handler(
            request,
            ServiceUnavailableAppError(
                code="rate_limiter_unavailable",
                message="Rate limiter unavailable. Please try again later.",
            ),
        )


def build_rate_limiter(cfg: RateLimitSettings) -> AbstractRateLimiter:
    """Create the process-wide quota store from configuration."""
    return InMemoryFixedWindowRateLimiter(
        limit=cfg.points,
        window_seconds=cfg.duration_seconds,
    )
