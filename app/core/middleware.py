"""HTTP middleware for request correlation, access logging and security headers.

The request id middleware:
- Accepts the incoming correlation header or generates a UUID
- Stores request_id in contextvars for access throughout the request lifecycle
- Injects request_id and total duration into response headers
- Logs one ``request.completed`` line per request (client address hashed)
- Clears context after request completion to prevent context leaks

Both are registered outside the rate limiter, so throttled requests are
correlated, logged and hardened like any other.

Usage:
    app.middleware("http")(build_request_id_middleware("X-Request-ID"))
    app.middleware("http")(security_headers_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response

from app.core.logging import clear_request_id, hash_identifier, set_request_id

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

# Browser hardening headers set on every response (the defaults of the
# Express ``helmet`` middleware, minus Content-Security-Policy which would
# block the Swagger UI assets served from a CDN).
SECURITY_HEADERS: dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


def build_request_id_middleware(header_name: str) -> Callable[[Request, CallNext], Awaitable[Response]]:
    """Create the request id / access log middleware bound to ``header_name``.

    Args:
        header_name: Header carrying the correlation id (``LOG_REQUEST_ID_HEADER``).

    Returns:
        An ``app.middleware("http")`` compatible coroutine function.

    Example:
        >>> # Request arrives with custom ID
        >>> # Headers: {"X-Request-ID": "req-abc-123"}
        >>> # Response includes:
        >>> # {"X-Request-ID": "req-abc-123", "X-Request-Duration-ms": "45.67"}
    """

    async def request_id_middleware(request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "request.completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                    "client_hash": hash_identifier(request.client.host) if request.client else None,
                },
            )
        finally:
            clear_request_id()

        response.headers[header_name] = request_id
        response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
        return response

    return request_id_middleware


async def security_headers_middleware(request: Request, call_next: CallNext) -> Response:
    """Add ``SECURITY_HEADERS`` to the response unless a handler already set them."""

    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response
