from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated apps with their own settings and limiter.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.api.routes import health_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import build_request_id_middleware, security_headers_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import RateLimitGate

logger = logging.getLogger(__name__)


def create_app(
    config: Settings | None = None,
    *,
    rate_limiter: AbstractRateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        config: Settings to build from; defaults to the global settings.
        rate_limiter: Quota store to use instead of one built from settings.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = config or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="K2W API",
        description=(
            "Content-marketing API gateway. Every request is subject to a "
            "per-client quota; throttled requests receive HTTP 429 with "
            "Retry-After and X-RateLimit-* headers."
        ),
        version=cfg.app.version,
        debug=cfg.app.debug,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    app.state.settings = cfg

    # Middleware: registered innermost first, so the pipeline runs
    # security headers -> CORS -> request id / access log -> rate limiter -> routes.
    if cfg.rate_limit.enabled:
        gate = RateLimitGate.from_settings(cfg.rate_limit, rate_limiter)
        app.state.rate_limiter = gate.limiter
        app.middleware("http")(gate)
        logger.info(
            "rate_limit.configured",
            extra={
                "points": cfg.rate_limit.points,
                "duration_s": cfg.rate_limit.duration_seconds,
                "fail_open": cfg.rate_limit.fail_open,
                "trust_forwarded_for": cfg.rate_limit.trust_forwarded_for,
            },
        )
    else:
        app.state.rate_limiter = None
        logger.warning("rate_limit.disabled")

    app.middleware("http")(build_request_id_middleware(cfg.log.request_id_header))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.app.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            cfg.log.request_id_header,
            "Retry-After",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )
    app.middleware("http")(security_headers_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)

    # OpenAPI customizations (tags, 429 contract)
    apply_openapi_customizations(app)

    return app
