from __future__ import annotations

import resource
import sys
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from app.core.config import Settings
from app.schemas.health import HealthResponse, MemoryUsage

router = APIRouter(tags=["Health"])

_STARTED_AT = time.monotonic()

# ru_maxrss is reported in kilobytes on Linux and in bytes on macOS
_MAXRSS_UNIT = 1 if sys.platform == "darwin" else 1024


def get_app_settings(request: Request) -> Settings:
    """Settings the running app was built with (see ``create_app``)."""
    return request.app.state.settings


def _memory_usage() -> MemoryUsage:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return MemoryUsage(max_rss_bytes=usage.ru_maxrss * _MAXRSS_UNIT)


@router.get("/health", response_model=HealthResponse)
def health_check(cfg: Settings = Depends(get_app_settings)) -> HealthResponse:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service health.
    Subject to the same rate limit as every other path.

    Returns:
        HealthResponse: status, service identity, process uptime and memory.
    """

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        service=cfg.app.service_name,
        version=cfg.app.version,
        environment=cfg.app_env,
        uptime_seconds=round(time.monotonic() - _STARTED_AT, 3),
        memory=_memory_usage(),
    )
