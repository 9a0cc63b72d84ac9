from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class MemoryUsage(BaseModel):
    """Process memory figures."""

    max_rss_bytes: int = Field(..., description="Peak resident set size of the process", ge=0)


class HealthResponse(BaseModel):
    """Liveness payload returned by ``GET /health``."""

    status: str = Field(..., description="Always 'healthy' when the process serves requests")
    timestamp: datetime = Field(..., description="Current server time (UTC)")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    environment: str = Field(..., description="Deployment environment (APP_ENV)")
    uptime_seconds: float = Field(..., description="Seconds since the process started", ge=0)
    memory: MemoryUsage
