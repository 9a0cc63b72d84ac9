"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins APP_ENV to testing so no developer .env file leaks into the run.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from starlette.requests import Request


@pytest.fixture
def clock() -> Mock:
    """Controllable limiter clock (UNIX seconds), starting at t=1000."""
    return Mock(return_value=1000.0)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def make_request(
    client: tuple[str, int] | None = ("1.2.3.4", 51234),
    headers: dict[str, str] | None = None,
    path: str = "/health",
) -> Request:
    """Build a bare Starlette request with the given peer address."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


@pytest.fixture
def request_factory():
    """Factory for bare requests, see ``make_request``."""
    return make_request
