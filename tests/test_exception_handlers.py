"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.core.errors import AppError, ServiceUnavailableAppError
from app.core.exception_handlers import setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_service_unavailable_error_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify ServiceUnavailableAppError returns HTTP 503."""
        @app_with_handlers.get("/test-unavailable")
        async def test_endpoint():
            raise ServiceUnavailableAppError(
                code="rate_limiter_unavailable",
                message="Rate limiter unavailable. Please try again later."
            )

        response = client.get("/test-unavailable")

        assert response.status_code == 503
        data = response.json()
        assert data["error"]["code"] == "rate_limiter_unavailable"
        assert data["error"]["message"] == "Rate limiter unavailable. Please try again later."
        assert "request_id" in data["error"]

    def test_service_unavailable_envelope_has_no_extra_keys(
        self, client: TestClient, app_with_handlers: FastAPI
    ):
        @app_with_handlers.get("/test-unavailable-shape")
        async def test_endpoint():
            raise ServiceUnavailableAppError(code="store_down", message="down")

        response = client.get("/test-unavailable-shape")

        assert set(response.json()["error"]) == {"code", "message", "request_id"}

    def test_plain_app_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        """An AppError without a more specific class renders as a server fault."""
        @app_with_handlers.get("/test-app-error")
        async def test_endpoint():
            raise AppError(code="limiter_misconfigured", message="Limiter misconfigured")

        response = client.get("/test-app-error")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "limiter_misconfigured"

    def test_status_code_is_declared_per_class(self):
        assert AppError.status_code == 500
        assert ServiceUnavailableAppError.status_code == 503
        assert ServiceUnavailableAppError(code="x", message="y").status_code == 503

    def test_error_str_is_message(self):
        """AppError populates Exception args for readable tracebacks."""
        exc = AppError(code="x", message="readable")
        assert str(exc) == "readable"


class TestNotFoundHandler:
    """Unmatched routes and explicit HTTP errors."""

    def test_unknown_route_returns_json_404(self, client: TestClient):
        response = client.get("/missing/route?page=2")

        assert response.status_code == 404
        assert response.json() == {
            "error": "Route not found",
            "path": "/missing/route?page=2",
            "method": "GET",
        }

    def test_unknown_route_reports_method(self, client: TestClient):
        response = client.delete("/nothing-here")

        assert response.status_code == 404
        assert response.json()["method"] == "DELETE"

    def test_explicit_http_exception_keeps_default_format(
        self, client: TestClient, app_with_handlers: FastAPI
    ):
        @app_with_handlers.get("/widgets/{widget_id}")
        async def get_widget(widget_id: int):
            raise HTTPException(status_code=404, detail="Widget not found")

        response = client.get("/widgets/1")

        assert response.status_code == 404
        assert response.json() == {"detail": "Widget not found"}

    def test_method_not_allowed_is_untouched(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/only-get")
        async def only_get():
            return {"ok": True}

        response = client.post("/only-get")

        assert response.status_code == 405
        assert response.json() == {"detail": "Method Not Allowed"}


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        """Verify fallback exception handler is registered."""
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_logic(self):
        """Verify general_exception_handler returns correct structure."""
        from app.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: quota table corrupted")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        # Original error message should NOT be in response
        assert "quota table" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        from app.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        """Verify setup_exception_handlers properly registers handlers."""
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
