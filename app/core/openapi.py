"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- A documented 429 response (body and quota headers) on every operation,
  since the rate limiter sits in front of all routes

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from app.core.rate_limit import RATE_LIMIT_ERROR, RATE_LIMIT_MESSAGE

_HTTP_METHODS = {"get", "put", "post", "delete", "patch", "options", "head", "trace"}

RATE_LIMITED_RESPONSE: Dict[str, Any] = {
    "description": "Too many requests from this client within the quota window.",
    "headers": {
        "Retry-After": {
            "description": "Seconds until a new request will be accepted (>= 1).",
            "schema": {"type": "integer", "minimum": 1},
        },
        "X-RateLimit-Limit": {
            "description": "Requests allowed per window.",
            "schema": {"type": "integer"},
        },
        "X-RateLimit-Remaining": {
            "description": "Requests left in the current window.",
            "schema": {"type": "integer", "minimum": 0},
        },
        "X-RateLimit-Reset": {
            "description": "When the window resets (ISO-8601, UTC).",
            "schema": {"type": "string", "format": "date-time"},
        },
    },
    "content": {
        "application/json": {
            "schema": {
                "type": "object",
                "properties": {
                    "error": {"type": "string"},
                    "message": {"type": "string"},
                },
                "required": ["error", "message"],
            },
            "example": {"error": RATE_LIMIT_ERROR, "message": RATE_LIMIT_MESSAGE},
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and the 429 contract."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Health",
                "description": "Liveness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for methods in schema.get("paths", {}).values():
            for method, operation in methods.items():
                if method in _HTTP_METHODS and isinstance(operation, dict):
                    operation.setdefault("responses", {}).setdefault("429", RATE_LIMITED_RESPONSE)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
