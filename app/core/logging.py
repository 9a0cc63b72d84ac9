"""Structured logging for the gateway.

Every record is written to stdout as one JSON object per line (or a plain
text line when ``LOG_FORMAT=plain``). Two filters run on the handler:

- ``RequestIdFilter`` stamps the correlation id set by the request middleware.
- ``SensitiveDataFilter`` redacts credentials and client addresses found in
  ``extra`` fields, at any nesting depth.

Limiter keys are client addresses, so they are never logged raw: callers
log ``hash_identifier(key)`` instead, which still correlates one client's
requests across lines.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from app.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        # credentials
        "api_key",
        "x-api-key",
        "authorization",
        "proxy-authorization",
        "token",
        "secret",
        "password",
        "cookie",
        "set-cookie",
        # client identity (limiter keys)
        "key",
        "client",
        "client_ip",
        "client_host",
        "x-forwarded-for",
        "x-real-ip",
    }
)

# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identifier(value: str) -> str:
    """Return a short SHA-256 digest of ``value`` for log correlation."""

    return hashlib.sha256(value.encode()).hexdigest()[:16]


def redact(name: str, value: Any, sensitive_keys: frozenset[str]) -> Any:
    """Return ``value`` with every field named in ``sensitive_keys`` masked.

    ``name`` is the field the value is stored under; nested mappings are
    checked by their own keys, sequences element by element.
    """

    if name.lower() in sensitive_keys:
        return REDACTED
    if isinstance(value, Mapping):
        return {k: redact(str(k), v, sensitive_keys) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact("", v, sensitive_keys) for v in value)
    return value


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields attached to ``record`` through ``extra``."""

    return {
        name: value
        for name, value in vars(record).items()
        if name not in _RECORD_ATTRS and not name.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive ``extra`` fields in place before any formatter runs."""

    def __init__(self, sensitive_keys: Iterable[str] = SENSITIVE_KEYS_DEFAULT) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in sensitive_keys)

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        for name, value in record_extras(record).items():
            setattr(record, name, redact(name, value, self.sensitive_keys))
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    The line carries ``timestamp`` (record creation time, UTC), ``level``,
    ``logger``, ``message``, ``request_id`` when known, every ``extra`` field
    and, for ``logger.exception`` calls, the formatted ``exception``.
    Extras are redacted here as well, so the formatter is safe on a handler
    without ``SensitiveDataFilter``.
    """

    def __init__(self, sensitive_keys: Iterable[str] = SENSITIVE_KEYS_DEFAULT) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in sensitive_keys)

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        for name, value in record_extras(record).items():
            payload.setdefault(name, redact(name, value, self.sensitive_keys))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)

        return json.dumps(payload, default=str)


def configure_logging(log_settings: LogSettings | None = None) -> logging.Handler:
    """Install a single stdout handler on the root logger.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.

    Returns:
        The installed handler.
    """

    cfg = log_settings or settings.log

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # request.completed replaces uvicorn's access log
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False

    return handler
