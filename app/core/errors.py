"""Application-level exception types.

Errors carry a stable code and the HTTP status they render with, so the
global handler and the middlewares that render them directly produce the
same envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass
class AppError(Exception):
    """Base error for application failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
    """

    status_code: ClassVar[int] = 500

    code: str
    message: str

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ServiceUnavailableAppError(AppError):
    """Raised when a backing component (e.g. the limiter store) is unusable."""

    status_code = 503
