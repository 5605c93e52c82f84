"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    field: str
    metric_name: str
    metric_type: str
    alert_type: str
    operation: str
    backend: str
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class MetricValidationError(AppError):
    """Raised when a metric sample is malformed and must not be persisted."""


class StorageAppError(AppError):
    """Raised when the relational store cannot serve a read or write."""


class NotificationAppError(AppError):
    """Raised when a notification sink fails to deliver an alert."""


class RateLimiterUnavailableError(AppError):
    """Raised when the rate limit counter store cannot be reached."""


class ValidationAppError(AppError):
    """Raised when configuration or caller input cannot be accepted."""
