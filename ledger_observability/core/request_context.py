"""Request-scoped context stored in contextvars.

Each in-flight request (thread or asyncio task) owns its own
``RequestContext`` instance. The context is created by the request context
middleware, read by logging filters and metric tagging, and reset when the
request completes so nothing leaks into the next request served by the same
worker.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from ledger_observability.services.rate_limiter import RateLimitDecision


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RequestContext:
    """Mutable per-request record.

    The instance is shared by reference between the middleware and the route
    handler, so values set by the handler (e.g. ``user_id``) are visible when
    the completion record is written.
    """

    request_id: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    db_time_start: datetime | None = None
    view_time_start: datetime | None = None
    duration_ms_override: float | None = None
    user_id: int | str | None = None
    company_id: int | str | None = None
    rate_limit: RateLimitDecision | None = None

    def duration_ms(self, now: datetime | None = None) -> float:
        if self.duration_ms_override is not None:
            return self.duration_ms_override
        return _elapsed_ms(self.started_at, now)

    def db_time_ms(self, now: datetime | None = None) -> float | None:
        if self.db_time_start is None:
            return None
        return _elapsed_ms(self.db_time_start, now)

    def view_time_ms(self, now: datetime | None = None) -> float | None:
        if self.view_time_start is None:
            return None
        return _elapsed_ms(self.view_time_start, now)

    def log_fields(self) -> dict[str, Any]:
        """Identity fields attached to every log record emitted in this request."""

        fields: dict[str, Any] = {}
        if self.request_id:
            fields["request_id"] = self.request_id
        if self.user_id is not None:
            fields["user_id"] = self.user_id
        if self.company_id is not None:
            fields["company_id"] = self.company_id
        return fields


def _elapsed_ms(start: datetime, now: datetime | None) -> float:
    end = now or utcnow()
    return round((end - start).total_seconds() * 1000, 2)


_request_context_var: ContextVar[RequestContext | None] = ContextVar(
    "request_context", default=None
)


def start_request_context(**fields: Any) -> Token[RequestContext | None]:
    """Install a fresh context for the current execution unit.

    Args:
        **fields: Initial ``RequestContext`` field values.

    Returns:
        Token to pass to ``reset_request_context`` when the request ends.
    """

    return _request_context_var.set(RequestContext(**fields))


def get_request_context() -> RequestContext | None:
    """Return the context of the current request, if one is active."""

    return _request_context_var.get()


def reset_request_context(token: Token[RequestContext | None] | None = None) -> None:
    """Tear down the current context.

    Restores the previous value when a token is given, otherwise clears it.
    """

    if token is not None:
        _request_context_var.reset(token)
    else:
        _request_context_var.set(None)


@contextmanager
def request_scope(**fields: Any) -> Iterator[RequestContext]:
    """Run a block inside a fresh request context (jobs, tests, scripts)."""

    context = RequestContext(**fields)
    token = _request_context_var.set(context)
    try:
        yield context
    finally:
        reset_request_context(token)


def get_request_id() -> str | None:
    context = get_request_context()
    return context.request_id if context else None


def set_duration_ms_override(value: float | None) -> None:
    """Pin ``duration_ms`` for the current request (tests inject fixed durations)."""

    context = get_request_context()
    if context is not None:
        context.duration_ms_override = value


def duration_ms(now: datetime | None = None) -> float | None:
    context = get_request_context()
    return context.duration_ms(now) if context else None


def db_time_ms(now: datetime | None = None) -> float | None:
    context = get_request_context()
    return context.db_time_ms(now) if context else None


def view_time_ms(now: datetime | None = None) -> float | None:
    context = get_request_context()
    return context.view_time_ms(now) if context else None
