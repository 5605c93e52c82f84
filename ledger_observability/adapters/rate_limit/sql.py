"""Relational fixed-window counter store.

Each increment is a single ``INSERT ... ON CONFLICT DO UPDATE`` against the
``(counter_key, window_start)`` unique constraint, followed by a read of the
row in the same transaction. Concurrent workers sharing the database never
lose an increment.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from ledger_observability.adapters.rate_limit.base import AbstractCounterStore
from ledger_observability.core.database import SessionFactory
from ledger_observability.core.errors import RateLimiterUnavailableError
from ledger_observability.models.rate_limit import RateLimitCounter

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT: dict[str, Callable[..., Any]] = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class SqlCounterStore(AbstractCounterStore):
    """Counter store backed by the ``rate_limit_counters`` table."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def increment(self, key: str, window_start: int, ttl_seconds: int) -> int:
        if not key:
            raise ValueError("key must be a non-empty string")

        expires_at = datetime.fromtimestamp(window_start + ttl_seconds, tz=timezone.utc)
        try:
            with self._session_factory.begin() as session:
                dialect = session.get_bind().dialect.name
                insert = _INSERT_BY_DIALECT.get(dialect)
                if insert is None:
                    raise RateLimiterUnavailableError(
                        code="rate_limit_unsupported_dialect",
                        message=f"SQL counter store does not support '{dialect}'",
                        details={"backend": dialect},
                    )

                table = RateLimitCounter.__table__
                statement = insert(table).values(
                    counter_key=key,
                    window_start=window_start,
                    count=1,
                    expires_at=expires_at,
                )
                statement = statement.on_conflict_do_update(
                    index_elements=[table.c.counter_key, table.c.window_start],
                    set_={"count": table.c.count + 1},
                )
                session.execute(statement)

                return session.execute(
                    select(RateLimitCounter.count).where(
                        RateLimitCounter.counter_key == key,
                        RateLimitCounter.window_start == window_start,
                    )
                ).scalar_one()
        except SQLAlchemyError as exc:
            raise RateLimiterUnavailableError(
                code="rate_limit_store_failed",
                message="Rate limit counter store is unavailable",
                details={"backend": "sql", "operation": "increment"},
            ) from exc

    def purge_expired(self) -> int:
        """Delete counters whose window has closed."""

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    delete(RateLimitCounter).where(RateLimitCounter.expires_at <= now)
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as exc:
            raise RateLimiterUnavailableError(
                code="rate_limit_purge_failed",
                message="Failed to purge expired rate limit counters",
                details={"backend": "sql", "operation": "purge_expired"},
            ) from exc

        logger.info("rate_limit.counters_purged", extra={"deleted": deleted})
        return deleted
