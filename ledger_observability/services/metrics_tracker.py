"""Tracking facade used by business logic.

Observability must never break a request: every call here catches failures
from the underlying store, logs them, and hands back an absent result or a
neutral default instead of raising.

Usage:
    tracker.track_counter("entries_created", 1, {"company_id": 42})
    tracker.track_gauge("cache.hit_rate", 0.95)
    result = tracker.measure_timing("ai_categorization", categorize, txn)
    with tracker.timed("receipt_ocr"):
        run_ocr()
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterator, TypeVar

from ledger_observability.models.metric import MetricSample
from ledger_observability.services.time_series import Tags, TimeSeriesStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_DURATION_METRIC = "request_duration_ms"
CLEANUP_COUNTER_METRIC = "metrics_cleanup_deleted_count"


class MetricsTracker:
    """Never-raising wrapper around :class:`TimeSeriesStore`."""

    def __init__(self, store: TimeSeriesStore) -> None:
        self._store = store

    @property
    def store(self) -> TimeSeriesStore:
        return self._store

    def _log_failure(self, metric_name: str, operation: str, exc: Exception) -> None:
        logger.warning(
            "metrics.track_failed",
            extra={
                "metric_name": metric_name,
                "operation": operation,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )

    def _record(self, name: str, kind: str, value: Any, tags: Tags | None) -> MetricSample | None:
        try:
            return self._store.record(name, kind, value, tags)
        except Exception as exc:  # noqa: BLE001 - tracking must never propagate
            self._log_failure(name, kind, exc)
            return None

    # --- Tracking ---

    def track_counter(self, name: str, value: float = 1, tags: Tags | None = None) -> MetricSample | None:
        return self._record(name, "counter", value, tags)

    def track_gauge(self, name: str, value: float, tags: Tags | None = None) -> MetricSample | None:
        return self._record(name, "gauge", value, tags)

    def track_timing(self, name: str, duration_ms: float, tags: Tags | None = None) -> MetricSample | None:
        return self._record(name, "timing", duration_ms, tags)

    def track_api_response_time(self, duration_ms: float, tags: Tags | None = None) -> MetricSample | None:
        return self.track_timing(REQUEST_DURATION_METRIC, duration_ms, tags)

    def measure_timing(
        self,
        name: str,
        func: Callable[..., T],
        *args: Any,
        tags: Tags | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``func`` and record how long it took in milliseconds.

        The duration is recorded even when ``func`` raises; its exception then
        propagates unchanged. A recording failure never changes the outcome.
        """

        with self.timed(name, tags):
            return func(*args, **kwargs)

    @contextmanager
    def timed(self, name: str, tags: Tags | None = None) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            self.track_timing(name, duration_ms, tags)

    # --- Queries (safe defaults on failure) ---

    def _query(self, name: str, operation: str, default: T, call: Callable[[], T]) -> T:
        try:
            return call()
        except Exception as exc:  # noqa: BLE001 - queries degrade to defaults
            self._log_failure(name, operation, exc)
            return default

    def get_metric(self, name: str, tags: Tags | None = None) -> MetricSample | None:
        return self._query(name, "query", None, lambda: self._store.latest(name, tags))

    def get_metrics_in_range(
        self,
        name: str,
        start: datetime,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> list[MetricSample]:
        return self._query(name, "range_query", [], lambda: self._store.range(name, start, end, tags))

    def sum_values(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float:
        return self._query(name, "sum_aggregation", 0.0, lambda: self._store.sum(name, start, end, tags))

    def avg_values(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float:
        return self._query(name, "avg_aggregation", 0.0, lambda: self._store.avg(name, start, end, tags))

    def min_values(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float | None:
        return self._query(name, "min_aggregation", None, lambda: self._store.min(name, start, end, tags))

    def max_values(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float | None:
        return self._query(name, "max_aggregation", None, lambda: self._store.max(name, start, end, tags))

    def count_values(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> int:
        return self._query(name, "count_aggregation", 0, lambda: self._store.count(name, start, end, tags))

    def percentile(
        self,
        name: str,
        p: float = 50,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float | None:
        return self._query(
            name,
            "percentile_aggregation",
            None,
            lambda: self._store.percentile(name, p, start, end, tags),
        )

    def count_by_day(
        self,
        name: str,
        start_date: date | None = None,
        end_date: date | None = None,
        tags: Tags | None = None,
    ) -> dict[date, int]:
        return self._query(
            name, "count_by_day", {}, lambda: self._store.count_by_day(name, start_date, end_date, tags)
        )

    def sum_by_day(
        self,
        name: str,
        start_date: date | None = None,
        end_date: date | None = None,
        tags: Tags | None = None,
    ) -> dict[date, float]:
        return self._query(
            name, "sum_by_day", {}, lambda: self._store.sum_by_day(name, start_date, end_date, tags)
        )

    def cleanup_old_metrics(self, retention_days: int = 30) -> int:
        """Delete raw samples older than the retention window.

        Returns:
            Number of deleted samples (0 when the sweep failed).
        """

        cutoff = self._store.now() - timedelta(days=retention_days)
        try:
            deleted = self._store.delete_before(cutoff)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "metrics.cleanup_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return 0
        self.track_counter(CLEANUP_COUNTER_METRIC, deleted, {"source": "metrics_cleanup_job"})
        logger.info(
            "metrics.cleanup",
            extra={"deleted": deleted, "retention_days": retention_days},
        )
        return deleted
