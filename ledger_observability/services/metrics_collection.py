"""Scheduled jobs: threshold collection and metrics maintenance.

Both jobs are plain objects with a ``perform`` method so any external
scheduler (cron, a worker queue, a management command) can run them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from ledger_observability.adapters.rate_limit.base import AbstractCounterStore
from ledger_observability.core.errors import RateLimiterUnavailableError, StorageAppError
from ledger_observability.services.alert_engine import AlertEngine, ThresholdReport
from ledger_observability.services.metrics_tracker import MetricsTracker
from ledger_observability.services.rollup_engine import RollupEngine
from ledger_observability.utils.simple_cache import (
    CACHE_HIT_RATE_METRIC,
    CACHE_HITS_METRIC,
    CACHE_MISSES_METRIC,
)

logger = logging.getLogger(__name__)


class MetricsCollectionJob:
    """Derive the alert inputs from recorded samples and evaluate thresholds."""

    def __init__(
        self,
        tracker: MetricsTracker,
        alert_engine: AlertEngine,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tracker = tracker
        self._alerts = alert_engine
        self._clock = clock or tracker.store.now

    def collect(self) -> dict[str, float]:
        """Current value of each alert input; absent inputs are left out."""

        since = self._clock() - timedelta(hours=1)
        metrics = {
            "error_rate": self._error_rate(),
            "cache_hit_rate": self._cache_hit_rate(since),
            "job_failures": self._job_failures(since),
        }
        return {key: value for key, value in metrics.items() if value is not None}

    def _error_rate(self) -> float | None:
        sample = self._tracker.get_metric("error_rate")
        if sample is not None:
            return sample.value

        errors = self._tracker.get_metric("errors.total")
        requests = self._tracker.get_metric("requests.total")
        if errors is None or requests is None or requests.value == 0:
            return None
        return round(errors.value / requests.value, 4)

    def _cache_hit_rate(self, since: datetime) -> float | None:
        sample = self._tracker.get_metric(CACHE_HIT_RATE_METRIC)
        if sample is not None:
            return sample.value

        hits = self._tracker.sum_values(CACHE_HITS_METRIC, since)
        misses = self._tracker.sum_values(CACHE_MISSES_METRIC, since)
        total = hits + misses
        if total == 0:
            return None
        return round(hits / total, 4)

    def _job_failures(self, since: datetime) -> float | None:
        sample = self._tracker.get_metric("job_failures_per_hour")
        if sample is not None:
            return sample.value
        if self._tracker.get_metric("jobs.failed") is None:
            return None
        return self._tracker.sum_values("jobs.failed", since)

    def perform(self) -> ThresholdReport:
        metrics = self.collect()
        report = self._alerts.check_critical_thresholds(metrics)
        logger.info(
            "metrics.collection_completed",
            extra={
                "metrics": metrics,
                "triggered": len(report.triggered),
                "rate_limited": len(report.rate_limited),
                "resolved": len(report.resolved),
            },
        )
        return report


class MetricsMaintenanceJob:
    """Run rollups, both retention sweeps and the expired rate-limit counter purge."""

    def __init__(
        self,
        tracker: MetricsTracker,
        rollups: RollupEngine,
        *,
        raw_retention_days: int = 30,
        rollup_retention_days: int = 7,
        counter_store: AbstractCounterStore | None = None,
    ) -> None:
        self._tracker = tracker
        self._rollups = rollups
        self._counter_store = counter_store
        self._raw_retention_days = raw_retention_days
        self._rollup_retention_days = rollup_retention_days

    def perform(
        self,
        intervals: Iterable[str] = ("hourly",),
        at: datetime | None = None,
    ) -> dict[str, Any]:
        """Roll up the period containing ``at`` for each interval, then sweep.

        A failing step is logged and reported as ``None`` in the summary; the
        remaining steps still run.
        """

        summary: dict[str, Any] = {"rollups": {}}
        for interval in intervals:
            try:
                summary["rollups"][interval] = len(self._rollups.run_rollup(interval, at))
            except StorageAppError as exc:
                logger.error(
                    "metrics.rollup_failed",
                    extra={"interval": interval, "error_code": exc.code},
                    exc_info=exc.__cause__,
                )
                summary["rollups"][interval] = None

        summary["raw_deleted"] = self._tracker.cleanup_old_metrics(self._raw_retention_days)

        try:
            summary["rollups_deleted"] = self._rollups.cleanup(self._rollup_retention_days)
        except StorageAppError as exc:
            logger.error(
                "metrics.rollup_cleanup_failed",
                extra={"error_code": exc.code},
                exc_info=exc.__cause__,
            )
            summary["rollups_deleted"] = None

        if self._counter_store is not None:
            try:
                summary["counters_purged"] = self._counter_store.purge_expired()
            except RateLimiterUnavailableError as exc:
                logger.error(
                    "rate_limit.purge_failed",
                    extra={"error_code": exc.code},
                    exc_info=exc.__cause__,
                )
                summary["counters_purged"] = None

        logger.info("metrics.maintenance_completed", extra=summary)
        return summary
