"""Periodic aggregation of raw samples into hourly/daily/weekly rollups.

Rollups are triggered by an external scheduler. Each run writes one row per
(metric name, rollup type) observed in the period; re-running the same period
updates that row in place, so runs are idempotent. Raw samples are left alone:
removing them is the time-series store's retention sweep.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from ledger_observability.core.database import SessionFactory
from ledger_observability.core.errors import MetricValidationError, StorageAppError
from ledger_observability.models.metric import MetricSample
from ledger_observability.models.metric_rollup import ROLLUP_INTERVALS, MetricRollup
from ledger_observability.utils.statistics import mean, percentile_cont, round_stat

logger = logging.getLogger(__name__)

# Raw sample type -> rollup type
ROLLUP_TYPE_BY_KIND = {
    "counter": "counter",
    "gauge": "gauge",
    "timing": "histogram",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def counter_statistics(values: list[float]) -> dict[str, float]:
    return {"sum": round_stat(sum(values)), "count": len(values)}


def gauge_statistics(values: list[float]) -> dict[str, float]:
    """``values`` must be in recording order; ``latest`` is the last one recorded."""

    return {
        "avg": round_stat(mean(values)),
        "min": round_stat(min(values)),
        "max": round_stat(max(values)),
        "latest": round_stat(values[-1]),
    }


def histogram_statistics(values: list[float]) -> dict[str, float]:
    return {
        "sum": round_stat(sum(values)),
        "avg": round_stat(mean(values)),
        "min": round_stat(min(values)),
        "max": round_stat(max(values)),
        "count": len(values),
        "p50": round_stat(percentile_cont(values, 50)),
        "p95": round_stat(percentile_cont(values, 95)),
        "p99": round_stat(percentile_cont(values, 99)),
    }


STATISTICS_BY_TYPE: dict[str, Callable[[list[float]], dict[str, float]]] = {
    "counter": counter_statistics,
    "gauge": gauge_statistics,
    "histogram": histogram_statistics,
}


def comparable_value(rollup: MetricRollup) -> float:
    """The single number used to compare a rollup with its predecessor."""

    stats = rollup.statistics or {}
    if rollup.metric_type == "counter":
        candidates: Iterable[str] = ("sum",)
    elif rollup.metric_type == "gauge":
        candidates = ("avg", "latest")
    elif rollup.metric_type == "histogram":
        candidates = ("mean", "avg", "sum")
    else:
        return 0.0
    for key in candidates:
        if stats.get(key) is not None:
            return float(stats[key])
    return 0.0


def summary(rollup: MetricRollup) -> str:
    stats = rollup.statistics or {}
    if rollup.metric_type == "counter":
        return f"Total: {stats.get('sum')}, Count: {stats.get('count')}"
    if rollup.metric_type == "gauge":
        return (
            f"Avg: {stats.get('avg')}, Min: {stats.get('min')}, "
            f"Max: {stats.get('max')}, Latest: {stats.get('latest')}"
        )
    if rollup.metric_type == "histogram":
        return (
            f"Avg: {stats.get('avg')}, p95: {stats.get('p95')}, "
            f"p99: {stats.get('p99')}, Count: {stats.get('count')}"
        )
    return str(stats)


def exceeds_threshold(rollup: MetricRollup, threshold: float) -> bool:
    stats = rollup.statistics or {}
    for key in ("max", "avg", "sum", "latest"):
        if stats.get(key) is not None:
            return float(stats[key]) > threshold
    return False


def below_threshold(rollup: MetricRollup, threshold: float) -> bool:
    stats = rollup.statistics or {}
    for key in ("avg", "latest"):
        if stats.get(key) is not None:
            return float(stats[key]) < threshold
    return False


class RollupEngine:
    """Summarize raw samples per interval and answer trend queries."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        time_zone: str = "UTC",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._tz = ZoneInfo(time_zone)
        self._clock = clock

    # --- Periods ---

    def period_bounds(self, interval: str, at: datetime | None = None) -> tuple[datetime, datetime]:
        """Return the [start, end) period of ``interval`` containing ``at``.

        Daily and weekly periods follow the configured time zone; weeks start
        on Monday. Both bounds are returned in UTC.

        Raises:
            MetricValidationError: If ``interval`` is unknown.
        """

        if interval not in ROLLUP_INTERVALS:
            raise MetricValidationError(
                code="rollup_invalid_interval",
                message=f"Rollup interval must be one of {', '.join(ROLLUP_INTERVALS)}",
                details={"field": "interval"},
            )

        local = (at or self._clock()).astimezone(self._tz)
        if interval == "hourly":
            # Aware arithmetic is wall-clock; add the hour in UTC so a repeated
            # fall-back hour does not overlap the next period.
            start = local.replace(minute=0, second=0, microsecond=0).astimezone(timezone.utc)
            return start, start + timedelta(hours=1)
        if interval == "daily":
            start_local = datetime.combine(local.date(), time.min, tzinfo=self._tz)
            end_local = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=self._tz)
        else:
            monday = local.date() - timedelta(days=local.weekday())
            start_local = datetime.combine(monday, time.min, tzinfo=self._tz)
            end_local = datetime.combine(monday + timedelta(days=7), time.min, tzinfo=self._tz)

        return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)

    # --- Rollup ---

    def run_rollup(self, interval: str, at: datetime | None = None) -> list[MetricRollup]:
        """Aggregate every metric observed in the period containing ``at``.

        Returns:
            The rollups written (new or updated), ordered by metric name.

        Raises:
            StorageAppError: If reading samples or writing rollups fails.
        """

        start, end = self.period_bounds(interval, at)
        written: list[MetricRollup] = []

        try:
            with self._session_factory.begin() as session:
                rows = session.execute(
                    select(
                        MetricSample.metric_name,
                        MetricSample.metric_type,
                        MetricSample.value,
                    )
                    .where(MetricSample.recorded_at >= start, MetricSample.recorded_at < end)
                    .order_by(MetricSample.recorded_at.asc(), MetricSample.id.asc())
                ).all()

                grouped: dict[tuple[str, str], list[float]] = defaultdict(list)
                for name, kind, value in rows:
                    grouped[(name, ROLLUP_TYPE_BY_KIND[kind])].append(float(value))

                for (name, rollup_type), values in sorted(grouped.items()):
                    statistics = STATISTICS_BY_TYPE[rollup_type](values)
                    rollup = session.execute(
                        select(MetricRollup).where(
                            MetricRollup.metric_name == name,
                            MetricRollup.metric_type == rollup_type,
                            MetricRollup.rollup_interval == interval,
                            MetricRollup.aggregated_at == start,
                        )
                    ).scalar_one_or_none()
                    if rollup is None:
                        rollup = MetricRollup(
                            metric_name=name,
                            metric_type=rollup_type,
                            rollup_interval=interval,
                            aggregated_at=start,
                        )
                        session.add(rollup)
                    rollup.statistics = statistics
                    rollup.sample_count = len(values)
                    written.append(rollup)
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="rollup_failed",
                message=f"Failed to compute {interval} rollup",
                details={"operation": "run_rollup", "context": {"interval": interval}},
            ) from exc

        logger.info(
            "metrics.rollup_completed",
            extra={
                "interval": interval,
                "period_start": start.isoformat(),
                "rollups": len(written),
                "samples": sum(r.sample_count for r in written),
            },
        )
        return written

    def cleanup(self, retention_days: int = 7) -> int:
        """Delete rollups whose period started before the retention cutoff."""

        cutoff = self._clock() - timedelta(days=retention_days)
        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    delete(MetricRollup).where(MetricRollup.aggregated_at < cutoff)
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="rollup_cleanup_failed",
                message="Failed to delete old metric rollups",
                details={"operation": "cleanup"},
            ) from exc

        logger.info(
            "metrics.rollup_cleanup",
            extra={"deleted": deleted, "retention_days": retention_days},
        )
        return deleted

    # --- Queries ---

    def _all(self, query: Any) -> list[MetricRollup]:
        try:
            with self._session_factory() as session:
                return list(session.execute(query).scalars())
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="rollup_query_failed",
                message="Failed to query metric rollups",
                details={"operation": "query"},
            ) from exc

    def latest_for(self, name: str, interval: str = "hourly") -> MetricRollup | None:
        rollups = self._all(
            select(MetricRollup)
            .where(MetricRollup.metric_name == name, MetricRollup.rollup_interval == interval)
            .order_by(MetricRollup.aggregated_at.desc())
            .limit(1)
        )
        return rollups[0] if rollups else None

    def trend_for(
        self,
        name: str,
        interval: str = "daily",
        lookback_days: int = 30,
    ) -> list[MetricRollup]:
        end = self._clock()
        start = end - timedelta(days=lookback_days)
        return self._all(
            select(MetricRollup)
            .where(
                MetricRollup.metric_name == name,
                MetricRollup.rollup_interval == interval,
                MetricRollup.aggregated_at >= start,
                MetricRollup.aggregated_at <= end,
            )
            .order_by(MetricRollup.aggregated_at.asc())
        )

    def latest_all(self) -> dict[str, MetricRollup]:
        latest: dict[str, MetricRollup] = {}
        for rollup in self._all(select(MetricRollup).order_by(MetricRollup.aggregated_at.asc())):
            latest[rollup.metric_name] = rollup
        return latest

    def average_statistic(
        self,
        name: str,
        statistic: str,
        interval: str = "hourly",
        lookback: int = 24,
    ) -> float | None:
        """Average one statistic across the most recent ``lookback`` rollups.

        Rollups missing the statistic are skipped; None when none carry it.
        """

        rollups = self._all(
            select(MetricRollup)
            .where(MetricRollup.metric_name == name, MetricRollup.rollup_interval == interval)
            .order_by(MetricRollup.aggregated_at.desc())
            .limit(lookback)
        )
        values = [
            float(r.statistics[statistic])
            for r in rollups
            if (r.statistics or {}).get(statistic) is not None
        ]
        if not values:
            return None
        return round(sum(values) / len(values), 2)

    def previous_rollup(self, rollup: MetricRollup) -> MetricRollup | None:
        rollups = self._all(
            select(MetricRollup)
            .where(
                MetricRollup.metric_name == rollup.metric_name,
                MetricRollup.metric_type == rollup.metric_type,
                MetricRollup.rollup_interval == rollup.rollup_interval,
                MetricRollup.aggregated_at < rollup.aggregated_at,
            )
            .order_by(MetricRollup.aggregated_at.desc())
            .limit(1)
        )
        return rollups[0] if rollups else None

    def percent_change_from_previous(self, rollup: MetricRollup) -> float | None:
        """Percent change of the comparable value versus the preceding rollup.

        Returns None when there is no previous rollup or its comparable value
        is exactly zero. A 0 -> N increase is therefore reported as None.
        """

        previous = self.previous_rollup(rollup)
        if previous is None:
            return None

        previous_value = comparable_value(previous)
        if previous_value == 0:
            return None

        current_value = comparable_value(rollup)
        return round(((current_value - previous_value) / abs(previous_value)) * 100, 2)
