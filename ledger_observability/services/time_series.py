"""Durable append-only store of metric samples.

Every tracking call becomes one row in ``metrics``. Inserts rely on the
database for atomicity; there is no application-level locking, so concurrent
writers never lose samples.

Query semantics:
- Tag filters are exact equality per key; multiple tags AND together.
- ``end`` defaults to now once ``start`` is given; ``end`` alone is an upper
  bound with no lower one. The day-grouped queries treat dates the same way.
- Aggregates over an empty result are neutral: sum/avg -> 0.0,
  min/max/percentile -> None.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from numbers import Real
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo

from sqlalchemy import Select, delete, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError

from ledger_observability.core.database import SessionFactory
from ledger_observability.core.errors import MetricValidationError, StorageAppError
from ledger_observability.models.metric import METRIC_KINDS, MetricSample
from ledger_observability.utils.statistics import percentile_cont

logger = logging.getLogger(__name__)

Tags = Mapping[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_sample(name: Any, kind: Any, value: Any, tags: Tags | None) -> tuple[float, dict[str, Any]]:
    """Check a sample before it touches the database.

    Returns:
        The value as float and a plain-dict copy of the tags.

    Raises:
        MetricValidationError: On empty name, unknown kind, non-numeric value or bad tags.
    """

    if not isinstance(name, str) or not name.strip():
        raise MetricValidationError(
            code="metric_invalid_name",
            message="Metric name must be a non-empty string",
            details={"field": "name"},
        )
    if kind not in METRIC_KINDS:
        raise MetricValidationError(
            code="metric_invalid_type",
            message=f"Metric type must be one of {', '.join(METRIC_KINDS)}",
            details={"field": "kind", "metric_name": name},
        )
    if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
        raise MetricValidationError(
            code="metric_invalid_value",
            message="Metric value must be numeric",
            details={"field": "value", "metric_name": name},
        )
    numeric = float(value)
    if not math.isfinite(numeric):
        raise MetricValidationError(
            code="metric_invalid_value",
            message="Metric value must be a finite number",
            details={"field": "value", "metric_name": name},
        )

    clean_tags: dict[str, Any] = {}
    for key, tag_value in (tags or {}).items():
        if not isinstance(key, str) or not key:
            raise MetricValidationError(
                code="metric_invalid_tag",
                message="Tag keys must be non-empty strings",
                details={"field": "tags", "metric_name": name},
            )
        if not isinstance(tag_value, (str, int, float, bool)):
            raise MetricValidationError(
                code="metric_invalid_tag",
                message=f"Tag '{key}' must be a string, number or boolean",
                details={"field": "tags", "metric_name": name},
            )
        clean_tags[key] = tag_value

    return numeric, clean_tags


def _apply_tag_filter(query: Select, tags: Tags | None) -> Select:
    for key, value in (tags or {}).items():
        element = MetricSample.tags[key]
        if isinstance(value, bool):
            query = query.where(element.as_boolean() == value)
        elif isinstance(value, (int, float)):
            query = query.where(element.as_float() == float(value))
        else:
            query = query.where(element.as_string() == str(value))
    return query


class TimeSeriesStore:
    """Append and query metric samples in the relational store."""

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

    @property
    def time_zone(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return self._clock()

    # --- Writes ---

    def record(
        self,
        name: str,
        kind: str,
        value: float,
        tags: Tags | None = None,
        *,
        recorded_at: datetime | None = None,
    ) -> MetricSample:
        """Append one sample.

        Raises:
            MetricValidationError: If the sample is malformed.
            StorageAppError: If the insert fails.
        """

        numeric, clean_tags = _validate_sample(name, kind, value, tags)
        sample = MetricSample(
            metric_name=name,
            metric_type=kind,
            value=numeric,
            tags=clean_tags,
            recorded_at=recorded_at or self._clock(),
        )
        try:
            with self._session_factory.begin() as session:
                session.add(sample)
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="metric_write_failed",
                message=f"Failed to record metric '{name}'",
                details={"metric_name": name, "operation": "record"},
            ) from exc
        return sample

    def delete_before(self, cutoff: datetime) -> int:
        """Delete samples recorded strictly before ``cutoff``."""

        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    delete(MetricSample).where(MetricSample.recorded_at < cutoff)
                )
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="metric_cleanup_failed",
                message="Failed to delete old metric samples",
                details={"operation": "delete_before"},
            ) from exc

    def cleanup(self, retention_days: int = 30) -> int:
        """Retention sweep for raw samples. Safe to re-run."""

        cutoff = self._clock() - timedelta(days=retention_days)
        deleted = self.delete_before(cutoff)
        logger.info(
            "metrics.cleanup",
            extra={"deleted": deleted, "retention_days": retention_days},
        )
        return deleted

    # --- Reads ---

    def _base_query(
        self,
        columns: Any,
        name: str,
        start: datetime | None,
        end: datetime | None,
        tags: Tags | None,
    ) -> Select:
        query = select(columns).where(MetricSample.metric_name == name)
        if start is not None:
            upper = end or self._clock()
            query = query.where(
                MetricSample.recorded_at >= start, MetricSample.recorded_at <= upper
            )
        elif end is not None:
            query = query.where(MetricSample.recorded_at <= end)
        return _apply_tag_filter(query, tags)

    def _scalar(self, query: Select, operation: str, name: str) -> Any:
        try:
            with self._session_factory() as session:
                return session.execute(query).scalar()
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="metric_query_failed",
                message=f"Failed to run {operation} for metric '{name}'",
                details={"metric_name": name, "operation": operation},
            ) from exc

    def _values(
        self,
        name: str,
        start: datetime | None,
        end: datetime | None,
        tags: Tags | None,
        operation: str,
    ) -> list[float]:
        query = self._base_query(MetricSample.value, name, start, end, tags)
        try:
            with self._session_factory() as session:
                return [float(v) for v in session.execute(query).scalars()]
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="metric_query_failed",
                message=f"Failed to run {operation} for metric '{name}'",
                details={"metric_name": name, "operation": operation},
            ) from exc

    def latest(self, name: str, tags: Tags | None = None) -> MetricSample | None:
        """Most recent sample for ``name`` (ties broken by insertion order)."""

        query = (
            _apply_tag_filter(select(MetricSample).where(MetricSample.metric_name == name), tags)
            .order_by(MetricSample.recorded_at.desc(), MetricSample.id.desc())
            .limit(1)
        )
        return self._scalar(query, "latest", name)

    def range(
        self,
        name: str,
        start: datetime,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> list[MetricSample]:
        query = self._base_query(MetricSample, name, start, end, tags).order_by(
            MetricSample.recorded_at.asc(), MetricSample.id.asc()
        )
        try:
            with self._session_factory() as session:
                return list(session.execute(query).scalars())
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="metric_query_failed",
                message=f"Failed to run range for metric '{name}'",
                details={"metric_name": name, "operation": "range"},
            ) from exc

    def sum(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float:
        """Sum of matching values; either bound may be given on its own."""

        result = self._scalar(
            self._base_query(func.sum(MetricSample.value), name, start, end, tags), "sum", name
        )
        return float(result) if result is not None else 0.0

    def avg(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float:
        result = self._scalar(
            self._base_query(func.avg(MetricSample.value), name, start, end, tags), "avg", name
        )
        return float(result) if result is not None else 0.0

    def min(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float | None:
        result = self._scalar(
            self._base_query(func.min(MetricSample.value), name, start, end, tags), "min", name
        )
        return float(result) if result is not None else None

    def max(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float | None:
        result = self._scalar(
            self._base_query(func.max(MetricSample.value), name, start, end, tags), "max", name
        )
        return float(result) if result is not None else None

    def count(
        self,
        name: str,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> int:
        result = self._scalar(
            self._base_query(func.count(MetricSample.id), name, start, end, tags), "count", name
        )
        return int(result or 0)

    def percentile(
        self,
        name: str,
        p: float = 50,
        start: datetime | None = None,
        end: datetime | None = None,
        tags: Tags | None = None,
    ) -> float | None:
        """Continuous percentile (linear interpolation) of the matching values."""

        if not 0 <= p <= 100:
            raise MetricValidationError(
                code="metric_invalid_percentile",
                message="Percentile must be between 0 and 100",
                details={"field": "p", "metric_name": name},
            )
        return percentile_cont(self._values(name, start, end, tags, "percentile"), p)

    def count_by_day(
        self,
        name: str,
        start_date: date | None = None,
        end_date: date | None = None,
        tags: Tags | None = None,
    ) -> dict[date, int]:
        """Samples per local calendar day, within ``start_date``..``end_date`` inclusive.

        Either date may be omitted; ``end_date`` alone keeps everything up to it.
        """

        counts: dict[date, int] = defaultdict(int)
        for day, _ in self._daily_rows(name, start_date, end_date, tags, "count_by_day"):
            counts[day] += 1
        return dict(sorted(counts.items()))

    def sum_by_day(
        self,
        name: str,
        start_date: date | None = None,
        end_date: date | None = None,
        tags: Tags | None = None,
    ) -> dict[date, float]:
        sums: dict[date, float] = defaultdict(float)
        for day, value in self._daily_rows(name, start_date, end_date, tags, "sum_by_day"):
            sums[day] += value
        return dict(sorted(sums.items()))

    def _daily_rows(
        self,
        name: str,
        start_date: date | None,
        end_date: date | None,
        tags: Tags | None,
        operation: str,
    ) -> list[tuple[date, float]]:
        """(local calendar day, value) pairs for the matching samples.

        Grouping happens here rather than in SQL so the configured time zone is
        honoured the same way on every database backend.
        """

        query = select(MetricSample.recorded_at, MetricSample.value).where(
            MetricSample.metric_name == name
        )
        if start_date is not None:
            last_day = end_date or self._clock().astimezone(self._tz).date()
            query = query.where(
                MetricSample.recorded_at >= self._start_of_day(start_date),
                MetricSample.recorded_at < self._start_of_day(last_day + timedelta(days=1)),
            )
        elif end_date is not None:
            query = query.where(
                MetricSample.recorded_at < self._start_of_day(end_date + timedelta(days=1))
            )
        query = _apply_tag_filter(query, tags)

        try:
            with self._session_factory() as session:
                rows = session.execute(query).all()
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="metric_query_failed",
                message=f"Failed to run {operation} for metric '{name}'",
                details={"metric_name": name, "operation": operation},
            ) from exc
        return [(recorded_at.astimezone(self._tz).date(), float(value)) for recorded_at, value in rows]

    def _start_of_day(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self._tz).astimezone(timezone.utc)

    def names(self, kind: str | None = None) -> list[str]:
        query = select(distinct(MetricSample.metric_name)).order_by(MetricSample.metric_name)
        if kind is not None:
            query = query.where(MetricSample.metric_type == kind)
        try:
            with self._session_factory() as session:
                return list(session.execute(query).scalars())
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="metric_query_failed",
                message="Failed to list metric names",
                details={"operation": "names"},
            ) from exc
