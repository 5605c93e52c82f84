"""Raw metric samples (counter, gauge, timing)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, Float, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_observability.core.database import Base, UTCDateTime

METRIC_KINDS = ("counter", "gauge", "timing")

TagValue = str | int | float | bool


class MetricSample(Base):
    """One observation of a named metric.

    Samples are append-only; the retention sweep removes them in bulk.
    """

    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    metric_name: Mapped[str] = mapped_column(String(200), nullable=False)
    metric_type: Mapped[str] = mapped_column(String(16), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    tags: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "metric_type IN ('counter', 'gauge', 'timing')", name="valid_metric_type"
        ),
        Index("idx_metrics_name_recorded_at", "metric_name", "recorded_at"),
        Index("idx_metrics_type_recorded_at", "metric_type", "recorded_at"),
        Index("idx_metrics_recorded_at", "recorded_at"),
    )

    @property
    def name(self) -> str:
        return self.metric_name

    @property
    def kind(self) -> str:
        return self.metric_type

    def __repr__(self) -> str:
        return (
            f"<MetricSample(id={self.id}, name={self.metric_name}, "
            f"type={self.metric_type}, value={self.value})>"
        )
