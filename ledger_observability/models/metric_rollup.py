"""Aggregated metric summaries per hourly/daily/weekly bucket.

Statistics schema by rollup type:
- counter: {sum, count}
- gauge: {avg, min, max, latest}
- histogram: {sum, avg, min, max, count, p50, p95, p99}
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_observability.core.database import Base, UTCDateTime

ROLLUP_TYPES = ("counter", "gauge", "histogram")
ROLLUP_INTERVALS = ("hourly", "daily", "weekly")


class MetricRollup(Base):
    __tablename__ = "metric_rollups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    metric_name: Mapped[str] = mapped_column(String(200), nullable=False)
    metric_type: Mapped[str] = mapped_column(String(16), nullable=False)
    rollup_interval: Mapped[str] = mapped_column(String(16), nullable=False)
    aggregated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    statistics: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "metric_name",
            "metric_type",
            "rollup_interval",
            "aggregated_at",
            name="uq_metric_rollups_period",
        ),
        CheckConstraint("sample_count >= 0", name="non_negative_sample_count"),
        Index("idx_metric_rollups_interval_time", "rollup_interval", "aggregated_at"),
        Index("idx_metric_rollups_metric_time", "metric_name", "aggregated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MetricRollup(name={self.metric_name}, type={self.metric_type}, "
            f"interval={self.rollup_interval}, at={self.aggregated_at.isoformat()})>"
        )
