"""Threshold breach records.

Alerts are never deleted by the engine; resolved rows stay for audit.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_observability.core.database import Base, UTCDateTime


class Alert(Base):
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_type: Mapped[str] = mapped_column(String(64), nullable=False)
    metric_name: Mapped[str] = mapped_column(String(200), nullable=False)
    current_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_alerts_type_time", "alert_type", "triggered_at"),
        Index("idx_alerts_metric_time", "metric_name", "triggered_at"),
        Index("idx_alerts_resolved", "resolved_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    def duration(self, now: datetime | None = None) -> timedelta:
        """How long the alert has been (or was) active."""

        end = self.resolved_at or now or datetime.now(timezone.utc)
        return end - self.triggered_at

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.alert_type,
            "metric": self.metric_name,
            "value": self.current_value,
            "threshold": self.threshold,
            "triggered_at": self.triggered_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "description": self.description,
        }

    def __repr__(self) -> str:
        state = "active" if self.is_active else "resolved"
        return f"<Alert(id={self.id}, type={self.alert_type}, metric={self.metric_name}, {state})>"
