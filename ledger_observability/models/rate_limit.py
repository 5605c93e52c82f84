"""Fixed-window request counters for the SQL counter store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_observability.core.database import Base, UTCDateTime


class RateLimitCounter(Base):
    """Request count per (rule, client) key within one aligned window."""

    __tablename__ = "rate_limit_counters"
    __table_args__ = (
        UniqueConstraint("counter_key", "window_start", name="uq_rate_limit_key_window"),
        Index("idx_rate_limit_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    counter_key: Mapped[str] = mapped_column(String(255), nullable=False)
    window_start: Mapped[int] = mapped_column(Integer, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
