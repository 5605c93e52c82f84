"""Pydantic schemas for metric and alert read endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class MetricSummaryResponse(BaseModel):
    """Aggregates for one metric over an optional trailing window."""

    name: str
    since_minutes: int | None = Field(
        None, description="Trailing window in minutes; null covers every stored sample."
    )
    count: int = Field(..., ge=0)
    latest: float | None = None
    sum: float = 0.0
    avg: float = 0.0
    min: float | None = None
    max: float | None = None
    p95: float | None = Field(None, description="95th percentile (continuous interpolation).")


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    alert_type: str
    metric_name: str
    current_value: float
    threshold: float
    triggered_at: datetime
    resolved_at: datetime | None = None
    description: str | None = None


class ActiveAlertsResponse(BaseModel):
    alerts: list[AlertResponse]
    count: int = Field(..., ge=0)
