from __future__ import annotations

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ledger_observability.core.container import Services, get_services
from ledger_observability.schemas.metrics import (
    ActiveAlertsResponse,
    AlertResponse,
    MetricSummaryResponse,
)

router = APIRouter(tags=["Metrics"])

ServicesDep = Annotated[Services, Depends(get_services)]


@router.get("/metrics/{name}/summary", response_model=MetricSummaryResponse)
def metric_summary(
    name: str,
    services: ServicesDep,
    since_minutes: Annotated[int | None, Query(ge=1, le=60 * 24 * 30)] = None,
) -> MetricSummaryResponse:
    """Aggregate one metric, optionally over a trailing window.

    Observability reads degrade to neutral values instead of failing. Responses
    are served from the read cache for a short TTL.
    """

    cache_key = f"summary:{name}:{since_minutes}"
    cached = services.cache.get(cache_key)
    if cached is not None:
        return cached

    tracker = services.tracker
    start = None
    if since_minutes is not None:
        start = tracker.store.now() - timedelta(minutes=since_minutes)

    latest = tracker.get_metric(name)
    summary = MetricSummaryResponse(
        name=name,
        since_minutes=since_minutes,
        count=tracker.count_values(name, start),
        latest=latest.value if latest is not None else None,
        sum=tracker.sum_values(name, start),
        avg=tracker.avg_values(name, start),
        min=tracker.min_values(name, start),
        max=tracker.max_values(name, start),
        p95=tracker.percentile(name, 95, start),
    )
    services.cache.set(cache_key, summary)
    return summary


@router.get("/alerts/active", response_model=ActiveAlertsResponse)
def active_alerts(services: ServicesDep) -> ActiveAlertsResponse:
    alerts = [AlertResponse.model_validate(alert) for alert in services.alerts.active_alerts()]
    return ActiveAlertsResponse(alerts=alerts, count=len(alerts))
