"""Service wiring.

``build_services`` assembles the store, facade, engines and limiter from
settings once per application. Routes reach them through ``get_services``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from fastapi import Request
from sqlalchemy.engine import Engine

from ledger_observability.adapters.notifications.base import AbstractNotificationSink
from ledger_observability.adapters.notifications.factory import create_notification_sink
from ledger_observability.adapters.rate_limit.base import AbstractCounterStore
from ledger_observability.adapters.rate_limit.in_memory import InMemoryCounterStore
from ledger_observability.adapters.rate_limit.sql import SqlCounterStore
from ledger_observability.core.config import Settings
from ledger_observability.core.database import (
    SessionFactory,
    create_db_engine,
    create_session_factory,
    init_db,
)
from ledger_observability.core.errors import ValidationAppError
from ledger_observability.core.request_context import utcnow
from ledger_observability.services.alert_engine import AlertEngine, default_alert_rules
from ledger_observability.services.metrics_collection import (
    MetricsCollectionJob,
    MetricsMaintenanceJob,
)
from ledger_observability.services.metrics_tracker import MetricsTracker
from ledger_observability.services.rate_limiter import DEFAULT_RULES, RateLimiter, Safelist
from ledger_observability.services.rollup_engine import RollupEngine
from ledger_observability.services.time_series import TimeSeriesStore
from ledger_observability.utils.simple_cache import SimpleTTLCache


@dataclass
class Services:
    engine: Engine
    session_factory: SessionFactory
    store: TimeSeriesStore
    tracker: MetricsTracker
    rollups: RollupEngine
    alerts: AlertEngine
    rate_limiter: RateLimiter
    cache: SimpleTTLCache
    collection_job: MetricsCollectionJob
    maintenance_job: MetricsMaintenanceJob


def create_counter_store(
    settings: Settings,
    session_factory: SessionFactory,
    clock: Callable[[], float] = time.time,
) -> AbstractCounterStore:
    """Instantiate the counter store selected by ``RATE_LIMIT_STORE``.

    Raises:
        ValidationAppError: If the store name is unknown.
    """

    backend = settings.rate_limit.store.lower()
    if backend == "memory":
        return InMemoryCounterStore(clock=clock)
    if backend == "sql":
        return SqlCounterStore(session_factory, clock=clock)
    raise ValidationAppError(
        code="rate_limit_unknown_store",
        message=f"Unknown rate limit store: '{backend}'. Supported stores: memory, sql",
    )


def build_services(
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utcnow,
    rate_limit_clock: Callable[[], float] = time.time,
    sink: AbstractNotificationSink | None = None,
    engine: Engine | None = None,
) -> Services:
    """Create every long-lived service for one application instance.

    Args:
        settings: Root settings.
        clock: Wall clock for samples, rollups and alerts.
        rate_limit_clock: UNIX-seconds clock for throttle windows.
        sink: Notification sink override; defaults to the configured backend.
        engine: Engine override; defaults to one built from ``DB_URL``.
    """

    engine = engine or create_db_engine(settings.database)
    init_db(engine)
    session_factory = create_session_factory(engine)

    store = TimeSeriesStore(session_factory, time_zone=settings.metrics.time_zone, clock=clock)
    tracker = MetricsTracker(store)
    rollups = RollupEngine(session_factory, time_zone=settings.metrics.time_zone, clock=clock)
    alerts = AlertEngine(
        session_factory,
        sink or create_notification_sink(settings.alerts),
        default_alert_rules(settings.alerts),
        cooldown=timedelta(seconds=settings.alerts.cooldown_seconds),
        clock=clock,
    )
    counter_store = create_counter_store(settings, session_factory, rate_limit_clock)
    rate_limiter = RateLimiter(
        DEFAULT_RULES,
        counter_store,
        safelist=Safelist.from_entries(settings.rate_limit.safelist_entries),
        clock=rate_limit_clock,
        fail_open=settings.rate_limit.fail_open,
    )

    return Services(
        engine=engine,
        session_factory=session_factory,
        store=store,
        tracker=tracker,
        rollups=rollups,
        alerts=alerts,
        rate_limiter=rate_limiter,
        cache=SimpleTTLCache(
            ttl_seconds=settings.metrics.summary_cache_ttl_seconds,
            max_entries=1024,
            tracker=tracker,
            name="metric_summary",
        ),
        collection_job=MetricsCollectionJob(tracker, alerts, clock),
        maintenance_job=MetricsMaintenanceJob(
            tracker,
            rollups,
            raw_retention_days=settings.metrics.raw_retention_days,
            rollup_retention_days=settings.metrics.rollup_retention_days,
            counter_store=counter_store,
        ),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the services of the current app."""

    return request.app.state.services
