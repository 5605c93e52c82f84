"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any package import so settings never
pick up a developer's .env file or on-disk database.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ALERT_NOTIFICATION_BACKEND", "log")
os.environ.setdefault("RATE_LIMIT_STORE", "memory")
os.environ.setdefault("METRICS_TRACK_REQUEST_TIMING", "true")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from ledger_observability.adapters.notifications.base import (  # noqa: E402
    AbstractNotificationSink,
    AlertNotification,
)
from ledger_observability.core.config import DatabaseSettings  # noqa: E402
from ledger_observability.core.database import (  # noqa: E402
    create_db_engine,
    create_session_factory,
    init_db,
)
from ledger_observability.services.metrics_tracker import MetricsTracker  # noqa: E402
from ledger_observability.services.time_series import TimeSeriesStore  # noqa: E402


class FakeClock:
    """Deterministic wall clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = datetime(2024, 3, 12, 10, 15, tzinfo=timezone.utc)) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current = self.current + timedelta(**delta)


class RecordingSink(AbstractNotificationSink):
    """Notification sink that keeps every notification in memory."""

    def __init__(self) -> None:
        self.notifications: list[AlertNotification] = []

    def notify(self, notification: AlertNotification) -> None:
        self.notifications.append(notification)


@pytest.fixture
def engine():
    engine = create_db_engine(DatabaseSettings(url="sqlite://"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory, clock) -> TimeSeriesStore:
    return TimeSeriesStore(session_factory, clock=clock)


@pytest.fixture
def tracker(store) -> MetricsTracker:
    return MetricsTracker(store)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
