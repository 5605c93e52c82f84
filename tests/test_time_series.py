"""Tests for the relational time-series store."""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger_observability.core.config import DatabaseSettings
from ledger_observability.core.database import create_db_engine, create_session_factory, init_db
from ledger_observability.core.errors import MetricValidationError
from ledger_observability.services.time_series import TimeSeriesStore


@pytest.mark.parametrize(
    ("name", "kind", "value"),
    [
        ("", "counter", 1),
        ("   ", "counter", 1),
        ("api.calls", "histogram", 1),
        ("api.calls", "counter", "12"),
        ("api.calls", "counter", None),
        ("api.calls", "counter", True),
        ("api.calls", "gauge", float("nan")),
        ("api.calls", "gauge", float("inf")),
    ],
)
def test_record_rejects_malformed_samples(store, name, kind, value) -> None:
    with pytest.raises(MetricValidationError):
        store.record(name, kind, value)

    assert store.names() == []


def test_record_rejects_nested_tag_values(store) -> None:
    with pytest.raises(MetricValidationError) as exc_info:
        store.record("api.calls", "counter", 1, {"meta": {"nested": True}})

    assert exc_info.value.code == "metric_invalid_tag"


def test_record_accepts_decimal_and_stores_float(store) -> None:
    sample = store.record("invoice.total", "gauge", Decimal("12.50"))

    assert sample.value == 12.5
    assert sample.recorded_at.tzinfo is not None


def test_latest_returns_most_recent_matching_sample(store, clock) -> None:
    store.record("queue.depth", "gauge", 3, {"queue": "mail"})
    clock.advance(minutes=1)
    store.record("queue.depth", "gauge", 7, {"queue": "ocr"})
    clock.advance(minutes=1)
    store.record("queue.depth", "gauge", 5, {"queue": "mail"})

    assert store.latest("queue.depth").value == 5
    assert store.latest("queue.depth", {"queue": "ocr"}).value == 7
    assert store.latest("missing") is None


def test_tag_filters_and_together(store) -> None:
    store.record("entries.created", "counter", 1, {"company_id": 1, "source": "api"})
    store.record("entries.created", "counter", 2, {"company_id": 1, "source": "import"})
    store.record("entries.created", "counter", 4, {"company_id": 2, "source": "api"})

    assert store.sum("entries.created") == 7.0
    assert store.sum("entries.created", tags={"company_id": 1}) == 3.0
    assert store.sum("entries.created", tags={"company_id": 1, "source": "api"}) == 1.0
    assert store.sum("entries.created", tags={"source": "cli"}) == 0.0


def test_boolean_tags_filter_by_value(store) -> None:
    store.record("ocr.runs", "counter", 1, {"cached": True})
    store.record("ocr.runs", "counter", 1, {"cached": False})
    store.record("ocr.runs", "counter", 1, {"cached": False})

    assert store.count("ocr.runs", tags={"cached": False}) == 2


def test_aggregates_over_empty_result_are_neutral(store) -> None:
    assert store.sum("nothing") == 0.0
    assert store.avg("nothing") == 0.0
    assert store.min("nothing") is None
    assert store.max("nothing") is None
    assert store.percentile("nothing", 95) is None
    assert store.count("nothing") == 0


def test_aggregates(store) -> None:
    for value in (10, 20, 30, 40):
        store.record("response_ms", "timing", value)

    assert store.sum("response_ms") == 100.0
    assert store.avg("response_ms") == 25.0
    assert store.min("response_ms") == 10.0
    assert store.max("response_ms") == 40.0
    assert store.percentile("response_ms", 50) == pytest.approx(25.0)
    assert store.percentile("response_ms", 95) == pytest.approx(38.5)
    assert store.percentile("response_ms", 100) == 40.0


def test_percentile_out_of_range_is_rejected(store) -> None:
    with pytest.raises(MetricValidationError):
        store.percentile("response_ms", 101)


def test_range_is_inclusive_and_ordered(store, clock) -> None:
    start = clock()
    store.record("logins", "counter", 1)
    clock.advance(minutes=30)
    store.record("logins", "counter", 2)
    clock.advance(minutes=30)
    store.record("logins", "counter", 3)
    end = clock()
    clock.advance(minutes=1)
    store.record("logins", "counter", 4)

    samples = store.range("logins", start, end)

    assert [s.value for s in samples] == [1.0, 2.0, 3.0]
    # end defaults to now
    assert len(store.range("logins", start)) == 4


def test_time_range_bounds(store, clock) -> None:
    store.record("logins", "counter", 1, recorded_at=clock() - timedelta(days=3))
    store.record("logins", "counter", 1)

    assert store.sum("logins") == 2.0
    assert store.sum("logins", start=clock() - timedelta(hours=1)) == 1.0
    assert store.sum("logins", end=clock() - timedelta(days=1)) == 1.0
    assert store.count("logins", end=clock() - timedelta(days=4)) == 0


def test_count_and_sum_by_day_use_configured_time_zone(session_factory) -> None:
    fixed = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)
    store = TimeSeriesStore(session_factory, time_zone="America/Sao_Paulo", clock=lambda: fixed)

    # 01:30 UTC on the 12th is still the 11th in Sao Paulo (UTC-3)
    store.record("receipts", "counter", 2, recorded_at=datetime(2024, 3, 12, 1, 30, tzinfo=timezone.utc))
    store.record("receipts", "counter", 3, recorded_at=datetime(2024, 3, 12, 4, 0, tzinfo=timezone.utc))
    store.record("receipts", "counter", 5, recorded_at=datetime(2024, 3, 12, 11, 0, tzinfo=timezone.utc))

    assert store.count_by_day("receipts") == {date(2024, 3, 11): 1, date(2024, 3, 12): 2}
    assert store.sum_by_day("receipts") == {date(2024, 3, 11): 2.0, date(2024, 3, 12): 8.0}
    assert store.sum_by_day("receipts", start_date=date(2024, 3, 12)) == {date(2024, 3, 12): 8.0}
    assert store.count_by_day("receipts", date(2024, 3, 10), date(2024, 3, 11)) == {date(2024, 3, 11): 1}
    assert store.sum_by_day("receipts", end_date=date(2024, 3, 11)) == {date(2024, 3, 11): 2.0}


def test_cleanup_deletes_only_old_samples_and_is_rerunnable(store, clock) -> None:
    store.record("logins", "counter", 1, recorded_at=clock() - timedelta(days=31))
    store.record("logins", "counter", 1, recorded_at=clock() - timedelta(days=29))

    assert store.cleanup(retention_days=30) == 1
    assert store.cleanup(retention_days=30) == 0
    assert store.count("logins") == 1


def test_names_lists_distinct_metrics(store) -> None:
    store.record("b.metric", "gauge", 1)
    store.record("a.metric", "counter", 1)
    store.record("a.metric", "counter", 1)

    assert store.names() == ["a.metric", "b.metric"]
    assert store.names("gauge") == ["b.metric"]


def test_concurrent_writers_lose_no_samples(tmp_path) -> None:
    engine = create_db_engine(DatabaseSettings(url=f"sqlite:///{tmp_path / 'metrics.db'}"))
    init_db(engine)
    store = TimeSeriesStore(create_session_factory(engine))

    def writer() -> None:
        for _ in range(100):
            store.record("concurrent.hits", "counter", 1)

    threads = [threading.Thread(target=writer) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    try:
        assert store.count("concurrent.hits") == 1000
        assert store.sum("concurrent.hits") == 1000.0
    finally:
        engine.dispose()
