"""Tests for the never-raising tracking facade."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from ledger_observability.core.errors import StorageAppError
from ledger_observability.services.metrics_tracker import MetricsTracker
from ledger_observability.services.time_series import TimeSeriesStore


def _broken_store() -> Mock:
    store = Mock(spec=TimeSeriesStore)
    store.now.return_value = datetime(2024, 3, 12, tzinfo=timezone.utc)
    error = StorageAppError(code="metric_write_failed", message="db down")
    store.record.side_effect = error
    store.latest.side_effect = error
    store.range.side_effect = error
    store.sum.side_effect = error
    store.avg.side_effect = error
    store.min.side_effect = error
    store.max.side_effect = error
    store.count.side_effect = error
    store.percentile.side_effect = error
    store.count_by_day.side_effect = error
    store.sum_by_day.side_effect = error
    store.delete_before.side_effect = OperationalError("DELETE", {}, Exception("locked"))
    return store


def test_track_counter_sums_values(tracker) -> None:
    for value in (1, 2, 3):
        tracker.track_counter("entries.created", value)

    assert tracker.sum_values("entries.created") == 6.0


def test_track_counter_defaults_to_one(tracker) -> None:
    sample = tracker.track_counter("logins")

    assert sample is not None
    assert sample.value == 1.0
    assert sample.kind == "counter"


def test_invalid_sample_returns_none_and_logs(tracker, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        assert tracker.track_gauge("", 1) is None
        assert tracker.track_counter("logins", "many") is None

    assert [r.message for r in caplog.records].count("metrics.track_failed") == 2
    assert tracker.store.names() == []


def test_storage_failures_never_reach_the_caller(caplog: pytest.LogCaptureFixture) -> None:
    tracker = MetricsTracker(_broken_store())

    with caplog.at_level(logging.WARNING):
        assert tracker.track_counter("logins") is None
        assert tracker.track_timing("render_ms", 12.5) is None
        assert tracker.get_metric("logins") is None
        assert tracker.get_metrics_in_range("logins", Mock()) == []
        assert tracker.sum_values("logins") == 0.0
        assert tracker.avg_values("logins") == 0.0
        assert tracker.count_values("logins") == 0
        assert tracker.min_values("logins") is None
        assert tracker.max_values("logins") is None
        assert tracker.percentile("logins", 95) is None
        assert tracker.count_by_day("logins") == {}
        assert tracker.sum_by_day("logins") == {}
        assert tracker.cleanup_old_metrics() == 0

    assert any(r.message == "metrics.track_failed" for r in caplog.records)
    assert any(r.message == "metrics.cleanup_failed" for r in caplog.records)


def test_measure_timing_returns_result_and_records_duration(tracker) -> None:
    result = tracker.measure_timing("categorize_ms", lambda a, b: a + b, 2, 3, tags={"model": "small"})

    assert result == 5
    sample = tracker.get_metric("categorize_ms", {"model": "small"})
    assert sample is not None
    assert sample.kind == "timing"
    assert sample.value >= 0


def test_measure_timing_reraises_and_still_records(tracker) -> None:
    def boom() -> None:
        raise RuntimeError("categorizer failed")

    with pytest.raises(RuntimeError, match="categorizer failed"):
        tracker.measure_timing("categorize_ms", boom)

    assert tracker.count_values("categorize_ms") == 1


def test_measure_timing_result_survives_recording_failure() -> None:
    tracker = MetricsTracker(_broken_store())

    assert tracker.measure_timing("categorize_ms", lambda: "ok") == "ok"


def test_timed_context_manager_records_once(tracker) -> None:
    with tracker.timed("ocr_ms", {"engine": "tesseract"}):
        pass

    assert tracker.count_values("ocr_ms", tags={"engine": "tesseract"}) == 1


def test_track_api_response_time_uses_request_duration_metric(tracker) -> None:
    tracker.track_api_response_time(42.0, {"path": "/v1/entries"})

    assert tracker.get_metric("request_duration_ms").value == 42.0


def test_cleanup_old_metrics_records_deleted_count(tracker, store, clock) -> None:
    store.record("logins", "counter", 1, recorded_at=clock() - timedelta(days=40))
    store.record("logins", "counter", 1, recorded_at=clock() - timedelta(days=35))

    assert tracker.cleanup_old_metrics(retention_days=30) == 2
    assert tracker.get_metric("metrics_cleanup_deleted_count").value == 2.0
