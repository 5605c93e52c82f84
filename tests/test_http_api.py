"""End-to-end tests through the FastAPI app: throttling, context and logging."""

from __future__ import annotations

import json
import logging
from io import StringIO
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from ledger_observability.core.app_factory import create_app
from ledger_observability.core.config import (
    DatabaseSettings,
    RateLimitSettings,
    Settings,
)
from ledger_observability.core.container import build_services
from ledger_observability.core.errors import RateLimiterUnavailableError, StorageAppError
from ledger_observability.core.logging import JsonFormatter, RequestContextFilter
from ledger_observability.core.request_context import set_duration_ms_override
from ledger_observability.services.rate_limiter import DEFAULT_RULES, RateLimiter

NOW = 1_710_237_600.0


def _settings(**rate_limit) -> Settings:
    rate_limit.setdefault("safelist", "testclient,127.0.0.1")
    return Settings(
        database=DatabaseSettings(url="sqlite://"),
        rate_limit=RateLimitSettings(**rate_limit),
    )


def _client(settings: Settings, clock, sink) -> tuple[TestClient, object]:
    services = build_services(settings, clock=clock, rate_limit_clock=Mock(return_value=NOW), sink=sink)
    app = create_app(settings, services)
    return TestClient(app), services


@pytest.fixture
def client_and_services(clock, sink):
    return _client(_settings(), clock, sink)


@pytest.fixture
def client(client_and_services) -> TestClient:
    return client_and_services[0]


@pytest.fixture
def completion_log():
    logger = logging.getLogger("ledger_observability.request")
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    yield stream
    logger.removeHandler(handler)


def _records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def test_otp_generation_is_throttled_after_three_calls(clock, sink) -> None:
    client, _ = _client(_settings(safelist=""), clock, sink)

    responses = [client.post("/v1/otp/generate") for _ in range(4)]

    assert [r.status_code for r in responses[:3]] == [200, 200, 200]
    assert [r.headers["X-RateLimit-Remaining"] for r in responses[:3]] == ["2", "1", "0"]
    assert responses[0].headers["X-RateLimit-Limit"] == "3"
    assert responses[0].headers["X-RateLimit-Reset"] == str(int(NOW) + 900)
    assert responses[0].json() == {"message": "OTP sent"}

    throttled = responses[3]
    assert throttled.status_code == 429
    assert int(throttled.headers["Retry-After"]) > 0
    assert throttled.headers["X-RateLimit-Remaining"] == "0"
    assert throttled.headers["X-Request-ID"]
    body = throttled.json()
    assert body["error"] == "Rate limit exceeded"
    assert body["limit"] == 3
    assert body["remaining"] == 0
    assert body["retry_after"] == 900
    assert body["reset_at"] == "2024-03-12T10:15:00+00:00"


def test_throttled_call_records_no_business_metric(client_and_services) -> None:
    client, services = client_and_services
    for _ in range(4):
        client.post("/v1/otp/generate")

    assert services.tracker.sum_values("otp.generated") == 3.0


def test_error_responses_do_not_advertise_quota(client) -> None:
    response = client.get("/v1/metrics/logins/summary", params={"since_minutes": 0})

    assert response.status_code == 422
    assert "X-RateLimit-Limit" not in response.headers


def test_general_rule_headers_on_read_endpoints(client) -> None:
    response = client.get("/v1/metrics/logins/summary")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "1000"
    assert response.headers["X-RateLimit-Remaining"] == "999"


def test_preserves_incoming_request_id_header(client) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "test-request-id-123"})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == "test-request-id-123"


def test_generates_request_id_when_missing(client) -> None:
    resp = client.get("/health")

    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_completion_record(client_and_services, completion_log) -> None:
    client, services = client_and_services

    client.post(
        "/v1/entries",
        headers={"X-Request-ID": "req-1", "X-User-ID": "u-7", "X-Company-ID": "c-3"},
    )
    client.get("/health")

    (record,) = _records(completion_log)
    assert record["event"] == "request.completed"
    assert record["level"] == "INFO"
    assert record["method"] == "POST"
    assert record["path"] == "/v1/entries"
    assert record["status"] == 200
    assert record["request_id"] == "req-1"
    assert record["user_id"] == "u-7"
    assert record["company_id"] == "c-3"
    assert record["ip"] == "testclient"
    assert record["rate_limited"] is False
    assert isinstance(record["duration_ms"], float)
    assert services.tracker.sum_values("entries.created", tags={"company_id": "c-3"}) == 1.0
    assert services.tracker.count_values("request_duration_ms") == 1


def test_completion_record_marks_throttled_requests(clock, sink, completion_log) -> None:
    client, _ = _client(_settings(safelist=""), clock, sink)
    for _ in range(4):
        client.post("/v1/otp/generate")

    records = _records(completion_log)
    assert [r["rate_limited"] for r in records] == [False, False, False, True]
    assert records[-1]["status"] == 429


def test_completion_record_omits_rate_limited_without_decision(clock, sink, completion_log) -> None:
    client, _ = _client(_settings(enabled=False), clock, sink)

    response = client.post("/v1/receipts")

    assert "X-RateLimit-Limit" not in response.headers
    (record,) = _records(completion_log)
    assert "rate_limited" not in record
    assert "user_id" not in record


def test_duration_override_is_reported(client_and_services, completion_log) -> None:
    client, _ = client_and_services
    app = client.app

    @app.get("/internal/fixed-duration")
    def fixed_duration() -> dict:
        set_duration_ms_override(12.5)
        return {"ok": True}

    response = client.get("/internal/fixed-duration")

    assert response.headers["X-Request-Duration-ms"] == "12.50"
    (record,) = _records(completion_log)
    assert record["duration_ms"] == 12.5


def test_metric_summary(client_and_services) -> None:
    client, services = client_and_services
    for value in (10, 20, 30, 40):
        services.tracker.track_timing("render_ms", value)

    body = client.get("/v1/metrics/render_ms/summary", params={"since_minutes": 60}).json()

    assert body == {
        "name": "render_ms",
        "since_minutes": 60,
        "count": 4,
        "latest": 40.0,
        "sum": 100.0,
        "avg": 25.0,
        "min": 10.0,
        "max": 40.0,
        "p95": pytest.approx(38.5),
    }


def test_active_alerts(client_and_services) -> None:
    client, services = client_and_services
    services.alerts.evaluate("error_rate", 0.2)

    body = client.get("/v1/alerts/active").json()

    assert body["count"] == 1
    assert body["alerts"][0]["alert_type"] == "error_rate"
    assert body["alerts"][0]["resolved_at"] is None


def test_storage_errors_map_to_503(client_and_services) -> None:
    client, services = client_and_services
    services.alerts = Mock()
    services.alerts.active_alerts.side_effect = StorageAppError(
        code="alert_query_failed", message="Failed to query alerts"
    )

    response = client.get("/v1/alerts/active", headers={"X-Request-ID": "req-503"})

    assert response.status_code == 503
    assert response.json()["error"] == {
        "code": "alert_query_failed",
        "message": "Failed to query alerts",
        "request_id": "req-503",
    }


def test_fail_closed_limiter_returns_503(clock, sink) -> None:
    client, services = _client(_settings(fail_open=False), clock, sink)
    store = Mock()
    store.increment.side_effect = RateLimiterUnavailableError(code="rate_limit_store_failed", message="down")
    services.rate_limiter = RateLimiter(DEFAULT_RULES, store, fail_open=False)

    response = client.post("/v1/entries")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "rate_limiter_unavailable"


def test_fail_open_limiter_allows_without_headers(clock, sink) -> None:
    client, services = _client(_settings(), clock, sink)
    store = Mock()
    store.increment.side_effect = RateLimiterUnavailableError(code="rate_limit_store_failed", message="down")
    services.rate_limiter = RateLimiter(DEFAULT_RULES, store)

    response = client.post("/v1/entries")

    assert response.status_code == 200
    assert "X-RateLimit-Limit" not in response.headers


def test_fail_open_completion_record_omits_rate_limited(clock, sink, completion_log) -> None:
    client, services = _client(_settings(), clock, sink)
    store = Mock()
    store.increment.side_effect = RateLimiterUnavailableError(code="rate_limit_store_failed", message="down")
    services.rate_limiter = RateLimiter(DEFAULT_RULES, store)

    client.post("/v1/entries")

    (record,) = _records(completion_log)
    assert record["status"] == 200
    assert "rate_limited" not in record


def test_metric_summary_is_served_from_read_cache(client_and_services) -> None:
    client, services = client_and_services
    services.tracker.track_counter("entries.created", 1)

    first = client.get("/v1/metrics/entries.created/summary").json()
    services.tracker.track_counter("entries.created", 1)
    second = client.get("/v1/metrics/entries.created/summary").json()

    assert first == second
    assert second["count"] == 1
    tags = {"cache": "metric_summary"}
    assert services.tracker.sum_values("cache.misses", tags=tags) == 1.0
    assert services.tracker.sum_values("cache.hits", tags=tags) == 1.0
