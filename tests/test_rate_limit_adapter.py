"""Unit tests for the rate limit counter stores."""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from ledger_observability.adapters.rate_limit.in_memory import InMemoryCounterStore
from ledger_observability.adapters.rate_limit.sql import SqlCounterStore
from ledger_observability.core.errors import RateLimiterUnavailableError


def test_in_memory_counts_within_window() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))

    assert store.increment("otp:1.2.3.4", 900, 900) == 1
    assert store.increment("otp:1.2.3.4", 900, 900) == 2
    assert store.increment("otp:5.6.7.8", 900, 900) == 1


def test_in_memory_resets_on_new_window() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    store.increment("k", 900, 900)
    store.increment("k", 900, 900)

    clock.return_value = 1800.0
    assert store.increment("k", 1800, 900) == 1


def test_in_memory_evicts_expired_windows() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock, sweep_interval_seconds=0)

    store.increment("a", 900, 900)
    store.increment("b", 900, 900)
    assert len(store) == 2

    clock.return_value = 5000.0
    store.increment("c", 4500, 900)
    assert len(store) == 1


def test_in_memory_purge_drops_closed_windows_immediately() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock, sweep_interval_seconds=3600)
    store.increment("a", 900, 900)
    store.increment("b", 1000, 60)

    clock.return_value = 1100.0
    assert store.purge_expired() == 1
    assert len(store) == 1


def test_in_memory_rejects_empty_key() -> None:
    store = InMemoryCounterStore()

    with pytest.raises(ValueError):
        store.increment("", 0, 60)


def test_sql_store_upserts_counter(session_factory) -> None:
    store = SqlCounterStore(session_factory, clock=Mock(return_value=1000.0))

    assert store.increment("otp:1.2.3.4", 900, 900) == 1
    assert store.increment("otp:1.2.3.4", 900, 900) == 2
    assert store.increment("otp:1.2.3.4", 1800, 900) == 1


def test_sql_store_purges_expired_counters(session_factory) -> None:
    clock = Mock(return_value=1000.0)
    store = SqlCounterStore(session_factory, clock=clock)
    store.increment("k", 900, 900)

    assert store.purge_expired() == 0
    clock.return_value = 1800.0
    assert store.purge_expired() == 1


def test_sql_store_wraps_database_errors() -> None:
    session_factory = Mock()
    session_factory.begin.side_effect = OperationalError("INSERT", {}, Exception("unable to open"))
    store = SqlCounterStore(session_factory)

    with pytest.raises(RateLimiterUnavailableError):
        store.increment("k", 0, 60)
