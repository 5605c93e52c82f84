"""Tests for request-scoped context isolation."""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timedelta, timezone

from ledger_observability.core import request_context
from ledger_observability.core.request_context import (
    get_request_context,
    get_request_id,
    request_scope,
    reset_request_context,
    set_duration_ms_override,
    start_request_context,
)

STARTED = datetime(2024, 3, 12, 10, 0, tzinfo=timezone.utc)


def test_no_context_outside_a_request() -> None:
    assert get_request_context() is None
    assert get_request_id() is None
    assert request_context.duration_ms() is None


def test_duration_is_computed_from_start() -> None:
    with request_scope(request_id="r1", started_at=STARTED) as context:
        assert context.duration_ms(STARTED + timedelta(milliseconds=1500)) == 1500.0
        assert context.db_time_ms() is None


def test_request_scope_installs_and_restores_context() -> None:
    before = get_request_context()

    with request_scope(request_id="outer") as outer:
        assert get_request_context() is outer
        with request_scope(request_id="inner") as inner:
            assert get_request_context() is inner
        assert get_request_context() is outer

    assert get_request_context() is before


def test_duration_override_wins() -> None:
    with request_scope(request_id="r1", started_at=STARTED):
        set_duration_ms_override(42.0)
        assert request_context.duration_ms(STARTED + timedelta(seconds=10)) == 42.0


def test_timing_marks() -> None:
    with request_scope(
        started_at=STARTED,
        db_time_start=STARTED + timedelta(milliseconds=100),
        view_time_start=STARTED + timedelta(milliseconds=250),
    ):
        now = STARTED + timedelta(milliseconds=400)
        assert request_context.db_time_ms(now) == 300.0
        assert request_context.view_time_ms(now) == 150.0


def test_reset_restores_previous_context() -> None:
    outer = start_request_context(request_id="outer")
    inner = start_request_context(request_id="inner")
    assert get_request_id() == "inner"

    reset_request_context(inner)
    assert get_request_id() == "outer"

    reset_request_context(outer)
    assert get_request_context() is None


def test_log_fields_include_identity_only_when_set() -> None:
    with request_scope(request_id="r1") as context:
        assert context.log_fields() == {"request_id": "r1"}
        context.user_id = 7
        context.company_id = 3
        assert context.log_fields() == {"request_id": "r1", "user_id": 7, "company_id": 3}


def test_threads_do_not_share_context() -> None:
    barrier = threading.Barrier(8)
    seen: dict[int, tuple[str | None, float]] = {}

    def handle(index: int) -> None:
        with request_scope(request_id=f"req-{index}"):
            barrier.wait()
            set_duration_ms_override(float(index))
            barrier.wait()
            context = get_request_context()
            seen[index] = (context.request_id, context.duration_ms())

    threads = [threading.Thread(target=handle, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert seen == {i: (f"req-{i}", float(i)) for i in range(8)}
    assert get_request_context() is None


def test_tasks_do_not_share_context() -> None:
    async def handle(index: int) -> tuple[str | None, float]:
        with request_scope(request_id=f"task-{index}"):
            await asyncio.sleep(0)
            set_duration_ms_override(index * 10.0)
            await asyncio.sleep(0)
            return get_request_id(), request_context.duration_ms()

    async def main() -> list[tuple[str | None, float]]:
        return await asyncio.gather(*(handle(i) for i in range(5)))

    results = asyncio.run(main())

    assert results == [(f"task-{i}", i * 10.0) for i in range(5)]
