"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from ledger_observability.adapters.rate_limit.base import AbstractCounterStore


@dataclass
class _WindowState:
    window_start: int
    count: int
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store holding one window per key in a dict.

    A counter whose window differs from the requested one is reset, which is
    what makes the window "fixed". Expired windows are evicted lazily, at
    most once per ``sweep_interval_seconds``.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        """Initialize the in-memory counter store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            sweep_interval_seconds: Minimum delay between eviction passes.
        """
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}
        self._next_sweep = 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)

    def _evict_expired(self, now: float, *, force: bool = False) -> int:
        if not force and now < self._next_sweep:
            return 0
        expired = [key for key, state in self._state_by_key.items() if state.expires_at <= now]
        for key in expired:
            del self._state_by_key[key]
        self._next_sweep = now + self._sweep_interval
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._evict_expired(self._clock(), force=True)

    def increment(self, key: str, window_start: int, ttl_seconds: int) -> int:
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            state = self._state_by_key.get(key)
            if state is None or state.window_start != window_start:
                state = _WindowState(
                    window_start=window_start,
                    count=0,
                    expires_at=window_start + ttl_seconds,
                )
                self._state_by_key[key] = state
            state.count += 1
            return state.count
