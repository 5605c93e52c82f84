"""Rate limit counter store interfaces.

The limiter should depend on this abstraction (not the concrete implementation)
so we can swap storage backends with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractCounterStore(ABC):
    """Interface for fixed-window counter storage."""

    @abstractmethod
    def increment(self, key: str, window_start: int, ttl_seconds: int) -> int:
        """Atomically add one to the counter of ``key`` in the given window.

        Args:
            key: Counter identity, typically ``"<rule name>:<client key>"``.
            window_start: UNIX epoch seconds at which the window opened.
            ttl_seconds: How long the counter must survive (the window period).

        Returns:
            The counter value after the increment.

        Raises:
            RateLimiterUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop counters whose window has closed.

        Returns:
            Number of counters removed.
        """
        raise NotImplementedError
