"""Per-client request throttling with fixed windows.

Every rule whose matcher accepts a request increments its own counter for
the client, whatever the other rules decide; the first denying rule (in
configuration order) wins. Windows are aligned to the epoch:
``window_start = floor(now / period) * period`` and the window resets at
``window_start + period``.

Matching is by exact path and method. A rule may opt into prefix matching,
which is how the general API rule covers everything under ``/v1/``.
"""

from __future__ import annotations

import ipaddress
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence

from ledger_observability.adapters.rate_limit.base import AbstractCounterStore
from ledger_observability.core.errors import RateLimiterUnavailableError

logger = logging.getLogger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


@dataclass(frozen=True)
class RouteMatcher:
    path: str
    methods: frozenset[str] | None = None
    prefix: bool = False

    @classmethod
    def for_methods(cls, path: str, *methods: str, prefix: bool = False) -> RouteMatcher:
        return cls(path=path, methods=frozenset(m.upper() for m in methods), prefix=prefix)

    def matches(self, method: str, path: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        if self.prefix:
            return path.startswith(self.path)
        return _normalize(path) == _normalize(self.path)


def _normalize(path: str) -> str:
    return path.rstrip("/") or "/"


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    matcher: RouteMatcher
    limit: int
    period_seconds: int
    safety_net: bool = False

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.period_seconds < 1:
            raise ValueError("period_seconds must be >= 1")

    def matches(self, method: str, path: str) -> bool:
        return self.matcher.matches(method, path)

    def window_start(self, now: float) -> int:
        return int(now // self.period_seconds) * self.period_seconds


DEFAULT_RULES: tuple[RateLimitRule, ...] = (
    RateLimitRule("otp/generation", RouteMatcher.for_methods("/v1/otp/generate", "POST"), 3, 15 * 60),
    RateLimitRule("otp/validation", RouteMatcher.for_methods("/v1/otp/validate", "POST"), 5, 10 * 60),
    RateLimitRule("receipt/upload", RouteMatcher.for_methods("/v1/receipts", "POST"), 50, 3600),
    RateLimitRule("ai/categorization", RouteMatcher.for_methods("/v1/ai/categorize", "POST"), 200, 3600),
    RateLimitRule("entry/creation", RouteMatcher.for_methods("/v1/entries", "POST"), 100, 3600),
    RateLimitRule("api/general", RouteMatcher("/v1/", prefix=True), 1000, 3600),
    RateLimitRule("requests/ip", RouteMatcher("/", prefix=True), 5, 1, safety_net=True),
)


@dataclass(frozen=True)
class Safelist:
    """Clients exempt from the safety-net rule (never from named rules)."""

    networks: tuple[IPNetwork, ...] = ()
    hosts: frozenset[str] = frozenset()

    @classmethod
    def from_entries(cls, entries: Iterable[str]) -> Safelist:
        networks: list[IPNetwork] = []
        hosts: set[str] = set()
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue
            try:
                networks.append(ipaddress.ip_network(entry, strict=False))
            except ValueError:
                hosts.add(entry)
        return cls(networks=tuple(networks), hosts=frozenset(hosts))

    def contains(self, client_key: str) -> bool:
        if client_key in self.hosts:
            return True
        try:
            address = ipaddress.ip_address(client_key)
        except ValueError:
            return False
        return any(
            address.version == network.version and address in network
            for network in self.networks
        )


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one throttle evaluation.

    Quota fields are ``None`` only for a degraded decision, produced when the
    counter store was unavailable.
    """

    allowed: bool
    rule_name: str | None = None
    limit: int | None = None
    count: int | None = None
    period_seconds: int | None = None
    window_start: int | None = None
    reset_at: int | None = None
    remaining: int | None = None
    retry_after: int | None = None
    degraded: bool = False

    @property
    def has_quota(self) -> bool:
        return self.limit is not None

    def headers(self) -> dict[str, str]:
        if not self.has_quota:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def error_body(self, now: float | None = None) -> dict[str, Any]:
        """JSON body of the 429 response."""

        retry_after = self.retry_after or 1
        if now is not None and self.reset_at is not None:
            retry_after = _retry_after(self.reset_at, now)
        reset_at = datetime.fromtimestamp(self.reset_at or 0, tz=timezone.utc)
        return {
            "error": "Rate limit exceeded",
            "message": f"Too many requests. Please retry in {retry_after} seconds.",
            "limit": self.limit,
            "remaining": 0,
            "retry_after": retry_after,
            "reset_at": reset_at.isoformat(),
        }


def _retry_after(reset_at: int, now: float) -> int:
    return max(1, int(math.ceil(reset_at - now)))


class RateLimiter:
    """Evaluate requests against an ordered rule set."""

    def __init__(
        self,
        rules: Sequence[RateLimitRule],
        store: AbstractCounterStore,
        *,
        safelist: Safelist | None = None,
        clock: Callable[[], float] = time.time,
        fail_open: bool = True,
    ) -> None:
        self._rules = tuple(rules)
        self._store = store
        self._safelist = safelist or Safelist()
        self._clock = clock
        self._fail_open = fail_open

    @property
    def rules(self) -> tuple[RateLimitRule, ...]:
        return self._rules

    def _decide(self, rule: RateLimitRule, count: int, window_start: int, now: float) -> RateLimitDecision:
        reset_at = window_start + rule.period_seconds
        allowed = count <= rule.limit
        return RateLimitDecision(
            allowed=allowed,
            rule_name=rule.name,
            limit=rule.limit,
            count=count,
            period_seconds=rule.period_seconds,
            window_start=window_start,
            reset_at=reset_at,
            remaining=max(rule.limit - count, 0),
            retry_after=None if allowed else _retry_after(reset_at, now),
        )

    def evaluate(
        self,
        method: str,
        path: str,
        client_key: str,
        *,
        user_agent: str | None = None,
    ) -> RateLimitDecision | None:
        """Count this request against every matching rule.

        Returns:
            The first denying decision; otherwise the decision of the first
            matching named rule, else the safety-net decision. ``None`` when no
            rule applied.
        """

        now = self._clock()
        denied: RateLimitDecision | None = None
        named: RateLimitDecision | None = None
        safety: RateLimitDecision | None = None

        for rule in self._rules:
            if not rule.matches(method, path):
                continue
            if rule.safety_net and self._safelist.contains(client_key):
                continue

            window_start = rule.window_start(now)
            try:
                count = self._store.increment(
                    f"{rule.name}:{client_key}", window_start, rule.period_seconds
                )
            except RateLimiterUnavailableError as exc:
                return self._degraded(rule, exc, method=method, path=path)

            decision = self._decide(rule, count, window_start, now)
            if not decision.allowed and denied is None:
                denied = decision
            if rule.safety_net:
                safety = safety or decision
            else:
                named = named or decision

        if denied is not None:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "throttle_type": denied.rule_name,
                    "ip": client_key,
                    "path": path,
                    "method": method.upper(),
                    "user_agent": user_agent,
                    "limit": denied.limit,
                    "count": denied.count,
                    "retry_after_s": denied.retry_after,
                },
            )
            return denied
        return named or safety

    def _degraded(
        self, rule: RateLimitRule, exc: RateLimiterUnavailableError, *, method: str, path: str
    ) -> RateLimitDecision:
        logger.error(
            "rate_limit.store_unavailable",
            extra={
                "throttle_type": rule.name,
                "path": path,
                "method": method.upper(),
                "error_code": exc.code,
                "fail_open": self._fail_open,
            },
            exc_info=exc.__cause__,
        )
        return RateLimitDecision(allowed=self._fail_open, rule_name=rule.name, degraded=True)
