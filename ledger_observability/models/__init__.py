from __future__ import annotations

from ledger_observability.models.alert import Alert
from ledger_observability.models.metric import METRIC_KINDS, MetricSample
from ledger_observability.models.metric_rollup import ROLLUP_INTERVALS, ROLLUP_TYPES, MetricRollup
from ledger_observability.models.rate_limit import RateLimitCounter

__all__ = [
    "Alert",
    "METRIC_KINDS",
    "MetricRollup",
    "MetricSample",
    "RateLimitCounter",
    "ROLLUP_INTERVALS",
    "ROLLUP_TYPES",
]
