"""Notification sink interfaces.

The alert engine depends on this abstraction (not a concrete transport) so
alerts can be delivered by logging, email, or anything else with the same
contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

# Metrics expressed as fractions render as percentages
PERCENT_METRICS = frozenset({"error_rate", "cache_hit_rate"})
# Metrics expressed as hourly failure counts
PER_HOUR_METRICS = frozenset({"job_failures"})


def format_metric_value(value: float, metric_name: str) -> str:
    """Render a metric value for humans.

    Examples:
        >>> format_metric_value(0.075, "error_rate")
        '7.5%'
        >>> format_metric_value(12, "job_failures")
        '12 failures/hr'
    """

    if metric_name in PERCENT_METRICS:
        return f"{round(value * 100, 2)}%"
    if metric_name in PER_HOUR_METRICS:
        return f"{int(value)} failures/hr"
    return str(value)


@dataclass(frozen=True)
class AlertNotification:
    """Payload handed to a sink when an alert becomes active."""

    metric_name: str
    current_value: float
    threshold: float
    alert_type: str
    triggered_at: datetime
    description: str | None = None

    @property
    def formatted_value(self) -> str:
        return format_metric_value(self.current_value, self.metric_name)

    @property
    def formatted_threshold(self) -> str:
        return format_metric_value(self.threshold, self.metric_name)

    @property
    def subject(self) -> str:
        return f"ALERT: {self.metric_name} exceeded critical threshold"

    def body(self) -> str:
        lines = [
            f"Alert type: {self.alert_type}",
            f"Metric: {self.metric_name}",
            f"Current value: {self.formatted_value}",
            f"Threshold: {self.formatted_threshold}",
            f"Triggered at: {self.triggered_at.isoformat()}",
        ]
        if self.description:
            lines.append("")
            lines.append(self.description)
        return "\n".join(lines)


class AbstractNotificationSink(ABC):
    """Interface for alert notification delivery."""

    @abstractmethod
    def notify(self, notification: AlertNotification) -> None:
        """Deliver one alert notification.

        Args:
            notification: The alert that just became active.

        Raises:
            NotificationAppError: If delivery fails.
        """
        raise NotImplementedError
