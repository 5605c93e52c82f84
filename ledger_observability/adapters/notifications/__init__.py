"""Notification sinks for alert delivery.

The alert engine talks to ``AbstractNotificationSink`` only; the concrete
transport (log pipeline, SMTP) is chosen by configuration.
"""

from ledger_observability.adapters.notifications.base import (
    AbstractNotificationSink,
    AlertNotification,
    format_metric_value,
)
from ledger_observability.adapters.notifications.factory import create_notification_sink
from ledger_observability.adapters.notifications.log_sink import LoggingNotificationSink
from ledger_observability.adapters.notifications.smtp_sink import SmtpNotificationSink

__all__ = [
    "AbstractNotificationSink",
    "AlertNotification",
    "LoggingNotificationSink",
    "SmtpNotificationSink",
    "create_notification_sink",
    "format_metric_value",
]
