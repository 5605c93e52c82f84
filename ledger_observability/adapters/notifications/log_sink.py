"""Notification sink that writes alerts to the structured log."""

from __future__ import annotations

import logging

from ledger_observability.adapters.notifications.base import (
    AbstractNotificationSink,
    AlertNotification,
)

logger = logging.getLogger(__name__)


class LoggingNotificationSink(AbstractNotificationSink):
    """Emit each alert as a warning-level JSON record for the log pipeline."""

    def notify(self, notification: AlertNotification) -> None:
        logger.warning(
            "alert.notification",
            extra={
                "subject": notification.subject,
                "alert_type": notification.alert_type,
                "metric_name": notification.metric_name,
                "current_value": notification.formatted_value,
                "threshold": notification.formatted_threshold,
                "triggered_at": notification.triggered_at.isoformat(),
            },
        )
