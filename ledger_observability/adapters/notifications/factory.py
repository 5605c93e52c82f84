"""Factory pattern for creating notification sink instances."""

from ledger_observability.adapters.notifications.base import AbstractNotificationSink
from ledger_observability.adapters.notifications.log_sink import LoggingNotificationSink
from ledger_observability.adapters.notifications.smtp_sink import SmtpNotificationSink
from ledger_observability.core.config import AlertSettings
from ledger_observability.core.errors import ValidationAppError


def create_notification_sink(alert_settings: AlertSettings) -> AbstractNotificationSink:
    """Instantiate the sink selected by ``ALERT_NOTIFICATION_BACKEND``.

    Returns:
        AbstractNotificationSink: Configured sink instance.

    Raises:
        ValidationAppError: If the backend is unknown.
    """
    backend = alert_settings.notification_backend.lower()

    if backend == "log":
        return LoggingNotificationSink()

    if backend == "smtp":
        return SmtpNotificationSink(
            host=alert_settings.smtp_host,
            port=alert_settings.smtp_port,
            sender=alert_settings.email_from,
            recipient=alert_settings.email_to,
            timeout_seconds=alert_settings.smtp_timeout_seconds,
        )

    raise ValidationAppError(
        code="alert_unknown_backend",
        message=(
            f"Unknown notification backend: '{backend}'. Supported backends: log, smtp"
        ),
    )
