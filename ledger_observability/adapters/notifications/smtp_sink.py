"""Email notification sink over SMTP."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Callable

from ledger_observability.adapters.notifications.base import (
    AbstractNotificationSink,
    AlertNotification,
)
from ledger_observability.core.errors import NotificationAppError

logger = logging.getLogger(__name__)


class SmtpNotificationSink(AbstractNotificationSink):
    """Send a plain-text email per alert through an SMTP relay.

    Delivery is synchronous: ``notify`` returns once the relay accepted the
    message, or raises ``NotificationAppError``.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        recipient: str,
        timeout_seconds: float = 10.0,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._recipient = recipient
        self._timeout = timeout_seconds
        self._smtp_factory = smtp_factory

    def build_message(self, notification: AlertNotification) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = notification.subject
        message["From"] = self._sender
        message["To"] = self._recipient
        message.set_content(notification.body())
        return message

    def notify(self, notification: AlertNotification) -> None:
        try:
            message = self.build_message(notification)
            with self._smtp_factory(self._host, self._port, timeout=self._timeout) as smtp:
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            raise NotificationAppError(
                code="alert_email_failed",
                message=f"Failed to send alert email for '{notification.metric_name}'",
                details={
                    "alert_type": notification.alert_type,
                    "metric_name": notification.metric_name,
                    "backend": "smtp",
                },
            ) from exc

        logger.info(
            "alert.email_sent",
            extra={
                "metric_name": notification.metric_name,
                "alert_type": notification.alert_type,
                "recipient": self._recipient,
            },
        )
