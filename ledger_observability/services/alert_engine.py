"""Threshold alerting with per-(type, metric) cooldown.

Each (alert type, metric name) pair moves through
``resolved/none -> active -> resolved``. A breach creates an alert and
notifies the sink once, unless an active alert of the same pair was
triggered within the cooldown window, in which case the outcome is
``rate_limited`` and nothing changes. A non-breaching value resolves every
active alert of the pair immediately; resolution is never subject to
cooldown.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Literal, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ledger_observability.adapters.notifications.base import (
    AbstractNotificationSink,
    AlertNotification,
    format_metric_value,
)
from ledger_observability.core.config import AlertSettings
from ledger_observability.core.database import SessionFactory
from ledger_observability.core.errors import (
    MetricValidationError,
    NotificationAppError,
    StorageAppError,
)
from ledger_observability.models.alert import Alert

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["triggered", "rate_limited", "resolved"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Comparator(str, Enum):
    """Direction in which a metric breaches its threshold."""

    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


_COMPARE: dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.GREATER_THAN: operator.gt,
    Comparator.LESS_THAN: operator.lt,
}


@dataclass(frozen=True)
class AlertRule:
    alert_type: str
    metric_name: str
    threshold: float
    comparator: Comparator
    description_template: str = "{metric} is {value} (threshold {threshold})"

    def breached(self, value: float) -> bool:
        return _COMPARE[self.comparator](value, self.threshold)

    def describe(self, value: float) -> str:
        return self.description_template.format(
            metric=self.metric_name,
            value=format_metric_value(value, self.metric_name),
            threshold=format_metric_value(self.threshold, self.metric_name),
        )


def default_alert_rules(alert_settings: AlertSettings | None = None) -> dict[str, AlertRule]:
    """Build the standard rule set keyed by the metric key used in evaluations."""

    alert_settings = alert_settings or AlertSettings()
    rules = [
        AlertRule(
            alert_type="error_rate",
            metric_name="error_rate",
            threshold=alert_settings.error_rate_threshold,
            comparator=Comparator.GREATER_THAN,
            description_template="Error rate is {value}, above the {threshold} limit",
        ),
        AlertRule(
            alert_type="cache_hit_rate",
            metric_name="cache_hit_rate",
            threshold=alert_settings.cache_hit_rate_threshold,
            comparator=Comparator.LESS_THAN,
            description_template="Cache hit rate is {value}, below the {threshold} floor",
        ),
        AlertRule(
            alert_type="job_failures",
            metric_name="job_failures",
            threshold=alert_settings.job_failures_threshold,
            comparator=Comparator.GREATER_THAN,
            description_template="Background jobs failing at {value}, above {threshold}",
        ),
    ]
    return {rule.metric_name: rule for rule in rules}


@dataclass
class AlertOutcome:
    status: OutcomeStatus
    alert: dict[str, Any]


@dataclass
class ThresholdReport:
    """Result of one ``check_critical_thresholds`` pass."""

    triggered: list[dict[str, Any]] = field(default_factory=list)
    rate_limited: list[dict[str, Any]] = field(default_factory=list)
    resolved: list[dict[str, Any]] = field(default_factory=list)
    outcomes: dict[str, AlertOutcome] = field(default_factory=dict)

    def add(self, key: str, outcome: AlertOutcome) -> None:
        self.outcomes[key] = outcome
        getattr(self, outcome.status).append(outcome.alert)

    def as_dict(self) -> dict[str, Any]:
        return {
            "triggered": self.triggered,
            "rate_limited": self.rate_limited,
            "resolved": self.resolved,
        }


class AlertEngine:
    """Evaluate metric values against alert rules and keep alert state."""

    def __init__(
        self,
        session_factory: SessionFactory,
        sink: AbstractNotificationSink,
        rules: Mapping[str, AlertRule] | None = None,
        *,
        cooldown: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._sink = sink
        self._rules = dict(rules) if rules is not None else default_alert_rules()
        self._cooldown = cooldown
        self._clock = clock

    @property
    def rules(self) -> dict[str, AlertRule]:
        return dict(self._rules)

    # --- Evaluation ---

    def evaluate(self, key: str, value: float) -> AlertOutcome:
        """Apply the rule registered under ``key`` to ``value``.

        Raises:
            MetricValidationError: If no rule is registered for ``key``.
            StorageAppError: If alert state cannot be read or written.
        """

        rule = self._rules.get(key)
        if rule is None:
            raise MetricValidationError(
                code="alert_unknown_metric",
                message=f"No alert rule configured for '{key}'",
                details={"metric_name": key},
            )

        base_payload = {
            "type": rule.alert_type,
            "metric": rule.metric_name,
            "value": value,
            "threshold": rule.threshold,
        }
        now = self._clock()

        try:
            if rule.breached(value):
                return self._trigger(rule, value, now, base_payload)
            return self._resolve(rule, now, base_payload)
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="alert_state_failed",
                message=f"Failed to update alert state for '{rule.metric_name}'",
                details={
                    "alert_type": rule.alert_type,
                    "metric_name": rule.metric_name,
                    "operation": "evaluate",
                },
            ) from exc

    def _trigger(
        self, rule: AlertRule, value: float, now: datetime, payload: dict[str, Any]
    ) -> AlertOutcome:
        with self._session_factory.begin() as session:
            recent = session.execute(
                self._active_query(rule.alert_type, rule.metric_name)
                .where(Alert.triggered_at >= now - self._cooldown)
                .limit(1)
            ).scalar_one_or_none()
            if recent is not None:
                logger.info(
                    "alert.rate_limited",
                    extra={
                        "alert_type": rule.alert_type,
                        "metric_name": rule.metric_name,
                        "current_value": value,
                        "active_alert_id": recent.id,
                    },
                )
                return AlertOutcome(status="rate_limited", alert=payload)

            alert = Alert(
                alert_type=rule.alert_type,
                metric_name=rule.metric_name,
                current_value=value,
                threshold=rule.threshold,
                triggered_at=now,
                description=rule.describe(value),
            )
            session.add(alert)

        logger.warning(
            "alert.triggered",
            extra={
                "alert_id": alert.id,
                "alert_type": rule.alert_type,
                "metric_name": rule.metric_name,
                "current_value": value,
                "threshold": rule.threshold,
            },
        )

        # The alert is committed before the sink runs; a delivery failure leaves it active.
        notified = self._notify(alert)
        payload = {
            **payload,
            "id": alert.id,
            "triggered_at": alert.triggered_at.isoformat(),
            "description": alert.description,
            "notified": notified,
        }
        return AlertOutcome(status="triggered", alert=payload)

    def _notify(self, alert: Alert) -> bool:
        notification = AlertNotification(
            metric_name=alert.metric_name,
            current_value=alert.current_value,
            threshold=alert.threshold,
            alert_type=alert.alert_type,
            triggered_at=alert.triggered_at,
            description=alert.description,
        )
        try:
            self._sink.notify(notification)
        except NotificationAppError as exc:
            logger.error(
                "alert.notification_failed",
                extra={
                    "alert_id": alert.id,
                    "alert_type": alert.alert_type,
                    "metric_name": alert.metric_name,
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )
            return False
        except Exception as exc:  # noqa: BLE001 - a broken sink must not stop the pass
            logger.error(
                "alert.notification_failed",
                extra={
                    "alert_id": alert.id,
                    "alert_type": alert.alert_type,
                    "metric_name": alert.metric_name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
                exc_info=exc,
            )
            return False
        return True

    def _resolve(self, rule: AlertRule, now: datetime, payload: dict[str, Any]) -> AlertOutcome:
        with self._session_factory.begin() as session:
            active = list(
                session.execute(self._active_query(rule.alert_type, rule.metric_name)).scalars()
            )
            for alert in active:
                # Never resolve before the trigger, even if the clock moved backwards.
                alert.resolved_at = max(now, alert.triggered_at)

        if active:
            logger.info(
                "alert.resolved",
                extra={
                    "alert_type": rule.alert_type,
                    "metric_name": rule.metric_name,
                    "current_value": payload["value"],
                    "resolved_count": len(active),
                    "duration_seconds": round(active[0].duration(now).total_seconds(), 1),
                },
            )
        return AlertOutcome(status="resolved", alert={**payload, "resolved_count": len(active)})

    def check_critical_thresholds(self, metrics: Mapping[str, float | None]) -> ThresholdReport:
        """Evaluate every metric in ``metrics`` that has a rule.

        Metrics with a ``None`` value or no configured rule are skipped. A
        storage failure is logged and skips only the affected metric.
        """

        report = ThresholdReport()
        for key, value in metrics.items():
            if value is None or key not in self._rules:
                continue
            try:
                report.add(key, self.evaluate(key, value))
            except StorageAppError as exc:
                logger.error(
                    "alert.evaluation_failed",
                    extra={"metric_name": key, "error_code": exc.code},
                    exc_info=exc.__cause__,
                )
        return report

    # --- Queries ---

    @staticmethod
    def _active_query(alert_type: str, metric_name: str) -> Any:
        return (
            select(Alert)
            .where(
                Alert.alert_type == alert_type,
                Alert.metric_name == metric_name,
                Alert.resolved_at.is_(None),
            )
            .order_by(Alert.triggered_at.desc(), Alert.id.desc())
        )

    def _all(self, query: Any, operation: str) -> list[Alert]:
        try:
            with self._session_factory() as session:
                return list(session.execute(query).scalars())
        except SQLAlchemyError as exc:
            raise StorageAppError(
                code="alert_query_failed",
                message="Failed to query alerts",
                details={"operation": operation},
            ) from exc

    def active_alerts(self, alert_type: str | None = None) -> list[Alert]:
        query = select(Alert).where(Alert.resolved_at.is_(None))
        if alert_type is not None:
            query = query.where(Alert.alert_type == alert_type)
        return self._all(query.order_by(Alert.triggered_at.desc()), "active_alerts")

    def recent_alerts(self, limit: int = 50) -> list[Alert]:
        query = select(Alert).order_by(Alert.triggered_at.desc(), Alert.id.desc()).limit(limit)
        return self._all(query, "recent_alerts")

    def cooldown_active(self, alert_type: str, metric_name: str) -> bool:
        """True when a new breach of the pair would currently be rate limited."""

        cutoff = self._clock() - self._cooldown
        query = self._active_query(alert_type, metric_name).where(Alert.triggered_at >= cutoff)
        return bool(self._all(query.limit(1), "cooldown_active"))
