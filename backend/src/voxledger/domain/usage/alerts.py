"""Usage alert delivery.

Notification delivery (email, push) belongs to another service; this module
only defines the hand-off point and the default sink that logs alerts.
"""

from typing import Protocol

from voxledger.domain.usage.types import UsageAlert
from voxledger.observability.metrics import USAGE_ALERTS
from voxledger.shared.logging import get_logger

logger = get_logger(__name__)


class AlertSink(Protocol):
    """Consumer of usage alerts."""

    async def emit(self, alert: UsageAlert) -> None: ...


class LoggingAlertSink:
    """Write alerts to the structured log for the notification pipeline."""

    async def emit(self, alert: UsageAlert) -> None:
        USAGE_ALERTS.labels(status=alert.status.value).inc()
        logger.warning(
            "usage_alert",
            user_id=str(alert.user_id),
            billing_month=alert.billing_month,
            status=alert.status.value,
            previous_status=alert.previous_status.value,
            minutes_used=alert.minutes_used,
            monthly_limit=alert.monthly_limit,
            percent_used=round(alert.percent_used * 100),
        )
