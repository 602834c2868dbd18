"""
Security Monitor - flags unusual Ô Secours activity.

Looks at the ten most recent purchases and rescue requests and raises
alerts for bursts and unusually large purchases.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from structlog import get_logger

from app.models.domain import PurchaseActivity, RescueActivity, SecurityAlert
from app.observability.metrics import metrics

logger = get_logger(__name__)

RECENT_WINDOW = 10
BURST_PERIOD = timedelta(hours=1)
MAX_PURCHASES_PER_HOUR = 5
MAX_RESCUES_PER_HOUR = 2
LARGE_PURCHASE_TOKENS = 100


def analyze_activity(
    transactions: Sequence[PurchaseActivity],
    requests: Sequence[RescueActivity],
    now: datetime | None = None,
) -> list[SecurityAlert]:
    """
    Alerts for a member's recent activity.

    Both sequences are expected newest first.
    """
    now = now or datetime.now(UTC)
    since = now - BURST_PERIOD
    recent_purchases = list(transactions[:RECENT_WINDOW])
    recent_rescues = list(requests[:RECENT_WINDOW])

    alerts: list[SecurityAlert] = []

    purchases_last_hour = sum(1 for t in recent_purchases if t.created_at > since)
    if purchases_last_hour > MAX_PURCHASES_PER_HOUR:
        alerts.append(
            SecurityAlert(
                id="high-transaction-frequency",
                type="warning",
                title="High Transaction Frequency",
                message=f"{purchases_last_hour} token purchases in the last hour",
                severity="medium",
            )
        )

    rescues_last_hour = sum(1 for r in recent_rescues if r.created_at > since)
    if rescues_last_hour > MAX_RESCUES_PER_HOUR:
        alerts.append(
            SecurityAlert(
                id="multiple-rescue-requests",
                type="warning",
                title="Multiple Rescue Requests",
                message=f"{rescues_last_hour} rescue requests in the last hour",
                severity="high",
            )
        )

    large = [t for t in recent_purchases if t.token_amount > LARGE_PURCHASE_TOKENS]
    if large:
        alerts.append(
            SecurityAlert(
                id="large-purchases",
                type="info",
                title="Large Token Purchases",
                message=f"{len(large)} purchase(s) above {LARGE_PURCHASE_TOKENS} tokens",
                severity="low",
            )
        )

    for alert in alerts:
        metrics.security_alerts_total.labels(alert_id=alert.id, severity=alert.severity).inc()
    if alerts:
        logger.warning("secours_activity_flagged", alerts=[a.id for a in alerts])
    return alerts
