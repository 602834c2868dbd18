"""
Tests for the Ô Secours activity monitor.
"""

from datetime import UTC, datetime, timedelta

from app.models.domain import PurchaseActivity, RescueActivity
from app.services.security_monitor import analyze_activity

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def purchases(count: int, minutes_ago: int = 5, tokens: int = 10) -> list[PurchaseActivity]:
    return [PurchaseActivity(tokens, NOW - timedelta(minutes=minutes_ago)) for _ in range(count)]


def rescues(count: int, minutes_ago: int = 5) -> list[RescueActivity]:
    return [RescueActivity(NOW - timedelta(minutes=minutes_ago)) for _ in range(count)]


class TestAnalyzeActivity:
    """Tests for analyze_activity."""

    def test_quiet_history(self):
        assert analyze_activity(purchases(2), rescues(1), now=NOW) == []

    def test_purchase_burst(self):
        """More than five purchases in an hour is flagged."""
        alerts = analyze_activity(purchases(6), [], now=NOW)

        assert [a.id for a in alerts] == ["high-transaction-frequency"]
        assert alerts[0].severity == "medium"

    def test_five_purchases_not_flagged(self):
        assert analyze_activity(purchases(5), [], now=NOW) == []

    def test_old_purchases_not_counted(self):
        assert analyze_activity(purchases(8, minutes_ago=90), [], now=NOW) == []

    def test_rescue_burst(self):
        alerts = analyze_activity([], rescues(3), now=NOW)

        assert [a.id for a in alerts] == ["multiple-rescue-requests"]
        assert alerts[0].severity == "high"

    def test_large_purchase(self):
        alerts = analyze_activity(purchases(1, minutes_ago=600, tokens=150), [], now=NOW)

        assert [a.id for a in alerts] == ["large-purchases"]
        assert "1 purchase(s)" in alerts[0].message

    def test_only_recent_window_considered(self):
        """Entries beyond the ten most recent are ignored."""
        history = purchases(10, minutes_ago=120) + purchases(1, minutes_ago=600, tokens=500)

        assert analyze_activity(history, [], now=NOW) == []

    def test_all_alerts(self):
        history = purchases(6) + purchases(1, tokens=200)

        alerts = analyze_activity(history, rescues(3), now=NOW)

        assert {a.id for a in alerts} == {
            "high-transaction-frequency",
            "multiple-rescue-requests",
            "large-purchases",
        }
