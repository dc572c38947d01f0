"""Tests for dashboard widget data."""

import pytest

from spend_assistant.analytics import AnalyticsEngine
from spend_assistant.dashboard import WidgetDataService, apply_widget_defaults, resolve_date_range, validate_widget
from spend_assistant.errors import ValidationError

from conftest import FIXED_NOW, USER, fixed_clock


@pytest.fixture
def service(engine: AnalyticsEngine) -> WidgetDataService:
    return WidgetDataService(engine, clock=fixed_clock)


class TestValidateWidget:
    """Test widget config validation."""

    def test_valid_configs(self):
        validate_widget("topSpenders", "pie", {"dateRange": {"preset": "thisMonth"}, "dimension": "merchant", "limit": 5})
        validate_widget("spendingTrend", "line", {"window": "30day", "dimension": "overall"})
        validate_widget("periodComparison", "summary", {"preset": "monthOverMonth"})
        validate_widget("largestTransactions", "table", {
            "dateRange": {"startDate": "2026-01-01", "endDate": "2026-01-31"}, "limit": 5,
        })
        validate_widget("recurringSubscriptions", "list", {})

    @pytest.mark.parametrize("widget_type,visualization,config,message", [
        ("netWorth", "pie", {}, "unknown widget type"),
        ("topSpenders", "line", {}, "not valid for widget type"),
        ("topSpenders", "pie", {"dimension": "merchant", "limit": 5}, "dateRange is required"),
        ("topSpenders", "pie", {"dateRange": {"preset": "thisMonth"}, "dimension": "bank", "limit": 5}, "dimension"),
        ("topSpenders", "bar", {"dateRange": {"preset": "thisMonth"}, "dimension": "merchant", "limit": 2}, "between 3 and 20"),
        ("topSpenders", "bar", {"dateRange": {"preset": "nextMonth"}, "dimension": "merchant", "limit": 5}, "preset"),
        ("largestTransactions", "list", {"dateRange": {"startDate": "2026-01-01"}, "limit": 5}, "startDate and endDate"),
        ("largestTransactions", "list", {"dateRange": {"preset": "lastMonth"}, "limit": 21}, "between 5 and 20"),
        ("spendingTrend", "line", {"window": "14day", "dimension": "overall"}, "config.window"),
        ("spendingTrend", "bar", {"window": "7day", "dimension": "bank"}, "config.dimension"),
        ("periodComparison", "bar", {"preset": "dayOverDay"}, "config.preset"),
    ])
    def test_invalid_configs(self, widget_type, visualization, config, message):
        with pytest.raises(ValidationError, match=message):
            validate_widget(widget_type, visualization, config)

    def test_default_limit(self):
        assert apply_widget_defaults("topSpenders", {"dimension": "merchant"})["limit"] == 10
        assert apply_widget_defaults("largestTransactions", {"limit": 7})["limit"] == 7
        assert "limit" not in apply_widget_defaults("spendingTrend", {})

    def test_resolve_custom_range(self):
        assert resolve_date_range({"startDate": "2026-01-01", "endDate": "2026-01-31"}, FIXED_NOW.date()) == (
            "2026-01-01", "2026-01-31",
        )


class TestWidgetData:
    """Test widget data computed from the analytics engine."""

    def test_envelope(self, service: WidgetDataService):
        result = service.get_widget_data(USER, {"widgetId": "w1", "type": "recurringSubscriptions", "config": {}})

        assert result["widgetId"] == "w1"
        assert result["lastUpdated"] == FIXED_NOW.isoformat()

    def test_top_spenders(self, service: WidgetDataService):
        result = service.get_widget_data(USER, {
            "type": "topSpenders",
            "config": {"dateRange": {"preset": "thisMonth"}, "dimension": "merchant", "limit": 2},
        })
        data = result["data"]

        assert (data["from"], data["to"]) == ("2026-03-01", "2026-03-15")
        assert data["totalAmount"] == 120.49
        assert [(i["name"], i["amount"]) for i in data["items"]] == [("Whole Foods", 100.0), ("Netflix", 15.99)]

    def test_spending_trend(self, service: WidgetDataService):
        data = service.get_widget_data(USER, {
            "type": "spendingTrend", "config": {"window": "7day", "dimension": "merchant"},
        })["data"]

        assert (data["from"], data["to"]) == ("2026-03-08", "2026-03-15")
        assert data["granularity"] == "day"
        assert data["daysAnalyzed"] == 8
        assert [i["key"] for i in data["items"]] == ["Blue Bottle", "Whole Foods"]

    def test_period_comparison(self, service: WidgetDataService):
        data = service.get_widget_data(USER, {
            "type": "periodComparison", "config": {"preset": "monthOverMonth"},
        })["data"]

        assert data["current"]["from"] == "2026-03-01"
        assert data["previous"] == {
            "amount": 55.99, "count": 5, "currency": "USD", "from": "2026-02-01", "to": "2026-02-28",
        }
        assert data["change"]["amount"] == 64.5
        assert data["change"]["count"] == 0

    def test_largest_transactions(self, service: WidgetDataService):
        data = service.get_widget_data(USER, {
            "type": "largestTransactions", "config": {"dateRange": {"preset": "lastMonth"}, "limit": 2},
        })["data"]

        first, second = data["transactions"]
        assert first == {
            "transactionId": "nf-2",
            "date": "2026-02-05",
            "merchant": "Netflix",
            "amount": 15.99,
            "category": "ENTERTAINMENT",
        }
        assert second["amount"] == 10.0

    def test_recurring_subscriptions(self, service: WidgetDataService):
        data = service.get_widget_data(USER, {"type": "recurringSubscriptions", "config": {}})["data"]

        assert [s["merchant"] for s in data["subscriptions"]] == ["Gym", "Netflix"]
        assert data["totalMonthly"] == 59.29

    def test_unknown_type(self, service: WidgetDataService):
        with pytest.raises(ValidationError):
            service.get_widget_data(USER, {"type": "netWorth"})
