"""Dashboard widget data: config validation, period resolution and engine calls.

A widget is a dict with "widgetId", "type", "visualization" and "config".
Widget persistence lives elsewhere; this module only turns a widget into its
display data.
"""

from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from .analytics import AnalyticsEngine
from .errors import ValidationError
from .models import MovingAverageArgs, PeriodComparisonArgs, RecurringArgs, TopNArgs, TransactionsArgs
from .periods import (
    COMPARISON_PRESETS,
    DATE_RANGE_PRESETS,
    WINDOWS,
    one_year_earlier,
    resolve_comparison,
    resolve_preset,
    resolve_window,
)

TOP_SPENDERS = "topSpenders"
SPENDING_TREND = "spendingTrend"
PERIOD_COMPARISON = "periodComparison"
LARGEST_TRANSACTIONS = "largestTransactions"
RECURRING_SUBSCRIPTIONS = "recurringSubscriptions"

VISUALIZATIONS = {
    TOP_SPENDERS: ("pie", "bar", "list"),
    SPENDING_TREND: ("line", "bar"),
    PERIOD_COMPARISON: ("summary", "bar"),
    LARGEST_TRANSACTIONS: ("list", "table"),
    RECURRING_SUBSCRIPTIONS: ("list", "table"),
}

DEFAULT_LIMIT = 10


# ============================================================================
# Validation
# ============================================================================

def validate_widget(widget_type: str, visualization: str, config: dict[str, Any]) -> None:
    """Check a widget's type, visualization and type-specific config.

    Raises:
        ValidationError: Describing the first problem found.
    """
    if widget_type not in VISUALIZATIONS:
        raise ValidationError(f"unknown widget type: {widget_type}")
    if visualization not in VISUALIZATIONS[widget_type]:
        raise ValidationError(f"visualization {visualization!r} is not valid for widget type {widget_type!r}")

    if widget_type == TOP_SPENDERS:
        _validate_date_range(config.get("dateRange"), widget_type)
        if config.get("dimension") not in ("category", "merchant"):
            raise ValidationError('config.dimension must be "category" or "merchant" for topSpenders')
        _validate_limit(config, 3, 20, widget_type)

    elif widget_type == SPENDING_TREND:
        if config.get("window") not in WINDOWS:
            raise ValidationError("config.window must be one of: " + ", ".join(WINDOWS))
        if config.get("dimension") not in ("overall", "category", "merchant"):
            raise ValidationError("config.dimension must be one of: overall, category, merchant")

    elif widget_type == PERIOD_COMPARISON:
        if config.get("preset") not in COMPARISON_PRESETS:
            raise ValidationError("config.preset must be one of: " + ", ".join(COMPARISON_PRESETS))

    elif widget_type == LARGEST_TRANSACTIONS:
        _validate_date_range(config.get("dateRange"), widget_type)
        _validate_limit(config, 5, 20, widget_type)


def _validate_date_range(date_range: dict[str, Any] | None, widget_type: str) -> None:
    if not date_range:
        raise ValidationError(f"config.dateRange is required for {widget_type}")
    preset = date_range.get("preset")
    if preset:
        if preset not in DATE_RANGE_PRESETS:
            raise ValidationError(f"unknown date range preset: {preset}")
        return
    if not date_range.get("startDate") or not date_range.get("endDate"):
        raise ValidationError("config.dateRange requires either a preset or both startDate and endDate")


def _validate_limit(config: dict[str, Any], low: int, high: int, widget_type: str) -> None:
    limit = config.get("limit", 0)
    if not isinstance(limit, int) or not low <= limit <= high:
        raise ValidationError(f"config.limit must be between {low} and {high} for {widget_type}")


def apply_widget_defaults(widget_type: str, config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of config with type defaults filled in."""
    out = dict(config)
    if widget_type in (TOP_SPENDERS, LARGEST_TRANSACTIONS) and not out.get("limit"):
        out["limit"] = DEFAULT_LIMIT
    return out


def resolve_date_range(date_range: dict[str, Any], today: date) -> tuple[str, str]:
    """Resolve a {preset} or {startDate, endDate} config to (from, to)."""
    if date_range.get("preset"):
        return resolve_preset(date_range["preset"], today)
    start, end = date_range.get("startDate"), date_range.get("endDate")
    if not start or not end:
        raise ValidationError("config.dateRange requires either a preset or both startDate and endDate")
    return start, end


# ============================================================================
# Widget data
# ============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WidgetDataService:
    """Computes widget data straight from the analytics engine."""

    def __init__(self, engine: AnalyticsEngine, clock: Callable[[], datetime] = _utcnow):
        self.engine = engine
        self.clock = clock

    def get_widget_data(self, user_id: str, widget: dict[str, Any]) -> dict[str, Any]:
        """Fetch display data for one widget.

        Returns:
            {"widgetId", "data", "lastUpdated"}
        """
        widget_type = widget.get("type", "")
        config = widget.get("config") or {}
        fetchers = {
            TOP_SPENDERS: self._top_spenders,
            SPENDING_TREND: self._spending_trend,
            PERIOD_COMPARISON: self._period_comparison,
            LARGEST_TRANSACTIONS: self._largest_transactions,
            RECURRING_SUBSCRIPTIONS: self._recurring_subscriptions,
        }
        fetch = fetchers.get(widget_type)
        if fetch is None:
            raise ValidationError(f"unknown widget type: {widget_type}")

        now = self.clock()
        data = fetch(user_id, config, now.date())
        return {
            "widgetId": widget.get("widgetId"),
            "data": data,
            "lastUpdated": now.isoformat(),
        }

    def _top_spenders(self, user_id: str, config: dict[str, Any], today: date) -> dict[str, Any]:
        start, end = resolve_date_range(config.get("dateRange") or {}, today)
        result = self.engine.top_n(user_id, TopNArgs(
            dimension=config.get("dimension"),
            direction="top",
            limit=config.get("limit") or DEFAULT_LIMIT,
            category=config.get("category") or None,
            bank_id=config.get("bankId") or None,
            date_from=start,
            date_to=end,
        ))
        return {
            "dimension": result["dimension"],
            "totalAmount": result["totalSpend"],
            "currency": result["currency"],
            "from": result["from"],
            "to": result["to"],
            "items": [
                {"name": i["key"], "amount": i["total"], "percent": i["percentage"], "count": i["count"]}
                for i in result["items"]
            ],
        }

    def _spending_trend(self, user_id: str, config: dict[str, Any], today: date) -> dict[str, Any]:
        start, end = resolve_window(config.get("window", ""), today)
        return self.engine.moving_average(user_id, MovingAverageArgs(
            granularity="day",
            scope=config.get("dimension") or "overall",
            category=config.get("category") or None,
            bank_id=config.get("bankId") or None,
            date_from=start,
            date_to=end,
        ))

    def _period_comparison(self, user_id: str, config: dict[str, Any], today: date) -> dict[str, Any]:
        cur_from, cur_to, prev_from, prev_to = resolve_comparison(config.get("preset", ""), today)
        result = self.engine.period_comparison(user_id, PeriodComparisonArgs(
            bank_id=config.get("bankId") or None,
            current_from=cur_from,
            current_to=cur_to,
            previous_from=prev_from,
            previous_to=prev_to,
        ))

        def period(p: dict[str, Any]) -> dict[str, Any]:
            return {"amount": p["total"], "count": p["count"], "currency": p["currency"], "from": p["from"], "to": p["to"]}

        change = result["change"]
        return {
            "current": period(result["current"]),
            "previous": period(result["previous"]),
            "change": {
                "amount": change["absoluteChange"],
                "percent": change.get("percentageChange"),
                "count": change["countChange"],
            },
        }

    def _largest_transactions(self, user_id: str, config: dict[str, Any], today: date) -> dict[str, Any]:
        start, end = resolve_date_range(config.get("dateRange") or {}, today)
        result = self.engine.transactions(user_id, TransactionsArgs(
            category=config.get("category") or None,
            bank_id=config.get("bankId") or None,
            date_from=start,
            date_to=end,
            order_by="amount",
            desc=True,
            limit=config.get("limit") or DEFAULT_LIMIT,
        ))
        return {
            "transactions": [
                {
                    "transactionId": tx["transactionId"],
                    "date": tx["date"],
                    "merchant": tx["name"],
                    "amount": tx["amount"],
                    "category": tx.get("pfcPrimary", ""),
                }
                for tx in result["transactions"]
            ]
        }

    def _recurring_subscriptions(self, user_id: str, config: dict[str, Any], today: date) -> dict[str, Any]:
        result = self.engine.recurring_transactions(user_id, RecurringArgs(
            bank_id=config.get("bankId") or None,
            date_from=one_year_earlier(today).isoformat(),
            date_to=today.isoformat(),
        ))
        return {
            "subscriptions": [
                {
                    "merchant": i["merchant"],
                    "amount": i["typicalAmount"],
                    "frequency": i["frequency"],
                    "monthlyEquiv": i["monthlyEquivalent"],
                    "variable": i["amountIsVariable"],
                }
                for i in result["items"]
            ],
            "totalMonthly": result["totalMonthlyEquivalent"],
            "currency": result["currency"],
        }
