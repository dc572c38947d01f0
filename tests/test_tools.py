"""Tests for the tool registry."""

from unittest.mock import Mock

import pytest

from spend_assistant.analytics import AnalyticsEngine
from spend_assistant.errors import UnsupportedGroupByError, ValidationError
from spend_assistant.models import SpendTotalArgs, TransactionsArgs
from spend_assistant.tools import TOOLS, ToolRegistry

from conftest import USER, fixed_clock

TOOL_NAMES = [
    "get_spend_total",
    "get_spend_breakdown",
    "get_transactions",
    "get_period_comparison",
    "get_recurring_transactions",
    "get_moving_average",
    "get_top_n",
]


class TestCatalog:
    """Test the published tool definitions."""

    def test_catalog_names_in_order(self, registry: ToolRegistry):
        assert [t.name for t in registry.tools] == TOOL_NAMES

    def test_has_tool(self, registry: ToolRegistry):
        assert registry.has_tool("get_top_n")
        assert not registry.has_tool("get_net_worth")

    @pytest.mark.parametrize("tool", TOOLS, ids=lambda t: t.name)
    def test_schemas_are_objects_with_descriptions(self, tool):
        assert tool.description
        assert tool.inputSchema["type"] == "object"
        for key in tool.inputSchema.get("required", []):
            assert key in tool.inputSchema["properties"]

    def test_category_enum_lists_primary_categories(self):
        props = TOOLS[0].inputSchema["properties"]
        assert "FOOD_AND_DRINK" in props["category"]["enum"]
        assert len(props["category"]["enum"]) == 16

    def test_required_fields(self):
        required = {t.name: t.inputSchema.get("required", []) for t in TOOLS}
        assert required["get_spend_total"] == []
        assert required["get_spend_breakdown"] == ["groupBy"]
        assert required["get_top_n"] == ["dimension", "dateFrom", "dateTo"]


class TestDecode:
    """Test argument decoding and defaults."""

    def test_unknown_tool(self, registry: ToolRegistry):
        with pytest.raises(ValidationError, match="unknown tool: get_balance"):
            registry.decode("get_balance", {})

    def test_missing_required(self, registry: ToolRegistry):
        with pytest.raises(ValidationError, match="groupBy is required"):
            registry.decode("get_spend_breakdown", {"dateFrom": "2026-03-01"})

    def test_empty_required_string_is_missing(self, registry: ToolRegistry):
        with pytest.raises(ValidationError, match="dimension is required"):
            registry.decode("get_top_n", {"dimension": "", "dateFrom": "2026-03-01", "dateTo": "2026-03-31"})

    def test_defaults_month_to_date_and_settled(self, registry: ToolRegistry):
        args = registry.decode("get_spend_total", None)
        assert args == SpendTotalArgs(pending=False, date_from="2026-03-01", date_to="2026-03-15")

    def test_lone_date_from_runs_to_today(self, registry: ToolRegistry):
        args = registry.decode("get_spend_total", {"dateFrom": "2026-01-10"})
        assert (args.date_from, args.date_to) == ("2026-01-10", "2026-03-15")

    def test_lone_date_to_starts_first_of_its_month(self, registry: ToolRegistry):
        args = registry.decode("get_spend_total", {"dateTo": "2026-02-10"})
        assert (args.date_from, args.date_to) == ("2026-02-01", "2026-02-10")

    def test_explicit_pending_kept(self, registry: ToolRegistry):
        assert registry.decode("get_spend_total", {"pending": True}).pending is True

    def test_transactions_defaults(self, registry: ToolRegistry):
        args = registry.decode("get_transactions", {})
        assert isinstance(args, TransactionsArgs)
        assert (args.order_by, args.desc, args.limit) == ("date", False, 25)

    def test_integral_float_accepted_for_int(self, registry: ToolRegistry):
        args = registry.decode("get_transactions", {"limit": 5.0})
        assert args.limit == 5

    def test_wrong_type_rejected(self, registry: ToolRegistry):
        with pytest.raises(ValidationError, match="pending must be of type bool"):
            registry.decode("get_spend_total", {"pending": "yes"})

    def test_unknown_category_rejected(self, registry: ToolRegistry):
        with pytest.raises(ValidationError, match="invalid category: GROCERIES"):
            registry.decode("get_spend_total", {"category": "GROCERIES"})

    def test_unknown_keys_ignored(self, registry: ToolRegistry):
        args = registry.decode("get_spend_total", {"currency": "EUR"})
        assert args.date_from == "2026-03-01"


class TestExecute:
    """Test dispatch into the analytics engine."""

    def test_spend_total_month_to_date(self, registry: ToolRegistry):
        result = registry.execute(USER, "get_spend_total", {})
        assert result == {"total": 115.99, "currency": "USD", "from": "2026-03-01", "to": "2026-03-15"}

    def test_breakdown_by_category(self, registry: ToolRegistry):
        result = registry.execute(USER, "get_spend_breakdown", {"groupBy": "category", "pending": True})
        assert result["items"] == [{"key": "FOOD_AND_DRINK", "total": 4.5, "count": 1}]

    def test_unsupported_group_by(self, registry: ToolRegistry):
        with pytest.raises(UnsupportedGroupByError):
            registry.execute(USER, "get_spend_breakdown", {"groupBy": "week"})

    def test_top_n(self, registry: ToolRegistry):
        result = registry.execute(USER, "get_top_n", {
            "dimension": "merchant", "dateFrom": "2026-01-01", "dateTo": "2026-03-31", "limit": 1,
        })
        assert result["items"] == [{"key": "Whole Foods", "total": 100.0, "count": 3, "percentage": 53.2}]

    def test_transactions_listing(self, registry: ToolRegistry):
        result = registry.execute(USER, "get_transactions", {"merchant": "netflix", "dateFrom": "2026-01-01"})
        assert result["count"] == 3
        assert [t["date"] for t in result["transactions"]] == ["2026-01-05", "2026-02-05", "2026-03-05"]

    def test_user_isolation(self, registry: ToolRegistry):
        result = registry.execute("user-2", "get_spend_total", {})
        assert result["total"] == 999.0

    def test_logs_tool_name(self, engine: AnalyticsEngine):
        logger = Mock()
        registry = ToolRegistry(engine, clock=fixed_clock, logger=logger)

        registry.execute(USER, "get_spend_total", {})

        logger.info.assert_called_once_with("executing tool %s", "get_spend_total")

    @pytest.mark.parametrize("date_from,date_to", [
        ("20260301", "20260315"),
        ("2026-W10-1", "2026-W11-7"),
    ])
    def test_non_calendar_date_forms_rejected(self, registry: ToolRegistry, date_from, date_to):
        with pytest.raises(ValidationError, match="YYYY-MM-DD"):
            registry.execute(USER, "get_spend_total", {"dateFrom": date_from, "dateTo": date_to})

    def test_top_n_zero_limit_and_min_count_use_defaults(self, registry: ToolRegistry):
        args = {"dimension": "merchant", "dateFrom": "2026-01-01", "dateTo": "2026-03-15", "limit": 0, "minCount": 0}

        decoded = registry.decode("get_top_n", args)
        result = registry.execute(USER, "get_top_n", args)

        assert (decoded.limit, decoded.min_count) == (10, 1)
        assert [item["key"] for item in result["items"]] == ["Whole Foods", "Netflix", "Gym"]
