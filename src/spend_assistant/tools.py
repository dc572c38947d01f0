"""Tool catalog exposing the analytics engine to language models and MCP clients."""

import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from mcp.types import Tool

from .analytics import AnalyticsEngine
from .errors import ValidationError
from .logging_setup import get_logger
from .models import (
    DIMENSIONS,
    DIRECTIONS,
    GRANULARITIES,
    GROUP_BY,
    ORDER_BY,
    SCOPES,
    MovingAverageArgs,
    PeriodComparisonArgs,
    RecurringArgs,
    SpendBreakdownArgs,
    SpendTotalArgs,
    TopNArgs,
    ToolArgs,
    TransactionsArgs,
)
from .taxonomy import PFC_PRIMARY, is_pfc_primary

log = get_logger(__name__)


def _string(description: str, enum: tuple[str, ...] | None = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "string", "description": description}
    if enum:
        prop["enum"] = list(enum)
    return prop


def _date(description: str) -> dict[str, Any]:
    return _string(f"{description} (YYYY-MM-DD).")


FILTER_PROPERTIES: dict[str, dict[str, Any]] = {
    "category": _string("Primary category filter.", PFC_PRIMARY),
    "pending": {"type": "boolean", "description": "Include pending transactions. Defaults to false."},
    "bankId": _string("Filter by bank id."),
    "merchant": _string("Case-insensitive merchant name substring."),
}

RANGE_PROPERTIES: dict[str, dict[str, Any]] = {
    "dateFrom": _date("Start date, inclusive; defaults to the first day of the month"),
    "dateTo": _date("End date, inclusive; defaults to today"),
}


def _schema(properties: dict[str, dict[str, Any]], required: tuple[str, ...] = ()) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="get_spend_total",
        description="Sum transaction amounts with optional filters. Answers: 'How much did I spend this month?'",
        inputSchema=_schema({**FILTER_PROPERTIES, **RANGE_PROPERTIES}),
    ),
    Tool(
        name="get_spend_breakdown",
        description="Group spending totals by category, merchant, or day.",
        inputSchema=_schema(
            {
                "groupBy": _string("Required. Group by category, merchant, or day.", GROUP_BY),
                **FILTER_PROPERTIES,
                **RANGE_PROPERTIES,
            },
            required=("groupBy",),
        ),
    ),
    Tool(
        name="get_transactions",
        description="Return a filtered list of transactions.",
        inputSchema=_schema({
            **FILTER_PROPERTIES,
            **RANGE_PROPERTIES,
            "orderBy": _string("Sort field; defaults to date.", ORDER_BY),
            "desc": {"type": "boolean", "description": "Sort descending if true."},
            "limit": {"type": "integer", "description": "Maximum number of results; defaults to 25."},
        }),
    ),
    Tool(
        name="get_period_comparison",
        description="Compare spending between two periods, optionally per category, merchant, or day. "
                    "Answers: 'Did I spend more than last month?'",
        inputSchema=_schema(
            {
                "currentFrom": _date("Current period start"),
                "currentTo": _date("Current period end"),
                "previousFrom": _date("Previous period start"),
                "previousTo": _date("Previous period end"),
                "groupBy": _string("Optional per-key comparison.", GROUP_BY),
                **FILTER_PROPERTIES,
            },
            required=("currentFrom", "currentTo", "previousFrom", "previousTo"),
        ),
    ),
    Tool(
        name="get_recurring_transactions",
        description="Detect subscriptions and other recurring charges with their monthly cost. "
                    "Only settled transactions are considered.",
        inputSchema=_schema(
            {
                **RANGE_PROPERTIES,
                "bankId": FILTER_PROPERTIES["bankId"],
            },
            required=("dateFrom", "dateTo"),
        ),
    ),
    Tool(
        name="get_moving_average",
        description="Average spend per day, week, or month over a date range, with a period series.",
        inputSchema=_schema(
            {
                **RANGE_PROPERTIES,
                "granularity": _string("Averaging unit; defaults to day.", GRANULARITIES),
                "scope": _string("Also break the average down per category or merchant; defaults to overall.", SCOPES),
                **FILTER_PROPERTIES,
            },
            required=("dateFrom", "dateTo"),
        ),
    ),
    Tool(
        name="get_top_n",
        description="Rank merchants or categories by total spend. Answers: 'Where do I spend the most?'",
        inputSchema=_schema(
            {
                "dimension": _string("Rank merchants or categories.", DIMENSIONS),
                **RANGE_PROPERTIES,
                "direction": _string("top (largest first) or bottom; defaults to top.", DIRECTIONS),
                "limit": {"type": "integer", "description": "Number of items; defaults to 10."},
                "minCount": {"type": "integer", "description": "Minimum transactions per item; defaults to 1."},
                "category": FILTER_PROPERTIES["category"],
                "pending": FILTER_PROPERTIES["pending"],
                "bankId": FILTER_PROPERTIES["bankId"],
            },
            required=("dimension", "dateFrom", "dateTo"),
        ),
    ),
)

# tool name -> (argument type, engine method)
_DISPATCH: dict[str, tuple[type[ToolArgs], str]] = {
    "get_spend_total": (SpendTotalArgs, "spend_total"),
    "get_spend_breakdown": (SpendBreakdownArgs, "spend_breakdown"),
    "get_transactions": (TransactionsArgs, "transactions"),
    "get_period_comparison": (PeriodComparisonArgs, "period_comparison"),
    "get_recurring_transactions": (RecurringArgs, "recurring_transactions"),
    "get_moving_average": (MovingAverageArgs, "moving_average"),
    "get_top_n": (TopNArgs, "top_n"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ToolRegistry:
    """Static catalog of analytics tools with typed dispatch into the engine."""

    def __init__(
        self,
        engine: AnalyticsEngine,
        *,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ):
        self.engine = engine
        self.clock = clock
        self.logger = logger or log
        self._tools = {tool.name: tool for tool in TOOLS}

    @property
    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def decode(self, name: str, args: Mapping[str, Any] | None) -> ToolArgs:
        """Decode raw arguments into the tool's typed shape with defaults applied.

        Raises:
            ValidationError: Unknown tool, missing required field, wrong type
                or unknown category.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ValidationError(f"unknown tool: {name}")

        args = args or {}
        for key in tool.inputSchema.get("required", []):
            value = args.get(key)
            if value is None or value == "":
                raise ValidationError(f"{key} is required")

        arg_type, _ = _DISPATCH[name]
        typed = arg_type.from_args(args).with_defaults(self.clock().date())

        category = getattr(typed, "category", None)
        if category and not is_pfc_primary(category):
            raise ValidationError(f"invalid category: {category}")
        return typed

    def execute(self, user_id: str, name: str, args: Mapping[str, Any] | None) -> dict[str, Any]:
        """Run a tool and return its JSON-safe result map."""
        typed = self.decode(name, args)
        _, method = _DISPATCH[name]
        self.logger.info("executing tool %s", name)
        result = getattr(self.engine, method)(user_id, typed)
        return json.loads(json.dumps(result))
