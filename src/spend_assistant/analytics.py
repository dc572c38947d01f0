"""Analytics query engine over a user's synced transactions."""

import logging
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from statistics import median
from typing import Any, Protocol

from .logging_setup import get_logger
from .models import (
    MovingAverageArgs,
    PeriodComparisonArgs,
    RecurringArgs,
    SpendBreakdownArgs,
    SpendTotalArgs,
    TopNArgs,
    Transaction,
    TransactionQuery,
    TransactionsArgs,
)
from .periods import iso_week_key, parse_date

log = get_logger(__name__)


class TransactionSource(Protocol):
    """Streaming, filterable read access to a user's transactions."""

    def query_transactions(self, user_id: str, query: TransactionQuery) -> Iterator[Transaction]:
        ...


# (low, high, label, monthly multiplier), inclusive bounds in days
FREQUENCY_BANDS = (
    (5, 9, "weekly", 4.33),
    (10, 18, "biweekly", 2.17),
    (25, 35, "monthly", 1.0),
    (80, 100, "quarterly", 1 / 3),
)

VARIABLE_AMOUNT_THRESHOLD = 0.10

UNIT_DAYS = {"day": 1, "week": 7, "month": 30}


def _money(value: float) -> float:
    return round(value, 2)


def _percent_change(current: float, previous: float) -> float | None:
    """Percentage change, or None when there is no previous baseline."""
    if previous == 0:
        return None
    return round((current - previous) / previous * 100, 2)


def _group_key(tx: Transaction, group_by: str) -> str:
    if group_by == "category":
        return tx.pfc_primary or ""
    if group_by == "merchant":
        return tx.name
    return tx.date


@dataclass
class _Bucket:
    total: float = 0.0
    count: int = 0

    def add(self, amount: float) -> None:
        self.total += amount
        self.count += 1


@dataclass
class PeriodData:
    """Accumulator for one query period."""

    total: float = 0.0
    count: int = 0
    currency: str = ""
    buckets: dict[str, _Bucket] | None = None

    def add(self, tx: Transaction, group_by: str | None = None) -> None:
        self.total += tx.amount
        self.count += 1
        if not self.currency and tx.currency:
            self.currency = tx.currency
        if group_by is not None:
            key = _group_key(tx, group_by)
            if not key:
                return
            if self.buckets is None:
                self.buckets = {}
            self.buckets.setdefault(key, _Bucket()).add(tx.amount)

    def items(self, group_by: str) -> list[dict[str, Any]]:
        buckets = self.buckets or {}
        if group_by == "day":
            ordered = sorted(buckets.items())
        else:
            ordered = sorted(buckets.items(), key=lambda kv: (-kv[1].total, kv[0]))
        return [{"key": k, "total": _money(b.total), "count": b.count} for k, b in ordered]


@dataclass
class _MerchantHistory:
    currency: str = ""
    dates: list[str] = field(default_factory=list)
    amounts: list[float] = field(default_factory=list)


def classify_frequency(median_gap: float) -> tuple[str, float] | None:
    """Map a median gap in days to (frequency, monthly multiplier), or None if irregular."""
    for low, high, label, factor in FREQUENCY_BANDS:
        if low <= median_gap <= high:
            return label, factor
    return None


def _distinct_gaps(dates: list[str]) -> list[int]:
    days = sorted({parse_date(d) for d in dates})
    return [(b - a).days for a, b in zip(days, days[1:])]


class AnalyticsEngine:
    """Deterministic spend analytics.

    Each operation validates its arguments before touching the source, streams
    the matching transactions once, and returns a JSON-shaped dict. The engine
    holds no mutable state and may be shared between threads.
    """

    def __init__(self, source: TransactionSource, *, logger: logging.Logger | None = None):
        self.source = source
        self.logger = logger or log

    def _accumulate(self, user_id: str, query: TransactionQuery, group_by: str | None = None) -> PeriodData:
        period = PeriodData()
        for tx in self.source.query_transactions(user_id, query):
            period.add(tx, group_by)
        return period

    # -------------------------------------------------------------------------
    # Totals and listings
    # -------------------------------------------------------------------------

    def spend_total(self, user_id: str, args: SpendTotalArgs) -> dict[str, Any]:
        """Sum of amounts matching the filters.

        Returns:
            {"total", "currency", "from", "to"}
        """
        args.validate()
        period = self._accumulate(user_id, args.to_query())
        return {
            "total": _money(period.total),
            "currency": period.currency,
            "from": args.date_from,
            "to": args.date_to,
        }

    def spend_breakdown(self, user_id: str, args: SpendBreakdownArgs) -> dict[str, Any]:
        """Totals bucketed by category, merchant or calendar day.

        Raises:
            UnsupportedGroupByError: groupBy is missing or unknown. Raised
                before any query runs.
        """
        args.validate()
        period = self._accumulate(user_id, args.to_query(), args.group_by)
        return {
            "groupBy": args.group_by,
            "items": period.items(args.group_by),
            "currency": period.currency,
            "from": args.date_from,
            "to": args.date_to,
        }

    def transactions(self, user_id: str, args: TransactionsArgs) -> dict[str, Any]:
        """List matching transactions; ordering and limit are applied by the source."""
        args.validate()
        query = args.to_query(order_by=args.order_by or "", desc=bool(args.desc), limit=args.limit or 0)
        items = [tx.to_dict() for tx in self.source.query_transactions(user_id, query)]
        return {"transactions": items, "count": len(items)}

    # -------------------------------------------------------------------------
    # Period comparison
    # -------------------------------------------------------------------------

    def period_comparison(self, user_id: str, args: PeriodComparisonArgs) -> dict[str, Any]:
        """Compare two periods, aggregating both concurrently.

        percentageChange is omitted whenever the previous total is zero.
        """
        args.validate()
        current_q = args.to_query(date_from=args.current_from, date_to=args.current_to)
        previous_q = args.to_query(date_from=args.previous_from, date_to=args.previous_to)

        with ThreadPoolExecutor(max_workers=2) as pool:
            current_f = pool.submit(self._accumulate, user_id, current_q, args.group_by)
            previous_f = pool.submit(self._accumulate, user_id, previous_q, args.group_by)
            current = current_f.result()
            previous = previous_f.result()

        change: dict[str, Any] = {
            "absoluteChange": _money(current.total - previous.total),
            "countChange": current.count - previous.count,
        }
        pct = _percent_change(current.total, previous.total)
        if pct is not None:
            change["percentageChange"] = pct

        result: dict[str, Any] = {}
        current_out = self._period_summary(current, args.current_from, args.current_to)
        previous_out = self._period_summary(previous, args.previous_from, args.previous_to)

        if args.group_by:
            result["groupBy"] = args.group_by
            current_out["items"] = current.items(args.group_by)
            previous_out["items"] = previous.items(args.group_by)
            change["items"] = self._keyed_changes(current, previous)

        result["current"] = current_out
        result["previous"] = previous_out
        result["change"] = change
        return result

    @staticmethod
    def _period_summary(period: PeriodData, start: str | None, end: str | None) -> dict[str, Any]:
        return {
            "total": _money(period.total),
            "count": period.count,
            "currency": period.currency,
            "from": start,
            "to": end,
        }

    @staticmethod
    def _keyed_changes(current: PeriodData, previous: PeriodData) -> list[dict[str, Any]]:
        cur = current.buckets or {}
        prev = previous.buckets or {}
        items = []
        for key in sorted(set(cur) | set(prev)):
            c = cur.get(key, _Bucket())
            p = prev.get(key, _Bucket())
            item: dict[str, Any] = {
                "key": key,
                "absoluteChange": _money(c.total - p.total),
                "countChange": c.count - p.count,
            }
            pct = _percent_change(c.total, p.total)
            if pct is not None:
                item["percentageChange"] = pct
            items.append(item)
        return items

    # -------------------------------------------------------------------------
    # Recurring payments
    # -------------------------------------------------------------------------

    def recurring_transactions(self, user_id: str, args: RecurringArgs) -> dict[str, Any]:
        """Detect merchants charged on a regular cadence.

        Only settled transactions are considered. A merchant qualifies with at
        least two charges whose median gap between distinct dates falls in a
        frequency band; everything else is treated as irregular and dropped.
        """
        args.validate()
        query = TransactionQuery(
            pending=False,
            bank_id=args.bank_id,
            date_from=args.date_from,
            date_to=args.date_to,
        )

        currency = ""
        merchants: dict[str, _MerchantHistory] = {}
        for tx in self.source.query_transactions(user_id, query):
            if not currency and tx.currency:
                currency = tx.currency
            if not tx.name:
                continue
            hist = merchants.setdefault(tx.name, _MerchantHistory())
            if not hist.currency and tx.currency:
                hist.currency = tx.currency
            hist.dates.append(tx.date)
            hist.amounts.append(tx.amount)

        items = []
        for merchant, hist in merchants.items():
            item = self._recurring_item(merchant, hist)
            if item is not None:
                items.append(item)

        items.sort(key=lambda i: (-i["monthlyEquivalent"], i["merchant"]))
        total = sum(i["monthlyEquivalent"] for i in items)
        self.logger.debug("recurring: %d of %d merchants qualified", len(items), len(merchants))

        return {
            "items": items,
            "totalMonthlyEquivalent": _money(total),
            "currency": currency,
            "from": args.date_from,
            "to": args.date_to,
        }

    @staticmethod
    def _recurring_item(merchant: str, hist: _MerchantHistory) -> dict[str, Any] | None:
        if len(hist.dates) < 2:
            return None
        gaps = _distinct_gaps(hist.dates)
        if not gaps:
            return None
        band = classify_frequency(round(median(gaps)))
        if band is None:
            return None
        frequency, factor = band

        typical = median(hist.amounts)
        variable = False
        if typical != 0:
            variable = (max(hist.amounts) - min(hist.amounts)) / abs(typical) > VARIABLE_AMOUNT_THRESHOLD

        return {
            "merchant": merchant,
            "frequency": frequency,
            "typicalAmount": _money(typical),
            "amountIsVariable": variable,
            "currency": hist.currency,
            "occurrenceCount": len(hist.dates),
            "lastDate": max(hist.dates),
            "monthlyEquivalent": _money(typical * factor),
        }

    # -------------------------------------------------------------------------
    # Moving average
    # -------------------------------------------------------------------------

    def moving_average(self, user_id: str, args: MovingAverageArgs) -> dict[str, Any]:
        """Average spend per day, week or month over a date range.

        The unit count is the number of days analyzed divided by the unit
        length (7 for weeks, 30 for months), so partial units count
        fractionally. Per-key averages share the overall unit count.
        """
        args.validate()
        start = parse_date(args.date_from, "dateFrom")
        end = parse_date(args.date_to, "dateTo")
        days = max((end - start).days + 1, 1)
        units = days / UNIT_DAYS[args.granularity]

        overall = PeriodData()
        series: dict[str, _Bucket] = {}
        scoped: dict[str, dict[str, _Bucket]] = {}

        for tx in self.source.query_transactions(user_id, args.to_query()):
            overall.add(tx)
            period = self._period_key(tx.date, args.granularity)
            series.setdefault(period, _Bucket()).add(tx.amount)
            if args.scope != "overall":
                key = _group_key(tx, args.scope)
                if key:
                    scoped.setdefault(key, {}).setdefault(period, _Bucket()).add(tx.amount)

        result: dict[str, Any] = {
            "granularity": args.granularity,
            "scope": args.scope,
            "averagePerUnit": _money(overall.total / units),
            "transactionCount": overall.count,
            "daysAnalyzed": days,
            "currency": overall.currency,
            "from": args.date_from,
            "to": args.date_to,
            "series": self._series(series),
        }
        if args.scope != "overall":
            items = []
            for key in sorted(scoped):
                periods = scoped[key]
                total = sum(b.total for b in periods.values())
                items.append({
                    "key": key,
                    "averagePerUnit": _money(total / units),
                    "total": _money(total),
                    "count": sum(b.count for b in periods.values()),
                    "series": self._series(periods),
                })
            result["items"] = items
        return result

    @staticmethod
    def _period_key(day: str, granularity: str) -> str:
        if granularity == "month":
            return day[:7]
        if granularity == "week":
            return iso_week_key(date.fromisoformat(day))
        return day

    @staticmethod
    def _series(buckets: dict[str, _Bucket]) -> list[dict[str, Any]]:
        return [
            {"period": k, "total": _money(b.total), "count": b.count}
            for k, b in sorted(buckets.items())
        ]

    # -------------------------------------------------------------------------
    # Top N
    # -------------------------------------------------------------------------

    def top_n(self, user_id: str, args: TopNArgs) -> dict[str, Any]:
        """Rank merchants or categories by total spend.

        Percentages are relative to the total of every matching transaction,
        measured before the minCount filter and the limit are applied.
        """
        args.validate()
        period = self._accumulate(user_id, args.to_query(), args.dimension)
        grand_total = period.total

        ranked = [(k, b) for k, b in (period.buckets or {}).items() if b.count >= args.min_count]
        if args.direction == "bottom":
            ranked.sort(key=lambda kv: (kv[1].total, kv[0]))
        else:
            ranked.sort(key=lambda kv: (-kv[1].total, kv[0]))

        items = []
        for key, bucket in ranked[: args.limit]:
            pct = bucket.total / grand_total * 100 if grand_total else 0.0
            items.append({
                "key": key,
                "total": _money(bucket.total),
                "count": bucket.count,
                "percentage": round(pct, 2),
            })

        return {
            "dimension": args.dimension,
            "direction": args.direction,
            "totalSpend": _money(grand_total),
            "currency": period.currency,
            "from": args.date_from,
            "to": args.date_to,
            "items": items,
        }
