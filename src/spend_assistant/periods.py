"""Calendar helpers for resolving named periods into ISO date ranges."""

import re
from datetime import date, timedelta

from .errors import ValidationError


DATE_RANGE_PRESETS = ("thisMonth", "lastMonth", "thisQuarter", "lastQuarter", "thisYear", "lastYear")
WINDOWS = {"7day": 7, "30day": 30, "60day": 60, "90day": 90}
COMPARISON_PRESETS = ("monthOverMonth", "weekOverWeek", "quarterOverQuarter", "yearOverYear")

_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def parse_date(value: str, field: str = "date") -> date:
    """Parse a YYYY-MM-DD string, raising ValidationError on bad input."""
    message = f"{field} must be a YYYY-MM-DD date, got {value!r}"
    # fromisoformat alone also accepts forms like 20260301 and 2026-W10-1
    if not isinstance(value, str) or not _ISO_DATE_RE.fullmatch(value):
        raise ValidationError(message)
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(message) from e


def month_to_date(today: date) -> tuple[str, str]:
    """First day of the current month through today."""
    return today.replace(day=1).isoformat(), today.isoformat()


def first_of_quarter(d: date) -> date:
    return date(d.year, ((d.month - 1) // 3) * 3 + 1, 1)


def previous_quarter(d: date) -> tuple[date, date]:
    """Return (first, last) day of the quarter before the one containing d."""
    last = first_of_quarter(d) - timedelta(days=1)
    return first_of_quarter(last), last


def monday_of_week(d: date) -> date:
    return d - timedelta(days=d.weekday())


def one_year_earlier(d: date) -> date:
    try:
        return d.replace(year=d.year - 1)
    except ValueError:
        # Feb 29 rolls over to Mar 1
        return date(d.year - 1, 3, 1)


def iso_week_key(d: date) -> str:
    """Format d as its ISO week, e.g. 2026-W07."""
    year, week, _ = d.isocalendar()
    return f"{year}-W{week:02d}"


def resolve_preset(preset: str, today: date) -> tuple[str, str]:
    """Convert a date-range preset to (from, to).

    Args:
        preset: One of "thisMonth", "lastMonth", "thisQuarter", "lastQuarter",
            "thisYear", "lastYear". "this*" presets end today.
        today: Reference date.

    Returns:
        Tuple of (from, to) as ISO strings.
    """
    if preset == "thisMonth":
        return month_to_date(today)
    if preset == "lastMonth":
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1).isoformat(), end.isoformat()
    if preset == "thisQuarter":
        return first_of_quarter(today).isoformat(), today.isoformat()
    if preset == "lastQuarter":
        start, end = previous_quarter(today)
        return start.isoformat(), end.isoformat()
    if preset == "thisYear":
        return date(today.year, 1, 1).isoformat(), today.isoformat()
    if preset == "lastYear":
        return date(today.year - 1, 1, 1).isoformat(), date(today.year - 1, 12, 31).isoformat()
    raise ValidationError(f"unknown date range preset: {preset}")


def resolve_window(window: str, today: date) -> tuple[str, str]:
    """Convert a trailing window ("7day", "30day", "60day", "90day") to (from, to)."""
    days = WINDOWS.get(window)
    if days is None:
        raise ValidationError(f"unknown window: {window}")
    return (today - timedelta(days=days)).isoformat(), today.isoformat()


def resolve_comparison(preset: str, today: date) -> tuple[str, str, str, str]:
    """Convert a period-over-period preset to current and previous ranges.

    The current period always runs to today. The previous period is the whole
    preceding month/week/quarter, except yearOverYear which compares
    year-to-date against the same span one year earlier.

    Returns:
        Tuple of (current_from, current_to, previous_from, previous_to).
    """
    current_to = today.isoformat()
    if preset == "monthOverMonth":
        current_from = today.replace(day=1)
        previous_to = current_from - timedelta(days=1)
        previous_from = previous_to.replace(day=1)
    elif preset == "weekOverWeek":
        current_from = monday_of_week(today)
        previous_from = current_from - timedelta(days=7)
        previous_to = current_from - timedelta(days=1)
    elif preset == "quarterOverQuarter":
        current_from = first_of_quarter(today)
        previous_from, previous_to = previous_quarter(today)
    elif preset == "yearOverYear":
        current_from = date(today.year, 1, 1)
        previous_from = date(today.year - 1, 1, 1)
        previous_to = one_year_earlier(today)
    else:
        raise ValidationError(f"unknown period preset: {preset}")

    return (
        current_from.isoformat(),
        current_to,
        previous_from.isoformat(),
        previous_to.isoformat(),
    )
