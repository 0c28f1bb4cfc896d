"""Relative date parsing for spending queries.

Supports:
- "today", "yesterday"
- "this week", "last week", "this month", "last month", "this year", "last year"
- "year to date" / "ytd"
- "last N days/weeks/months", "past N days/weeks/months"
- "recently" / "lately" (the last 30 days)
- Month names: "in January", "in December 2024"
"""

import re
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

DateRange = tuple[date | None, date | None]

RECENT_DAYS = 30

MONTH_NAMES = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    if month == 12:
        return start, date(year, 12, 31)
    return start, date(year, month + 1, 1) - timedelta(days=1)


def _last_month(today: date) -> tuple[date, date]:
    last_of_prev = today.replace(day=1) - timedelta(days=1)
    return last_of_prev.replace(day=1), last_of_prev


def _last_week(today: date) -> tuple[date, date]:
    start = today - timedelta(days=today.weekday() + 7)
    return start, start + timedelta(days=6)


def _trailing(match: re.Match, today: date) -> tuple[date, date]:
    n = int(match.group(1))
    unit = match.group(2)
    if unit.startswith("day"):
        return today - timedelta(days=n), today
    if unit.startswith("week"):
        return today - timedelta(weeks=n), today
    # Approximate months as 30 days
    return today - timedelta(days=n * 30), today


def _named_month(match: re.Match, today: date) -> tuple[date, date]:
    month = MONTH_NAMES[match.group(1)]
    if match.group(2):
        year = int(match.group(2))
    else:
        # A month later than the current one means last year's
        year = today.year - 1 if month > today.month else today.year
    return _month_bounds(year, month)


_MONTH_ALTERNATION = "|".join(sorted(MONTH_NAMES, key=len, reverse=True))

# Ordered: more specific phrases are listed before the ones they contain.
TIMEFRAME_PATTERNS: list[tuple[re.Pattern, Callable[[re.Match, date], tuple[date, date]]]] = [
    (re.compile(r"\byesterday\b"), lambda m, t: (t - timedelta(days=1), t - timedelta(days=1))),
    (re.compile(r"\btoday\b(?! to date)"), lambda m, t: (t, t)),
    (re.compile(r"\bthis week\b"), lambda m, t: (t - timedelta(days=t.weekday()), t)),
    (re.compile(r"\blast week\b"), lambda m, t: _last_week(t)),
    (re.compile(r"\bthis month\b"), lambda m, t: (t.replace(day=1), t)),
    (re.compile(r"\blast month\b"), lambda m, t: _last_month(t)),
    (re.compile(r"\bthis year\b"), lambda m, t: (t.replace(month=1, day=1), t)),
    (
        re.compile(r"\blast year\b"),
        lambda m, t: (date(t.year - 1, 1, 1), date(t.year - 1, 12, 31)),
    ),
    (re.compile(r"\b(?:year to date|ytd)\b"), lambda m, t: (t.replace(month=1, day=1), t)),
    (re.compile(r"\b(?:last|past)\s+(\d+)\s+(days?|weeks?|months?)\b"), _trailing),
    (re.compile(r"\b(?:recently|lately)\b"), lambda m, t: (t - timedelta(days=RECENT_DAYS), t)),
    (re.compile(rf"\b(?:in|during|for)\s+({_MONTH_ALTERNATION})\b(?:\s+(\d{{4}}))?"), _named_month),
]


def _match_timeframe(query: str) -> tuple[re.Match, Callable] | None:
    query_lower = query.lower()
    for pattern, resolver in TIMEFRAME_PATTERNS:
        match = pattern.search(query_lower)
        if match:
            return match, resolver
    return None


def find_timeframe_phrase(query: str) -> str | None:
    """Return the relative-time phrase found in the query, if any."""
    found = _match_timeframe(query)
    return found[0].group(0) if found else None


def parse_relative_date(query: str, today: date | None = None) -> DateRange:
    """
    Parse a relative date expression from the query.

    Returns (start_date, end_date), or (None, None) if no relative date found.
    """
    found = _match_timeframe(query)
    if not found:
        return (None, None)
    match, resolver = found
    return resolver(match, today or date.today())


def resolve_timeframe(value: Any, today: date | None = None) -> DateRange:
    """
    Resolve a timeframe argument to a date range.

    Accepts a phrase ("last month"), a {"start": ..., "end": ...} mapping of
    ISO dates or datetimes, or None for an open range.
    """
    if value is None or value == "":
        return (None, None)
    if isinstance(value, str):
        return parse_relative_date(value, today=today)
    if isinstance(value, dict):
        return (_parse_iso(value.get("start")), _parse_iso(value.get("end")))
    raise ValueError(f"Unsupported timeframe: {value!r}")


def _parse_iso(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    # Accept full timestamps such as "2025-07-31T23:59:59.999Z"
    return date.fromisoformat(str(value)[:10])
