"""Spending analytics functions callable by the query agent.

Each function takes ``(user_id, params)`` and returns its own result shape;
the executor normalizes them. Timeframe parameters may be phrases such as
"last month" or ``{"start": ..., "end": ...}`` mappings.
"""

import statistics
from collections import defaultdict
from datetime import date, timedelta
from typing import Any

from steward.db.sqlite import db
from steward.models import Receipt, ReceiptCategory
from steward.services.timeframes import resolve_timeframe

CURRENCY = "USD"


def _receipts(user_id: str, timeframe: Any = None, **filters: Any) -> list[Receipt]:
    start, end = resolve_timeframe(timeframe)
    # Aggregates need every matching row, not the listing cap
    return db.get_receipts(user_id, start_date=start, end_date=end, limit=None, **filters)


def _total(receipts: list[Receipt]) -> float:
    return round(sum(r.total for r in receipts), 2)


def _period(timeframe: Any) -> dict[str, str | None]:
    start, end = resolve_timeframe(timeframe)
    return {
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
    }


def _resolve_category(value: str | None) -> ReceiptCategory | str | None:
    """Match a category name case-insensitively against the known categories."""
    if not value:
        return None
    for category in ReceiptCategory:
        if category.value.lower() == value.lower() or category.name.lower() == value.lower():
            return category
    return value


def _group_totals(receipts: list[Receipt], key) -> list[dict[str, Any]]:
    groups: dict[str, dict] = defaultdict(lambda: {"total": 0.0, "count": 0})
    for r in receipts:
        groups[key(r)]["total"] += r.total
        groups[key(r)]["count"] += 1
    ranked = sorted(groups.items(), key=lambda x: x[1]["total"], reverse=True)
    return [{"name": name, "total": round(g["total"], 2), "count": g["count"]} for name, g in ranked]


async def get_spending_by_vendor(user_id: str, params: dict[str, Any]) -> dict[str, Any]:
    """Total spending at a vendor (or everywhere, if no vendor given)."""
    vendor = params.get("vendor")
    receipts = _receipts(user_id, params.get("timeframe"), merchant=vendor)
    return {"vendor": vendor or "all", "total": _total(receipts), "count": len(receipts), "currency": CURRENCY}


async def get_spending_by_category(user_id: str, params: dict[str, Any]) -> dict[str, Any]:
    """Total spending in a category."""
    category = _resolve_category(params.get("category"))
    receipts = _receipts(user_id, params.get("timeframe"), category=category)
    label = category.value if isinstance(category, ReceiptCategory) else (category or "all")
    return {"category": label, "total": _total(receipts), "count": len(receipts), "currency": CURRENCY}


async def get_spending_by_time(user_id: str, params: dict[str, Any]) -> dict[str, Any]:
    """Total spending within a time period."""
    timeframe = params.get("timeframe")
    receipts = _receipts(user_id, timeframe)
    return {"period": _period(timeframe), "total": _total(receipts), "count": len(receipts), "currency": CURRENCY}


async def get_top_merchants(user_id: str, params: dict[str, Any]) -> list[dict[str, Any]]:
    """Top merchants by total spending."""
    limit = int(params.get("limit") or 10)
    receipts = _receipts(user_id, params.get("timeframe"))
    groups = _group_totals(receipts, key=lambda r: r.merchant)[:limit]
    return [{"vendor": g["name"], "total": g["total"], "count": g["count"]} for g in groups]


async def summarize_top_categories(user_id: str, params: dict[str, Any]) -> list[dict[str, Any]]:
    """Top categories by total spending."""
    limit = int(params.get("limit") or 10)
    receipts = _receipts(user_id, params.get("timeframe"))
    groups = _group_totals(
        receipts, key=lambda r: r.category.value if r.category else "Uncategorized"
    )[:limit]
    return [{"category": g["name"], "total": g["total"], "count": g["count"]} for g in groups]


async def get_spending_for_custom_period(user_id: str, params: dict[str, Any]) -> dict[str, Any]:
    """Total spending and category breakdown between two dates."""
    timeframe = {"start": params.get("startDate"), "end": params.get("endDate")}
    receipts = _receipts(user_id, timeframe)
    breakdown = _group_totals(receipts, key=lambda r: r.category.value if r.category else "Uncategorized")
    return {
        "period": _period(timeframe),
        "total": _total(receipts),
        "count": len(receipts),
        "breakdown": [{"category": g["name"], "total": g["total"], "count": g["count"]} for g in breakdown],
    }


async def get_spending_comparison(user_id: str, params: dict[str, Any]) -> dict[str, Any]:
    """Compare spending between two periods. The total is the first period's."""
    period1, period2 = params.get("period1"), params.get("period2")
    total1 = _total(_receipts(user_id, period1))
    total2 = _total(_receipts(user_id, period2))
    difference = round(total1 - total2, 2)
    return {
        "total": total1,
        "breakdown": [
            {"period": period1, "total": total1},
            {"period": period2, "total": total2},
        ],
        "difference": difference,
        "percent_change": round(difference / total2 * 100, 1) if total2 else None,
    }


async def detect_spending_anomalies(user_id: str, params: dict[str, Any]) -> list[dict[str, Any]]:
    """Flag receipts more than two standard deviations above the mean."""
    receipts = _receipts(
        user_id,
        params.get("timeframe"),
        merchant=params.get("vendor"),
        category=_resolve_category(params.get("category")),
    )
    if len(receipts) < 3:
        return []

    amounts = [r.total for r in receipts]
    mean = statistics.mean(amounts)
    threshold = mean + 2 * statistics.pstdev(amounts)

    return [
        {
            "type": "high_amount",
            "id": str(r.id),
            "merchant": r.merchant,
            "date": r.purchase_date.isoformat(),
            "total": r.total,
            "reason": f"${r.total:.2f} is well above your average of ${mean:.2f}",
        }
        for r in receipts
        if r.total > threshold
    ]


def _bucket(day: date, interval: str) -> str:
    if interval == "daily":
        return day.isoformat()
    if interval == "weekly":
        return (day - timedelta(days=day.weekday())).isoformat()
    return day.strftime("%Y-%m")


async def get_spending_trends(user_id: str, params: dict[str, Any]) -> list[dict[str, Any]]:
    """Spending per day, week or month, oldest first."""
    interval = params.get("interval") or "monthly"
    if interval not in ("daily", "weekly", "monthly"):
        raise ValueError(f"Unsupported interval: {interval}")

    buckets: dict[str, float] = defaultdict(float)
    for r in _receipts(user_id, params.get("timeframe")):
        buckets[_bucket(r.purchase_date, interval)] += r.total

    return [{"date": key, "total": round(amount, 2)} for key, amount in sorted(buckets.items())]


FUNCTION_REGISTRY = {
    "getSpendingByVendor": get_spending_by_vendor,
    "getSpendingByCategory": get_spending_by_category,
    "getSpendingByTime": get_spending_by_time,
    "getTopMerchants": get_top_merchants,
    "summarizeTopCategories": summarize_top_categories,
    "getSpendingForCustomPeriod": get_spending_for_custom_period,
    "getSpendingComparison": get_spending_comparison,
    "detectSpendingAnomalies": detect_spending_anomalies,
    "getSpendingTrends": get_spending_trends,
}
