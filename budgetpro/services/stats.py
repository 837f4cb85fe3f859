from __future__ import annotations

from calendar import monthrange
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional

from budgetpro.db.dal import Database
from budgetpro.models.constants import (
    BY_MONTH_WINDOW_MONTHS,
    BY_WEEK_WINDOW_WEEKS,
    WEEKLY_CATEGORIES,
)
from budgetpro.models.stats import StatsOut, WeeklyDataset
from budgetpro.services.money import round2

"""Aggregation helpers behind the list totals and the /api/stats endpoint.

Scopes implemented:
    - Period bounds (all / ISO week / month / year)
    - by_category: sums and counts per category, largest first
    - by_day: daily sums labelled dd/mm
    - by_month: rolling 12 months labelled "Mon YYYY"
    - by_week: rolling 8 ISO weeks, one dataset per category

Design notes:
    Computations take the Database as an argument and a `today` override so
    they stay deterministic in tests.
"""

_MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


@dataclass(frozen=True)
class DateRange:
    start: Optional[date]
    end: Optional[date]


def period_bounds(
    period: str,
    today: date | None = None,
    year: int | None = None,
    month: int | None = None,
) -> DateRange:
    """Translate a period name into an inclusive date range.

    ``year`` / ``month`` pick an explicit month or year for the list view;
    they default to the current one.
    """
    today = today or date.today()
    if period == "week":
        start = today - timedelta(days=today.weekday())
        return DateRange(start, start + timedelta(days=6))
    if period == "month":
        y = year or today.year
        m = month or today.month
        return DateRange(date(y, m, 1), date(y, m, monthrange(y, m)[1]))
    if period == "year":
        y = year or today.year
        return DateRange(date(y, 1, 1), date(y, 12, 31))
    return DateRange(None, None)


def _months_back(today: date, months: int) -> date:
    y, m = today.year, today.month - months
    while m <= 0:
        m += 12
        y -= 1
    return date(y, m, min(today.day, monthrange(y, m)[1]))


def by_category(db: Database, user_id: int, rng: DateRange, period: str) -> StatsOut:
    rows = db.totals_by_category(user_id, rng.start, rng.end)
    return StatsOut(
        type="by_category",
        period=period,
        labels=[r["category"] for r in rows],
        data=[round2(r["total"]) for r in rows],
        counts=[int(r["count"]) for r in rows],
    )


def by_day(db: Database, user_id: int, rng: DateRange, period: str) -> StatsOut:
    rows = db.totals_by_day(user_id, rng.start, rng.end)
    labels = []
    for r in rows:
        d = date.fromisoformat(r["day"])
        labels.append(f"{d.day:02d}/{d.month:02d}")
    return StatsOut(
        type="by_day",
        period=period,
        labels=labels,
        data=[round2(r["total"]) for r in rows],
    )


def by_month(db: Database, user_id: int, today: date, period: str) -> StatsOut:
    since = _months_back(today, BY_MONTH_WINDOW_MONTHS)
    rows = db.totals_by_month(user_id, since)
    labels = []
    for r in rows:
        y, m = r["month_key"].split("-")
        labels.append(f"{_MONTH_ABBR[int(m) - 1]} {y}")
    return StatsOut(
        type="by_month",
        period=period,
        labels=labels,
        data=[round2(r["total"]) for r in rows],
    )


def by_week(db: Database, user_id: int, today: date, period: str) -> StatsOut:
    """Stacked weekly totals; missing (week, category) cells are 0."""
    since = today - timedelta(weeks=BY_WEEK_WINDOW_WEEKS)
    rows = db.totals_by_day_and_category(user_id, since)
    weeks: "OrderedDict[str, Dict[str, float]]" = OrderedDict()
    for r in rows:
        iso_year, iso_week, _ = date.fromisoformat(r["day"]).isocalendar()
        # Year prefix keeps the ordering right across new year
        key = f"{iso_year}-W{iso_week:02d}"
        bucket = weeks.setdefault(key, {})
        bucket[r["category"]] = bucket.get(r["category"], 0.0) + float(r["total"])
    labels = [f"W{int(k.split('-W')[1])}" for k in weeks]
    datasets: List[WeeklyDataset] = []
    for cat in WEEKLY_CATEGORIES:
        datasets.append(
            WeeklyDataset(
                label=cat, data=[round2(b.get(cat, 0.0)) for b in weeks.values()]
            )
        )
    totals = [round2(sum(b.values())) for b in weeks.values()]
    return StatsOut(
        type="by_week", period=period, labels=labels, data=totals, datasets=datasets
    )


def compute_stats(
    db: Database, user_id: int, kind: str, period: str, today: date | None = None
) -> StatsOut:
    today = today or date.today()
    rng = period_bounds(period, today=today)
    if kind == "by_category":
        return by_category(db, user_id, rng, period)
    if kind == "by_day":
        return by_day(db, user_id, rng, period)
    if kind == "by_month":
        return by_month(db, user_id, today, period)
    if kind == "by_week":
        return by_week(db, user_id, today, period)
    raise ValueError(f"Unknown stats type '{kind}'")


def summarize_expenses(rows: List[dict]) -> tuple[float, Dict[str, float], Dict[str, float]]:
    """Total, per-category and per-date sums for an already-filtered list."""
    total = 0.0
    per_category: Dict[str, float] = {}
    per_date: Dict[str, float] = {}
    for r in rows:
        amount = float(r["amount"])
        total += amount
        per_category[r["category"]] = per_category.get(r["category"], 0.0) + amount
        per_date[r["expense_date"]] = per_date.get(r["expense_date"], 0.0) + amount
    return (
        round2(total),
        {k: round2(v) for k, v in per_category.items()},
        {k: round2(per_date[k]) for k in sorted(per_date)},
    )
