"""Domain constants and enumerations for validation.

Kept as plain sets/tuples; routers and the offline client share them.
"""

from typing import Set, Tuple

CATEGORIES: Set[str] = {
    "Food",
    "Transport",
    "Leisure",
    "Health",
    "Housing",
    "Other",
}
# Fixed series order for the weekly stacked chart
WEEKLY_CATEGORIES: Tuple[str, ...] = (
    "Food",
    "Transport",
    "Leisure",
    "Health",
    "Housing",
    "Other",
)
ALL_CATEGORIES = "all"

PERIODS: Set[str] = {"all", "week", "month", "year"}
STATS_KINDS: Set[str] = {"by_category", "by_day", "by_month", "by_week"}

NAME_MAX_LENGTH = 120
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 40
PASSWORD_MIN_LENGTH = 6

# Rolling windows used by the time-series aggregates
BY_MONTH_WINDOW_MONTHS = 12
BY_WEEK_WINDOW_WEEKS = 8
