from datetime import date

import pytest

from budgetpro.core.config import Settings
from budgetpro.db.migrate import CURRENT_SCHEMA_VERSION, apply_migrations
from budgetpro.services.stats import period_bounds, summarize_expenses


def test_derived_paths(tmp_path):
    s = Settings(data_dir=tmp_path / "nested")
    s.init_post_load()
    assert s.db_path == tmp_path / "nested" / "budgetpro.sqlite3"
    assert s.client_store_path == tmp_path / "nested" / "client.sqlite3"
    assert s.data_dir.is_dir()


@pytest.mark.parametrize(
    "overrides",
    [
        {"api_prefix": "api"},
        {"offline_queue_max_items": 0},
        {"sync_backoff_initial_seconds": 600.0},
    ],
)
def test_invalid_settings_are_refused(tmp_path, overrides):
    s = Settings(data_dir=tmp_path, **overrides)
    with pytest.raises(ValueError):
        s.init_post_load()


def test_migrations_are_idempotent(tmp_path):
    db_path = tmp_path / "server.sqlite3"
    assert apply_migrations(db_path) == CURRENT_SCHEMA_VERSION
    assert apply_migrations(db_path) == CURRENT_SCHEMA_VERSION


def test_period_bounds():
    today = date(2025, 2, 20)  # a Thursday
    week = period_bounds("week", today=today)
    assert (week.start, week.end) == (date(2025, 2, 17), date(2025, 2, 23))
    month = period_bounds("month", today=today)
    assert (month.start, month.end) == (date(2025, 2, 1), date(2025, 2, 28))
    picked = period_bounds("month", today=today, year=2024, month=2)
    assert picked.end == date(2024, 2, 29)
    year = period_bounds("year", today=today)
    assert (year.start, year.end) == (date(2025, 1, 1), date(2025, 12, 31))
    everything = period_bounds("all", today=today)
    assert everything.start is None and everything.end is None


def test_summarize_expenses_rounds_and_sorts_dates():
    rows = [
        {"amount": 0.1, "category": "Food", "expense_date": "2025-02-02"},
        {"amount": 0.2, "category": "Food", "expense_date": "2025-02-01"},
        {"amount": 5, "category": "Other", "expense_date": "2025-02-02"},
    ]
    total, per_category, per_date = summarize_expenses(rows)
    assert total == 5.3
    assert per_category == {"Food": 0.3, "Other": 5.0}
    assert list(per_date) == ["2025-02-01", "2025-02-02"]
    assert per_date["2025-02-02"] == 5.1
