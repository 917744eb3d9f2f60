"""
Tests for period date arithmetic.
"""
from datetime import datetime
from app.models.budget import BudgetPeriod
from app.services.period_service import add_months, calculate_period_dates, next_period_start


def test_monthly_period_from_first_of_month():
    """A month starting Jan 1 ends on Jan 31 at 23:59:59.999."""
    window = calculate_period_dates(BudgetPeriod.MONTHLY, datetime(2024, 1, 1))
    assert window.start_date == datetime(2024, 1, 1)
    assert window.end_date == datetime(2024, 1, 31, 23, 59, 59, 999000)


def test_weekly_period():
    window = calculate_period_dates(BudgetPeriod.WEEKLY, datetime(2024, 1, 1))
    assert window.end_date == datetime(2024, 1, 7, 23, 59, 59, 999000)


def test_quarterly_and_yearly_periods():
    quarter = calculate_period_dates(BudgetPeriod.QUARTERLY, datetime(2024, 1, 1))
    year = calculate_period_dates(BudgetPeriod.YEARLY, datetime(2024, 1, 1))
    assert quarter.end_date == datetime(2024, 3, 31, 23, 59, 59, 999000)
    assert year.end_date == datetime(2024, 12, 31, 23, 59, 59, 999000)


def test_period_keeps_start_time_of_day():
    window = calculate_period_dates("monthly", datetime(2024, 1, 15, 10, 30))
    assert window.start_date == datetime(2024, 1, 15, 10, 30)
    assert window.end_date == datetime(2024, 2, 14, 23, 59, 59, 999000)


def test_period_calculation_is_deterministic():
    first = calculate_period_dates(BudgetPeriod.QUARTERLY, datetime(2024, 11, 1))
    second = calculate_period_dates(BudgetPeriod.QUARTERLY, datetime(2024, 11, 1))
    assert first == second
    assert first.end_date == datetime(2025, 1, 31, 23, 59, 59, 999000)


def test_add_months_clamps_to_month_end():
    """Adding months never spills into the following month."""
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2023, 1, 31), 1) == datetime(2023, 2, 28)
    assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)


def test_next_period_start_is_midnight_after_end():
    assert next_period_start(datetime(2024, 1, 31, 23, 59, 59, 999000)) == datetime(2024, 2, 1)
    assert next_period_start(datetime(2024, 12, 31, 23, 59, 59, 999000)) == datetime(2025, 1, 1)
