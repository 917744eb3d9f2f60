"""
Period date arithmetic for budgets.
"""
import calendar
from datetime import datetime, timedelta
from typing import NamedTuple
from app.core.utils import end_of_day, start_of_day
from app.models.budget import BudgetPeriod


class PeriodRange(NamedTuple):
    """Inclusive budget window."""
    start_date: datetime
    end_date: datetime


# Calendar months added per period; weekly is handled in days
_PERIOD_MONTHS = {
    BudgetPeriod.MONTHLY: 1,
    BudgetPeriod.QUARTERLY: 3,
    BudgetPeriod.YEARLY: 12,
}

PERIOD_DESCRIPTIONS = [
    {"period": BudgetPeriod.WEEKLY, "name": "Weekly", "description": "Budget resets every week", "duration_days": 7},
    {"period": BudgetPeriod.MONTHLY, "name": "Monthly", "description": "Budget resets every month", "duration_days": 30},
    {"period": BudgetPeriod.QUARTERLY, "name": "Quarterly", "description": "Budget resets every 3 months", "duration_days": 90},
    {"period": BudgetPeriod.YEARLY, "name": "Yearly", "description": "Budget resets every year", "duration_days": 365},
]


def add_months(value: datetime, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month is Feb 29 in a leap year, Feb 28 otherwise.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_period_dates(period: BudgetPeriod, from_date: datetime) -> PeriodRange:
    """
    Compute the window of a budget period starting at ``from_date``.

    The end is ``from_date`` plus one period length minus one day, at
    23:59:59.999, so both bounds are inclusive. Pure and deterministic.
    """
    period = BudgetPeriod(period)
    if period == BudgetPeriod.WEEKLY:
        exclusive_end = from_date + timedelta(days=7)
    else:
        exclusive_end = add_months(from_date, _PERIOD_MONTHS[period])
    return PeriodRange(start_date=from_date, end_date=end_of_day(exclusive_end - timedelta(days=1)))


def next_period_start(end_date: datetime) -> datetime:
    """First instant after the day on which a window ends; used to anchor successors."""
    return start_of_day(end_date) + timedelta(days=1)
