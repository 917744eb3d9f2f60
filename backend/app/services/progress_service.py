"""
Read-time spending pace and health analytics. Never persisted.
"""
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from app.core.utils import days_between
from app.models.budget import Budget
from app.schemas.budget import BudgetProgress, HealthStatus

# Fixed design constants (percent of total spent); deliberately not configurable
DANGER_ABOVE = 100
WARNING_ABOVE = 90
GOOD_ABOVE = 75
ON_TRACK_TOLERANCE = Decimal("0.1")  # |variance| allowed, as a fraction of the total

CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def health_for(overall_progress: float) -> HealthStatus:
    """Bucket a spent-percentage into a health classification."""
    if overall_progress > DANGER_ABOVE:
        return HealthStatus.DANGER
    if overall_progress > WARNING_ABOVE:
        return HealthStatus.WARNING
    if overall_progress > GOOD_ABOVE:
        return HealthStatus.GOOD
    return HealthStatus.EXCELLENT


def analyze_progress(budget: Budget, now: datetime) -> BudgetProgress:
    """Compare actual spending to a linear spend-down of the budget over its window."""
    total = Decimal(budget.total_amount or 0)
    spent = Decimal(budget.spent_amount or 0)

    total_days = math.ceil(days_between(budget.start_date, budget.end_date))
    days_elapsed = min(max(math.ceil(days_between(budget.start_date, now)), 0), total_days)

    overall_progress = float(spent / total * 100) if total > 0 else 0.0
    expected_spending = Decimal(days_elapsed) / Decimal(total_days) * total if total_days > 0 else Decimal(0)
    variance = spent - expected_spending

    if days_elapsed > 0:
        average_daily = spent / Decimal(days_elapsed)
        projected = average_daily * Decimal(total_days)
    else:
        average_daily = Decimal(0)
        projected = Decimal(0)

    return BudgetProgress(
        overall_progress=round(overall_progress, 2),
        days_elapsed=days_elapsed,
        total_days=total_days,
        expected_spending=_money(expected_spending),
        spending_variance=_money(variance),
        on_track=abs(variance) <= total * ON_TRACK_TOLERANCE,
        projected_spending=_money(projected),
        average_daily_spending=_money(average_daily),
        health_status=health_for(overall_progress),
    )
