"""
Tests for progress analytics.
"""
from datetime import datetime
from decimal import Decimal
from app.models.budget import Budget
from app.schemas.budget import HealthStatus
from app.services.progress_service import analyze_progress, health_for

START = datetime(2024, 1, 1)
END = datetime(2024, 1, 31, 23, 59, 59, 999000)


def make_budget(total, spent):
    return Budget(start_date=START, end_date=END, total_amount=Decimal(total), spent_amount=Decimal(spent))


def test_half_spent_halfway_is_on_track():
    progress = analyze_progress(make_budget("3100", "1550"), datetime(2024, 1, 16, 12, 0))

    assert progress.total_days == 31
    assert progress.days_elapsed == 16
    assert progress.overall_progress == 50.0
    assert progress.expected_spending == Decimal("1600.00")
    assert progress.spending_variance == Decimal("-50.00")
    assert progress.on_track is True
    assert progress.average_daily_spending == Decimal("96.88")
    assert progress.projected_spending == Decimal("3003.13")
    assert progress.health_status == HealthStatus.EXCELLENT


def test_overspending_is_off_track():
    progress = analyze_progress(make_budget("1000", "950"), datetime(2024, 1, 10))

    assert progress.on_track is False
    assert progress.health_status == HealthStatus.WARNING


def test_before_start_nothing_has_elapsed():
    progress = analyze_progress(make_budget("1000", "0"), datetime(2023, 12, 20))

    assert progress.days_elapsed == 0
    assert progress.expected_spending == Decimal("0.00")
    assert progress.projected_spending == Decimal("0.00")
    assert progress.average_daily_spending == Decimal("0.00")


def test_after_end_elapsed_is_clamped():
    progress = analyze_progress(make_budget("1000", "1200"), datetime(2024, 3, 1))

    assert progress.days_elapsed == progress.total_days == 31
    assert progress.overall_progress == 120.0
    assert progress.health_status == HealthStatus.DANGER


def test_zero_total_reports_zero_progress():
    progress = analyze_progress(make_budget("0", "0"), datetime(2024, 1, 10))
    assert progress.overall_progress == 0.0


def test_health_buckets():
    assert health_for(101) == HealthStatus.DANGER
    assert health_for(100) == HealthStatus.WARNING
    assert health_for(91) == HealthStatus.WARNING
    assert health_for(90) == HealthStatus.GOOD
    assert health_for(76) == HealthStatus.GOOD
    assert health_for(75) == HealthStatus.EXCELLENT
