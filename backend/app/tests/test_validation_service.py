"""
Tests for write-gate validation.
"""
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
import pytest
from app.core.exceptions import ConflictError, DependencyError, ValidationError
from app.models.budget import AlertType, BudgetPeriod
from app.services.validation_service import (
    validate_alert_definitions, validate_allocations, validate_date_range, validate_no_overlap,
)


def allocation(category_id, amount):
    return SimpleNamespace(category_id=category_id, allocated_amount=Decimal(amount))


def test_date_range_requires_end_after_start():
    validate_date_range(datetime(2024, 1, 1), datetime(2024, 1, 2))
    with pytest.raises(ValidationError):
        validate_date_range(datetime(2024, 1, 2), datetime(2024, 1, 2))
    with pytest.raises(ValidationError):
        validate_date_range(datetime(2024, 1, 3), datetime(2024, 1, 2))


def test_allocations_over_total_rejected(categories):
    """60 + 50 does not fit in a total of 100."""
    with pytest.raises(ValidationError) as exc_info:
        validate_allocations(Decimal(100), [allocation("food", "60"), allocation("transport", "50")], categories)
    assert exc_info.value.details["allocated"] == "110"


def test_allocations_within_total_accepted(categories):
    validate_allocations(Decimal(100), [allocation("food", "60"), allocation("transport", "40")], categories)


def test_unknown_category_rejected(categories):
    with pytest.raises(ValidationError, match="missing"):
        validate_allocations(Decimal(100), [allocation("missing", "10")], categories)


def test_duplicate_category_rejected(categories):
    with pytest.raises(ValidationError):
        validate_allocations(Decimal(100), [allocation("food", "10"), allocation("food", "20")], categories)


def test_category_store_failure_is_dependency_error(categories):
    categories.error = TimeoutError("categories timed out")
    with pytest.raises(DependencyError):
        validate_allocations(Decimal(100), [allocation("food", "10")], categories)


def test_amount_only_check_skips_category_lookup(categories):
    categories.error = TimeoutError("never called")
    validate_allocations(Decimal(100), [allocation("food", "100")])


def test_alert_thresholds():
    validate_alert_definitions([SimpleNamespace(type=AlertType.AMOUNT, threshold=Decimal(150))])
    with pytest.raises(ValidationError):
        validate_alert_definitions([SimpleNamespace(type=AlertType.PERCENTAGE, threshold=Decimal(150))])
    with pytest.raises(ValidationError):
        validate_alert_definitions([SimpleNamespace(type=AlertType.REMAINING, threshold=Decimal(-1))])


def test_overlapping_window_conflicts(db, service, new_budget):
    existing = service.create_budget(new_budget(), "user-1")

    with pytest.raises(ConflictError) as exc_info:
        validate_no_overlap(db, "acct-1", BudgetPeriod.MONTHLY, datetime(2024, 1, 15), datetime(2024, 2, 14))

    error = exc_info.value
    assert error.existing_id == existing.id
    assert error.existing_start == datetime(2024, 1, 1)
    assert error.details["existing_end_date"] == "2024-01-31T23:59:59.999000"


def test_adjacent_and_unrelated_windows_do_not_conflict(db, service, new_budget):
    existing = service.create_budget(new_budget(), "user-1")

    validate_no_overlap(db, "acct-1", BudgetPeriod.MONTHLY, datetime(2024, 2, 1), datetime(2024, 2, 29))
    validate_no_overlap(db, "acct-1", BudgetPeriod.WEEKLY, datetime(2024, 1, 1), datetime(2024, 1, 7))
    validate_no_overlap(db, "acct-2", BudgetPeriod.MONTHLY, datetime(2024, 1, 1), datetime(2024, 1, 31))
    validate_no_overlap(
        db, "acct-1", BudgetPeriod.MONTHLY, datetime(2024, 1, 1), datetime(2024, 1, 31), exclude_id=existing.id
    )


def test_deleted_budgets_and_templates_do_not_conflict(db, service, new_budget):
    deleted = service.create_budget(new_budget(), "user-1")
    service.delete_budget(deleted.id, "user-1")
    service.create_budget(new_budget(name="Template", is_template=True), "user-1")

    validate_no_overlap(db, "acct-1", BudgetPeriod.MONTHLY, datetime(2024, 1, 1), datetime(2024, 1, 31))
