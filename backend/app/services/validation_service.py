"""
Write-gate validation for budgets: date ranges, alert thresholds, category allocations and period overlap.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol
from sqlalchemy.orm import Session
from app.core.exceptions import ConflictError, ValidationError
from app.db.repository import BudgetRepository
from app.models.budget import AlertType, BudgetPeriod
from app.services.collaborators import CategoryStore, call_dependency

logger = logging.getLogger(__name__)

MAX_PERCENTAGE_THRESHOLD = Decimal(100)


class AllocationLike(Protocol):
    category_id: str
    allocated_amount: Decimal


class AlertLike(Protocol):
    type: AlertType
    threshold: Decimal


def validate_date_range(start_date: datetime, end_date: datetime) -> None:
    """End must be strictly after start."""
    if end_date <= start_date:
        raise ValidationError("End date must be after start date")


def validate_alert_definitions(alerts: Iterable[AlertLike]) -> None:
    """Thresholds are non-negative; percentage thresholds stay within 0-100."""
    for alert in alerts:
        threshold = Decimal(alert.threshold)
        if threshold < 0:
            raise ValidationError(f"Alert threshold must be 0 or greater (got {threshold})")
        if AlertType(alert.type) == AlertType.PERCENTAGE and threshold > MAX_PERCENTAGE_THRESHOLD:
            raise ValidationError(f"Percentage alert threshold cannot exceed 100 (got {threshold})")


def validate_allocations(
    total_amount: Decimal,
    allocations: Iterable[AllocationLike],
    categories: Optional[CategoryStore] = None,
) -> None:
    """
    Category allocations must fit in the budget total and reference existing categories.

    The existence check is delegated to the category collaborator; pass
    ``categories=None`` to check only the amounts (e.g. when the total shrinks).
    """
    allocations = list(allocations)
    allocated = sum((Decimal(a.allocated_amount) for a in allocations), Decimal(0))
    if allocated > Decimal(total_amount):
        raise ValidationError(
            "Category budget allocation exceeds total budget amount",
            {"allocated": str(allocated), "total_amount": str(total_amount)},
        )

    seen = set()
    for allocation in allocations:
        if allocation.category_id in seen:
            raise ValidationError(f"Category {allocation.category_id} is allocated more than once")
        seen.add(allocation.category_id)

    if categories is None:
        return
    for allocation in allocations:
        if not call_dependency("category_store", categories.exists, allocation.category_id):
            raise ValidationError(f"Category {allocation.category_id} not found")


def validate_no_overlap(
    db: Session,
    account_id: str,
    period: BudgetPeriod,
    start_date: datetime,
    end_date: datetime,
    exclude_id: Optional[int] = None,
) -> None:
    """
    Reject a window that intersects a live budget of the same account and period.

    Must run in the transaction that performs the insert/update; the unique
    window constraint on the table catches what slips between check and write.
    """
    overlapping = BudgetRepository(db).find_overlapping(account_id, period, start_date, end_date, exclude_id)
    if overlapping:
        existing = overlapping[0]
        logger.info(
            f"Rejected {period.value} budget for account {account_id}: overlaps budget {existing.id} "
            f"({existing.start_date.isoformat()} - {existing.end_date.isoformat()})"
        )
        raise ConflictError(
            "overlapping budget period",
            existing_id=existing.id,
            existing_start=existing.start_date,
            existing_end=existing.end_date,
        )
