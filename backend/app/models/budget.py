"""
Budget models: the budget aggregate, its category allocations, alert rules and viewer grants.

Remaining amounts are derived values. They are only written by the
``set_total_amount`` / ``set_allocated_amount`` / ``apply_spending`` methods,
never assigned directly by callers.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, Optional
from sqlalchemy import (
    Column, String, Numeric, DateTime, Boolean, ForeignKey, Integer, JSON,
    Enum as SQLEnum, UniqueConstraint, Index,
)
from sqlalchemy.ext.associationproxy import association_proxy
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import relationship
from app.db.base import BaseModel
import enum

ZERO = Decimal(0)


class BudgetPeriod(str, enum.Enum):
    """Budget period enumeration."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class BudgetStatus(str, enum.Enum):
    """Budget status enumeration."""
    ACTIVE = "active"
    PAUSED = "paused"
    EXCEEDED = "exceeded"
    COMPLETED = "completed"


class AlertType(str, enum.Enum):
    """Alert rule types."""
    PERCENTAGE = "percentage"  # Fires when X% of the allocation is spent
    AMOUNT = "amount"  # Fires when spending reaches an amount
    REMAINING = "remaining"  # Fires when the remaining amount drops to X


def _remaining(allocated: Optional[Decimal], spent: Optional[Decimal]) -> Decimal:
    return max(ZERO, (allocated or ZERO) - (spent or ZERO))


class BudgetAlert(BaseModel):
    """Threshold rule attached either to a whole budget or to one category allocation."""
    __tablename__ = "budget_alerts"

    budget_id = Column(Integer, ForeignKey("budgets.id"), nullable=True, index=True)  # Set for global alerts
    category_budget_id = Column(Integer, ForeignKey("category_budgets.id"), nullable=True, index=True)
    position = Column(Integer, nullable=False, default=0)
    type = Column(SQLEnum(AlertType), nullable=False)
    threshold = Column(Numeric(15, 2), nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    triggered = Column(Boolean, default=False, nullable=False)
    triggered_at = Column(DateTime, nullable=True)
    message = Column(String(200), nullable=True)

    def fire(self, when: datetime) -> None:
        """Mark the alert as triggered. Triggered alerts are never reset."""
        self.triggered = True
        self.triggered_at = when

    def same_definition(self, alert_type: AlertType, threshold: Decimal) -> bool:
        return self.type == alert_type and Decimal(self.threshold) == Decimal(threshold)

    def copy_definition(self) -> "BudgetAlert":
        """New untriggered alert with the same rule."""
        return BudgetAlert(
            type=self.type,
            threshold=self.threshold,
            enabled=self.enabled,
            triggered=False,
            triggered_at=None,
            message=self.message,
        )


class CategoryBudget(BaseModel):
    """Portion of a budget earmarked for one spending category."""
    __tablename__ = "category_budgets"

    budget_id = Column(Integer, ForeignKey("budgets.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    category_id = Column(String(64), nullable=False, index=True)
    allocated_amount = Column(Numeric(15, 2), nullable=False)
    spent_amount = Column(Numeric(15, 2), nullable=False, default=ZERO)
    remaining_amount = Column(Numeric(15, 2), nullable=False, default=ZERO)
    track_expenses = Column(Boolean, default=True, nullable=False)

    # Relationships
    budget = relationship("Budget", back_populates="category_budgets")
    alerts = relationship(
        "BudgetAlert",
        foreign_keys=[BudgetAlert.category_budget_id],
        order_by=BudgetAlert.position,
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
    )

    def set_allocated_amount(self, amount: Decimal) -> None:
        self.allocated_amount = amount
        self.remaining_amount = _remaining(amount, self.spent_amount)

    def apply_spending(self, spent: Decimal) -> None:
        self.spent_amount = spent
        self.remaining_amount = _remaining(self.allocated_amount, spent)


class BudgetAllowedUser(BaseModel):
    """Viewer grant beyond account membership."""
    __tablename__ = "budget_allowed_users"

    budget_id = Column(Integer, ForeignKey("budgets.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("budget_id", "user_id", name="uq_budget_allowed_user"),
    )


class Budget(BaseModel):
    """Monetary allocation over a fixed date window."""
    __tablename__ = "budgets"

    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    account_id = Column(String(64), nullable=False, index=True)
    created_by = Column(String(64), nullable=False, index=True)
    currency = Column(String(3), nullable=False, default="USD")

    total_amount = Column(Numeric(15, 2), nullable=False)
    spent_amount = Column(Numeric(15, 2), nullable=False, default=ZERO)
    remaining_amount = Column(Numeric(15, 2), nullable=False, default=ZERO)

    period = Column(SQLEnum(BudgetPeriod), nullable=False, default=BudgetPeriod.MONTHLY)
    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=False, index=True)
    status = Column(SQLEnum(BudgetStatus), nullable=False, default=BudgetStatus.ACTIVE, index=True)

    auto_renew = Column(Boolean, default=True, nullable=False)
    renewed_from_id = Column(Integer, ForeignKey("budgets.id"), nullable=True, index=True)
    renewed_to_id = Column(Integer, ForeignKey("budgets.id"), nullable=True)  # Set on the predecessor once renewed
    is_template = Column(Boolean, default=False, nullable=False)

    meta = Column("metadata", JSON, nullable=False, default=dict)  # source, tags, notes, notification flags
    last_recalculated_at = Column(DateTime, nullable=True)

    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(String(64), nullable=True)

    # True while the budget takes part in overlap checks, NULL otherwise (NULLs never collide)
    overlap_guard = Column(Boolean, nullable=True)

    # Relationships
    category_budgets = relationship(
        "CategoryBudget",
        back_populates="budget",
        order_by=CategoryBudget.position,
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
    )
    global_alerts = relationship(
        "BudgetAlert",
        foreign_keys=[BudgetAlert.budget_id],
        order_by=BudgetAlert.position,
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
    )
    allowed_user_rows = relationship("BudgetAllowedUser", cascade="all, delete-orphan")
    allowed_users = association_proxy(
        "allowed_user_rows", "user_id",
        creator=lambda user_id: BudgetAllowedUser(user_id=user_id),
    )

    __table_args__ = (
        UniqueConstraint("account_id", "period", "start_date", "overlap_guard", name="uq_budget_live_window"),
        Index("ix_budget_account_period_window", "account_id", "period", "start_date", "end_date"),
        Index("ix_budget_renewal", "auto_renew", "status", "end_date", "is_deleted"),
    )

    # Invariant-enforcing mutators

    def set_total_amount(self, amount: Decimal) -> None:
        self.total_amount = amount
        self.remaining_amount = _remaining(amount, self.spent_amount)

    def apply_spending(self, total_spent: Decimal, by_category: Dict[str, Decimal]) -> None:
        """Overwrite actuals from a fresh aggregation and rederive every remaining amount."""
        self.spent_amount = total_spent
        self.remaining_amount = _remaining(self.total_amount, total_spent)
        for category_budget in self.category_budgets:
            spent = by_category.get(category_budget.category_id, ZERO) if category_budget.track_expenses else ZERO
            category_budget.apply_spending(spent)

    def refresh_overlap_guard(self) -> None:
        self.overlap_guard = True if self.takes_part_in_overlap else None

    def soft_delete(self, user_id: str, when: datetime) -> None:
        self.is_deleted = True
        self.deleted_at = when
        self.deleted_by = user_id
        self.refresh_overlap_guard()

    # Queries

    @property
    def takes_part_in_overlap(self) -> bool:
        return not self.is_deleted and not self.is_template

    @property
    def allocated_total(self) -> Decimal:
        return sum((Decimal(cb.allocated_amount) for cb in self.category_budgets), ZERO)

    def has_started(self, now: datetime) -> bool:
        return self.start_date <= now

    def has_ended(self, now: datetime) -> bool:
        return self.end_date < now

    def iter_alerts(self) -> Iterator[BudgetAlert]:
        yield from self.global_alerts
        for category_budget in self.category_budgets:
            yield from category_budget.alerts

    def find_category(self, category_id: str) -> Optional[CategoryBudget]:
        for category_budget in self.category_budgets:
            if category_budget.category_id == category_id:
                return category_budget
        return None
