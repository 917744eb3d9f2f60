"""
Spend recalculation: pull a budget's expense window, rewrite its actuals, evaluate alerts and status.

Recalculation is a pure function of the current expense state, so concurrent
runs for the same budget converge on the same result (last writer wins).
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.exceptions import BudgetEngineError, DependencyError
from app.core.utils import utc_now
from app.db.repository import BudgetRepository
from app.models.budget import Budget, BudgetStatus
from app.services.alert_service import FiredAlert, evaluate_alerts
from app.services.collaborators import ExpenseAggregate, ExpenseRecord, call_dependency

logger = logging.getLogger(__name__)


@dataclass
class RecalculationOutcome:
    """What a single recalculation changed."""
    budget_id: int
    spent_amount: Decimal
    status: BudgetStatus
    expense_count: int
    recalculated_at: datetime
    fired_alerts: List[FiredAlert] = field(default_factory=list)


def aggregate_spending(expenses: List[ExpenseRecord]) -> Tuple[Decimal, Dict[str, Decimal]]:
    """Total spend and spend per category. Uncategorized expenses only count toward the total."""
    total = Decimal(0)
    by_category: Dict[str, Decimal] = defaultdict(lambda: Decimal(0))
    for expense in expenses:
        amount = Decimal(expense.amount)
        total += amount
        if expense.category_id is not None:
            by_category[expense.category_id] += amount
    return total, dict(by_category)


def next_status(budget: Budget, now: datetime) -> BudgetStatus:
    """Exceeded beats completed; otherwise the user-controlled status is kept."""
    if Decimal(budget.spent_amount) >= Decimal(budget.total_amount):
        return BudgetStatus.EXCEEDED
    if budget.has_ended(now):
        return BudgetStatus.COMPLETED
    return budget.status


class SpendRecalculator:
    """Rewrites a budget's spent/remaining fields, alert triggers and status from its expenses."""

    def __init__(
        self,
        db: Session,
        expenses: ExpenseAggregate,
        clock: Callable[[], datetime] = utc_now,
        page_size: int = None,
        max_records: int = None,
    ):
        self.db = db
        self.expenses = expenses
        self.clock = clock
        self.page_size = page_size or settings.EXPENSE_PAGE_SIZE
        self.max_records = max_records or settings.MAX_EXPENSES_PER_PERIOD
        self.repository = BudgetRepository(db)

    def fetch_window(self, budget: Budget) -> List[ExpenseRecord]:
        """Page through the budget's window until exhausted; never truncates silently."""
        records: List[ExpenseRecord] = []
        offset = 0
        while True:
            page = call_dependency(
                "expense_aggregate",
                self.expenses.find_by_account_and_window,
                budget.account_id,
                budget.start_date,
                budget.end_date,
                self.page_size,
                offset=offset,
            )
            records.extend(page)
            if len(records) > self.max_records:
                raise DependencyError(
                    f"Budget {budget.id} window holds more than {self.max_records} expenses",
                    collaborator="expense_aggregate",
                )
            if len(page) < self.page_size:
                return records
            offset += len(page)

    def recalculate(self, budget_id: int, commit: bool = True) -> Optional[RecalculationOutcome]:
        """
        Recompute the budget from its expense window and save it in one write.

        Missing, deleted and template budgets are a no-op (returns None). With
        ``commit=False`` the changes are only flushed, so the caller's
        transaction decides; any collaborator failure rolls back when this
        method owns the commit.
        """
        self.db.flush()
        budget = (
            self.repository.live()
            .filter(Budget.id == budget_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if budget is None or budget.is_template:
            return None

        try:
            expenses = self.fetch_window(budget)
        except BudgetEngineError:
            if commit:
                self.db.rollback()
            raise

        now = self.clock()
        total_spent, by_category = aggregate_spending(expenses)
        budget.apply_spending(total_spent, by_category)
        fired = evaluate_alerts(budget, now)
        budget.status = next_status(budget, now)
        budget.last_recalculated_at = now
        budget.touch(now)

        if commit:
            self.db.commit()
        else:
            self.db.flush()

        logger.info(
            f"Recalculated budget {budget.id}: spent {total_spent} of {budget.total_amount} "
            f"over {len(expenses)} expenses, status {budget.status.value}, {len(fired)} alert(s) fired"
        )
        return RecalculationOutcome(
            budget_id=budget.id,
            spent_amount=total_spent,
            status=budget.status,
            expense_count=len(expenses),
            recalculated_at=now,
            fired_alerts=fired,
        )
