"""
Alert rule evaluation.

Each enabled alert fires at most once per budget lifetime: once ``triggered``
is set it is skipped by every later evaluation, and only renewal (a new budget
with fresh alerts) clears it. Nothing is persisted here; the caller saves the
budget in the same write as the totals the alerts were evaluated against.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from app.models.budget import AlertType, Budget, BudgetAlert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FiredAlert:
    """An alert that crossed its threshold during one evaluation."""
    budget_id: Optional[int]
    category_id: Optional[str]  # None for global alerts
    alert_type: AlertType
    threshold: Decimal
    triggered_at: datetime


def alert_crossed(alert_type: AlertType, threshold: Decimal, spent: Decimal, base: Decimal, remaining: Decimal) -> bool:
    """Predicate for one rule against one set of totals. A zero base never fires percentage alerts."""
    alert_type = AlertType(alert_type)
    threshold = Decimal(threshold)
    if alert_type == AlertType.PERCENTAGE:
        if not base:
            return False
        return Decimal(spent) / Decimal(base) * 100 >= threshold
    if alert_type == AlertType.AMOUNT:
        return Decimal(spent) >= threshold
    return Decimal(remaining) <= threshold


def _evaluate(
    alerts: Iterable[BudgetAlert],
    spent: Decimal,
    base: Decimal,
    remaining: Decimal,
    now: datetime,
    budget_id: Optional[int],
    category_id: Optional[str],
) -> List[FiredAlert]:
    fired = []
    for alert in alerts:
        if not alert.enabled or alert.triggered:
            continue
        if alert_crossed(alert.type, alert.threshold, spent, base, remaining):
            alert.fire(now)
            fired.append(FiredAlert(budget_id, category_id, AlertType(alert.type), Decimal(alert.threshold), now))
    return fired


def evaluate_alerts(budget: Budget, now: datetime) -> List[FiredAlert]:
    """
    Evaluate global and per-category alerts against the budget's current totals.

    Mutates the in-memory alerts that fire and returns them.
    """
    fired = _evaluate(
        budget.global_alerts,
        spent=budget.spent_amount,
        base=budget.total_amount,
        remaining=budget.remaining_amount,
        now=now,
        budget_id=budget.id,
        category_id=None,
    )
    for category_budget in budget.category_budgets:
        fired.extend(_evaluate(
            category_budget.alerts,
            spent=category_budget.spent_amount,
            base=category_budget.allocated_amount,
            remaining=category_budget.remaining_amount,
            now=now,
            budget_id=budget.id,
            category_id=category_budget.category_id,
        ))

    for alert in fired:
        scope = f"category {alert.category_id}" if alert.category_id else "budget"
        logger.info(
            f"Budget {alert.budget_id} {scope} alert fired: {alert.alert_type.value} threshold {alert.threshold}"
        )
    return fired
