"""
Auto-renewal batch: roll completed, auto-renewing budgets into their next period.

Runs as a scheduled job (see ``run_renewals.py``) or on demand through the
API. Budgets are processed one at a time, each inside its own SAVEPOINT, so a
failing budget is rolled back and logged without touching its siblings.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy.orm import Session
from app.core.utils import utc_now
from app.db.repository import BudgetRepository
from app.models.budget import Budget
from app.schemas.budget import RenewalReport
from app.services.budget_service import BudgetService, budget_draft
from app.services.period_service import calculate_period_dates, next_period_start

logger = logging.getLogger(__name__)

RENEWAL_SOURCE = "auto_renewed"


class RenewalScheduler:
    """Finalizes expired budgets and creates their successors."""

    def __init__(self, db: Session, budgets: BudgetService, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.budgets = budgets
        self.clock = clock
        self.repository = BudgetRepository(db)

    @staticmethod
    def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _finalize_expired(self, now: datetime, report: RenewalReport, cancel_event: Optional[threading.Event]) -> None:
        """Recalculate expired budgets still marked active/paused so their status converges."""
        for budget in self.repository.find_expired_unfinalized(now):
            if self._cancelled(cancel_event):
                report.cancelled = True
                break
            budget_id = budget.id
            savepoint = self.db.begin_nested()
            try:
                self.budgets.recalculator.recalculate(budget_id, commit=False)
                savepoint.commit()
                report.finalized += 1
            except Exception as exc:
                savepoint.rollback()
                report.failed += 1
                report.failed_ids.append(budget_id)
                logger.error(f"Failed to finalize budget {budget_id} before renewal: {exc}")
        self.db.commit()

    def renew_budget(self, budget: Budget) -> Budget:
        """
        Create the successor of one completed budget and link the pair.

        Must run inside the caller's transaction or savepoint; nothing is
        committed here.
        """
        window = calculate_period_dates(budget.period, next_period_start(budget.end_date))
        draft = budget_draft(budget, account_id=budget.account_id, window=window)
        successor = self.budgets.insert_budget(
            draft,
            created_by=budget.created_by,
            source=RENEWAL_SOURCE,
            renewed_from_id=budget.id,
            commit=False,
        )
        budget.renewed_to_id = successor.id
        budget.touch(self.clock())
        self.db.flush()
        return successor

    def process_auto_renewals(self, cancel_event: Optional[threading.Event] = None) -> RenewalReport:
        """
        Renew every due budget.

        Due means auto-renewing, completed, ended, not yet renewed, live and
        not a template. The cancellation event is checked between budgets;
        work already done is kept.
        """
        now = self.clock()
        report = RenewalReport()

        self._finalize_expired(now, report, cancel_event)
        if report.cancelled:
            logger.warning(f"Auto-renewal cancelled during finalization: {report.finalized} finalized")
            return report

        due = self.repository.find_due_for_renewal(now)
        logger.info(f"Auto-renewal found {len(due)} budget(s) due for renewal")

        for budget in due:
            if self._cancelled(cancel_event):
                report.cancelled = True
                break
            budget_id = budget.id
            existing = self.repository.find_successor(budget_id)
            if existing is not None:
                # Successor exists but the link was never written
                budget.renewed_to_id = existing.id
                self.db.flush()
                report.skipped += 1
                logger.info(f"Budget {budget_id} already renewed as {existing.id}, skipping")
                continue

            savepoint = self.db.begin_nested()
            try:
                successor = self.renew_budget(budget)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                report.failed += 1
                report.failed_ids.append(budget_id)
                logger.error(f"Failed to renew budget {budget_id}: {exc}")
                continue

            report.renewed += 1
            report.successor_ids.append(successor.id)
            logger.info(
                f"Renewed budget {budget_id} as {successor.id} "
                f"({successor.start_date.isoformat()} - {successor.end_date.isoformat()})"
            )

        self.db.commit()
        logger.info(
            f"Auto-renewal finished: {report.renewed} renewed, {report.failed} failed, "
            f"{report.skipped} skipped{' (cancelled)' if report.cancelled else ''}"
        )
        return report
