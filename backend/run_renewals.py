"""
Run the budget auto-renewal batch once. Meant to be scheduled (e.g. daily cron).

Ctrl+C stops the batch between budgets; renewals already done are kept.
"""
import logging
import signal
import sys
import os
import threading

# Add the backend directory to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.budget_service import BudgetService
from app.services.collaborators import HttpAccessControl, HttpCategoryStore, HttpExpenseAggregate
from app.services.renewal_service import RenewalScheduler

logger = logging.getLogger("run_renewals")


def run():
    """Finalize expired budgets and create their successors."""
    cancel_event = threading.Event()

    def request_stop(signum, frame):
        logger.warning("Stop requested, finishing the current budget")
        cancel_event.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    collaborators = [HttpAccessControl(), HttpCategoryStore(), HttpExpenseAggregate()]
    db = SessionLocal()
    try:
        budgets = BudgetService(db, *collaborators)
        report = RenewalScheduler(db, budgets).process_auto_renewals(cancel_event)
        print(
            f"Finalized {report.finalized}, renewed {report.renewed}, failed {report.failed}, "
            f"skipped {report.skipped}{' (cancelled)' if report.cancelled else ''}"
        )
        if report.failed_ids:
            print(f"Failed budget ids: {', '.join(str(i) for i in report.failed_ids)}")
        return report
    except Exception as e:
        db.rollback()
        logger.error(f"Renewal batch failed: {e}")
        raise
    finally:
        db.close()
        for collaborator in collaborators:
            collaborator.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    report = run()
    sys.exit(1 if report.failed else 0)
