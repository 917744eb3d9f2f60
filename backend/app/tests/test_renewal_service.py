"""
Tests for the auto-renewal batch.
"""
from datetime import datetime
from decimal import Decimal
from app.models.budget import Budget, BudgetStatus
from app.schemas.budget import BudgetUpdate

AFTER_JANUARY = datetime(2024, 2, 2, 6, 0)


class CancelAfter:
    """Event stand-in that reports cancellation after ``checks`` negative answers."""

    def __init__(self, checks):
        self.checks = checks

    def is_set(self):
        self.checks -= 1
        return self.checks < 0


def live_budgets(db):
    db.expire_all()
    return db.query(Budget).filter(Budget.is_deleted.is_(False)).order_by(Budget.id).all()


def january(new_budget, **overrides):
    return new_budget(
        category_budgets=[{
            "category_id": "food",
            "allocated_amount": "300.00",
            "alerts": [{"type": "percentage", "threshold": "50"}],
        }],
        global_alerts=[{"type": "percentage", "threshold": "50", "message": "Half gone"}],
        metadata={"tags": ["household"], "notes": "groceries only"},
        **overrides,
    )


def test_completed_budget_renews_into_next_period(db, service, scheduler, expenses, clock, new_budget):
    expenses.add("acct-1", "600.00", datetime(2024, 1, 10), "food")
    created = service.create_budget(january(new_budget), "user-1")
    assert created.global_alerts[0].triggered is True

    clock.now = AFTER_JANUARY
    report = scheduler.process_auto_renewals()

    assert report.finalized == 1
    assert report.renewed == 1
    assert report.failed == 0

    old, successor = live_budgets(db)
    assert old.status == BudgetStatus.COMPLETED
    assert old.renewed_to_id == successor.id
    assert report.successor_ids == [successor.id]

    assert successor.renewed_from_id == old.id
    assert successor.name == old.name
    assert successor.status == BudgetStatus.ACTIVE
    assert successor.start_date == datetime(2024, 2, 1)
    assert successor.end_date == datetime(2024, 2, 29, 23, 59, 59, 999000)
    assert successor.spent_amount == Decimal(0)
    assert successor.remaining_amount == Decimal("1000.00")
    assert successor.meta["source"] == "auto_renewed"
    assert successor.meta["tags"] == ["household"]

    assert successor.global_alerts[0].message == "Half gone"
    assert successor.global_alerts[0].triggered is False
    food = successor.find_category("food")
    assert food.allocated_amount == Decimal("300.00")
    assert food.spent_amount == Decimal(0)
    assert food.alerts[0].triggered is False


def test_second_run_creates_nothing(db, service, scheduler, clock, new_budget):
    service.create_budget(january(new_budget), "user-1")
    clock.now = AFTER_JANUARY

    first = scheduler.process_auto_renewals()
    second = scheduler.process_auto_renewals()

    assert first.renewed == 1
    assert second.renewed == 0
    assert second.finalized == 0
    assert len(live_budgets(db)) == 2


def test_existing_successor_is_linked_not_duplicated(db, service, scheduler, clock, new_budget):
    created = service.create_budget(january(new_budget), "user-1")
    clock.now = AFTER_JANUARY
    service.recalculate_budget(created.id, "user-1")
    orphan = service.insert_budget(
        january(new_budget, start_date="2024-02-01T00:00:00", end_date="2024-02-29T23:59:59.999000"),
        created_by="user-1",
        source="auto_renewed",
        renewed_from_id=created.id,
    )

    report = scheduler.process_auto_renewals()

    assert report.renewed == 0
    assert report.skipped == 1
    assert len(live_budgets(db)) == 2
    assert db.get(Budget, created.id).renewed_to_id == orphan.id


def test_failing_budget_does_not_block_siblings(db, service, scheduler, expenses, clock, new_budget):
    ok = service.create_budget(january(new_budget), "admin")
    broken = service.create_budget(january(new_budget, account_id="acct-2"), "admin")
    clock.now = AFTER_JANUARY
    service.recalculate_budget(ok.id, "admin")
    service.recalculate_budget(broken.id, "admin")
    expenses.failing_accounts.add("acct-2")

    report = scheduler.process_auto_renewals()

    assert report.renewed == 1
    assert report.failed == 1
    assert report.failed_ids == [broken.id]
    assert db.query(Budget).filter(Budget.renewed_from_id == broken.id).count() == 0
    assert db.query(Budget).filter(Budget.renewed_from_id == ok.id).count() == 1
    assert db.get(Budget, broken.id).renewed_to_id is None


def test_failure_is_retried_on_next_run(db, service, scheduler, categories, clock, new_budget):
    created = service.create_budget(january(new_budget), "user-1")
    clock.now = AFTER_JANUARY
    removed = categories.categories.pop("food")

    assert scheduler.process_auto_renewals().failed_ids == [created.id]

    categories.categories["food"] = removed
    assert scheduler.process_auto_renewals().renewed == 1


def test_cancellation_keeps_finished_work(db, service, scheduler, clock, new_budget):
    first = service.create_budget(january(new_budget), "admin")
    second = service.create_budget(january(new_budget, account_id="acct-2"), "admin")
    clock.now = AFTER_JANUARY
    service.recalculate_budget(first.id, "admin")
    service.recalculate_budget(second.id, "admin")

    report = scheduler.process_auto_renewals(cancel_event=CancelAfter(1))

    assert report.cancelled is True
    assert report.renewed == 1
    assert len(live_budgets(db)) == 3


def test_templates_non_renewing_and_exceeded_budgets_are_left_alone(
    db, service, scheduler, expenses, clock, new_budget
):
    service.create_budget(new_budget(name="Template", is_template=True), "user-1")
    service.create_budget(new_budget(name="No renew", period="weekly", auto_renew=False,
                                     end_date="2024-01-07T23:59:59.999000"), "user-1")
    expenses.add("acct-2", "5000.00", datetime(2024, 1, 5))
    service.create_budget(new_budget(name="Blown", account_id="acct-2"), "user-2")
    clock.now = AFTER_JANUARY

    report = scheduler.process_auto_renewals()

    assert report.renewed == 0
    assert len(live_budgets(db)) == 3


def test_paused_budget_is_finalized_then_renewed(db, service, scheduler, clock, new_budget):
    created = service.create_budget(january(new_budget), "user-1")
    service.update_budget(created.id, BudgetUpdate(status="paused"), "user-1")
    clock.now = AFTER_JANUARY

    report = scheduler.process_auto_renewals()

    assert report.finalized == 1
    assert report.renewed == 1
    assert live_budgets(db)[-1].status == BudgetStatus.ACTIVE
