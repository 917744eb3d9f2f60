"""
Budget lifecycle: create, read, list, update, delete, template instantiation and summaries.

Every write goes through the same gate (access, date range, alert
definitions, overlap, allocations) before anything is persisted, and a
budget whose window has already begun is recalculated inside the same
transaction that created or changed it.
"""
import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session
from app.core.exceptions import (
    BudgetEngineError, ConflictError, ForbiddenError, NotFoundError, ValidationError,
)
from app.core.utils import start_of_day, utc_now
from app.db.repository import BudgetRepository
from app.models.budget import (
    ZERO, Budget, BudgetAlert, BudgetStatus, CategoryBudget,
)
from app.schemas.budget import (
    AlertCreate, AlertResponse, BudgetCreate, BudgetMetadata, BudgetQuery, BudgetResponse,
    BudgetSummary, BudgetUpdate, CategoryBudgetCreate, CategoryBudgetResponse,
    PaginatedBudgets, PeriodOption, RecalculationResult, StatusOption,
)
from app.services.alert_service import evaluate_alerts
from app.services.collaborators import (
    AccessControl, CategoryInfo, CategoryStore, ExpenseAggregate, call_dependency,
)
from app.services.period_service import PERIOD_DESCRIPTIONS, PeriodRange, calculate_period_dates
from app.services.progress_service import analyze_progress
from app.services.spend_service import SpendRecalculator
from app.services.validation_service import (
    validate_alert_definitions, validate_allocations, validate_date_range, validate_no_overlap,
)

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = CategoryInfo(display_name="Unknown Category", icon="❓", color="#666666")

STATUS_DESCRIPTIONS = [
    {"status": BudgetStatus.ACTIVE, "name": "Active", "description": "Budget is currently active and tracking expenses"},
    {"status": BudgetStatus.PAUSED, "name": "Paused", "description": "Budget is temporarily paused"},
    {"status": BudgetStatus.EXCEEDED, "name": "Exceeded", "description": "Budget limit has been exceeded"},
    {"status": BudgetStatus.COMPLETED, "name": "Completed", "description": "Budget period has ended"},
]

# Statuses a user may set directly; the rest are derived by recalculation
USER_STATUSES = (BudgetStatus.ACTIVE, BudgetStatus.PAUSED)

TEMPLATE_NAME_SUFFIX = " (from template)"


def _alert_definition(alert: BudgetAlert) -> AlertCreate:
    return AlertCreate(type=alert.type, threshold=alert.threshold, enabled=alert.enabled, message=alert.message)


def _new_alert(definition: AlertCreate) -> BudgetAlert:
    return BudgetAlert(
        type=definition.type,
        threshold=definition.threshold,
        enabled=definition.enabled,
        triggered=False,
        message=definition.message,
    )


def _new_category(definition: CategoryBudgetCreate) -> CategoryBudget:
    category_budget = CategoryBudget(
        category_id=definition.category_id,
        track_expenses=definition.track_expenses,
        spent_amount=ZERO,
    )
    category_budget.set_allocated_amount(definition.allocated_amount)
    category_budget.alerts = [_new_alert(a) for a in definition.alerts]
    return category_budget


def _all_alert_definitions(
    global_alerts: Iterable[AlertCreate],
    category_budgets: Iterable[CategoryBudgetCreate],
) -> List[AlertCreate]:
    alerts = list(global_alerts)
    for category_budget in category_budgets:
        alerts.extend(category_budget.alerts)
    return alerts


def budget_draft(
    source: Budget,
    account_id: str,
    window: PeriodRange,
    name: Optional[str] = None,
) -> BudgetCreate:
    """
    Creation request that reproduces ``source`` over a new window.

    Allocations and alert definitions are copied; spend, triggers and status
    are not, so the new budget starts fresh. Used by template instantiation
    and by auto-renewal.
    """
    return BudgetCreate(
        name=name or source.name,
        description=source.description,
        account_id=account_id,
        currency=source.currency,
        total_amount=source.total_amount,
        period=source.period,
        start_date=window.start_date,
        end_date=window.end_date,
        category_budgets=[
            CategoryBudgetCreate(
                category_id=cb.category_id,
                allocated_amount=cb.allocated_amount,
                track_expenses=cb.track_expenses,
                alerts=[_alert_definition(a) for a in cb.alerts],
            )
            for cb in source.category_budgets
        ],
        global_alerts=[_alert_definition(a) for a in source.global_alerts],
        auto_renew=source.auto_renew,
        allowed_users=list(source.allowed_users),
        is_template=False,
        metadata=BudgetMetadata.model_validate(source.meta or {}),
    )


class BudgetService:
    """Budget lifecycle operations for one database session."""

    def __init__(
        self,
        db: Session,
        access: AccessControl,
        categories: CategoryStore,
        expenses: ExpenseAggregate,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.access = access
        self.categories = categories
        self.clock = clock
        self.repository = BudgetRepository(db)
        self.recalculator = SpendRecalculator(db, expenses, clock=clock)

    # Access

    def _has_account_access(self, account_id: str, user_id: str) -> bool:
        return call_dependency("access_control", self.access.has_account_access, account_id, user_id)

    def _require_account_access(self, account_id: str, user_id: str) -> None:
        if not self._has_account_access(account_id, user_id):
            raise ForbiddenError("Access denied to this account")

    def _can_view(self, budget: Budget, user_id: str) -> bool:
        if user_id in budget.allowed_users:
            return True
        return self._has_account_access(budget.account_id, user_id)

    def _get_live_budget(self, budget_id: int) -> Budget:
        budget = self.repository.get(budget_id)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def _require_budget_access(self, budget_id: int, user_id: str) -> Budget:
        budget = self._get_live_budget(budget_id)
        if not self._can_view(budget, user_id):
            raise ForbiddenError("Access denied to this budget")
        return budget

    # Writes

    def _flush_or_conflict(self) -> None:
        """Flush pending writes; the live-window unique constraint surfaces as a conflict."""
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise ConflictError("overlapping budget period") from exc

    def insert_budget(
        self,
        data: BudgetCreate,
        created_by: str,
        source: str,
        renewed_from_id: Optional[int] = None,
        commit: bool = True,
    ) -> Budget:
        """
        Validate and persist a new budget, recalculating it when its window has begun.

        With ``commit=False`` nothing is committed or rolled back here, so the
        caller (e.g. a renewal savepoint) owns the transaction.
        """
        try:
            validate_date_range(data.start_date, data.end_date)
            validate_alert_definitions(_all_alert_definitions(data.global_alerts, data.category_budgets))
            if not data.is_template:
                validate_no_overlap(self.db, data.account_id, data.period, data.start_date, data.end_date)
            validate_allocations(data.total_amount, data.category_budgets, self.categories)

            meta = (data.metadata or BudgetMetadata()).model_dump()
            meta["source"] = source

            budget = Budget(
                name=data.name,
                description=data.description,
                account_id=data.account_id,
                created_by=created_by,
                currency=data.currency,
                period=data.period,
                start_date=data.start_date,
                end_date=data.end_date,
                status=BudgetStatus.ACTIVE,
                auto_renew=data.auto_renew,
                renewed_from_id=renewed_from_id,
                is_template=data.is_template,
                meta=meta,
                spent_amount=ZERO,
            )
            budget.set_total_amount(data.total_amount)
            budget.global_alerts = [_new_alert(a) for a in data.global_alerts]
            budget.category_budgets = [_new_category(c) for c in data.category_budgets]
            for allowed_user in dict.fromkeys(data.allowed_users):
                budget.allowed_users.append(allowed_user)
            budget.refresh_overlap_guard()

            self.db.add(budget)
            self._flush_or_conflict()

            if not budget.is_template and budget.has_started(self.clock()):
                self.recalculator.recalculate(budget.id, commit=False)

            if commit:
                self.db.commit()
        except BudgetEngineError:
            if commit:
                self.db.rollback()
            raise
        return budget

    def create_budget(self, data: BudgetCreate, user_id: str) -> BudgetResponse:
        """Create a budget for an account the user can access."""
        self._require_account_access(data.account_id, user_id)
        budget = self.insert_budget(data, created_by=user_id, source="manual")
        logger.info(
            f"Created {budget.period.value} budget {budget.id} for account {budget.account_id} "
            f"({budget.start_date.isoformat()} - {budget.end_date.isoformat()}) by user {user_id}"
        )
        return self.format_budget(budget)

    def create_from_template(self, template_id: int, account_id: str, user_id: str) -> BudgetResponse:
        """Instantiate a template for the current period starting today."""
        template = self.repository.get_template(template_id)
        if not template:
            raise NotFoundError("Template not found")
        if not self._can_view(template, user_id):
            raise ForbiddenError("Access denied to this template")
        self._require_account_access(account_id, user_id)

        window = calculate_period_dates(template.period, start_of_day(self.clock()))
        name = f"{template.name}{TEMPLATE_NAME_SUFFIX}"[:100]
        draft = budget_draft(template, account_id=account_id, window=window, name=name)
        budget = self.insert_budget(draft, created_by=user_id, source="template")
        logger.info(f"Created budget {budget.id} from template {template.id} for account {account_id}")
        return self.format_budget(budget)

    def _merge_alerts(self, existing: List[BudgetAlert], definitions: List[AlertCreate]) -> List[BudgetAlert]:
        """
        Build the new alert list, reusing alerts whose type and threshold are unchanged.

        A reused alert keeps its triggered state, so redefining a budget's
        other alerts never re-fires one that already fired.
        """
        available = list(existing)
        merged = []
        for definition in definitions:
            match = next(
                (a for a in available if a.same_definition(definition.type, definition.threshold)),
                None,
            )
            if match is None:
                merged.append(_new_alert(definition))
                continue
            available.remove(match)
            match.enabled = definition.enabled
            match.message = definition.message
            merged.append(match)
        return merged

    def _replace_categories(self, budget: Budget, definitions: List[CategoryBudgetCreate]) -> None:
        """Swap in new allocations; retained categories keep their spend and fired alerts."""
        category_budgets = []
        for definition in definitions:
            category_budget = budget.find_category(definition.category_id)
            if category_budget is None:
                category_budgets.append(_new_category(definition))
                continue
            category_budget.track_expenses = definition.track_expenses
            category_budget.set_allocated_amount(definition.allocated_amount)
            category_budget.alerts = self._merge_alerts(list(category_budget.alerts), definition.alerts)
            category_budget.alerts.reorder()
            category_budgets.append(category_budget)
        budget.category_budgets = category_budgets
        budget.category_budgets.reorder()

    @staticmethod
    def _replace_allowed_users(budget: Budget, user_ids: List[str]) -> None:
        wanted = list(dict.fromkeys(user_ids))
        for row in list(budget.allowed_user_rows):
            if row.user_id not in wanted:
                budget.allowed_user_rows.remove(row)
        current = set(budget.allowed_users)
        for user_id in wanted:
            if user_id not in current:
                budget.allowed_users.append(user_id)

    def update_budget(self, budget_id: int, data: BudgetUpdate, user_id: str) -> BudgetResponse:
        """
        Apply a partial update.

        Date changes re-run the range and overlap checks; allocation changes
        (or a new total) re-run the allocation check. When totals, allocations
        or dates change on a budget whose window has begun, the budget is
        recalculated before the commit.
        """
        budget = self._require_budget_access(budget_id, user_id)
        fields = data.model_dump(exclude_unset=True)
        now = self.clock()

        try:
            if "status" in fields and data.status is not None and data.status != budget.status:
                if data.status not in USER_STATUSES or budget.status not in USER_STATUSES:
                    raise ValidationError(
                        f"Status can only be changed between active and paused (currently {budget.status.value})"
                    )

            start_date = data.start_date or budget.start_date
            end_date = data.end_date or budget.end_date
            dates_changed = start_date != budget.start_date or end_date != budget.end_date
            if dates_changed:
                validate_date_range(start_date, end_date)
                if not budget.is_template:
                    validate_no_overlap(self.db, budget.account_id, budget.period, start_date, end_date, exclude_id=budget.id)

            validate_alert_definitions(_all_alert_definitions(data.global_alerts or [], data.category_budgets or []))

            total_amount = data.total_amount if data.total_amount is not None else Decimal(budget.total_amount)
            total_changed = total_amount != Decimal(budget.total_amount)
            categories_changed = data.category_budgets is not None
            if categories_changed:
                validate_allocations(total_amount, data.category_budgets, self.categories)
            elif total_changed:
                validate_allocations(total_amount, budget.category_budgets)

            for name in ("name", "description", "currency", "auto_renew"):
                if name in fields and getattr(data, name) is not None:
                    setattr(budget, name, getattr(data, name))
            if "description" in fields and data.description is None:
                budget.description = None
            if data.status is not None:
                budget.status = data.status
            if data.metadata is not None:
                meta = data.metadata.model_dump()
                meta["source"] = (budget.meta or {}).get("source", "manual")
                budget.meta = meta
            if data.allowed_users is not None:
                self._replace_allowed_users(budget, data.allowed_users)

            budget.set_total_amount(total_amount)
            budget.start_date = start_date
            budget.end_date = end_date
            if categories_changed:
                self._replace_categories(budget, data.category_budgets)
            if data.global_alerts is not None:
                budget.global_alerts = self._merge_alerts(list(budget.global_alerts), data.global_alerts)
                budget.global_alerts.reorder()

            budget.refresh_overlap_guard()
            budget.touch(now)
            self._flush_or_conflict()

            needs_recalculation = total_changed or categories_changed or dates_changed
            if not budget.is_template and needs_recalculation and budget.has_started(now):
                self.recalculator.recalculate(budget.id, commit=False)
            elif not budget.is_template and dates_changed:
                # Window moved into the future: nothing inside it has been spent yet.
                budget.apply_spending(ZERO, {})
                if budget.status in (BudgetStatus.EXCEEDED, BudgetStatus.COMPLETED):
                    budget.status = BudgetStatus.ACTIVE
                if categories_changed or data.global_alerts is not None:
                    evaluate_alerts(budget, now)
            elif not budget.is_template and (categories_changed or data.global_alerts is not None):
                evaluate_alerts(budget, now)

            self.db.commit()
        except BudgetEngineError:
            self.db.rollback()
            raise

        logger.info(f"Updated budget {budget.id} ({', '.join(sorted(fields)) or 'no fields'}) by user {user_id}")
        return self.format_budget(budget)

    def delete_budget(self, budget_id: int, user_id: str) -> None:
        """Soft delete. The budget disappears from every read and frees its window."""
        budget = self._require_budget_access(budget_id, user_id)
        now = self.clock()
        budget.soft_delete(user_id, now)
        budget.touch(now)
        self.db.commit()
        logger.info(f"Deleted budget {budget.id} by user {user_id}")

    def recalculate_budget(self, budget_id: int, user_id: str) -> RecalculationResult:
        """Manual recalculation of one budget."""
        budget = self._require_budget_access(budget_id, user_id)
        if budget.is_template:
            raise ValidationError("Template budgets are never recalculated")
        outcome = self.recalculator.recalculate(budget.id)
        return RecalculationResult(
            message="Budget recalculated successfully",
            budget_id=outcome.budget_id,
            recalculated_at=outcome.recalculated_at,
            fired_alerts=len(outcome.fired_alerts),
        )

    # Reads

    def get_budget(self, budget_id: int, user_id: str) -> BudgetResponse:
        budget = self._require_budget_access(budget_id, user_id)
        return self.format_budget(budget)

    def _scope(self, user_id: str, account_id: Optional[str]) -> Query:
        """Budgets of one account (access-checked) or everything the user can see."""
        if account_id:
            self._require_account_access(account_id, user_id)
            return self.repository.in_accounts([account_id])
        account_ids = call_dependency("access_control", self.access.list_account_ids, user_id)
        return self.repository.visible_to(account_ids, user_id)

    def list_budgets(self, query: BudgetQuery, user_id: str) -> PaginatedBudgets:
        """Filtered, sorted, paginated listing."""
        budgets = self._scope(user_id, query.account_id)

        if query.status is not None:
            budgets = budgets.filter(Budget.status == query.status)
        if query.period is not None:
            budgets = budgets.filter(Budget.period == query.period)
        if query.start_date is not None:
            budgets = budgets.filter(Budget.start_date >= query.start_date)
        if query.end_date is not None:
            budgets = budgets.filter(Budget.end_date <= query.end_date)
        if query.is_template is not None:
            budgets = budgets.filter(Budget.is_template.is_(query.is_template))
        if query.search:
            pattern = f"%{query.search}%"
            budgets = budgets.filter(or_(Budget.name.ilike(pattern), Budget.description.ilike(pattern)))

        sort_column = getattr(Budget, query.sort_by.value)
        order = sort_column.asc() if query.sort_order == "asc" else sort_column.desc()
        budgets = budgets.order_by(order, Budget.id.desc())

        items, total = self.repository.paginate(budgets, query.page, query.limit)
        total_pages = math.ceil(total / query.limit) if total else 0
        return PaginatedBudgets(
            data=[
                self.format_budget(
                    budget,
                    include_progress=query.include_progress,
                    include_breakdown=query.include_category_breakdown,
                )
                for budget in items
            ],
            total=total,
            page=query.page,
            limit=query.limit,
            total_pages=total_pages,
            has_next_page=query.page < total_pages,
            has_prev_page=query.page > 1,
        )

    def list_active_for_account(self, account_id: str, user_id: str) -> List[BudgetResponse]:
        """Active, non-template budgets of one account, soonest ending first."""
        self._require_account_access(account_id, user_id)
        budgets = (
            self.repository.in_accounts([account_id])
            .filter(Budget.status == BudgetStatus.ACTIVE, Budget.is_template.is_(False))
            .order_by(Budget.end_date.asc())
            .all()
        )
        return [self.format_budget(b) for b in budgets]

    def list_current_for_account(self, account_id: str, user_id: str) -> List[BudgetResponse]:
        """Active budgets of one account whose window contains now."""
        self._require_account_access(account_id, user_id)
        now = self.clock()
        budgets = (
            self.repository.in_accounts([account_id])
            .filter(
                Budget.status == BudgetStatus.ACTIVE,
                Budget.is_template.is_(False),
                Budget.start_date <= now,
                Budget.end_date >= now,
            )
            .order_by(Budget.end_date.asc())
            .all()
        )
        return [self.format_budget(b) for b in budgets]

    def list_templates(self, user_id: str, account_id: Optional[str] = None) -> List[BudgetResponse]:
        templates = (
            self._scope(user_id, account_id)
            .filter(Budget.is_template.is_(True))
            .order_by(Budget.name.asc())
            .all()
        )
        return [self.format_budget(t, include_progress=False) for t in templates]

    def get_budget_summary(self, user_id: str, account_id: Optional[str] = None) -> BudgetSummary:
        """Aggregate figures over live, non-template budgets in scope."""
        if account_id:
            self._require_account_access(account_id, user_id)
            scope = self.repository.in_accounts([account_id])
        else:
            account_ids = call_dependency("access_control", self.access.list_account_ids, user_id)
            if not account_ids:
                return BudgetSummary()
            scope = self.repository.in_accounts(account_ids)

        budgets = scope.filter(Budget.is_template.is_(False)).all()
        active = [b for b in budgets if b.status == BudgetStatus.ACTIVE]

        total_budget = sum((Decimal(b.total_amount) for b in active), ZERO)
        total_spent = sum((Decimal(b.spent_amount) for b in active), ZERO)
        total_remaining = sum((Decimal(b.remaining_amount) for b in active), ZERO)

        by_status: Dict[str, int] = {}
        by_period: Dict[str, int] = {}
        for budget in budgets:
            by_status[budget.status.value] = by_status.get(budget.status.value, 0) + 1
            by_period[budget.period.value] = by_period.get(budget.period.value, 0) + 1

        return BudgetSummary(
            total_active_budgets=len(active),
            total_budget_amount=total_budget,
            total_spent_amount=total_spent,
            total_remaining_amount=total_remaining,
            overall_progress=round(float(total_spent / total_budget * 100), 2) if total_budget > 0 else 0.0,
            over_budget_count=sum(1 for b in active if Decimal(b.spent_amount) > Decimal(b.total_amount)),
            active_alerts_count=sum(
                1 for b in active for alert in b.global_alerts if alert.enabled and alert.triggered
            ),
            budgets_by_status=by_status,
            budgets_by_period=by_period,
        )

    @staticmethod
    def available_periods() -> List[PeriodOption]:
        return [PeriodOption(**description) for description in PERIOD_DESCRIPTIONS]

    @staticmethod
    def available_statuses() -> List[StatusOption]:
        return [StatusOption(**description) for description in STATUS_DESCRIPTIONS]

    # Formatting

    def _category_info(self, category_id: str, cache: Dict[str, CategoryInfo]) -> CategoryInfo:
        if category_id not in cache:
            info = call_dependency("category_store", self.categories.get, category_id)
            cache[category_id] = info or UNKNOWN_CATEGORY
        return cache[category_id]

    def _format_category(self, category_budget: CategoryBudget, info: CategoryInfo) -> CategoryBudgetResponse:
        allocated = Decimal(category_budget.allocated_amount)
        spent = Decimal(category_budget.spent_amount)
        progress = float(spent / allocated * 100) if allocated > 0 else 0.0
        return CategoryBudgetResponse(
            category_id=category_budget.category_id,
            category_name=info.display_name,
            category_icon=info.icon or UNKNOWN_CATEGORY.icon,
            category_color=info.color or UNKNOWN_CATEGORY.color,
            allocated_amount=allocated,
            spent_amount=spent,
            remaining_amount=Decimal(category_budget.remaining_amount),
            progress_percentage=round(progress, 2),
            is_over_budget=spent > allocated,
            alerts=[AlertResponse.model_validate(a) for a in category_budget.alerts],
            track_expenses=category_budget.track_expenses,
        )

    def format_budget(
        self,
        budget: Budget,
        include_progress: bool = True,
        include_breakdown: bool = True,
    ) -> BudgetResponse:
        """Response view of a budget, optionally with progress analytics and category details."""
        category_budgets = None
        if include_breakdown:
            cache: Dict[str, CategoryInfo] = {}
            category_budgets = [
                self._format_category(cb, self._category_info(cb.category_id, cache))
                for cb in budget.category_budgets
            ]

        progress = None
        if include_progress and not budget.is_template:
            progress = analyze_progress(budget, self.clock())

        return BudgetResponse(
            id=budget.id,
            name=budget.name,
            description=budget.description,
            account_id=budget.account_id,
            created_by=budget.created_by,
            currency=budget.currency,
            total_amount=budget.total_amount,
            spent_amount=budget.spent_amount,
            remaining_amount=budget.remaining_amount,
            period=budget.period,
            start_date=budget.start_date,
            end_date=budget.end_date,
            status=budget.status,
            auto_renew=budget.auto_renew,
            renewed_from_id=budget.renewed_from_id,
            renewed_to_id=budget.renewed_to_id,
            is_template=budget.is_template,
            global_alerts=[AlertResponse.model_validate(a) for a in budget.global_alerts],
            category_budgets=category_budgets,
            allowed_users=list(budget.allowed_users),
            metadata=dict(budget.meta or {}),
            last_recalculated_at=budget.last_recalculated_at,
            progress=progress,
            created_at=budget.created_at,
            updated_at=budget.updated_at,
        )
