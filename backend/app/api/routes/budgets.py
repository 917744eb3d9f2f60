"""
Budget management routes.
"""
from fastapi import APIRouter, Depends, status
from typing import List, Optional
from app.api.dependencies import get_budget_service, get_current_user_id, get_renewal_scheduler
from app.schemas.budget import (
    BudgetCreate, BudgetQuery, BudgetResponse, BudgetSummary, BudgetUpdate,
    PaginatedBudgets, PeriodOption, RecalculationResult, RenewalReport, StatusOption,
    TemplateInstantiate,
)
from app.services.budget_service import BudgetService
from app.services.renewal_service import RenewalScheduler

router = APIRouter(prefix="/budgets", tags=["budgets"])


@router.post("", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
def create_budget(
    budget_data: BudgetCreate,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Create a new budget."""
    return service.create_budget(budget_data, user_id)


@router.post("/{template_id}/from-template", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
def create_from_template(
    template_id: int,
    request: TemplateInstantiate,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Create a budget for the current period from a template."""
    return service.create_from_template(template_id, request.account_id, user_id)


@router.get("", response_model=PaginatedBudgets)
def list_budgets(
    query: BudgetQuery = Depends(),
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """List budgets with filters, sorting and pagination."""
    return service.list_budgets(query, user_id)


@router.get("/summary", response_model=BudgetSummary)
def get_budget_summary(
    account_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Get aggregate figures for one account or for every account of the user."""
    return service.get_budget_summary(user_id, account_id)


@router.get("/templates", response_model=List[BudgetResponse])
def list_templates(
    account_id: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """List budget templates."""
    return service.list_templates(user_id, account_id)


@router.get("/periods/available", response_model=List[PeriodOption])
async def get_available_periods():
    """Get the budget periods that can be chosen."""
    return BudgetService.available_periods()


@router.get("/status/available", response_model=List[StatusOption])
async def get_available_statuses():
    """Get every budget status with its meaning."""
    return BudgetService.available_statuses()


@router.get("/account/{account_id}/active", response_model=List[BudgetResponse])
def get_active_budgets(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Get the active budgets of an account."""
    return service.list_active_for_account(account_id, user_id)


@router.get("/account/{account_id}/current", response_model=List[BudgetResponse])
def get_current_budgets(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Get the active budgets of an account whose period contains today."""
    return service.list_current_for_account(account_id, user_id)


@router.post(
    "/process-renewals",
    response_model=RenewalReport,
    dependencies=[Depends(get_current_user_id)],
)
def process_renewals(scheduler: RenewalScheduler = Depends(get_renewal_scheduler)):
    """Run the auto-renewal batch now. Any signed-in caller may trigger it; the batch is not scoped to a user."""
    return scheduler.process_auto_renewals()


@router.get("/{budget_id}", response_model=BudgetResponse)
def get_budget(
    budget_id: int,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Get a budget with progress and category breakdown."""
    return service.get_budget(budget_id, user_id)


@router.patch("/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: int,
    budget_data: BudgetUpdate,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Update a budget."""
    return service.update_budget(budget_id, budget_data, user_id)


@router.patch("/{budget_id}/recalculate", response_model=RecalculationResult)
def recalculate_budget(
    budget_id: int,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Recompute spending, alerts and status from the expense service."""
    return service.recalculate_budget(budget_id, user_id)


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_budget(
    budget_id: int,
    user_id: str = Depends(get_current_user_id),
    service: BudgetService = Depends(get_budget_service)
):
    """Delete a budget."""
    service.delete_budget(budget_id, user_id)
