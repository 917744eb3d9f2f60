"""
Shared FastAPI dependencies: caller identity and service wiring.
"""
from functools import lru_cache
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from app.core.security import get_user_id_from_token
from app.db.session import get_db
from app.services.budget_service import BudgetService
from app.services.collaborators import (
    AccessControl, CategoryStore, ExpenseAggregate,
    HttpAccessControl, HttpCategoryStore, HttpExpenseAggregate,
)
from app.services.renewal_service import RenewalScheduler

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """Get the calling user's id from the bearer token."""
    user_id = get_user_id_from_token(credentials.credentials) if credentials else None
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


@lru_cache
def get_access_control() -> AccessControl:
    return HttpAccessControl()


@lru_cache
def get_category_store() -> CategoryStore:
    return HttpCategoryStore()


@lru_cache
def get_expense_aggregate() -> ExpenseAggregate:
    return HttpExpenseAggregate()


def get_budget_service(
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
    categories: CategoryStore = Depends(get_category_store),
    expenses: ExpenseAggregate = Depends(get_expense_aggregate),
) -> BudgetService:
    return BudgetService(db, access, categories, expenses)


def get_renewal_scheduler(
    db: Session = Depends(get_db),
    budgets: BudgetService = Depends(get_budget_service),
) -> RenewalScheduler:
    return RenewalScheduler(db, budgets, clock=budgets.clock)
