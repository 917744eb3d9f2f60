"""Models package - Import all models for SQLAlchemy registration."""
from app.models.budget import (
    Budget,
    BudgetAlert,
    BudgetAllowedUser,
    CategoryBudget,
    BudgetPeriod,
    BudgetStatus,
    AlertType,
)

__all__ = [
    "Budget",
    "BudgetAlert",
    "BudgetAllowedUser",
    "CategoryBudget",
    "BudgetPeriod",
    "BudgetStatus",
    "AlertType",
]
