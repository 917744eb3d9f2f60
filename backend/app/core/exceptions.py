"""
Typed errors raised by the budget engine.

Each error carries a machine-readable ``code`` and the HTTP status the API layer
renders it with. Services raise them; only ``app.main`` translates them.

    BudgetEngineError
    +-- ValidationError   (400) bad dates, allocation overflow, unknown category, bad threshold
    +-- ForbiddenError    (403) no account access and not an allowed user
    +-- NotFoundError     (404) budget or template missing
    +-- ConflictError     (409) overlapping budget period
    +-- DependencyError   (503) collaborator timeout or failure, never retried here
"""
from datetime import datetime
from typing import Any, Dict, Optional


class BudgetEngineError(Exception):
    """Base class for every error the engine surfaces to its callers."""

    code: str = "BUDGET_ENGINE_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(BudgetEngineError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ForbiddenError(BudgetEngineError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(BudgetEngineError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(BudgetEngineError):
    """A live budget already covers part of the requested window."""

    code = "CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str = "overlapping budget period",
        existing_id: Optional[int] = None,
        existing_start: Optional[datetime] = None,
        existing_end: Optional[datetime] = None,
    ):
        details: Dict[str, Any] = {}
        if existing_id is not None:
            details["existing_budget_id"] = existing_id
        if existing_start is not None:
            details["existing_start_date"] = existing_start.isoformat()
        if existing_end is not None:
            details["existing_end_date"] = existing_end.isoformat()
        super().__init__(message, details)
        self.existing_id = existing_id
        self.existing_start = existing_start
        self.existing_end = existing_end


class DependencyError(BudgetEngineError):
    """A collaborator (access control, categories, expenses) failed or timed out."""

    code = "DEPENDENCY_ERROR"
    status_code = 503

    def __init__(self, message: str, collaborator: Optional[str] = None):
        super().__init__(message, {"collaborator": collaborator} if collaborator else None)
        self.collaborator = collaborator
