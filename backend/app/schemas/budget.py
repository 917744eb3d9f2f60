"""
Pydantic schemas for Budget entity.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Literal, Optional
from datetime import datetime
from decimal import Decimal
import enum
from app.core.config import settings
from app.core.utils import to_naive_utc
from app.models.budget import AlertType, BudgetPeriod, BudgetStatus


class HealthStatus(str, enum.Enum):
    """Coarse classification of spending pace."""
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    DANGER = "danger"


class BudgetSortField(str, enum.Enum):
    """Columns a budget listing may be sorted by."""
    CREATED_AT = "created_at"
    START_DATE = "start_date"
    END_DATE = "end_date"
    TOTAL_AMOUNT = "total_amount"
    SPENT_AMOUNT = "spent_amount"
    NAME = "name"


class AlertCreate(BaseModel):
    """Schema for an alert definition."""
    type: AlertType
    threshold: Decimal = Field(ge=0, decimal_places=2)  # Percentage (0-100) or amount depending on type
    enabled: bool = True
    message: Optional[str] = Field(None, max_length=200)


class CategoryBudgetCreate(BaseModel):
    """Schema for a category allocation."""
    category_id: str = Field(min_length=1, max_length=64)
    allocated_amount: Decimal = Field(gt=0, decimal_places=2)
    alerts: List[AlertCreate] = Field(default_factory=list, max_length=5)
    track_expenses: bool = True


class BudgetMetadata(BaseModel):
    """Free-form settings stored alongside a budget."""
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=1000)
    tracking_enabled: bool = True
    notifications_enabled: bool = True
    rollover_unspent: bool = False


class BudgetBase(BaseModel):
    """Base budget schema."""
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    total_amount: Decimal = Field(gt=0, le=settings.MAX_BUDGET_AMOUNT, decimal_places=2)
    period: BudgetPeriod = BudgetPeriod.MONTHLY

    @field_validator("name")
    @classmethod
    def collapse_whitespace(cls, v):
        """Trim and collapse runs of whitespace in the name."""
        collapsed = " ".join(v.split())
        if not collapsed:
            raise ValueError("Budget name cannot be empty")
        return collapsed

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v):
        return v.upper()


class BudgetCreate(BudgetBase):
    """Schema for budget creation."""
    account_id: str = Field(min_length=1, max_length=64)
    start_date: datetime
    end_date: datetime
    category_budgets: List[CategoryBudgetCreate] = Field(default_factory=list, max_length=20)
    global_alerts: List[AlertCreate] = Field(default_factory=list, max_length=10)
    auto_renew: bool = True
    allowed_users: List[str] = Field(default_factory=list, max_length=50)
    is_template: bool = False
    metadata: Optional[BudgetMetadata] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return to_naive_utc(v)


class BudgetUpdate(BaseModel):
    """Schema for budget update. Spent/remaining actuals are never accepted."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    total_amount: Optional[Decimal] = Field(None, gt=0, le=settings.MAX_BUDGET_AMOUNT, decimal_places=2)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[BudgetStatus] = None  # Only active <-> paused is accepted
    category_budgets: Optional[List[CategoryBudgetCreate]] = Field(None, max_length=20)
    global_alerts: Optional[List[AlertCreate]] = Field(None, max_length=10)
    auto_renew: Optional[bool] = None
    allowed_users: Optional[List[str]] = Field(None, max_length=50)
    metadata: Optional[BudgetMetadata] = None

    @field_validator("name")
    @classmethod
    def collapse_whitespace(cls, v):
        if v is None:
            return v
        collapsed = " ".join(v.split())
        if not collapsed:
            raise ValueError("Budget name cannot be empty")
        return collapsed

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v):
        return v.upper() if v is not None else v

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return to_naive_utc(v) if v is not None else v


class TemplateInstantiate(BaseModel):
    """Schema for creating a budget from a template."""
    account_id: str = Field(min_length=1, max_length=64)


class BudgetQuery(BaseModel):
    """Filters, paging and projection options for listing budgets."""
    account_id: Optional[str] = None
    status: Optional[BudgetStatus] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[datetime] = None  # Budgets starting on or after
    end_date: Optional[datetime] = None  # Budgets ending on or before
    is_template: Optional[bool] = None
    search: Optional[str] = Field(None, max_length=100)
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    sort_by: BudgetSortField = BudgetSortField.CREATED_AT
    sort_order: Literal["asc", "desc"] = "desc"
    include_progress: bool = False
    include_category_breakdown: bool = False

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return to_naive_utc(v) if v is not None else v


class AlertResponse(BaseModel):
    """Schema for alert response."""
    type: AlertType
    threshold: Decimal
    enabled: bool
    triggered: bool
    triggered_at: Optional[datetime] = None
    message: Optional[str] = None

    class Config:
        from_attributes = True


class CategoryBudgetResponse(BaseModel):
    """Schema for category allocation with spending and display details."""
    category_id: str
    category_name: str
    category_icon: str
    category_color: str
    allocated_amount: Decimal
    spent_amount: Decimal
    remaining_amount: Decimal
    progress_percentage: float  # Percentage of the allocation spent, 2 decimals
    is_over_budget: bool
    alerts: List[AlertResponse] = []
    track_expenses: bool


class BudgetProgress(BaseModel):
    """Schema for time-based spending analytics."""
    overall_progress: float  # Percentage of total spent
    days_elapsed: int
    total_days: int
    expected_spending: Decimal  # Linear spend-down expectation at this point
    spending_variance: Decimal  # Actual minus expected
    on_track: bool
    projected_spending: Decimal  # Total if the current daily rate continues
    average_daily_spending: Decimal
    health_status: HealthStatus


class BudgetResponse(BaseModel):
    """Schema for budget response."""
    id: int
    name: str
    description: Optional[str] = None
    account_id: str
    created_by: str
    currency: str
    total_amount: Decimal
    spent_amount: Decimal
    remaining_amount: Decimal
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime
    status: BudgetStatus
    auto_renew: bool
    renewed_from_id: Optional[int] = None
    renewed_to_id: Optional[int] = None
    is_template: bool
    global_alerts: List[AlertResponse] = []
    category_budgets: Optional[List[CategoryBudgetResponse]] = None
    allowed_users: List[str] = []
    metadata: Dict = {}
    last_recalculated_at: Optional[datetime] = None
    progress: Optional[BudgetProgress] = None
    created_at: datetime
    updated_at: datetime


class PaginatedBudgets(BaseModel):
    """Schema for a page of budgets."""
    data: List[BudgetResponse]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class BudgetSummary(BaseModel):
    """Schema for the aggregate view over a user's or an account's budgets."""
    total_active_budgets: int = 0
    total_budget_amount: Decimal = Decimal(0)
    total_spent_amount: Decimal = Decimal(0)
    total_remaining_amount: Decimal = Decimal(0)
    overall_progress: float = 0.0  # Spent over budgeted across active budgets
    over_budget_count: int = 0
    active_alerts_count: int = 0  # Enabled and triggered global alerts of active budgets
    budgets_by_status: Dict[str, int] = {}
    budgets_by_period: Dict[str, int] = {}


class RecalculationResult(BaseModel):
    """Schema for a manual recalculation response."""
    message: str
    budget_id: int
    recalculated_at: datetime
    fired_alerts: int


class RenewalReport(BaseModel):
    """Outcome of one auto-renewal batch."""
    finalized: int = 0  # Expired budgets whose status was brought up to date first
    renewed: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    successor_ids: List[int] = []
    failed_ids: List[int] = []


class PeriodOption(BaseModel):
    period: BudgetPeriod
    name: str
    description: str
    duration_days: int


class StatusOption(BaseModel):
    status: BudgetStatus
    name: str
    description: str
