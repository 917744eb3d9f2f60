"""
Shared fixtures: an in-memory database, fake collaborators and a fixed clock.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Set
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.db.session import init_db
from app.schemas.budget import BudgetCreate
from app.services.budget_service import BudgetService
from app.services.collaborators import CategoryInfo, ExpenseRecord
from app.services.renewal_service import RenewalScheduler

NOW = datetime(2024, 1, 16, 12, 0, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeAccessControl:
    def __init__(self, grants: Dict[str, Set[str]]):
        self.grants = grants
        self.error: Optional[Exception] = None

    def has_account_access(self, account_id: str, user_id: str) -> bool:
        if self.error:
            raise self.error
        return account_id in self.grants.get(user_id, set())

    def list_account_ids(self, user_id: str) -> List[str]:
        if self.error:
            raise self.error
        return sorted(self.grants.get(user_id, set()))


class FakeCategoryStore:
    def __init__(self, categories: Dict[str, CategoryInfo]):
        self.categories = categories
        self.error: Optional[Exception] = None

    def exists(self, category_id: str) -> bool:
        return self.get(category_id) is not None

    def get(self, category_id: str) -> Optional[CategoryInfo]:
        if self.error:
            raise self.error
        return self.categories.get(category_id)


class FakeExpenseAggregate:
    def __init__(self):
        self.records = []  # (account_id, ExpenseRecord)
        self.calls = 0
        self.error: Optional[Exception] = None
        self.failing_accounts: Set[str] = set()

    def add(self, account_id: str, amount: str, date: datetime, category_id: str = None) -> None:
        self.records.append((account_id, ExpenseRecord(Decimal(amount), category_id, date)))

    def find_by_account_and_window(self, account_id, start, end, page_limit, offset=0):
        self.calls += 1
        if self.error:
            raise self.error
        if account_id in self.failing_accounts:
            raise ConnectionError(f"expenses for {account_id} unavailable")
        matching = sorted(
            (r for a, r in self.records if a == account_id and start <= r.date <= end),
            key=lambda r: r.date,
        )
        return matching[offset:offset + page_limit]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def access():
    return FakeAccessControl({
        "user-1": {"acct-1"},
        "user-2": {"acct-2"},
        "admin": {"acct-1", "acct-2"},
    })


@pytest.fixture
def categories():
    return FakeCategoryStore({
        "food": CategoryInfo("Food & Dining", "🍔", "#FF6B6B"),
        "transport": CategoryInfo("Transport", "🚌", "#4ECDC4"),
        "fun": CategoryInfo("Entertainment"),
    })


@pytest.fixture
def expenses():
    return FakeExpenseAggregate()


@pytest.fixture
def service(db, access, categories, expenses, clock):
    return BudgetService(db, access, categories, expenses, clock=clock)


@pytest.fixture
def scheduler(db, service, clock):
    return RenewalScheduler(db, service, clock=clock)


@pytest.fixture
def new_budget():
    """Factory for January monthly budget requests on acct-1."""
    def build(**overrides) -> BudgetCreate:
        payload = {
            "name": "January groceries",
            "account_id": "acct-1",
            "total_amount": "1000.00",
            "period": "monthly",
            "start_date": "2024-01-01T00:00:00",
            "end_date": "2024-01-31T23:59:59.999000",
        }
        payload.update(overrides)
        return BudgetCreate(**payload)
    return build
