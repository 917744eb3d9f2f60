"""
Collaborator interfaces consumed by the budget engine, and their HTTP adapters.

The engine only knows the three protocols below. Accounts, categories and
expenses live in other services; the default adapters talk to them with
``httpx`` under a bounded timeout and classify every failure as
``DependencyError``. The engine never retries.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Protocol, TypeVar
import httpx
from app.core.config import settings
from app.core.exceptions import BudgetEngineError, DependencyError
from app.core.utils import to_naive_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CategoryInfo:
    """Display attributes of a category."""
    display_name: str
    icon: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class ExpenseRecord:
    """Projection of an expense used for spend aggregation."""
    amount: Decimal
    category_id: Optional[str]
    date: datetime


class AccessControl(Protocol):
    def has_account_access(self, account_id: str, user_id: str) -> bool: ...

    def list_account_ids(self, user_id: str) -> List[str]: ...


class CategoryStore(Protocol):
    def exists(self, category_id: str) -> bool: ...

    def get(self, category_id: str) -> Optional[CategoryInfo]: ...


class ExpenseAggregate(Protocol):
    def find_by_account_and_window(
        self,
        account_id: str,
        start: datetime,
        end: datetime,
        page_limit: int,
        offset: int = 0,
    ) -> List[ExpenseRecord]: ...


def call_dependency(collaborator: str, fn: Callable[..., T], *args, **kwargs) -> T:
    """
    Invoke a collaborator, turning any non-engine failure into DependencyError.

    Engine errors raised by the collaborator propagate unchanged.
    """
    try:
        return fn(*args, **kwargs)
    except BudgetEngineError:
        raise
    except Exception as exc:
        logger.error(f"{collaborator} call failed: {exc}")
        raise DependencyError(f"{collaborator} unavailable: {exc}", collaborator=collaborator) from exc


class _HttpCollaborator:
    """Shared httpx plumbing: one client per adapter, bounded timeout, error classification."""

    name = "collaborator"

    def __init__(self, base_url: str, timeout: float = None, client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout if timeout is not None else settings.COLLABORATOR_TIMEOUT_SECONDS,
        )

    def _get(self, path: str, params: dict = None, allow_404: bool = False) -> Optional[dict]:
        try:
            response = self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.error(f"{self.name} request to {path} timed out")
            raise DependencyError(f"{self.name} timed out", collaborator=self.name) from exc
        except httpx.HTTPError as exc:
            logger.error(f"{self.name} request to {path} failed: {exc}")
            raise DependencyError(f"{self.name} request failed: {exc}", collaborator=self.name) from exc

        if allow_404 and response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.error(f"{self.name} error {response.status_code}: {response.text}")
            raise DependencyError(
                f"{self.name} returned HTTP {response.status_code}", collaborator=self.name
            )
        try:
            return response.json()
        except ValueError as exc:
            raise DependencyError(f"{self.name} returned invalid JSON", collaborator=self.name) from exc

    def close(self) -> None:
        self._client.close()


class HttpAccessControl(_HttpCollaborator):
    """Account membership checks served by the accounts service."""

    name = "access_control"

    def __init__(self, base_url: str = None, **kwargs):
        super().__init__(base_url or settings.ACCOUNTS_SERVICE_URL, **kwargs)

    def has_account_access(self, account_id: str, user_id: str) -> bool:
        data = self._get(f"/accounts/{account_id}/access", params={"user_id": user_id}, allow_404=True)
        if data is None:
            return False
        return bool(data.get("has_access", False))

    def list_account_ids(self, user_id: str) -> List[str]:
        data = self._get(f"/users/{user_id}/accounts")
        return [str(account_id) for account_id in data.get("account_ids", [])]


class HttpCategoryStore(_HttpCollaborator):
    """Category lookups served by the categories service."""

    name = "category_store"

    def __init__(self, base_url: str = None, **kwargs):
        super().__init__(base_url or settings.CATEGORIES_SERVICE_URL, **kwargs)

    def exists(self, category_id: str) -> bool:
        return self.get(category_id) is not None

    def get(self, category_id: str) -> Optional[CategoryInfo]:
        data = self._get(f"/categories/{category_id}", allow_404=True)
        if data is None:
            return None
        return CategoryInfo(
            display_name=data.get("display_name") or data.get("name") or "Unknown Category",
            icon=data.get("icon"),
            color=data.get("color"),
        )


class HttpExpenseAggregate(_HttpCollaborator):
    """Expense window reads served by the expenses service; joins happen there."""

    name = "expense_aggregate"

    def __init__(self, base_url: str = None, **kwargs):
        super().__init__(base_url or settings.EXPENSES_SERVICE_URL, **kwargs)

    def find_by_account_and_window(
        self,
        account_id: str,
        start: datetime,
        end: datetime,
        page_limit: int,
        offset: int = 0,
    ) -> List[ExpenseRecord]:
        data = self._get(
            "/expenses/window",
            params={
                "account_id": account_id,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "limit": page_limit,
                "offset": offset,
            },
        )
        records = []
        for item in data.get("data", []):
            try:
                records.append(ExpenseRecord(
                    amount=Decimal(str(item["amount"])),
                    category_id=str(item["category_id"]) if item.get("category_id") is not None else None,
                    date=to_naive_utc(datetime.fromisoformat(item["date"])),
                ))
            except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
                raise DependencyError(f"malformed expense record: {item!r}", collaborator=self.name) from exc
        return records
