"""
Budget persistence queries.

Every read path goes through ``BudgetRepository.live()`` so the soft-delete
tombstone is filtered in exactly one place.
"""
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import or_
from sqlalchemy.orm import Query, Session
from app.models.budget import Budget, BudgetAllowedUser, BudgetStatus


class BudgetRepository:
    """Query helpers for the budgets table."""

    def __init__(self, db: Session):
        self.db = db

    def live(self) -> Query:
        """Base query: budgets that have not been soft-deleted."""
        return self.db.query(Budget).filter(Budget.is_deleted.is_(False))

    def get(self, budget_id: int) -> Optional[Budget]:
        return self.live().filter(Budget.id == budget_id).first()

    def get_template(self, template_id: int) -> Optional[Budget]:
        return self.live().filter(Budget.id == template_id, Budget.is_template.is_(True)).first()

    def find_overlapping(
        self,
        account_id: str,
        period,
        start_date: datetime,
        end_date: datetime,
        exclude_id: Optional[int] = None,
    ) -> List[Budget]:
        query = self.live().filter(
            Budget.account_id == account_id,
            Budget.period == period,
            Budget.is_template.is_(False),
            Budget.start_date <= end_date,
            Budget.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.filter(Budget.id != exclude_id)
        return query.order_by(Budget.start_date).with_for_update().all()

    def visible_to(self, account_ids: Iterable[str], user_id: str) -> Query:
        """Budgets of the given accounts plus budgets explicitly shared with the user."""
        account_ids = list(account_ids)
        shared = Budget.allowed_user_rows.any(BudgetAllowedUser.user_id == user_id)
        if account_ids:
            return self.live().filter(or_(Budget.account_id.in_(account_ids), shared))
        return self.live().filter(shared)

    def in_accounts(self, account_ids: Iterable[str]) -> Query:
        return self.live().filter(Budget.account_id.in_(list(account_ids)))

    def find_expired_unfinalized(self, now: datetime) -> List[Budget]:
        """Auto-renewing budgets past their end whose status never moved to completed/exceeded."""
        return self.live().filter(
            Budget.auto_renew.is_(True),
            Budget.is_template.is_(False),
            Budget.status.in_([BudgetStatus.ACTIVE, BudgetStatus.PAUSED]),
            Budget.end_date < now,
        ).order_by(Budget.id).all()

    def find_due_for_renewal(self, now: datetime) -> List[Budget]:
        return self.live().filter(
            Budget.auto_renew.is_(True),
            Budget.is_template.is_(False),
            Budget.status == BudgetStatus.COMPLETED,
            Budget.end_date < now,
            Budget.renewed_to_id.is_(None),
        ).order_by(Budget.id).all()

    def find_successor(self, budget_id: int) -> Optional[Budget]:
        return self.live().filter(Budget.renewed_from_id == budget_id).first()

    def paginate(self, query: Query, page: int, limit: int) -> Tuple[List[Budget], int]:
        total = query.order_by(None).count()
        items = query.offset((page - 1) * limit).limit(limit).all()
        return items, total
