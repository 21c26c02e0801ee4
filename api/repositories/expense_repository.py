"""Expense repository for database operations."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import ColumnElement, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Expense, ExpenseStatus, ExpenseType
from repositories.utils import log_slow_query, paginate


@dataclass(frozen=True, slots=True)
class ExpenseAggregate:
    """Count and amount for one (status, type) bucket."""

    status: ExpenseStatus
    expense_type: ExpenseType
    count: int
    amount: Decimal


class ExpenseRepository:
    """Repository for Expense database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_expense_by_id")
    async def get_by_id(self, expense_id: str) -> Expense | None:
        result = await self.db.execute(select(Expense).where(Expense.id == expense_id))
        return result.scalar_one_or_none()

    @log_slow_query("list_expenses")
    async def find_many(
        self,
        conditions: list[ColumnElement[bool]],
        *,
        page: int,
        limit: int,
    ) -> tuple[list[Expense], int]:
        stmt = (
            select(Expense)
            .where(*conditions)
            .order_by(Expense.expense_date.desc(), Expense.created_at.desc())
        )
        return await paginate(self.db, stmt, page=page, limit=limit)

    @log_slow_query("aggregate_expenses")
    async def aggregate(
        self, conditions: list[ColumnElement[bool]]
    ) -> list[ExpenseAggregate]:
        """Group matching expenses by status and type in one query."""
        result = await self.db.execute(
            select(
                Expense.status,
                Expense.expense_type,
                func.count(Expense.id),
                func.coalesce(func.sum(Expense.amount), 0),
            )
            .where(*conditions)
            .group_by(Expense.status, Expense.expense_type)
        )
        # SQLite returns float sums; go through str to keep cents exact.
        return [
            ExpenseAggregate(
                status=ExpenseStatus(status),
                expense_type=ExpenseType(expense_type),
                count=count,
                amount=Decimal(str(amount)).quantize(Decimal("0.01")),
            )
            for status, expense_type, count, amount in result.all()
        ]

    @log_slow_query("create_expense")
    async def create(self, **values: Any) -> Expense:
        expense = Expense(**values)
        self.db.add(expense)
        await self.db.flush()
        return expense

    @log_slow_query("update_expense")
    async def update(self, expense: Expense, **values: Any) -> Expense:
        for name, value in values.items():
            setattr(expense, name, value)
        await self.db.flush()
        return expense

    @log_slow_query("delete_expense")
    async def delete(self, expense_id: str) -> None:
        await self.db.execute(delete(Expense).where(Expense.id == expense_id))
