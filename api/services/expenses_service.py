"""Expense business logic.

Lifecycle: draft -> submitted -> approved | rejected; approved -> paid.
Agents see and manage their own expenses; reviewers with approval rights
see every expense in their organization.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import ColumnElement
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import Expense, ExpenseStatus, utcnow
from repositories.booking_repository import BookingRepository
from repositories.expense_repository import ExpenseRepository
from schemas import ExpenseCreate, ExpenseFilters, ExpenseSummaryFilters, ExpenseUpdate
from services.access_policy import ACCESS_POLICY, AccessPolicy, Action, Visibility
from services.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    repository_errors,
    require_reason,
)
from services.events_service import record_event
from services.users_service import ensure_user_exists

logger = logging.getLogger(__name__)

EXPENSE_VISIBILITY = Visibility(
    organization=Expense.organization_id,
    owner=Expense.agent_id,
)

EDITABLE_STATES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.SUBMITTED})
LOCKED_STATES = frozenset({ExpenseStatus.APPROVED, ExpenseStatus.PAID})

ZERO = Decimal("0.00")


@dataclass
class SummaryBucket:
    count: int = 0
    amount: Decimal = ZERO


@dataclass
class ExpenseSummary:
    """Totals over the expenses visible to the requester."""

    total_expenses: int = 0
    total_amount: Decimal = ZERO
    pending_approval: int = 0
    pending_amount: Decimal = ZERO
    approved_amount: Decimal = ZERO
    rejected_amount: Decimal = ZERO
    by_category: dict[str, SummaryBucket] = field(default_factory=dict)
    by_status: dict[str, SummaryBucket] = field(default_factory=dict)


def _summary_conditions(filters: ExpenseSummaryFilters) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []
    if filters.agent_id is not None:
        conditions.append(Expense.agent_id == filters.agent_id)
    if filters.booking_id is not None:
        conditions.append(Expense.booking_id == filters.booking_id)
    if filters.date_from is not None:
        conditions.append(Expense.expense_date >= filters.date_from)
    if filters.date_to is not None:
        conditions.append(Expense.expense_date <= filters.date_to)
    return conditions


def _filter_conditions(filters: ExpenseFilters) -> list[ColumnElement[bool]]:
    conditions = _summary_conditions(filters)
    if filters.status is not None:
        conditions.append(Expense.status == filters.status)
    if filters.expense_type is not None:
        conditions.append(Expense.expense_type == filters.expense_type)
    return conditions


def _validate_amounts(values: dict[str, Any]) -> None:
    errors: list[dict[str, Any]] = []
    amount = values.get("amount")
    if amount is not None and amount <= 0:
        errors.append({"field": "amount", "message": "must be greater than zero"})
    mileage = values.get("mileage")
    if mileage is not None and mileage < 0:
        errors.append({"field": "mileage", "message": "must not be negative"})
    if errors:
        raise ValidationError("Invalid expense data", details=errors)


async def _require_booking(
    db: AsyncSession, booking_id: str | None, organization_id: str
) -> None:
    if booking_id is None:
        return
    booking = await BookingRepository(db).get_by_id(booking_id)
    if booking is None or booking.client_organization_id != organization_id:
        raise ValidationError(
            "Booking does not belong to the expense's organization",
            "INVALID_BOOKING",
            details=[{"field": "booking_id", "message": "unknown booking"}],
        )


def _is_owner(requester: Requester, expense: Expense) -> bool:
    return expense.agent_id == requester.user_id


def _require_owner_or(
    policy: AccessPolicy,
    requester: Requester,
    expense: Expense,
    action: Action,
    code: str,
) -> None:
    if _is_owner(requester, expense):
        return
    policy.require(requester, action, code)
    policy.ensure_same_organization(requester, expense.organization_id)


async def _create(
    db: AsyncSession,
    requester: Requester,
    data: ExpenseCreate,
    status: ExpenseStatus,
    policy: AccessPolicy,
) -> Expense:
    policy.require(requester, Action.CREATE, "CREATE_PERMISSION_DENIED")
    organization_id = policy.target_organization(requester, data.organization_id)
    values = data.model_dump(exclude={"organization_id"})
    _validate_amounts(values)

    await ensure_user_exists(db, requester.user_id)
    with repository_errors("CREATE_FAILED"):
        await _require_booking(db, data.booking_id, organization_id)
        expense = await ExpenseRepository(db).create(
            **values,
            organization_id=organization_id,
            agent_id=requester.user_id,
            status=status,
            submitted_at=utcnow() if status == ExpenseStatus.SUBMITTED else None,
        )
        if status == ExpenseStatus.SUBMITTED:
            await record_event(
                db,
                "expense.submitted",
                expense,
                {"amount": expense.amount, "currency": expense.currency},
                requester,
            )
    return expense


async def submit_expense(
    db: AsyncSession,
    requester: Requester,
    data: ExpenseCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Expense:
    """Create an expense directly in the submitted state."""
    expense = await _create(db, requester, data, ExpenseStatus.SUBMITTED, policy)
    logger.info(
        "expense.submitted",
        extra={"expense_id": expense.id, "agent_id": requester.user_id},
    )
    return expense


async def save_draft(
    db: AsyncSession,
    requester: Requester,
    data: ExpenseCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Expense:
    """Create a draft. Drafts emit no event until submitted."""
    return await _create(db, requester, data, ExpenseStatus.DRAFT, policy)


async def list_expenses(
    db: AsyncSession,
    requester: Requester,
    filters: ExpenseFilters,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> tuple[list[Expense], int]:
    conditions = policy.filter_for_role(
        requester, EXPENSE_VISIBILITY, _filter_conditions(filters)
    )
    with repository_errors("LIST_FAILED"):
        return await ExpenseRepository(db).find_many(
            conditions, page=filters.page, limit=filters.limit
        )


async def get_expense(
    db: AsyncSession,
    requester: Requester,
    expense_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Expense:
    with repository_errors("FETCH_FAILED"):
        expense = await ExpenseRepository(db).get_by_id(expense_id)
    if expense is None:
        raise NotFoundError("Expense")
    policy.ensure_access(requester, EXPENSE_VISIBILITY, expense)
    return expense


async def submit_draft(
    db: AsyncSession,
    requester: Requester,
    expense_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Expense:
    expense = await get_expense(db, requester, expense_id, policy=policy)
    _require_owner_or(
        policy, requester, expense, Action.UPDATE, "SUBMIT_PERMISSION_DENIED"
    )
    if expense.status != ExpenseStatus.DRAFT:
        raise InvalidStateError(
            f"Expense is {expense.status.value}, expected draft",
            "INVALID_STATE_FOR_SUBMISSION",
            current_state=expense.status.value,
        )
    _validate_amounts({"amount": expense.amount, "mileage": expense.mileage})

    with repository_errors("SUBMIT_FAILED"):
        expense = await ExpenseRepository(db).update(
            expense, status=ExpenseStatus.SUBMITTED, submitted_at=utcnow()
        )
        await record_event(
            db,
            "expense.submitted",
            expense,
            {"amount": expense.amount, "currency": expense.currency},
            requester,
        )
    return expense


async def update_expense(
    db: AsyncSession,
    requester: Requester,
    expense_id: str,
    data: ExpenseUpdate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Expense:
    expense = await get_expense(db, requester, expense_id, policy=policy)
    _require_owner_or(
        policy, requester, expense, Action.UPDATE, "UPDATE_PERMISSION_DENIED"
    )
    if expense.status not in EDITABLE_STATES:
        raise InvalidStateError(
            f"Cannot update a {expense.status.value} expense",
            "INVALID_STATE_FOR_UPDATE",
            current_state=expense.status.value,
        )

    values = {
        name: value
        for name, value in data.model_dump(exclude_unset=True).items()
        if value is not None
        or name not in ("expense_type", "amount", "currency", "expense_date")
    }
    if not values:
        return expense
    _validate_amounts(values)

    with repository_errors("UPDATE_FAILED"):
        if values.get("booking_id"):
            await _require_booking(db, values["booking_id"], expense.organization_id)
        expense = await ExpenseRepository(db).update(expense, **values)
        await record_event(
            db, "expense.updated", expense, {"fields": sorted(values)}, requester
        )
    return expense


async def process_approval(
    db: AsyncSession,
    requester: Requester,
    expense_id: str,
    approved: bool,
    rejection_reason: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Expense:
    """Approve or reject a submitted expense. Rejection needs a reason."""
    expense = await get_expense(db, requester, expense_id, policy=policy)
    policy.require(requester, Action.APPROVE, "APPROVAL_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, expense.organization_id)
    reason = None if approved else require_reason(rejection_reason, "rejection_reason")

    if expense.status != ExpenseStatus.SUBMITTED:
        raise InvalidStateError(
            f"Expense is {expense.status.value}, expected submitted",
            "INVALID_STATE_FOR_APPROVAL",
            current_state=expense.status.value,
        )

    if approved:
        values: dict[str, Any] = {
            "status": ExpenseStatus.APPROVED,
            "approved_by_id": requester.user_id,
            "approved_at": utcnow(),
        }
    else:
        values = {
            "status": ExpenseStatus.REJECTED,
            "rejected_by_id": requester.user_id,
            "rejected_at": utcnow(),
            "rejection_reason": reason,
        }

    with repository_errors("APPROVAL_FAILED"):
        expense = await ExpenseRepository(db).update(expense, **values)
        await record_event(
            db,
            "expense.approved" if approved else "expense.rejected",
            expense,
            {"amount": expense.amount, "reason": reason},
            requester,
        )

    logger.info(
        "expense.approved" if approved else "expense.rejected",
        extra={"expense_id": expense.id, "reviewer_id": requester.user_id},
    )
    return expense


async def mark_paid(
    db: AsyncSession,
    requester: Requester,
    expense_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Expense:
    expense = await get_expense(db, requester, expense_id, policy=policy)
    policy.require(requester, Action.ADMINISTER, "PAYMENT_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, expense.organization_id)
    if expense.status != ExpenseStatus.APPROVED:
        raise InvalidStateError(
            f"Expense is {expense.status.value}, expected approved",
            "INVALID_STATE_FOR_PAYMENT",
            current_state=expense.status.value,
        )

    with repository_errors("PAYMENT_FAILED"):
        expense = await ExpenseRepository(db).update(
            expense, status=ExpenseStatus.PAID, paid_at=utcnow()
        )
        await record_event(
            db, "expense.paid", expense, {"amount": expense.amount}, requester
        )
    return expense


async def delete_expense(
    db: AsyncSession,
    requester: Requester,
    expense_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    expense = await get_expense(db, requester, expense_id, policy=policy)
    _require_owner_or(
        policy, requester, expense, Action.DELETE, "DELETE_PERMISSION_DENIED"
    )
    if expense.status in LOCKED_STATES:
        raise InvalidStateError(
            f"Cannot delete a {expense.status.value} expense",
            "INVALID_STATE_FOR_DELETION",
            current_state=expense.status.value,
        )

    with repository_errors("DELETE_FAILED"):
        await record_event(
            db, "expense.deleted", expense, {"amount": expense.amount}, requester
        )
        await ExpenseRepository(db).delete(expense.id)


async def get_summary(
    db: AsyncSession,
    requester: Requester,
    filters: ExpenseSummaryFilters,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> ExpenseSummary:
    """Counts and amounts by status and category, scoped like the list."""
    conditions = policy.filter_for_role(
        requester, EXPENSE_VISIBILITY, _summary_conditions(filters)
    )
    with repository_errors("SUMMARY_FAILED"):
        aggregates = await ExpenseRepository(db).aggregate(conditions)

    by_status: dict[str, SummaryBucket] = defaultdict(SummaryBucket)
    by_category: dict[str, SummaryBucket] = defaultdict(SummaryBucket)
    summary = ExpenseSummary()
    for row in aggregates:
        buckets = (by_status[row.status.value], by_category[row.expense_type.value])
        for bucket in buckets:
            bucket.count += row.count
            bucket.amount += row.amount
        summary.total_expenses += row.count
        summary.total_amount += row.amount

    pending = by_status.get(ExpenseStatus.SUBMITTED.value, SummaryBucket())
    summary.pending_approval = pending.count
    summary.pending_amount = pending.amount
    summary.approved_amount = by_status.get(
        ExpenseStatus.APPROVED.value, SummaryBucket()
    ).amount
    summary.rejected_amount = by_status.get(
        ExpenseStatus.REJECTED.value, SummaryBucket()
    ).amount
    summary.by_status = dict(by_status)
    summary.by_category = dict(by_category)
    return summary
