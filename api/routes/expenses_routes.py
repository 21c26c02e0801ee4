"""Expense endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query, Request

from core.auth import CurrentRequester
from core.database import DbSession
from core.ratelimit import READ_LIMIT, WRITE_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from schemas import (
    ExpenseApprovalRequest,
    ExpenseCreate,
    ExpenseFilters,
    ExpenseResponse,
    ExpenseSummaryFilters,
    ExpenseSummaryResponse,
    ExpenseUpdate,
    PageData,
    ServiceResponse,
    ok,
    page_of,
)
from services import expenses_service
from services.access_policy import Policy

router = APIRouter(prefix="/api/expenses", tags=["expenses"])


@router.get("", response_model=ServiceResponse[PageData[ExpenseResponse]])
@limiter.limit(READ_LIMIT)
async def list_expenses(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    filters: Annotated[ExpenseFilters, Query()],
) -> ServiceResponse[PageData[ExpenseResponse]]:
    """Agents see their own expenses; reviewers see the organization's."""
    rows, total = await expenses_service.list_expenses(
        db, requester, filters, policy=policy
    )
    return ok(page_of(ExpenseResponse, rows, total, filters))


@router.post("", response_model=ServiceResponse[ExpenseResponse], status_code=201)
@limiter.limit(WRITE_LIMIT)
async def submit_expense(
    request: Request,
    body: ExpenseCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[ExpenseResponse]:
    expense = await expenses_service.submit_expense(db, requester, body, policy=policy)
    set_wide_event_fields(expense_id=expense.id, expense_status=expense.status)
    return ok(ExpenseResponse.model_validate(expense))


@router.post(
    "/drafts",
    response_model=ServiceResponse[ExpenseResponse],
    status_code=201,
)
@limiter.limit(WRITE_LIMIT)
async def save_draft(
    request: Request,
    body: ExpenseCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[ExpenseResponse]:
    expense = await expenses_service.save_draft(db, requester, body, policy=policy)
    set_wide_event_fields(expense_id=expense.id, expense_status=expense.status)
    return ok(ExpenseResponse.model_validate(expense))


@router.get("/summary", response_model=ServiceResponse[ExpenseSummaryResponse])
@limiter.limit(READ_LIMIT)
async def get_summary(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    filters: Annotated[ExpenseSummaryFilters, Query()],
) -> ServiceResponse[ExpenseSummaryResponse]:
    summary = await expenses_service.get_summary(db, requester, filters, policy=policy)
    return ok(ExpenseSummaryResponse.model_validate(summary))


@router.get(
    "/{expense_id}",
    response_model=ServiceResponse[ExpenseResponse],
    responses={404: {"description": "Expense not found"}},
)
@limiter.limit(READ_LIMIT)
async def get_expense(
    request: Request,
    expense_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[ExpenseResponse]:
    expense = await expenses_service.get_expense(
        db, requester, expense_id, policy=policy
    )
    return ok(ExpenseResponse.model_validate(expense))


@router.patch("/{expense_id}", response_model=ServiceResponse[ExpenseResponse])
@limiter.limit(WRITE_LIMIT)
async def update_expense(
    request: Request,
    expense_id: str,
    body: ExpenseUpdate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[ExpenseResponse]:
    expense = await expenses_service.update_expense(
        db, requester, expense_id, body, policy=policy
    )
    return ok(ExpenseResponse.model_validate(expense))


@router.delete("/{expense_id}", response_model=ServiceResponse[None])
@limiter.limit(WRITE_LIMIT)
async def delete_expense(
    request: Request,
    expense_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await expenses_service.delete_expense(db, requester, expense_id, policy=policy)
    return ok(None)


@router.post("/{expense_id}/submit", response_model=ServiceResponse[ExpenseResponse])
@limiter.limit(WRITE_LIMIT)
async def submit_draft(
    request: Request,
    expense_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[ExpenseResponse]:
    expense = await expenses_service.submit_draft(
        db, requester, expense_id, policy=policy
    )
    return ok(ExpenseResponse.model_validate(expense))


@router.post(
    "/{expense_id}/approval",
    response_model=ServiceResponse[ExpenseResponse],
)
@limiter.limit(WRITE_LIMIT)
async def process_approval(
    request: Request,
    expense_id: str,
    body: ExpenseApprovalRequest,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[ExpenseResponse]:
    """Approve, or reject with a reason."""
    expense = await expenses_service.process_approval(
        db,
        requester,
        expense_id,
        body.approved,
        body.rejection_reason,
        policy=policy,
    )
    set_wide_event_fields(expense_id=expense.id, expense_status=expense.status)
    return ok(ExpenseResponse.model_validate(expense))


@router.post("/{expense_id}/pay", response_model=ServiceResponse[ExpenseResponse])
@limiter.limit(WRITE_LIMIT)
async def mark_paid(
    request: Request,
    expense_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[ExpenseResponse]:
    expense = await expenses_service.mark_paid(
        db, requester, expense_id, policy=policy
    )
    return ok(ExpenseResponse.model_validate(expense))
