"""Booking endpoints.

State changes go through the action endpoints (submit, approve, reject,
cancel); PATCH never changes status.
"""

from typing import Annotated

from fastapi import APIRouter, Query, Request

from core.auth import CurrentRequester
from core.database import DbSession
from core.ratelimit import READ_LIMIT, WRITE_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from schemas import (
    BookingApproveRequest,
    BookingCreate,
    BookingFilters,
    BookingOccurrenceResponse,
    BookingResponse,
    BookingUpdate,
    PageData,
    ReasonRequest,
    RejectRequest,
    ServiceResponse,
    ok,
    page_of,
)
from services import bookings_service
from services.access_policy import Policy

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


@router.get("", response_model=ServiceResponse[PageData[BookingResponse]])
@limiter.limit(READ_LIMIT)
async def list_bookings(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    filters: Annotated[BookingFilters, Query()],
) -> ServiceResponse[PageData[BookingResponse]]:
    rows, total = await bookings_service.list_bookings(
        db, requester, filters, policy=policy
    )
    return ok(page_of(BookingResponse, rows, total, filters))


@router.post("", response_model=ServiceResponse[BookingResponse], status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_booking(
    request: Request,
    body: BookingCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[BookingResponse]:
    """Create a draft booking."""
    booking = await bookings_service.create_booking(db, requester, body, policy=policy)
    set_wide_event_fields(booking_id=booking.id)
    return ok(BookingResponse.model_validate(booking))


@router.get(
    "/{booking_id}",
    response_model=ServiceResponse[BookingResponse],
    responses={404: {"description": "Booking not found"}},
)
@limiter.limit(READ_LIMIT)
async def get_booking(
    request: Request,
    booking_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[BookingResponse]:
    booking = await bookings_service.get_booking(
        db, requester, booking_id, policy=policy
    )
    return ok(BookingResponse.model_validate(booking))


@router.patch("/{booking_id}", response_model=ServiceResponse[BookingResponse])
@limiter.limit(WRITE_LIMIT)
async def update_booking(
    request: Request,
    booking_id: str,
    body: BookingUpdate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[BookingResponse]:
    booking = await bookings_service.update_booking(
        db, requester, booking_id, body, policy=policy
    )
    return ok(BookingResponse.model_validate(booking))


@router.delete("/{booking_id}", response_model=ServiceResponse[None])
@limiter.limit(WRITE_LIMIT)
async def delete_booking(
    request: Request,
    booking_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await bookings_service.delete_booking(db, requester, booking_id, policy=policy)
    return ok(None)


@router.post("/{booking_id}/submit", response_model=ServiceResponse[BookingResponse])
@limiter.limit(WRITE_LIMIT)
async def submit_booking(
    request: Request,
    booking_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[BookingResponse]:
    booking = await bookings_service.submit_booking(
        db, requester, booking_id, policy=policy
    )
    set_wide_event_fields(booking_id=booking.id, booking_status=booking.status)
    return ok(BookingResponse.model_validate(booking))


@router.post(
    "/{booking_id}/approve",
    response_model=ServiceResponse[BookingResponse],
)
@limiter.limit(WRITE_LIMIT)
async def approve_booking(
    request: Request,
    booking_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    body: BookingApproveRequest | None = None,
) -> ServiceResponse[BookingResponse]:
    """Approve a pending booking and expand its occurrences."""
    body = body or BookingApproveRequest()
    booking = await bookings_service.approve_booking(
        db,
        requester,
        booking_id,
        body.notes,
        body.generate_occurrences,
        policy=policy,
    )
    set_wide_event_fields(booking_id=booking.id, booking_status=booking.status)
    return ok(BookingResponse.model_validate(booking))


@router.post("/{booking_id}/reject", response_model=ServiceResponse[BookingResponse])
@limiter.limit(WRITE_LIMIT)
async def reject_booking(
    request: Request,
    booking_id: str,
    body: RejectRequest,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[BookingResponse]:
    booking = await bookings_service.reject_booking(
        db, requester, booking_id, body.reason, body.notes, policy=policy
    )
    set_wide_event_fields(booking_id=booking.id, booking_status=booking.status)
    return ok(BookingResponse.model_validate(booking))


@router.post("/{booking_id}/cancel", response_model=ServiceResponse[BookingResponse])
@limiter.limit(WRITE_LIMIT)
async def cancel_booking(
    request: Request,
    booking_id: str,
    body: ReasonRequest,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[BookingResponse]:
    booking = await bookings_service.cancel_booking(
        db, requester, booking_id, body.reason, policy=policy
    )
    set_wide_event_fields(booking_id=booking.id, booking_status=booking.status)
    return ok(BookingResponse.model_validate(booking))


@router.get(
    "/{booking_id}/occurrences",
    response_model=ServiceResponse[list[BookingOccurrenceResponse]],
)
@limiter.limit(READ_LIMIT)
async def list_occurrences(
    request: Request,
    booking_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[list[BookingOccurrenceResponse]]:
    occurrences = await bookings_service.list_occurrences(
        db, requester, booking_id, policy=policy
    )
    return ok([BookingOccurrenceResponse.model_validate(o) for o in occurrences])
