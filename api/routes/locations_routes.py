"""Location endpoints, including the request/approval workflow."""

from typing import Annotated

from fastapi import APIRouter, Query, Request

from core.auth import CurrentRequester
from core.database import DbSession
from core.ratelimit import READ_LIMIT, WRITE_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from schemas import (
    ApprovalNotesRequest,
    LocationCreate,
    LocationFilters,
    LocationResponse,
    LocationUpdate,
    PageData,
    RejectRequest,
    ServiceResponse,
    ok,
    page_of,
)
from services import locations_service
from services.access_policy import Policy

router = APIRouter(prefix="/api/locations", tags=["locations"])


@router.get("", response_model=ServiceResponse[PageData[LocationResponse]])
@limiter.limit(READ_LIMIT)
async def list_locations(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    filters: Annotated[LocationFilters, Query()],
) -> ServiceResponse[PageData[LocationResponse]]:
    """List locations. Approved-only roles never see pending requests."""
    rows, total = await locations_service.list_locations(
        db, requester, filters, policy=policy
    )
    return ok(page_of(LocationResponse, rows, total, filters))


@router.post("", response_model=ServiceResponse[LocationResponse], status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_location(
    request: Request,
    body: LocationCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[LocationResponse]:
    location = await locations_service.create_location(
        db, requester, body, policy=policy
    )
    set_wide_event_fields(location_id=location.id, location_status=location.status)
    return ok(LocationResponse.model_validate(location))


@router.get(
    "/{location_id}",
    response_model=ServiceResponse[LocationResponse],
    responses={404: {"description": "Location not found"}},
)
@limiter.limit(READ_LIMIT)
async def get_location(
    request: Request,
    location_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[LocationResponse]:
    location = await locations_service.get_location(
        db, requester, location_id, policy=policy
    )
    return ok(LocationResponse.model_validate(location))


@router.patch("/{location_id}", response_model=ServiceResponse[LocationResponse])
@limiter.limit(WRITE_LIMIT)
async def update_location(
    request: Request,
    location_id: str,
    body: LocationUpdate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[LocationResponse]:
    location = await locations_service.update_location(
        db, requester, location_id, body, policy=policy
    )
    return ok(LocationResponse.model_validate(location))


@router.delete("/{location_id}", response_model=ServiceResponse[None])
@limiter.limit(WRITE_LIMIT)
async def delete_location(
    request: Request,
    location_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await locations_service.delete_location(db, requester, location_id, policy=policy)
    return ok(None)


@router.post(
    "/{location_id}/approve",
    response_model=ServiceResponse[LocationResponse],
)
@limiter.limit(WRITE_LIMIT)
async def approve_location(
    request: Request,
    location_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    body: ApprovalNotesRequest | None = None,
) -> ServiceResponse[LocationResponse]:
    location = await locations_service.approve_location(
        db, requester, location_id, body.notes if body else None, policy=policy
    )
    return ok(LocationResponse.model_validate(location))


@router.post(
    "/{location_id}/reject",
    response_model=ServiceResponse[LocationResponse],
)
@limiter.limit(WRITE_LIMIT)
async def reject_location(
    request: Request,
    location_id: str,
    body: RejectRequest,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[LocationResponse]:
    location = await locations_service.reject_location(
        db, requester, location_id, body.reason, body.notes, policy=policy
    )
    return ok(LocationResponse.model_validate(location))
