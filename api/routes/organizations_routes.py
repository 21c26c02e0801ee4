"""Organization and membership endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query, Request

from core.auth import CurrentRequester
from core.database import DbSession
from core.ratelimit import READ_LIMIT, WRITE_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from schemas import (
    AddMemberRequest,
    DeactivateRequest,
    MembershipResponse,
    OrganizationCreate,
    OrganizationFilters,
    OrganizationResponse,
    OrganizationUpdate,
    PageData,
    PageQuery,
    ServiceResponse,
    SetDefaultOrganizationRequest,
    ok,
    page_of,
)
from services import organizations_service
from services.access_policy import Policy

router = APIRouter(prefix="/api/organizations", tags=["organizations"])
me_router = APIRouter(prefix="/api/me", tags=["organizations"])


@router.get("", response_model=ServiceResponse[PageData[OrganizationResponse]])
@limiter.limit(READ_LIMIT)
async def list_organizations(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    filters: Annotated[OrganizationFilters, Query()],
) -> ServiceResponse[PageData[OrganizationResponse]]:
    rows, total = await organizations_service.list_organizations(
        db, requester, filters, policy=policy
    )
    return ok(page_of(OrganizationResponse, rows, total, filters))


@router.post(
    "",
    response_model=ServiceResponse[OrganizationResponse],
    status_code=201,
    responses={403: {"description": "Platform role required"}},
)
@limiter.limit(WRITE_LIMIT)
async def create_organization(
    request: Request,
    body: OrganizationCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[OrganizationResponse]:
    organization = await organizations_service.create_organization(
        db, requester, body, policy=policy
    )
    set_wide_event_fields(organization_id=organization.id)
    return ok(OrganizationResponse.model_validate(organization))


@router.get(
    "/{organization_id}",
    response_model=ServiceResponse[OrganizationResponse],
    responses={404: {"description": "Organization not found"}},
)
@limiter.limit(READ_LIMIT)
async def get_organization(
    request: Request,
    organization_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[OrganizationResponse]:
    organization = await organizations_service.get_organization(
        db, requester, organization_id, policy=policy
    )
    return ok(OrganizationResponse.model_validate(organization))


@router.patch(
    "/{organization_id}",
    response_model=ServiceResponse[OrganizationResponse],
)
@limiter.limit(WRITE_LIMIT)
async def update_organization(
    request: Request,
    organization_id: str,
    body: OrganizationUpdate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[OrganizationResponse]:
    organization = await organizations_service.update_organization(
        db, requester, organization_id, body, policy=policy
    )
    return ok(OrganizationResponse.model_validate(organization))


@router.delete(
    "/{organization_id}",
    response_model=ServiceResponse[None],
    responses={400: {"description": "Internal organizations cannot be deleted"}},
)
@limiter.limit(WRITE_LIMIT)
async def delete_organization(
    request: Request,
    organization_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await organizations_service.delete_organization(
        db, requester, organization_id, policy=policy
    )
    return ok(None)


@router.post(
    "/{organization_id}/activate",
    response_model=ServiceResponse[OrganizationResponse],
)
@limiter.limit(WRITE_LIMIT)
async def activate_organization(
    request: Request,
    organization_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[OrganizationResponse]:
    organization = await organizations_service.activate_organization(
        db, requester, organization_id, policy=policy
    )
    return ok(OrganizationResponse.model_validate(organization))


@router.post(
    "/{organization_id}/deactivate",
    response_model=ServiceResponse[OrganizationResponse],
)
@limiter.limit(WRITE_LIMIT)
async def deactivate_organization(
    request: Request,
    organization_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    body: DeactivateRequest | None = None,
) -> ServiceResponse[OrganizationResponse]:
    organization = await organizations_service.deactivate_organization(
        db,
        requester,
        organization_id,
        body.reason if body else None,
        policy=policy,
    )
    return ok(OrganizationResponse.model_validate(organization))


@router.get(
    "/{organization_id}/members",
    response_model=ServiceResponse[PageData[MembershipResponse]],
)
@limiter.limit(READ_LIMIT)
async def list_members(
    request: Request,
    organization_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    query: Annotated[PageQuery, Query()],
) -> ServiceResponse[PageData[MembershipResponse]]:
    rows, total = await organizations_service.list_members(
        db, requester, organization_id, query, policy=policy
    )
    return ok(page_of(MembershipResponse, rows, total, query))


@router.post(
    "/{organization_id}/members",
    response_model=ServiceResponse[MembershipResponse],
    status_code=201,
)
@limiter.limit(WRITE_LIMIT)
async def add_member(
    request: Request,
    organization_id: str,
    body: AddMemberRequest,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[MembershipResponse]:
    membership = await organizations_service.add_member(
        db, requester, organization_id, body, policy=policy
    )
    return ok(MembershipResponse.model_validate(membership))


@router.delete(
    "/{organization_id}/members/{user_id}",
    response_model=ServiceResponse[None],
)
@limiter.limit(WRITE_LIMIT)
async def remove_member(
    request: Request,
    organization_id: str,
    user_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await organizations_service.remove_member(
        db, requester, organization_id, user_id, policy=policy
    )
    return ok(None)


@me_router.get(
    "/organizations",
    response_model=ServiceResponse[list[MembershipResponse]],
)
@limiter.limit(READ_LIMIT)
async def list_my_organizations(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
) -> ServiceResponse[list[MembershipResponse]]:
    """Memberships of the calling user."""
    memberships = await organizations_service.list_my_organizations(db, requester)
    return ok([MembershipResponse.model_validate(m) for m in memberships])


@me_router.put(
    "/organizations/default",
    response_model=ServiceResponse[list[MembershipResponse]],
    responses={403: {"description": "Not a member of the organization"}},
)
@limiter.limit(WRITE_LIMIT)
async def set_default_organization(
    request: Request,
    body: SetDefaultOrganizationRequest,
    requester: CurrentRequester,
    db: DbSession,
) -> ServiceResponse[list[MembershipResponse]]:
    """Make one membership the default. Exactly one stays default."""
    memberships = await organizations_service.set_default_organization(
        db, requester, body.organization_id
    )
    return ok([MembershipResponse.model_validate(m) for m in memberships])
