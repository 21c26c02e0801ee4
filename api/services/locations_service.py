"""Location business logic.

Locations requested by roles without approval rights start ``pending`` and
stay invisible to approved-only roles until a reviewer approves them.
"""

import logging

from sqlalchemy import ColumnElement, or_
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import Location, LocationStatus, utcnow
from repositories.location_repository import LocationRepository
from schemas import LocationCreate, LocationFilters, LocationUpdate
from services.access_policy import ACCESS_POLICY, AccessPolicy, Action, Visibility
from services.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    repository_errors,
    require_reason,
)
from services.events_service import record_event

logger = logging.getLogger(__name__)

LOCATION_VISIBILITY = Visibility(
    organization=Location.organization_id,
    status=Location.status,
    approved_value=LocationStatus.APPROVED,
)


def _filter_conditions(filters: LocationFilters) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []
    if filters.status is not None:
        conditions.append(Location.status == filters.status)
    if filters.city:
        conditions.append(Location.city.ilike(filters.city.strip()))
    if filters.state:
        conditions.append(Location.state.ilike(filters.state.strip()))
    if filters.is_active is not None:
        conditions.append(Location.is_active == filters.is_active)
    if filters.search:
        term = filters.search.strip()
        conditions.append(
            or_(
                Location.name.icontains(term, autoescape=True),
                Location.address1.icontains(term, autoescape=True),
                Location.city.icontains(term, autoescape=True),
            )
        )
    return conditions


async def list_locations(
    db: AsyncSession,
    requester: Requester,
    filters: LocationFilters,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> tuple[list[Location], int]:
    conditions = policy.filter_for_role(
        requester, LOCATION_VISIBILITY, _filter_conditions(filters)
    )
    with repository_errors("LIST_FAILED"):
        return await LocationRepository(db).find_many(
            conditions, page=filters.page, limit=filters.limit
        )


async def get_location(
    db: AsyncSession,
    requester: Requester,
    location_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Location:
    with repository_errors("FETCH_FAILED"):
        location = await LocationRepository(db).get_by_id(location_id)
    if location is None:
        raise NotFoundError("Location")
    if not policy.can_access(requester, LOCATION_VISIBILITY, location):
        # Requesters may follow up on their own pending requests.
        if not (
            location.requested_by_id == requester.user_id
            and location.organization_id == requester.organization_id
        ):
            raise PermissionDeniedError()
    return location


async def create_location(
    db: AsyncSession,
    requester: Requester,
    data: LocationCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Location:
    """Create a location, or request one when the role cannot approve."""
    policy.require(requester, Action.CREATE, "CREATE_PERMISSION_DENIED")
    organization_id = policy.target_organization(requester, data.organization_id)

    values = data.model_dump(exclude={"organization_id"})
    values.update(organization_id=organization_id, requested_by_id=requester.user_id)
    if policy.can(requester, Action.APPROVE):
        values.update(
            status=LocationStatus.APPROVED,
            approved_by_id=requester.user_id,
            approved_at=utcnow(),
        )
    else:
        values["status"] = LocationStatus.PENDING

    with repository_errors("CREATE_FAILED"):
        location = await LocationRepository(db).create(**values)
        await record_event(
            db,
            "location.created",
            location,
            {"name": location.name, "status": location.status},
            requester,
        )

    logger.info(
        "location.created",
        extra={"location_id": location.id, "status": location.status.value},
    )
    return location


async def update_location(
    db: AsyncSession,
    requester: Requester,
    location_id: str,
    data: LocationUpdate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Location:
    """Update a location.

    Requires UPDATE, except that the requester of a still-pending location
    may correct it before review.
    """
    location = await get_location(db, requester, location_id, policy=policy)
    own_pending = (
        location.requested_by_id == requester.user_id
        and location.status == LocationStatus.PENDING
    )
    if not (policy.can(requester, Action.UPDATE) or own_pending):
        raise PermissionDeniedError(
            "Not allowed to update this location", "UPDATE_PERMISSION_DENIED"
        )
    policy.ensure_same_organization(requester, location.organization_id)

    values = {
        name: value
        for name, value in data.model_dump(exclude_unset=True).items()
        if value is not None or name not in ("name", "city", "is_active")
    }
    if not values:
        return location

    with repository_errors("UPDATE_FAILED"):
        location = await LocationRepository(db).update(location, **values)
        await record_event(
            db, "location.updated", location, {"fields": sorted(values)}, requester
        )
    return location


async def delete_location(
    db: AsyncSession,
    requester: Requester,
    location_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    location = await get_location(db, requester, location_id, policy=policy)
    policy.require(requester, Action.DELETE, "DELETE_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, location.organization_id)

    with repository_errors("DELETE_FAILED"):
        await record_event(
            db, "location.deleted", location, {"name": location.name}, requester
        )
        await LocationRepository(db).delete(location.id)

    logger.info("location.deleted", extra={"location_id": location_id})


def _ensure_pending(location: Location, code: str) -> None:
    if location.status != LocationStatus.PENDING:
        raise InvalidStateError(
            f"Location is {location.status.value}, expected pending",
            code,
            current_state=location.status.value,
        )


async def approve_location(
    db: AsyncSession,
    requester: Requester,
    location_id: str,
    notes: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Location:
    location = await get_location(db, requester, location_id, policy=policy)
    policy.require(requester, Action.APPROVE, "APPROVAL_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, location.organization_id)
    _ensure_pending(location, "INVALID_STATE_FOR_APPROVAL")

    with repository_errors("APPROVAL_FAILED"):
        location = await LocationRepository(db).update(
            location,
            status=LocationStatus.APPROVED,
            approved_by_id=requester.user_id,
            approved_at=utcnow(),
            approval_notes=notes,
        )
        await record_event(
            db, "location.approved", location, {"notes": notes}, requester
        )

    logger.info(
        "location.approved",
        extra={"location_id": location.id, "approver_id": requester.user_id},
    )
    return location


async def reject_location(
    db: AsyncSession,
    requester: Requester,
    location_id: str,
    reason: str | None,
    notes: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Location:
    location = await get_location(db, requester, location_id, policy=policy)
    policy.require(requester, Action.APPROVE, "REJECTION_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, location.organization_id)
    reason = require_reason(reason)
    _ensure_pending(location, "INVALID_STATE_FOR_REJECTION")

    with repository_errors("REJECTION_FAILED"):
        location = await LocationRepository(db).update(
            location,
            status=LocationStatus.REJECTED,
            rejected_by_id=requester.user_id,
            rejected_at=utcnow(),
            rejection_reason=reason,
            rejection_notes=notes,
        )
        await record_event(
            db, "location.rejected", location, {"reason": reason}, requester
        )

    logger.info(
        "location.rejected",
        extra={"location_id": location.id, "reviewer_id": requester.user_id},
    )
    return location
