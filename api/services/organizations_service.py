"""Organization and membership business logic.

Organizations are the tenant boundary. Creating and hard-deleting them is
a platform operation; organization admins manage settings, activation and
membership of their own organization. Internal organizations can never be
deleted, whatever the requester's role.
"""

import logging

from sqlalchemy import ColumnElement
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import Organization, OrganizationType, UserOrganization, utcnow
from repositories.organization_repository import (
    OrganizationRepository,
    UserOrganizationRepository,
)
from schemas import (
    AddMemberRequest,
    OrganizationCreate,
    OrganizationFilters,
    OrganizationUpdate,
    PageQuery,
)
from services.access_policy import ACCESS_POLICY, AccessPolicy, Action, Visibility
from services.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    repository_errors,
)
from services.events_service import record_event
from services.users_service import ensure_user_exists

logger = logging.getLogger(__name__)

ORGANIZATION_VISIBILITY = Visibility(
    organization=Organization.id,
    status=Organization.is_active,
    approved_value=True,
)


def _filter_conditions(filters: OrganizationFilters) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []
    if filters.type is not None:
        conditions.append(Organization.type == filters.type)
    if filters.is_active is not None:
        conditions.append(Organization.is_active == filters.is_active)
    if filters.tier is not None:
        conditions.append(Organization.tier == filters.tier)
    if filters.parent_id is not None:
        conditions.append(Organization.parent_id == filters.parent_id)
    if filters.search:
        conditions.append(
            Organization.name.icontains(filters.search.strip(), autoescape=True)
        )
    return conditions


async def list_organizations(
    db: AsyncSession,
    requester: Requester,
    filters: OrganizationFilters,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> tuple[list[Organization], int]:
    """List organizations visible to the requester."""
    conditions = policy.filter_for_role(
        requester, ORGANIZATION_VISIBILITY, _filter_conditions(filters)
    )
    with repository_errors("LIST_FAILED"):
        return await OrganizationRepository(db).find_many(
            conditions, page=filters.page, limit=filters.limit
        )


async def get_organization(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Organization:
    with repository_errors("FETCH_FAILED"):
        organization = await OrganizationRepository(db).get_by_id(organization_id)
    if organization is None:
        raise NotFoundError("Organization")
    policy.ensure_access(requester, ORGANIZATION_VISIBILITY, organization)
    return organization


async def _require_parent(
    repo: OrganizationRepository, parent_id: str, organization_id: str | None = None
) -> None:
    if parent_id == organization_id:
        raise ValidationError(
            "An organization cannot be its own parent",
            "INVALID_PARENT",
            details=[{"field": "parent_id", "message": "must differ from id"}],
        )
    if await repo.get_by_id(parent_id) is None:
        raise ValidationError(
            "Parent organization not found",
            "INVALID_PARENT",
            details=[{"field": "parent_id", "message": "does not exist"}],
        )


async def create_organization(
    db: AsyncSession,
    requester: Requester,
    data: OrganizationCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Organization:
    """Create an organization. Platform (super admin) operation."""
    policy.require(requester, Action.PLATFORM, "CREATE_PERMISSION_DENIED")

    repo = OrganizationRepository(db)
    with repository_errors("CREATE_FAILED"):
        if data.parent_id:
            await _require_parent(repo, data.parent_id)
        organization = await repo.create(**data.model_dump())
        await record_event(
            db,
            "organization.created",
            organization,
            {"name": organization.name, "type": organization.type},
            requester,
        )

    logger.info(
        "organization.created",
        extra={"organization_id": organization.id, "type": organization.type.value},
    )
    return organization


async def update_organization(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    data: OrganizationUpdate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Organization:
    organization = await get_organization(db, requester, organization_id, policy=policy)
    policy.require(requester, Action.ADMINISTER, "UPDATE_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, organization.id)

    values = data.model_dump(exclude_unset=True)
    if "name" in values and values["name"] is None:
        del values["name"]
    if not values:
        return organization

    repo = OrganizationRepository(db)
    with repository_errors("UPDATE_FAILED"):
        if values.get("parent_id"):
            await _require_parent(repo, values["parent_id"], organization.id)
        organization = await repo.update(organization, **values)
        await record_event(
            db,
            "organization.updated",
            organization,
            {"fields": sorted(values)},
            requester,
        )
    return organization


async def delete_organization(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    """Hard delete a non-internal organization.

    Internal organizations are refused before any role check so the
    outcome is the same for every requester.
    """
    repo = OrganizationRepository(db)
    with repository_errors("FETCH_FAILED"):
        organization = await repo.get_by_id(organization_id)
    if organization is None:
        raise NotFoundError("Organization")

    if organization.type == OrganizationType.INTERNAL:
        raise InvalidStateError(
            "Internal organizations cannot be deleted",
            "INTERNAL_ORGANIZATION_DELETE_FORBIDDEN",
            current_state=organization.type.value,
        )

    policy.require(requester, Action.PLATFORM, "DELETE_PERMISSION_DENIED")

    with repository_errors("DELETE_FAILED"):
        await record_event(
            db,
            "organization.deleted",
            organization,
            {"name": organization.name},
            requester,
        )
        await repo.delete(organization.id)

    logger.info("organization.deleted", extra={"organization_id": organization_id})


async def _set_active(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    *,
    active: bool,
    reason: str | None,
    policy: AccessPolicy,
) -> Organization:
    organization = await get_organization(db, requester, organization_id, policy=policy)
    code = (
        "ACTIVATION_PERMISSION_DENIED" if active else "DEACTIVATION_PERMISSION_DENIED"
    )
    policy.require(requester, Action.ADMINISTER, code)
    policy.ensure_same_organization(requester, organization.id)

    if organization.is_active == active:
        state = "active" if active else "inactive"
        raise InvalidStateError(
            f"Organization is already {state}",
            "ALREADY_ACTIVE" if active else "ALREADY_INACTIVE",
            current_state=state,
        )

    if active:
        values = {
            "is_active": True,
            "deactivated_at": None,
            "deactivated_by_id": None,
            "deactivation_reason": None,
        }
    else:
        values = {
            "is_active": False,
            "deactivated_at": utcnow(),
            "deactivated_by_id": requester.user_id,
            "deactivation_reason": reason.strip() if reason else None,
        }

    with repository_errors("UPDATE_FAILED"):
        organization = await OrganizationRepository(db).update(organization, **values)
        await record_event(
            db,
            "organization.activated" if active else "organization.deactivated",
            organization,
            {"reason": values.get("deactivation_reason")},
            requester,
        )

    logger.info(
        "organization.activated" if active else "organization.deactivated",
        extra={"organization_id": organization.id, "actor_id": requester.user_id},
    )
    return organization


async def activate_organization(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Organization:
    return await _set_active(
        db, requester, organization_id, active=True, reason=None, policy=policy
    )


async def deactivate_organization(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    reason: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Organization:
    return await _set_active(
        db, requester, organization_id, active=False, reason=reason, policy=policy
    )


# =============================================================================
# Membership
# =============================================================================


async def list_members(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    query: PageQuery,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> tuple[list[UserOrganization], int]:
    organization = await get_organization(db, requester, organization_id, policy=policy)
    with repository_errors("LIST_FAILED"):
        return await UserOrganizationRepository(db).list_for_organization(
            organization.id, page=query.page, limit=query.limit
        )


async def add_member(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    data: AddMemberRequest,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> UserOrganization:
    """Add a user to an organization.

    A user's first membership becomes their default.
    """
    organization = await get_organization(db, requester, organization_id, policy=policy)
    policy.require(requester, Action.ADMINISTER, "MEMBER_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, organization.id)

    repo = UserOrganizationRepository(db)
    await ensure_user_exists(db, data.user_id)

    with repository_errors("CREATE_FAILED"):
        if await repo.get(data.user_id, organization.id) is not None:
            raise InvalidStateError(
                "User is already a member of this organization",
                "MEMBER_ALREADY_EXISTS",
            )
        make_default = data.is_default or not await repo.list_for_user(data.user_id)
        membership = await repo.add(data.user_id, organization.id, data.role)
        if make_default:
            await repo.set_default(data.user_id, organization.id)
            membership = await repo.get(data.user_id, organization.id)
        await record_event(
            db,
            "organization.member_added",
            organization,
            {"user_id": data.user_id, "role": data.role},
            requester,
        )
    assert membership is not None
    return membership


async def remove_member(
    db: AsyncSession,
    requester: Requester,
    organization_id: str,
    user_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    organization = await get_organization(db, requester, organization_id, policy=policy)
    policy.require(requester, Action.ADMINISTER, "MEMBER_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, organization.id)

    with repository_errors("DELETE_FAILED"):
        removed = await UserOrganizationRepository(db).remove(user_id, organization.id)
        if not removed:
            raise NotFoundError("Membership")
        await record_event(
            db,
            "organization.member_removed",
            organization,
            {"user_id": user_id},
            requester,
        )


async def list_my_organizations(
    db: AsyncSession, requester: Requester
) -> list[UserOrganization]:
    """Memberships of the requester, default first."""
    with repository_errors("LIST_FAILED"):
        return await UserOrganizationRepository(db).list_for_user(requester.user_id)


async def set_default_organization(
    db: AsyncSession, requester: Requester, organization_id: str
) -> list[UserOrganization]:
    """Atomically make ``organization_id`` the requester's only default."""
    repo = UserOrganizationRepository(db)
    with repository_errors("UPDATE_FAILED"):
        membership = await repo.get(requester.user_id, organization_id)
        if membership is None:
            raise PermissionDeniedError(
                "Not a member of this organization", "NOT_A_MEMBER"
            )
        await repo.set_default(requester.user_id, organization_id)
        return await repo.list_for_user(requester.user_id)
