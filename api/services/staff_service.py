"""Staff business logic: records, skills, availability rules and time-off.

Staff members manage their own availability and time-off; everything else
needs the matching role action inside the staff member's organization.
"""

import logging
from datetime import date
from typing import Any

from sqlalchemy import ColumnElement, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import (
    Skill,
    StaffAvailability,
    StaffMember,
    StaffSkill,
    StaffStatus,
    StaffTimeOff,
    TimeOffStatus,
    User,
    today,
    utcnow,
)
from repositories.organization_repository import OrganizationRepository
from repositories.staff_repository import (
    AvailabilityRepository,
    SkillRepository,
    StaffRepository,
    TimeOffRepository,
)
from schemas import (
    AvailabilityRuleCreate,
    SkillCreate,
    StaffCreate,
    StaffFilters,
    StaffSkillAssign,
    StaffUpdate,
    TimeOffCreate,
)
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

STAFF_VISIBILITY = Visibility(
    organization=StaffMember.organization_id,
    status=StaffMember.status,
    approved_value=StaffStatus.ACTIVE,
)

BLOCKING_TIME_OFF = (TimeOffStatus.PENDING, TimeOffStatus.APPROVED)


def _filter_conditions(filters: StaffFilters) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []
    if filters.status is not None:
        conditions.append(StaffMember.status == filters.status)
    if filters.search:
        term = filters.search.strip()
        matching_users = select(User.id).where(
            or_(
                User.first_name.icontains(term, autoescape=True),
                User.last_name.icontains(term, autoescape=True),
                User.email.icontains(term, autoescape=True),
            )
        )
        conditions.append(
            or_(
                StaffMember.title.icontains(term, autoescape=True),
                StaffMember.user_id.in_(matching_users),
            )
        )
    return conditions


def _validate_dates(
    hire_date: date | None,
    termination_date: date | None,
    status: StaffStatus,
) -> None:
    errors: list[dict[str, Any]] = []
    if hire_date and hire_date > today():
        errors.append({"field": "hire_date", "message": "must not be in the future"})
    if hire_date and termination_date and termination_date < hire_date:
        errors.append(
            {"field": "termination_date", "message": "must not be before hire_date"}
        )
    if status == StaffStatus.TERMINATED and termination_date is None:
        errors.append(
            {"field": "termination_date", "message": "required for terminated staff"}
        )
    if errors:
        raise ValidationError("Invalid staff dates", details=errors)


def _is_owner(requester: Requester, staff: StaffMember) -> bool:
    return staff.user_id == requester.user_id


def _require_owner_or(
    policy: AccessPolicy,
    requester: Requester,
    staff: StaffMember,
    action: Action,
    code: str,
) -> None:
    """Staff act on their own records; others need ``action`` in the org."""
    if _is_owner(requester, staff):
        return
    policy.require(requester, action, code)
    policy.ensure_same_organization(requester, staff.organization_id)


# =============================================================================
# Staff records
# =============================================================================


async def list_staff(
    db: AsyncSession,
    requester: Requester,
    filters: StaffFilters,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> tuple[list[StaffMember], int]:
    conditions = policy.filter_for_role(
        requester, STAFF_VISIBILITY, _filter_conditions(filters)
    )
    with repository_errors("LIST_FAILED"):
        return await StaffRepository(db).find_many(
            conditions,
            skill_id=filters.skill_id,
            page=filters.page,
            limit=filters.limit,
        )


async def get_staff(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffMember:
    """Load a staff record. Staff can always see their own."""
    with repository_errors("FETCH_FAILED"):
        staff = await StaffRepository(db).get_by_id(staff_id)
    if staff is None:
        raise NotFoundError("Staff member")
    if not _is_owner(requester, staff):
        policy.ensure_access(requester, STAFF_VISIBILITY, staff)
    return staff


async def create_staff(
    db: AsyncSession,
    requester: Requester,
    data: StaffCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffMember:
    """Register a user as staff. A user is staff in at most one organization."""
    policy.require(requester, Action.UPDATE, "CREATE_PERMISSION_DENIED")
    organization_id = policy.target_organization(requester, data.organization_id)
    _validate_dates(data.hire_date, data.termination_date, data.status)

    with repository_errors("FETCH_FAILED"):
        organization = await OrganizationRepository(db).get_by_id(organization_id)
    if organization is None:
        raise NotFoundError("Organization")

    await ensure_user_exists(
        db,
        data.user_id,
        email=data.email,
        first_name=data.first_name,
        last_name=data.last_name,
    )

    repo = StaffRepository(db)
    with repository_errors("CREATE_FAILED"):
        if await repo.get_by_user_id(data.user_id) is not None:
            raise InvalidStateError(
                "User is already a staff member", "STAFF_ALREADY_EXISTS"
            )
        staff = await repo.create(
            **data.model_dump(
                exclude={"organization_id", "email", "first_name", "last_name"}
            ),
            organization_id=organization_id,
        )
        await record_event(
            db,
            "staff.created",
            staff,
            {"user_id": staff.user_id, "status": staff.status},
            requester,
        )

    logger.info(
        "staff.created",
        extra={"staff_id": staff.id, "organization_id": organization_id},
    )
    return staff


async def update_staff(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    data: StaffUpdate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffMember:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    policy.require(requester, Action.UPDATE, "UPDATE_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, staff.organization_id)

    values = data.model_dump(exclude_unset=True)
    if values.get("hire_date", staff.hire_date) is None:
        del values["hire_date"]
    if not values:
        return staff

    _validate_dates(
        values.get("hire_date", staff.hire_date),
        values.get("termination_date", staff.termination_date),
        staff.status,
    )

    with repository_errors("UPDATE_FAILED"):
        staff = await StaffRepository(db).update(staff, **values)
        await record_event(
            db, "staff.updated", staff, {"fields": sorted(values)}, requester
        )
    return staff


async def change_status(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    status: StaffStatus,
    termination_date: date | None = None,
    reason: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffMember:
    """Change employment status.

    Terminating requires a termination date (given now or already stored);
    reactivating clears it.
    """
    staff = await get_staff(db, requester, staff_id, policy=policy)
    policy.require(requester, Action.UPDATE, "STATUS_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, staff.organization_id)

    if staff.status == status:
        raise InvalidStateError(
            f"Staff member is already {status.value}",
            "STATUS_UNCHANGED",
            current_state=status.value,
        )

    values: dict[str, Any] = {"status": status}
    if termination_date is not None:
        values["termination_date"] = termination_date
    elif status == StaffStatus.ACTIVE:
        values["termination_date"] = None

    _validate_dates(
        staff.hire_date,
        values.get("termination_date", staff.termination_date),
        status,
    )

    previous = staff.status
    with repository_errors("UPDATE_FAILED"):
        staff = await StaffRepository(db).update(staff, **values)
        await record_event(
            db,
            "staff.status_changed",
            staff,
            {"from": previous, "to": status, "reason": reason},
            requester,
        )

    logger.info(
        "staff.status_changed",
        extra={
            "staff_id": staff.id,
            "from_status": previous.value,
            "to_status": status.value,
        },
    )
    return staff


async def delete_staff(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    policy.require(requester, Action.DELETE, "DELETE_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, staff.organization_id)

    with repository_errors("DELETE_FAILED"):
        await record_event(
            db, "staff.deleted", staff, {"user_id": staff.user_id}, requester
        )
        await StaffRepository(db).delete(staff.id)

    logger.info("staff.deleted", extra={"staff_id": staff_id})


# =============================================================================
# Skills
# =============================================================================


async def list_skills(db: AsyncSession, category: str | None = None) -> list[Skill]:
    with repository_errors("LIST_FAILED"):
        return await SkillRepository(db).list_all(category)


async def create_skill(
    db: AsyncSession,
    requester: Requester,
    data: SkillCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Skill:
    policy.require(requester, Action.ADMINISTER, "SKILL_PERMISSION_DENIED")
    repo = SkillRepository(db)
    with repository_errors("CREATE_FAILED"):
        if await repo.get_by_name(data.name) is not None:
            raise InvalidStateError("Skill already exists", "SKILL_ALREADY_EXISTS")
        return await repo.create(**data.model_dump())


async def list_staff_skills(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> list[StaffSkill]:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    with repository_errors("LIST_FAILED"):
        return await SkillRepository(db).list_for_staff(staff.id)


async def add_staff_skill(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    data: StaffSkillAssign,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffSkill:
    """Assign a skill, or update the existing assignment in place."""
    staff = await get_staff(db, requester, staff_id, policy=policy)
    policy.require(requester, Action.UPDATE, "UPDATE_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, staff.organization_id)

    if (
        data.certification_date
        and data.certification_expiry
        and data.certification_expiry <= data.certification_date
    ):
        raise ValidationError(
            "Certification expiry must be after the certification date",
            details=[
                {
                    "field": "certification_expiry",
                    "message": "must be after certification_date",
                }
            ],
        )

    repo = SkillRepository(db)
    with repository_errors("UPDATE_FAILED"):
        if await repo.get_by_id(data.skill_id) is None:
            raise NotFoundError("Skill")
        return await repo.upsert_for_staff(
            staff.id,
            data.skill_id,
            proficiency_level=data.proficiency_level,
            certification_date=data.certification_date,
            certification_expiry=data.certification_expiry,
        )


async def remove_staff_skill(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    skill_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    policy.require(requester, Action.UPDATE, "UPDATE_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, staff.organization_id)

    with repository_errors("DELETE_FAILED"):
        removed = await SkillRepository(db).remove_for_staff(staff.id, skill_id)
    if not removed:
        raise NotFoundError("Staff skill")


# =============================================================================
# Availability rules
# =============================================================================


async def list_availability_rules(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> list[StaffAvailability]:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    with repository_errors("LIST_FAILED"):
        return await AvailabilityRepository(db).list_for_staff(staff.id)


async def add_availability_rule(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    data: AvailabilityRuleCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffAvailability:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    _require_owner_or(
        policy, requester, staff, Action.UPDATE, "AVAILABILITY_PERMISSION_DENIED"
    )

    errors: list[dict[str, Any]] = []
    if not 0 <= data.day_of_week <= 6:
        errors.append({"field": "day_of_week", "message": "must be 0 (Mon) to 6 (Sun)"})
    if data.start_time >= data.end_time:
        errors.append({"field": "end_time", "message": "must be after start_time"})
    if errors:
        raise ValidationError("Invalid availability rule", details=errors)

    with repository_errors("CREATE_FAILED"):
        return await AvailabilityRepository(db).create(
            staff_id=staff.id, **data.model_dump()
        )


async def remove_availability_rule(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    rule_id: int,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    _require_owner_or(
        policy, requester, staff, Action.UPDATE, "AVAILABILITY_PERMISSION_DENIED"
    )

    repo = AvailabilityRepository(db)
    with repository_errors("DELETE_FAILED"):
        rule = await repo.get_by_id(rule_id)
        if rule is None or rule.staff_id != staff.id:
            raise NotFoundError("Availability rule")
        await repo.delete(rule.id)


# =============================================================================
# Time-off
# =============================================================================


async def list_time_off(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    status: TimeOffStatus | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> list[StaffTimeOff]:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    with repository_errors("LIST_FAILED"):
        return await TimeOffRepository(db).list_for_staff(staff.id, status=status)


async def request_time_off(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    data: TimeOffCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffTimeOff:
    """Request time off. Ranges may not overlap pending or approved requests."""
    staff = await get_staff(db, requester, staff_id, policy=policy)
    _require_owner_or(
        policy, requester, staff, Action.UPDATE, "TIME_OFF_PERMISSION_DENIED"
    )

    errors: list[dict[str, Any]] = []
    if data.end_date < data.start_date:
        errors.append({"field": "end_date", "message": "must not be before start_date"})
    if data.start_date < today():
        errors.append({"field": "start_date", "message": "must not be in the past"})
    if errors:
        raise ValidationError("Invalid time-off request", details=errors)

    repo = TimeOffRepository(db)
    with repository_errors("CREATE_FAILED"):
        overlapping = await repo.find_overlapping(
            staff.id, data.start_date, data.end_date, BLOCKING_TIME_OFF
        )
        if overlapping:
            raise InvalidStateError(
                "Time-off overlaps an existing request", "TIME_OFF_OVERLAP"
            )
        request = await repo.create(
            staff_id=staff.id,
            start_date=data.start_date,
            end_date=data.end_date,
            reason=data.reason,
            status=TimeOffStatus.PENDING,
            requested_by_id=requester.user_id,
        )
        await record_event(
            db,
            "staff.time_off.requested",
            staff,
            {
                "time_off_id": request.id,
                "start_date": request.start_date,
                "end_date": request.end_date,
            },
            requester,
        )
    return request


async def _get_time_off(
    db: AsyncSession, staff: StaffMember, time_off_id: int
) -> StaffTimeOff:
    with repository_errors("FETCH_FAILED"):
        request = await TimeOffRepository(db).get_by_id(time_off_id)
    if request is None or request.staff_id != staff.id:
        raise NotFoundError("Time-off request")
    return request


def _ensure_pending(request: StaffTimeOff, code: str) -> None:
    if request.status != TimeOffStatus.PENDING:
        raise InvalidStateError(
            f"Time-off request is {request.status.value}, expected pending",
            code,
            current_state=request.status.value,
        )


async def approve_time_off(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    time_off_id: int,
    notes: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffTimeOff:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    policy.require(requester, Action.APPROVE, "APPROVAL_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, staff.organization_id)
    request = await _get_time_off(db, staff, time_off_id)
    _ensure_pending(request, "INVALID_STATE_FOR_APPROVAL")

    with repository_errors("APPROVAL_FAILED"):
        request = await TimeOffRepository(db).update(
            request,
            status=TimeOffStatus.APPROVED,
            reviewed_by_id=requester.user_id,
            reviewed_at=utcnow(),
            review_notes=notes,
        )
        await record_event(
            db,
            "staff.time_off.approved",
            staff,
            {"time_off_id": request.id},
            requester,
        )
    return request


async def reject_time_off(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    time_off_id: int,
    reason: str | None,
    notes: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffTimeOff:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    policy.require(requester, Action.APPROVE, "REJECTION_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, staff.organization_id)
    reason = require_reason(reason)
    request = await _get_time_off(db, staff, time_off_id)
    _ensure_pending(request, "INVALID_STATE_FOR_REJECTION")

    with repository_errors("REJECTION_FAILED"):
        request = await TimeOffRepository(db).update(
            request,
            status=TimeOffStatus.REJECTED,
            reviewed_by_id=requester.user_id,
            reviewed_at=utcnow(),
            review_notes=notes,
            rejection_reason=reason,
        )
        await record_event(
            db,
            "staff.time_off.rejected",
            staff,
            {"time_off_id": request.id, "reason": reason},
            requester,
        )
    return request


async def cancel_time_off(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    time_off_id: int,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> StaffTimeOff:
    staff = await get_staff(db, requester, staff_id, policy=policy)
    _require_owner_or(
        policy, requester, staff, Action.UPDATE, "CANCEL_PERMISSION_DENIED"
    )
    request = await _get_time_off(db, staff, time_off_id)
    if request.status not in BLOCKING_TIME_OFF:
        raise InvalidStateError(
            f"Cannot cancel a {request.status.value} time-off request",
            "INVALID_STATE_FOR_CANCELLATION",
            current_state=request.status.value,
        )

    with repository_errors("CANCELLATION_FAILED"):
        request = await TimeOffRepository(db).update(
            request, status=TimeOffStatus.CANCELED
        )
        await record_event(
            db,
            "staff.time_off.canceled",
            staff,
            {"time_off_id": request.id},
            requester,
        )
    return request
