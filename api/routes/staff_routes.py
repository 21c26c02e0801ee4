"""Staff, skills, availability and time-off endpoints."""

from datetime import date, time
from typing import Annotated

from fastapi import APIRouter, Query, Request

from core.auth import CurrentRequester
from core.database import DbSession
from core.ratelimit import READ_LIMIT, WRITE_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from models import TimeOffStatus
from schemas import (
    ApprovalNotesRequest,
    AvailabilityCheckResponse,
    AvailabilityRuleCreate,
    AvailabilityRuleResponse,
    PageData,
    RejectRequest,
    ServiceResponse,
    SkillCreate,
    SkillResponse,
    StaffCreate,
    StaffFilters,
    StaffResponse,
    StaffSkillAssign,
    StaffSkillResponse,
    StaffStatusChangeRequest,
    StaffUpdate,
    TimeOffCreate,
    TimeOffResponse,
    ok,
    page_of,
)
from services import staff_service
from services.access_policy import Policy
from services.availability_service import check_availability

router = APIRouter(prefix="/api/staff", tags=["staff"])
skills_router = APIRouter(prefix="/api/skills", tags=["staff"])


# -----------------------------------------------------------------------------
# Staff members
# -----------------------------------------------------------------------------


@router.get("", response_model=ServiceResponse[PageData[StaffResponse]])
@limiter.limit(READ_LIMIT)
async def list_staff(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    filters: Annotated[StaffFilters, Query()],
) -> ServiceResponse[PageData[StaffResponse]]:
    rows, total = await staff_service.list_staff(db, requester, filters, policy=policy)
    return ok(page_of(StaffResponse, rows, total, filters))


@router.post("", response_model=ServiceResponse[StaffResponse], status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_staff(
    request: Request,
    body: StaffCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[StaffResponse]:
    staff = await staff_service.create_staff(db, requester, body, policy=policy)
    set_wide_event_fields(staff_id=staff.id)
    return ok(StaffResponse.model_validate(staff))


@router.get(
    "/{staff_id}",
    response_model=ServiceResponse[StaffResponse],
    responses={404: {"description": "Staff member not found"}},
)
@limiter.limit(READ_LIMIT)
async def get_staff(
    request: Request,
    staff_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[StaffResponse]:
    staff = await staff_service.get_staff(db, requester, staff_id, policy=policy)
    return ok(StaffResponse.model_validate(staff))


@router.patch("/{staff_id}", response_model=ServiceResponse[StaffResponse])
@limiter.limit(WRITE_LIMIT)
async def update_staff(
    request: Request,
    staff_id: str,
    body: StaffUpdate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[StaffResponse]:
    staff = await staff_service.update_staff(
        db, requester, staff_id, body, policy=policy
    )
    return ok(StaffResponse.model_validate(staff))


@router.delete("/{staff_id}", response_model=ServiceResponse[None])
@limiter.limit(WRITE_LIMIT)
async def delete_staff(
    request: Request,
    staff_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await staff_service.delete_staff(db, requester, staff_id, policy=policy)
    return ok(None)


@router.post("/{staff_id}/status", response_model=ServiceResponse[StaffResponse])
@limiter.limit(WRITE_LIMIT)
async def change_status(
    request: Request,
    staff_id: str,
    body: StaffStatusChangeRequest,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[StaffResponse]:
    staff = await staff_service.change_status(
        db,
        requester,
        staff_id,
        body.status,
        body.termination_date,
        body.reason,
        policy=policy,
    )
    set_wide_event_fields(staff_id=staff.id, staff_status=staff.status)
    return ok(StaffResponse.model_validate(staff))


# -----------------------------------------------------------------------------
# Skills
# -----------------------------------------------------------------------------


@skills_router.get("", response_model=ServiceResponse[list[SkillResponse]])
@limiter.limit(READ_LIMIT)
async def list_skills(
    request: Request,
    requester: CurrentRequester,
    db: DbSession,
    category: str | None = None,
) -> ServiceResponse[list[SkillResponse]]:
    """Skill catalog, shared across organizations."""
    skills = await staff_service.list_skills(db, category)
    return ok([SkillResponse.model_validate(s) for s in skills])


@skills_router.post("", response_model=ServiceResponse[SkillResponse], status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_skill(
    request: Request,
    body: SkillCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[SkillResponse]:
    skill = await staff_service.create_skill(db, requester, body, policy=policy)
    return ok(SkillResponse.model_validate(skill))


@router.get(
    "/{staff_id}/skills",
    response_model=ServiceResponse[list[StaffSkillResponse]],
)
@limiter.limit(READ_LIMIT)
async def list_staff_skills(
    request: Request,
    staff_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[list[StaffSkillResponse]]:
    skills = await staff_service.list_staff_skills(
        db, requester, staff_id, policy=policy
    )
    return ok([StaffSkillResponse.model_validate(s) for s in skills])


@router.post(
    "/{staff_id}/skills",
    response_model=ServiceResponse[StaffSkillResponse],
    status_code=201,
)
@limiter.limit(WRITE_LIMIT)
async def add_staff_skill(
    request: Request,
    staff_id: str,
    body: StaffSkillAssign,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[StaffSkillResponse]:
    """Assign a skill, or update the existing assignment."""
    staff_skill = await staff_service.add_staff_skill(
        db, requester, staff_id, body, policy=policy
    )
    return ok(StaffSkillResponse.model_validate(staff_skill))


@router.delete(
    "/{staff_id}/skills/{skill_id}",
    response_model=ServiceResponse[None],
)
@limiter.limit(WRITE_LIMIT)
async def remove_staff_skill(
    request: Request,
    staff_id: str,
    skill_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await staff_service.remove_staff_skill(
        db, requester, staff_id, skill_id, policy=policy
    )
    return ok(None)


# -----------------------------------------------------------------------------
# Availability
# -----------------------------------------------------------------------------


@router.get(
    "/{staff_id}/availability",
    response_model=ServiceResponse[list[AvailabilityRuleResponse]],
)
@limiter.limit(READ_LIMIT)
async def list_availability_rules(
    request: Request,
    staff_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[list[AvailabilityRuleResponse]]:
    rules = await staff_service.list_availability_rules(
        db, requester, staff_id, policy=policy
    )
    return ok([AvailabilityRuleResponse.model_validate(r) for r in rules])


@router.get(
    "/{staff_id}/availability/check",
    response_model=ServiceResponse[AvailabilityCheckResponse],
)
@limiter.limit(READ_LIMIT)
async def check_staff_availability(
    request: Request,
    staff_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    on_date: Annotated[date, Query(alias="date")],
    start_time: Annotated[time, Query()],
    end_time: Annotated[time, Query()],
) -> ServiceResponse[AvailabilityCheckResponse]:
    """Whether the staff member can work the given window on that date."""
    available = await check_availability(
        db, requester, staff_id, on_date, start_time, end_time, policy=policy
    )
    return ok(
        AvailabilityCheckResponse(
            staff_id=staff_id,
            date=on_date,
            start_time=start_time,
            end_time=end_time,
            available=available,
        )
    )


@router.post(
    "/{staff_id}/availability",
    response_model=ServiceResponse[AvailabilityRuleResponse],
    status_code=201,
)
@limiter.limit(WRITE_LIMIT)
async def add_availability_rule(
    request: Request,
    staff_id: str,
    body: AvailabilityRuleCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[AvailabilityRuleResponse]:
    rule = await staff_service.add_availability_rule(
        db, requester, staff_id, body, policy=policy
    )
    return ok(AvailabilityRuleResponse.model_validate(rule))


@router.delete(
    "/{staff_id}/availability/{rule_id}",
    response_model=ServiceResponse[None],
)
@limiter.limit(WRITE_LIMIT)
async def remove_availability_rule(
    request: Request,
    staff_id: str,
    rule_id: int,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[None]:
    await staff_service.remove_availability_rule(
        db, requester, staff_id, rule_id, policy=policy
    )
    return ok(None)


# -----------------------------------------------------------------------------
# Time off
# -----------------------------------------------------------------------------


@router.get(
    "/{staff_id}/time-off",
    response_model=ServiceResponse[list[TimeOffResponse]],
)
@limiter.limit(READ_LIMIT)
async def list_time_off(
    request: Request,
    staff_id: str,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    status: TimeOffStatus | None = None,
) -> ServiceResponse[list[TimeOffResponse]]:
    requests = await staff_service.list_time_off(
        db, requester, staff_id, status, policy=policy
    )
    return ok([TimeOffResponse.model_validate(r) for r in requests])


@router.post(
    "/{staff_id}/time-off",
    response_model=ServiceResponse[TimeOffResponse],
    status_code=201,
)
@limiter.limit(WRITE_LIMIT)
async def request_time_off(
    request: Request,
    staff_id: str,
    body: TimeOffCreate,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[TimeOffResponse]:
    time_off = await staff_service.request_time_off(
        db, requester, staff_id, body, policy=policy
    )
    return ok(TimeOffResponse.model_validate(time_off))


@router.post(
    "/{staff_id}/time-off/{time_off_id}/approve",
    response_model=ServiceResponse[TimeOffResponse],
)
@limiter.limit(WRITE_LIMIT)
async def approve_time_off(
    request: Request,
    staff_id: str,
    time_off_id: int,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
    body: ApprovalNotesRequest | None = None,
) -> ServiceResponse[TimeOffResponse]:
    time_off = await staff_service.approve_time_off(
        db,
        requester,
        staff_id,
        time_off_id,
        body.notes if body else None,
        policy=policy,
    )
    return ok(TimeOffResponse.model_validate(time_off))


@router.post(
    "/{staff_id}/time-off/{time_off_id}/reject",
    response_model=ServiceResponse[TimeOffResponse],
)
@limiter.limit(WRITE_LIMIT)
async def reject_time_off(
    request: Request,
    staff_id: str,
    time_off_id: int,
    body: RejectRequest,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[TimeOffResponse]:
    time_off = await staff_service.reject_time_off(
        db, requester, staff_id, time_off_id, body.reason, body.notes, policy=policy
    )
    return ok(TimeOffResponse.model_validate(time_off))


@router.post(
    "/{staff_id}/time-off/{time_off_id}/cancel",
    response_model=ServiceResponse[TimeOffResponse],
)
@limiter.limit(WRITE_LIMIT)
async def cancel_time_off(
    request: Request,
    staff_id: str,
    time_off_id: int,
    requester: CurrentRequester,
    db: DbSession,
    policy: Policy,
) -> ServiceResponse[TimeOffResponse]:
    time_off = await staff_service.cancel_time_off(
        db, requester, staff_id, time_off_id, policy=policy
    )
    return ok(TimeOffResponse.model_validate(time_off))
