"""Tests for staff records, skills, availability rules and time-off."""

from datetime import time, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import Organization, StaffMember, StaffStatus, TimeOffStatus, today
from schemas import (
    AvailabilityRuleCreate,
    SkillCreate,
    StaffCreate,
    StaffFilters,
    StaffSkillAssign,
    StaffUpdate,
    TimeOffCreate,
)
from services import staff_service
from services.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tests.factories import (
    SkillFactory,
    StaffMemberFactory,
    TimeOffFactory,
    UserFactory,
    create_async,
)


@pytest.fixture
async def staff(db_session: AsyncSession, client_org: Organization) -> StaffMember:
    user = await create_async(UserFactory, db_session, id="user_staff_1")
    return await create_async(
        StaffMemberFactory,
        db_session,
        user_id=user.id,
        organization_id=client_org.id,
    )


@pytest.fixture
def staff_self(staff: StaffMember, client_org: Organization) -> Requester:
    return Requester(staff.user_id, "brand_agent", client_org.id)


def _time_off(days_ahead: int, length: int = 2) -> TimeOffCreate:
    start = today() + timedelta(days=days_ahead)
    return TimeOffCreate(start_date=start, end_date=start + timedelta(days=length))


@pytest.mark.integration
class TestStaffRecords:
    async def test_create_registers_user(
        self, db_session: AsyncSession, field_manager: Requester
    ):
        member = await staff_service.create_staff(
            db_session,
            field_manager,
            StaffCreate(
                user_id="user_fresh",
                first_name="Dana",
                hire_date=today() - timedelta(days=30),
            ),
        )
        assert member.organization_id == field_manager.organization_id
        assert member.status == StaffStatus.ACTIVE

        with pytest.raises(InvalidStateError) as exc_info:
            await staff_service.create_staff(
                db_session,
                field_manager,
                StaffCreate(user_id="user_fresh", hire_date=today()),
            )
        assert exc_info.value.code == "STAFF_ALREADY_EXISTS"

    async def test_brand_agent_cannot_create(
        self, db_session: AsyncSession, brand_agent: Requester
    ):
        with pytest.raises(PermissionDeniedError):
            await staff_service.create_staff(
                db_session,
                brand_agent,
                StaffCreate(user_id="user_fresh", hire_date=today()),
            )

    @pytest.mark.parametrize(
        ("hire_offset", "termination_offset", "status", "field"),
        [
            (5, None, StaffStatus.ACTIVE, "hire_date"),
            (-10, -20, StaffStatus.ACTIVE, "termination_date"),
            (-10, None, StaffStatus.TERMINATED, "termination_date"),
        ],
    )
    async def test_date_rules(
        self,
        db_session: AsyncSession,
        field_manager: Requester,
        hire_offset,
        termination_offset,
        status,
        field,
    ):
        termination = (
            today() + timedelta(days=termination_offset)
            if termination_offset is not None
            else None
        )
        with pytest.raises(ValidationError) as exc_info:
            await staff_service.create_staff(
                db_session,
                field_manager,
                StaffCreate(
                    user_id="user_fresh",
                    hire_date=today() + timedelta(days=hire_offset),
                    termination_date=termination,
                    status=status,
                ),
            )
        assert field in {d["field"] for d in exc_info.value.details}

    async def test_update_checks_merged_dates(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        field_manager: Requester,
    ):
        with pytest.raises(ValidationError):
            await staff_service.update_staff(
                db_session,
                field_manager,
                staff.id,
                StaffUpdate(termination_date=staff.hire_date - timedelta(days=1)),
            )

        updated = await staff_service.update_staff(
            db_session, field_manager, staff.id, StaffUpdate(title="Lead")
        )
        assert updated.title == "Lead"

    async def test_terminate_and_reactivate(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        field_manager: Requester,
    ):
        with pytest.raises(ValidationError):
            await staff_service.change_status(
                db_session, field_manager, staff.id, StaffStatus.TERMINATED
            )

        terminated = await staff_service.change_status(
            db_session,
            field_manager,
            staff.id,
            StaffStatus.TERMINATED,
            termination_date=today(),
            reason="contract ended",
        )
        assert terminated.status == StaffStatus.TERMINATED
        assert terminated.termination_date == today()

        reactivated = await staff_service.change_status(
            db_session, field_manager, staff.id, StaffStatus.ACTIVE
        )
        assert reactivated.termination_date is None

        with pytest.raises(InvalidStateError) as exc_info:
            await staff_service.change_status(
                db_session, field_manager, staff.id, StaffStatus.ACTIVE
            )
        assert exc_info.value.code == "STATUS_UNCHANGED"

    async def test_brand_agent_sees_only_active_staff(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        staff: StaffMember,
        brand_agent: Requester,
    ):
        user = await create_async(UserFactory, db_session)
        await create_async(
            StaffMemberFactory,
            db_session,
            user_id=user.id,
            organization_id=client_org.id,
            status=StaffStatus.SUSPENDED,
        )

        rows, total = await staff_service.list_staff(
            db_session, brand_agent, StaffFilters()
        )
        assert total == 1
        assert rows[0].id == staff.id


@pytest.mark.integration
class TestSkills:
    async def test_create_skill_is_unique(
        self, db_session: AsyncSession, org_admin: Requester
    ):
        await staff_service.create_skill(
            db_session, org_admin, SkillCreate(name="Forklift")
        )
        with pytest.raises(InvalidStateError) as exc_info:
            await staff_service.create_skill(
                db_session, org_admin, SkillCreate(name="Forklift")
            )
        assert exc_info.value.code == "SKILL_ALREADY_EXISTS"

    async def test_assign_updates_in_place(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        field_manager: Requester,
    ):
        skill = await create_async(SkillFactory, db_session)

        await staff_service.add_staff_skill(
            db_session,
            field_manager,
            staff.id,
            StaffSkillAssign(skill_id=skill.id, proficiency_level=2),
        )
        assigned = await staff_service.add_staff_skill(
            db_session,
            field_manager,
            staff.id,
            StaffSkillAssign(skill_id=skill.id, proficiency_level=4),
        )
        assert assigned.skill.name == skill.name

        skills = await staff_service.list_staff_skills(
            db_session, field_manager, staff.id
        )
        assert [s.proficiency_level for s in skills] == [4]

        await staff_service.remove_staff_skill(
            db_session, field_manager, staff.id, skill.id
        )
        with pytest.raises(NotFoundError):
            await staff_service.remove_staff_skill(
                db_session, field_manager, staff.id, skill.id
            )

    async def test_unknown_skill(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        field_manager: Requester,
    ):
        with pytest.raises(NotFoundError):
            await staff_service.add_staff_skill(
                db_session,
                field_manager,
                staff.id,
                StaffSkillAssign(skill_id="missing"),
            )


@pytest.mark.integration
class TestAvailabilityRules:
    async def test_owner_manages_own_rules(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        staff_self: Requester,
    ):
        rule = await staff_service.add_availability_rule(
            db_session,
            staff_self,
            staff.id,
            AvailabilityRuleCreate(
                day_of_week=4, start_time=time(9), end_time=time(13)
            ),
        )
        rules = await staff_service.list_availability_rules(
            db_session, staff_self, staff.id
        )
        assert [r.id for r in rules] == [rule.id]

        await staff_service.remove_availability_rule(
            db_session, staff_self, staff.id, rule.id
        )
        assert (
            await staff_service.list_availability_rules(
                db_session, staff_self, staff.id
            )
            == []
        )

    async def test_invalid_rule(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        field_manager: Requester,
    ):
        with pytest.raises(ValidationError) as exc_info:
            await staff_service.add_availability_rule(
                db_session,
                field_manager,
                staff.id,
                AvailabilityRuleCreate(
                    day_of_week=7, start_time=time(12), end_time=time(9)
                ),
            )
        fields = {d["field"] for d in exc_info.value.details}
        assert fields == {"day_of_week", "end_time"}

    async def test_other_brand_agent_denied(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        brand_agent: Requester,
    ):
        with pytest.raises(PermissionDeniedError):
            await staff_service.add_availability_rule(
                db_session,
                brand_agent,
                staff.id,
                AvailabilityRuleCreate(
                    day_of_week=1, start_time=time(9), end_time=time(10)
                ),
            )


@pytest.mark.integration
class TestTimeOff:
    async def test_owner_requests_and_manager_approves(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        staff_self: Requester,
        field_manager: Requester,
    ):
        request = await staff_service.request_time_off(
            db_session, staff_self, staff.id, _time_off(10)
        )
        assert request.status == TimeOffStatus.PENDING
        assert request.requested_by_id == staff_self.user_id

        approved = await staff_service.approve_time_off(
            db_session, field_manager, staff.id, request.id, notes="enjoy"
        )
        assert approved.status == TimeOffStatus.APPROVED
        assert approved.reviewed_by_id == field_manager.user_id

        with pytest.raises(InvalidStateError):
            await staff_service.reject_time_off(
                db_session, field_manager, staff.id, request.id, "too late"
            )

    async def test_overlap_rejected(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        staff_self: Requester,
    ):
        await staff_service.request_time_off(
            db_session, staff_self, staff.id, _time_off(10, length=4)
        )
        with pytest.raises(InvalidStateError) as exc_info:
            await staff_service.request_time_off(
                db_session, staff_self, staff.id, _time_off(12)
            )
        assert exc_info.value.code == "TIME_OFF_OVERLAP"

    async def test_canceled_request_does_not_block(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        staff_self: Requester,
    ):
        first = await staff_service.request_time_off(
            db_session, staff_self, staff.id, _time_off(10)
        )
        canceled = await staff_service.cancel_time_off(
            db_session, staff_self, staff.id, first.id
        )
        assert canceled.status == TimeOffStatus.CANCELED

        second = await staff_service.request_time_off(
            db_session, staff_self, staff.id, _time_off(10)
        )
        assert second.status == TimeOffStatus.PENDING

    @pytest.mark.parametrize(("days_ahead", "length"), [(-1, 3), (10, -2)])
    async def test_invalid_range(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        staff_self: Requester,
        days_ahead,
        length,
    ):
        with pytest.raises(ValidationError):
            await staff_service.request_time_off(
                db_session, staff_self, staff.id, _time_off(days_ahead, length)
            )

    async def test_reject_requires_reason(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        field_manager: Requester,
    ):
        request = await create_async(TimeOffFactory, db_session, staff_id=staff.id)
        with pytest.raises(ValidationError):
            await staff_service.reject_time_off(
                db_session, field_manager, staff.id, request.id, ""
            )

        rejected = await staff_service.reject_time_off(
            db_session, field_manager, staff.id, request.id, "peak season"
        )
        assert rejected.status == TimeOffStatus.REJECTED
        assert rejected.rejection_reason == "peak season"

    async def test_owner_cannot_approve_own_request(
        self,
        db_session: AsyncSession,
        staff: StaffMember,
        staff_self: Requester,
    ):
        request = await create_async(TimeOffFactory, db_session, staff_id=staff.id)
        with pytest.raises(PermissionDeniedError):
            await staff_service.approve_time_off(
                db_session, staff_self, staff.id, request.id
            )
