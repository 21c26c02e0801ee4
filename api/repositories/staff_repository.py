"""Staff, skill, availability and time-off repositories."""

from datetime import date
from typing import Any

from sqlalchemy import ColumnElement, delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Skill,
    StaffAvailability,
    StaffMember,
    StaffSkill,
    StaffTimeOff,
    TimeOffStatus,
)
from repositories.utils import log_slow_query, paginate


class StaffRepository:
    """Repository for StaffMember database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_staff_by_id")
    async def get_by_id(self, staff_id: str) -> StaffMember | None:
        result = await self.db.execute(
            select(StaffMember).where(StaffMember.id == staff_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("get_staff_by_user")
    async def get_by_user_id(self, user_id: str) -> StaffMember | None:
        """A user is staff in at most one organization."""
        result = await self.db.execute(
            select(StaffMember).where(StaffMember.user_id == user_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("list_staff")
    async def find_many(
        self,
        conditions: list[ColumnElement[bool]],
        *,
        skill_id: str | None = None,
        page: int,
        limit: int,
    ) -> tuple[list[StaffMember], int]:
        stmt = select(StaffMember).where(*conditions)
        if skill_id is not None:
            stmt = stmt.where(
                exists().where(
                    StaffSkill.staff_id == StaffMember.id,
                    StaffSkill.skill_id == skill_id,
                )
            )
        stmt = stmt.order_by(StaffMember.hire_date, StaffMember.id)
        return await paginate(self.db, stmt, page=page, limit=limit)

    @log_slow_query("create_staff")
    async def create(self, **values: Any) -> StaffMember:
        staff = StaffMember(**values)
        self.db.add(staff)
        await self.db.flush()
        return staff

    @log_slow_query("update_staff")
    async def update(self, staff: StaffMember, **values: Any) -> StaffMember:
        for name, value in values.items():
            setattr(staff, name, value)
        await self.db.flush()
        return staff

    @log_slow_query("delete_staff")
    async def delete(self, staff_id: str) -> None:
        await self.db.execute(delete(StaffMember).where(StaffMember.id == staff_id))


class SkillRepository:
    """Repository for the skill catalog and staff skill assignments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_skill_by_id")
    async def get_by_id(self, skill_id: str) -> Skill | None:
        result = await self.db.execute(select(Skill).where(Skill.id == skill_id))
        return result.scalar_one_or_none()

    @log_slow_query("get_skill_by_name")
    async def get_by_name(self, name: str) -> Skill | None:
        result = await self.db.execute(select(Skill).where(Skill.name == name))
        return result.scalar_one_or_none()

    @log_slow_query("list_skills")
    async def list_all(self, category: str | None = None) -> list[Skill]:
        stmt = select(Skill).order_by(Skill.name)
        if category is not None:
            stmt = stmt.where(Skill.category == category)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @log_slow_query("create_skill")
    async def create(self, **values: Any) -> Skill:
        skill = Skill(**values)
        self.db.add(skill)
        await self.db.flush()
        return skill

    @log_slow_query("list_staff_skills")
    async def list_for_staff(self, staff_id: str) -> list[StaffSkill]:
        result = await self.db.execute(
            select(StaffSkill)
            .where(StaffSkill.staff_id == staff_id)
            .order_by(StaffSkill.id)
        )
        return list(result.scalars().all())

    @log_slow_query("get_staff_skill")
    async def get_for_staff(self, staff_id: str, skill_id: str) -> StaffSkill | None:
        result = await self.db.execute(
            select(StaffSkill).where(
                StaffSkill.staff_id == staff_id,
                StaffSkill.skill_id == skill_id,
            )
        )
        return result.scalar_one_or_none()

    @log_slow_query("upsert_staff_skill")
    async def upsert_for_staff(
        self, staff_id: str, skill_id: str, **values: Any
    ) -> StaffSkill:
        """Insert the assignment or update the existing one in place."""
        staff_skill = await self.get_for_staff(staff_id, skill_id)
        if staff_skill is None:
            staff_skill = StaffSkill(staff_id=staff_id, skill_id=skill_id, **values)
            self.db.add(staff_skill)
        else:
            for name, value in values.items():
                setattr(staff_skill, name, value)
        await self.db.flush()
        await self.db.refresh(staff_skill, attribute_names=["skill"])
        return staff_skill

    @log_slow_query("remove_staff_skill")
    async def remove_for_staff(self, staff_id: str, skill_id: str) -> int:
        result = await self.db.execute(
            delete(StaffSkill).where(
                StaffSkill.staff_id == staff_id,
                StaffSkill.skill_id == skill_id,
            )
        )
        return result.rowcount


class AvailabilityRepository:
    """Repository for weekly availability rules."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("list_availability_rules")
    async def list_for_staff(
        self, staff_id: str, day_of_week: int | None = None
    ) -> list[StaffAvailability]:
        stmt = select(StaffAvailability).where(StaffAvailability.staff_id == staff_id)
        if day_of_week is not None:
            stmt = stmt.where(StaffAvailability.day_of_week == day_of_week)
        stmt = stmt.order_by(
            StaffAvailability.day_of_week, StaffAvailability.start_time
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @log_slow_query("get_availability_rule")
    async def get_by_id(self, rule_id: int) -> StaffAvailability | None:
        result = await self.db.execute(
            select(StaffAvailability).where(StaffAvailability.id == rule_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("create_availability_rule")
    async def create(self, **values: Any) -> StaffAvailability:
        rule = StaffAvailability(**values)
        self.db.add(rule)
        await self.db.flush()
        return rule

    @log_slow_query("delete_availability_rule")
    async def delete(self, rule_id: int) -> None:
        await self.db.execute(
            delete(StaffAvailability).where(StaffAvailability.id == rule_id)
        )


class TimeOffRepository:
    """Repository for time-off requests."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_time_off")
    async def get_by_id(self, time_off_id: int) -> StaffTimeOff | None:
        result = await self.db.execute(
            select(StaffTimeOff).where(StaffTimeOff.id == time_off_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("list_time_off")
    async def list_for_staff(
        self,
        staff_id: str,
        *,
        status: TimeOffStatus | None = None,
        on_date: date | None = None,
    ) -> list[StaffTimeOff]:
        """Requests for a staff member, optionally limited to ones covering a date."""
        stmt = select(StaffTimeOff).where(StaffTimeOff.staff_id == staff_id)
        if status is not None:
            stmt = stmt.where(StaffTimeOff.status == status)
        if on_date is not None:
            stmt = stmt.where(
                StaffTimeOff.start_date <= on_date,
                StaffTimeOff.end_date >= on_date,
            )
        stmt = stmt.order_by(StaffTimeOff.start_date, StaffTimeOff.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @log_slow_query("find_overlapping_time_off")
    async def find_overlapping(
        self,
        staff_id: str,
        start_date: date,
        end_date: date,
        statuses: tuple[TimeOffStatus, ...],
    ) -> list[StaffTimeOff]:
        """Requests in the given statuses whose range intersects [start, end]."""
        result = await self.db.execute(
            select(StaffTimeOff).where(
                StaffTimeOff.staff_id == staff_id,
                StaffTimeOff.status.in_(statuses),
                StaffTimeOff.start_date <= end_date,
                StaffTimeOff.end_date >= start_date,
            )
        )
        return list(result.scalars().all())

    @log_slow_query("create_time_off")
    async def create(self, **values: Any) -> StaffTimeOff:
        request = StaffTimeOff(**values)
        self.db.add(request)
        await self.db.flush()
        return request

    @log_slow_query("update_time_off")
    async def update(self, request: StaffTimeOff, **values: Any) -> StaffTimeOff:
        for name, value in values.items():
            setattr(request, name, value)
        await self.db.flush()
        return request
