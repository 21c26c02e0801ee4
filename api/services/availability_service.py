"""Staff availability evaluation.

``is_available`` answers "can staff member X work on date D between S and
E?" from already-loaded collections:

1. Staff that are inactive, suspended or terminated are never available.
2. Some rule for D's weekday (Monday = 0) must be marked available and
   contain [S, E] on its own. Adjacent rules are not merged.
3. An approved time-off request covering D (inclusive) blocks the day.

Availability is not a reservation; nothing is locked or written.
"""

from collections.abc import Iterable
from datetime import date, time
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import StaffStatus, TimeOffStatus
from repositories.staff_repository import AvailabilityRepository, TimeOffRepository
from services.access_policy import ACCESS_POLICY, AccessPolicy
from services.errors import ValidationError, repository_errors
from services.staff_service import get_staff

UNAVAILABLE_STATUSES = frozenset(
    {StaffStatus.INACTIVE, StaffStatus.SUSPENDED, StaffStatus.TERMINATED}
)


class _HasStatus(Protocol):
    status: StaffStatus


class _Rule(Protocol):
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool


class _TimeOff(Protocol):
    start_date: date
    end_date: date
    status: TimeOffStatus


def is_available(
    staff: _HasStatus,
    rules: Iterable[_Rule],
    time_off: Iterable[_TimeOff],
    on_date: date,
    start: time,
    end: time,
) -> bool:
    """Pure availability check over pre-fetched rules and time-off."""
    if staff.status in UNAVAILABLE_STATUSES:
        return False

    weekday = on_date.weekday()
    covered = any(
        rule.day_of_week == weekday
        and rule.is_available
        and rule.start_time <= start
        and rule.end_time >= end
        for rule in rules
    )
    if not covered:
        return False

    return not any(
        request.status == TimeOffStatus.APPROVED
        and request.start_date <= on_date <= request.end_date
        for request in time_off
    )


async def check_availability(
    db: AsyncSession,
    requester: Requester,
    staff_id: str,
    on_date: date,
    start: time,
    end: time,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> bool:
    if start >= end:
        raise ValidationError(
            "start_time must be before end_time",
            "INVALID_TIME_RANGE",
            details=[{"field": "end_time", "message": "must be after start_time"}],
        )

    staff = await get_staff(db, requester, staff_id, policy=policy)
    with repository_errors("AVAILABILITY_CHECK_FAILED"):
        rules = await AvailabilityRepository(db).list_for_staff(
            staff.id, on_date.weekday()
        )
        time_off = await TimeOffRepository(db).list_for_staff(
            staff.id, status=TimeOffStatus.APPROVED, on_date=on_date
        )
    return is_available(staff, rules, time_off, on_date, start, end)
