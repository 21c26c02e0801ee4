"""Booking business logic and lifecycle state machine.

    draft -> pending_approval -> approved | rejected
    approved -> completed (derived once the end date has passed)
    draft | pending_approval | approved -> canceled

Guards are checked in order: permission, input, state. A failed guard
never changes the stored status. ``completed`` is never written; it is
reported through ``Booking.effective_status``.
"""

import logging
from datetime import date
from typing import Any

from sqlalchemy import ColumnElement, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from core.config import get_settings
from models import Booking, BookingOccurrence, BookingStatus, today, utcnow
from repositories.booking_repository import BookingRepository
from repositories.location_repository import LocationRepository
from schemas import BookingCreate, BookingFilters, BookingUpdate
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
from services.recurrence_service import (
    Frequency,
    RecurrenceRule,
    generate_occurrences,
    parse_recurrence,
)

logger = logging.getLogger(__name__)

BOOKING_VISIBILITY = Visibility(
    organization=Booking.client_organization_id,
    status=Booking.status,
    approved_value=BookingStatus.APPROVED,
)

REQUIRED_FOR_SUBMISSION = (
    "title",
    "start_date",
    "end_date",
    "location_id",
    "client_organization_id",
)

CANCELABLE_STATES = frozenset(
    {BookingStatus.DRAFT, BookingStatus.PENDING_APPROVAL, BookingStatus.APPROVED}
)
EDITABLE_STATES = CANCELABLE_STATES

# Fields that cannot be cleared through a partial update.
_NON_NULLABLE_FIELDS = ("title", "priority", "requires_training", "is_recurring")


def _status_condition(status: BookingStatus) -> ColumnElement[bool]:
    """Match the reported status, treating ended approved bookings as completed."""
    if status == BookingStatus.COMPLETED:
        return and_(
            Booking.status == BookingStatus.APPROVED, Booking.end_date < today()
        )
    if status == BookingStatus.APPROVED:
        return and_(
            Booking.status == BookingStatus.APPROVED,
            or_(Booking.end_date.is_(None), Booking.end_date >= today()),
        )
    return Booking.status == status


def _filter_conditions(filters: BookingFilters) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []
    if filters.status is not None:
        conditions.append(_status_condition(filters.status))
    if filters.priority is not None:
        conditions.append(Booking.priority == filters.priority)
    if filters.location_id is not None:
        conditions.append(Booking.location_id == filters.location_id)
    if filters.client_organization_id is not None:
        conditions.append(
            Booking.client_organization_id == filters.client_organization_id
        )
    if filters.start_from is not None:
        conditions.append(Booking.start_date >= filters.start_from)
    if filters.start_to is not None:
        conditions.append(Booking.start_date <= filters.start_to)
    if filters.search:
        conditions.append(
            Booking.title.icontains(filters.search.strip(), autoescape=True)
        )
    return conditions


def _is_creator(requester: Requester, booking: Booking) -> bool:
    return booking.created_by_id == requester.user_id


def _validate_booking(values: dict[str, Any]) -> None:
    """Check schedule window, recurrence and numeric fields together.

    Raises a single ValidationError listing every problem found.
    """
    errors: list[dict[str, Any]] = []

    start_date: date | None = values.get("start_date")
    end_date: date | None = values.get("end_date")
    start_time = values.get("start_time")
    end_time = values.get("end_time")

    if start_date and end_date and end_date < start_date:
        errors.append({"field": "end_date", "message": "must not be before start_date"})

    same_day = start_date is not None and (end_date is None or end_date == start_date)
    if same_day and start_time and end_time and end_time <= start_time:
        errors.append({"field": "end_time", "message": "must be after start_time"})

    for field in ("budget", "attendee_estimate", "staff_count"):
        value = values.get(field)
        if value is not None and value < 0:
            errors.append({"field": field, "message": "must not be negative"})

    pattern = values.get("recurrence_pattern")
    if values.get("is_recurring") and not pattern:
        errors.append(
            {
                "field": "recurrence_pattern",
                "message": "required for recurring bookings",
            }
        )
    elif pattern and parse_recurrence(pattern) is None:
        errors.append(
            {"field": "recurrence_pattern", "message": "invalid recurrence rule"}
        )

    recurrence_end = values.get("recurrence_end_date")
    if recurrence_end and start_date and recurrence_end < start_date:
        errors.append(
            {"field": "recurrence_end_date", "message": "must not be before start_date"}
        )

    if errors:
        raise ValidationError("Invalid booking data", details=errors)


async def _require_location(
    db: AsyncSession, location_id: str | None, organization_id: str
) -> None:
    if location_id is None:
        return
    location = await LocationRepository(db).get_by_id(location_id)
    if location is None or location.organization_id != organization_id:
        raise ValidationError(
            "Location does not belong to the booking's organization",
            "INVALID_LOCATION",
            details=[{"field": "location_id", "message": "unknown location"}],
        )


async def list_bookings(
    db: AsyncSession,
    requester: Requester,
    filters: BookingFilters,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> tuple[list[Booking], int]:
    conditions = policy.filter_for_role(
        requester, BOOKING_VISIBILITY, _filter_conditions(filters)
    )
    with repository_errors("LIST_FAILED"):
        return await BookingRepository(db).find_many(
            conditions, page=filters.page, limit=filters.limit
        )


async def get_booking(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Booking:
    """Load a booking the requester may see.

    Creators keep access to their own bookings before approval.
    """
    with repository_errors("FETCH_FAILED"):
        booking = await BookingRepository(db).get_by_id(booking_id)
    if booking is None:
        raise NotFoundError("Booking")
    if not policy.can_access(requester, BOOKING_VISIBILITY, booking):
        if not (
            _is_creator(requester, booking)
            and booking.client_organization_id == requester.organization_id
        ):
            raise PermissionDeniedError()
    return booking


async def create_booking(
    db: AsyncSession,
    requester: Requester,
    data: BookingCreate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Booking:
    """Create a draft booking in the requester's organization."""
    policy.require(requester, Action.CREATE, "CREATE_PERMISSION_DENIED")
    organization_id = policy.target_organization(
        requester, data.client_organization_id
    )

    values = data.model_dump(exclude={"client_organization_id"})
    _validate_booking(values)

    with repository_errors("CREATE_FAILED"):
        await _require_location(db, data.location_id, organization_id)
        booking = await BookingRepository(db).create(
            **values,
            client_organization_id=organization_id,
            status=BookingStatus.DRAFT,
            created_by_id=requester.user_id,
        )
        await record_event(
            db,
            "booking.created",
            booking,
            {"title": booking.title, "status": booking.status},
            requester,
        )

    logger.info(
        "booking.created",
        extra={"booking_id": booking.id, "organization_id": organization_id},
    )
    return booking


async def update_booking(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    data: BookingUpdate,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Booking:
    """Partially update a non-terminal booking.

    Creators may edit their drafts; anything else requires UPDATE.
    """
    booking = await get_booking(db, requester, booking_id, policy=policy)
    creator_draft = (
        _is_creator(requester, booking) and booking.status == BookingStatus.DRAFT
    )
    if not (creator_draft or policy.can(requester, Action.UPDATE)):
        raise PermissionDeniedError(
            "Not allowed to update this booking", "UPDATE_PERMISSION_DENIED"
        )
    policy.ensure_same_organization(requester, booking.client_organization_id)

    if booking.effective_status not in EDITABLE_STATES:
        raise InvalidStateError(
            f"Cannot update a {booking.effective_status.value} booking",
            "INVALID_STATE_FOR_UPDATE",
            current_state=booking.effective_status.value,
        )

    values = {
        name: value
        for name, value in data.model_dump(exclude_unset=True).items()
        if value is not None or name not in _NON_NULLABLE_FIELDS
    }
    if not values:
        return booking

    merged = {
        column: getattr(booking, column)
        for column in (
            "start_date",
            "end_date",
            "start_time",
            "end_time",
            "budget",
            "attendee_estimate",
            "staff_count",
            "is_recurring",
            "recurrence_pattern",
            "recurrence_end_date",
        )
    }
    merged.update(values)
    _validate_booking(merged)

    with repository_errors("UPDATE_FAILED"):
        if "location_id" in values:
            await _require_location(
                db, values["location_id"], booking.client_organization_id
            )
        booking = await BookingRepository(db).update(booking, **values)
        await record_event(
            db, "booking.updated", booking, {"fields": sorted(values)}, requester
        )
    return booking


async def delete_booking(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> None:
    booking = await get_booking(db, requester, booking_id, policy=policy)
    creator_draft = (
        _is_creator(requester, booking) and booking.status == BookingStatus.DRAFT
    )
    if not (creator_draft or policy.can(requester, Action.DELETE)):
        raise PermissionDeniedError(
            "Not allowed to delete this booking", "DELETE_PERMISSION_DENIED"
        )
    policy.ensure_same_organization(requester, booking.client_organization_id)

    with repository_errors("DELETE_FAILED"):
        await record_event(
            db, "booking.deleted", booking, {"title": booking.title}, requester
        )
        await BookingRepository(db).delete(booking.id)

    logger.info("booking.deleted", extra={"booking_id": booking_id})


async def _transition(
    db: AsyncSession,
    requester: Requester,
    booking: Booking,
    new_status: BookingStatus,
    event_type: str,
    payload: dict[str, Any],
    **values: Any,
) -> Booking:
    """Persist a status change with its specific and generic events."""
    previous = booking.status
    booking = await BookingRepository(db).update(booking, status=new_status, **values)
    await record_event(db, event_type, booking, payload, requester)
    await record_event(
        db,
        "booking.status.updated",
        booking,
        {"from": previous, "to": new_status},
        requester,
    )
    logger.info(
        "booking.status.updated",
        extra={
            "booking_id": booking.id,
            "from_status": previous.value,
            "to_status": new_status.value,
            "actor_id": requester.user_id,
        },
    )
    return booking


def _ensure_status(booking: Booking, expected: BookingStatus, code: str) -> None:
    if booking.status != expected:
        raise InvalidStateError(
            f"Booking is {booking.effective_status.value}, expected {expected.value}",
            code,
            current_state=booking.effective_status.value,
        )


async def submit_booking(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Booking:
    """Move a complete draft to pending_approval."""
    booking = await get_booking(db, requester, booking_id, policy=policy)
    if not (_is_creator(requester, booking) or policy.can(requester, Action.UPDATE)):
        raise PermissionDeniedError(
            "Only the creator can submit this booking", "SUBMIT_PERMISSION_DENIED"
        )
    policy.ensure_same_organization(requester, booking.client_organization_id)
    _ensure_status(booking, BookingStatus.DRAFT, "INVALID_STATE_FOR_SUBMISSION")

    missing = [name for name in REQUIRED_FOR_SUBMISSION if not getattr(booking, name)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            "MISSING_REQUIRED_FIELDS",
            details=[{"field": name, "message": "required"} for name in missing],
        )

    with repository_errors("SUBMIT_FAILED"):
        return await _transition(
            db,
            requester,
            booking,
            BookingStatus.PENDING_APPROVAL,
            "booking.submitted",
            {"title": booking.title},
            submitted_at=utcnow(),
        )


def _occurrence_dates(booking: Booking, max_occurrences: int) -> list[date]:
    """Dates to materialize on approval.

    Recurring bookings follow their rule up to recurrence_end_date.
    Other bookings get one occurrence per day of their window.
    """
    if booking.start_date is None:
        return []
    if booking.is_recurring:
        rule = parse_recurrence(booking.recurrence_pattern)
        return generate_occurrences(
            booking.start_date,
            rule,
            end=booking.recurrence_end_date,
            max_occurrences=max_occurrences,
        )
    end = booking.end_date or booking.start_date
    return generate_occurrences(
        booking.start_date,
        RecurrenceRule(frequency=Frequency.DAILY, until=end),
        max_occurrences=max_occurrences,
    )


async def approve_booking(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    notes: str | None = None,
    generate: bool = True,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Booking:
    """Approve a pending booking, optionally materializing its occurrences."""
    booking = await get_booking(db, requester, booking_id, policy=policy)
    policy.require(requester, Action.APPROVE, "APPROVAL_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, booking.client_organization_id)
    _ensure_status(
        booking, BookingStatus.PENDING_APPROVAL, "INVALID_STATE_FOR_APPROVAL"
    )

    repo = BookingRepository(db)
    with repository_errors("APPROVAL_FAILED"):
        occurrences: list[BookingOccurrence] = []
        if generate:
            dates = _occurrence_dates(
                booking, get_settings().recurrence_max_occurrences
            )
            occurrences = await repo.replace_occurrences(
                booking.id, dates, booking.start_time, booking.end_time
            )
        return await _transition(
            db,
            requester,
            booking,
            BookingStatus.APPROVED,
            "booking.approved",
            {"notes": notes, "occurrences": len(occurrences)},
            approved_by_id=requester.user_id,
            approved_at=utcnow(),
            approval_notes=notes,
        )


async def reject_booking(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    reason: str | None,
    notes: str | None = None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Booking:
    booking = await get_booking(db, requester, booking_id, policy=policy)
    policy.require(requester, Action.APPROVE, "REJECTION_PERMISSION_DENIED")
    policy.ensure_same_organization(requester, booking.client_organization_id)
    reason = require_reason(reason)
    _ensure_status(
        booking, BookingStatus.PENDING_APPROVAL, "INVALID_STATE_FOR_REJECTION"
    )

    with repository_errors("REJECTION_FAILED"):
        return await _transition(
            db,
            requester,
            booking,
            BookingStatus.REJECTED,
            "booking.rejected",
            {"reason": reason, "notes": notes},
            rejected_by_id=requester.user_id,
            rejected_at=utcnow(),
            rejection_reason=reason,
            approval_notes=notes,
        )


async def cancel_booking(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    reason: str | None,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> Booking:
    """Cancel a draft, pending or approved booking that has not ended."""
    booking = await get_booking(db, requester, booking_id, policy=policy)
    if not (_is_creator(requester, booking) or policy.can(requester, Action.UPDATE)):
        raise PermissionDeniedError(
            "Not allowed to cancel this booking", "CANCEL_PERMISSION_DENIED"
        )
    policy.ensure_same_organization(requester, booking.client_organization_id)
    reason = require_reason(reason)

    if booking.effective_status not in CANCELABLE_STATES:
        raise InvalidStateError(
            f"Cannot cancel a {booking.effective_status.value} booking",
            "INVALID_STATE_FOR_CANCELLATION",
            current_state=booking.effective_status.value,
        )

    with repository_errors("CANCELLATION_FAILED"):
        return await _transition(
            db,
            requester,
            booking,
            BookingStatus.CANCELED,
            "booking.canceled",
            {"reason": reason},
            canceled_by_id=requester.user_id,
            canceled_at=utcnow(),
            cancel_reason=reason,
        )


async def list_occurrences(
    db: AsyncSession,
    requester: Requester,
    booking_id: str,
    *,
    policy: AccessPolicy = ACCESS_POLICY,
) -> list[BookingOccurrence]:
    booking = await get_booking(db, requester, booking_id, policy=policy)
    with repository_errors("LIST_FAILED"):
        return await BookingRepository(db).list_occurrences(booking.id)
