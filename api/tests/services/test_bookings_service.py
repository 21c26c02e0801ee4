"""Tests for the booking lifecycle."""

from datetime import UTC, date, datetime, time, timedelta

import pytest
import time_machine
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import Booking, BookingStatus, Location, Organization, today
from repositories.outbox_repository import OutboxRepository
from schemas import BookingCreate, BookingFilters, BookingUpdate
from services import bookings_service
from services.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tests.factories import BookingFactory, LocationFactory, create_async


@pytest.fixture
async def location(db_session: AsyncSession, client_org: Organization) -> Location:
    return await create_async(
        LocationFactory, db_session, organization_id=client_org.id
    )


async def _booking(
    db: AsyncSession, organization: Organization, location: Location, **kwargs
) -> Booking:
    return await create_async(
        BookingFactory,
        db,
        client_organization_id=organization.id,
        location_id=location.id,
        **kwargs,
    )


def _create_request(location: Location, **overrides) -> BookingCreate:
    start = today() + timedelta(days=10)
    values = {
        "title": "Spring sampling event",
        "location_id": location.id,
        "start_date": start,
        "end_date": start + timedelta(days=2),
        "start_time": time(10),
        "end_time": time(16),
    }
    values.update(overrides)
    return BookingCreate(**values)


@pytest.mark.unit
class TestEffectiveStatus:
    """Completion is derived from the calendar, not stored."""

    def _approved(self) -> Booking:
        return Booking(status=BookingStatus.APPROVED, end_date=date(2030, 6, 2))

    def test_approved_through_last_day(self):
        with time_machine.travel(datetime(2030, 6, 2, 23, 59, tzinfo=UTC), tick=False):
            assert self._approved().effective_status == BookingStatus.APPROVED

    def test_completed_day_after_end(self):
        with time_machine.travel(datetime(2030, 6, 3, 0, 1, tzinfo=UTC), tick=False):
            assert self._approved().effective_status == BookingStatus.COMPLETED

    def test_only_approved_bookings_complete(self):
        booking = Booking(status=BookingStatus.CANCELED, end_date=date(2000, 1, 1))
        assert booking.effective_status == BookingStatus.CANCELED


@pytest.mark.integration
class TestBookingLifecycle:
    async def test_submit_reject_then_approve_fails(
        self,
        db_session: AsyncSession,
        location: Location,
        brand_agent: Requester,
        field_manager: Requester,
    ):
        booking = await bookings_service.create_booking(
            db_session, brand_agent, _create_request(location)
        )
        assert booking.status == BookingStatus.DRAFT
        assert booking.created_by_id == brand_agent.user_id

        booking = await bookings_service.submit_booking(
            db_session, brand_agent, booking.id
        )
        assert booking.status == BookingStatus.PENDING_APPROVAL
        assert booking.submitted_at is not None

        booking = await bookings_service.reject_booking(
            db_session, field_manager, booking.id, "venue unavailable"
        )
        assert booking.status == BookingStatus.REJECTED
        assert booking.rejected_by_id == field_manager.user_id
        assert booking.rejection_reason == "venue unavailable"

        with pytest.raises(InvalidStateError) as exc_info:
            await bookings_service.approve_booking(
                db_session, field_manager, booking.id
            )
        assert exc_info.value.code == "INVALID_STATE_FOR_APPROVAL"
        assert exc_info.value.current_state == "rejected"
        assert booking.status == BookingStatus.REJECTED

    async def test_transitions_write_outbox_events(
        self,
        db_session: AsyncSession,
        location: Location,
        brand_agent: Requester,
    ):
        booking = await bookings_service.create_booking(
            db_session, brand_agent, _create_request(location)
        )
        await bookings_service.submit_booking(db_session, brand_agent, booking.id)

        events = await OutboxRepository(db_session).list_for_aggregate(
            "booking", booking.id
        )
        by_type = {event.event_type: event for event in events}
        assert len(events) == 3
        assert set(by_type) == {
            "booking.created",
            "booking.submitted",
            "booking.status.updated",
        }
        status_event = by_type["booking.status.updated"]
        assert status_event.payload == {"from": "draft", "to": "pending_approval"}
        assert status_event.actor_id == brand_agent.user_id
        assert status_event.organization_id == booking.client_organization_id

    async def test_approve_materializes_daily_occurrences(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        field_manager: Requester,
    ):
        start = today() + timedelta(days=5)
        booking = await _booking(
            db_session,
            client_org,
            location,
            status=BookingStatus.PENDING_APPROVAL,
            start_date=start,
            end_date=start + timedelta(days=2),
        )

        approved = await bookings_service.approve_booking(
            db_session, field_manager, booking.id, notes="looks good"
        )
        assert approved.status == BookingStatus.APPROVED
        assert approved.approved_by_id == field_manager.user_id
        assert approved.approval_notes == "looks good"

        occurrences = await bookings_service.list_occurrences(
            db_session, field_manager, booking.id
        )
        assert [o.occurrence_date for o in occurrences] == [
            start,
            start + timedelta(days=1),
            start + timedelta(days=2),
        ]
        assert all(o.start_time == time(9) for o in occurrences)

    async def test_approve_recurring_follows_rule(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        field_manager: Requester,
    ):
        start = today() + timedelta(days=3)
        booking = await _booking(
            db_session,
            client_org,
            location,
            status=BookingStatus.PENDING_APPROVAL,
            start_date=start,
            end_date=start,
            is_recurring=True,
            recurrence_pattern="FREQ=WEEKLY;COUNT=4",
        )

        await bookings_service.approve_booking(db_session, field_manager, booking.id)

        occurrences = await bookings_service.list_occurrences(
            db_session, field_manager, booking.id
        )
        assert [o.occurrence_date for o in occurrences] == [
            start + timedelta(weeks=n) for n in range(4)
        ]

    async def test_approve_without_generation(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        field_manager: Requester,
    ):
        booking = await _booking(
            db_session, client_org, location, status=BookingStatus.PENDING_APPROVAL
        )
        await bookings_service.approve_booking(
            db_session, field_manager, booking.id, generate=False
        )
        assert (
            await bookings_service.list_occurrences(
                db_session, field_manager, booking.id
            )
            == []
        )


@pytest.mark.integration
class TestTransitionGuards:
    @pytest.mark.parametrize(
        "status",
        [
            BookingStatus.DRAFT,
            BookingStatus.APPROVED,
            BookingStatus.REJECTED,
            BookingStatus.CANCELED,
        ],
    )
    async def test_approve_and_reject_require_pending(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        org_admin: Requester,
        status: BookingStatus,
    ):
        booking = await _booking(db_session, client_org, location, status=status)

        with pytest.raises(InvalidStateError):
            await bookings_service.approve_booking(db_session, org_admin, booking.id)
        with pytest.raises(InvalidStateError):
            await bookings_service.reject_booking(
                db_session, org_admin, booking.id, "no"
            )
        assert booking.status == status

    async def test_completed_booking_is_terminal(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        org_admin: Requester,
    ):
        booking = await _booking(
            db_session,
            client_org,
            location,
            status=BookingStatus.APPROVED,
            start_date=today() - timedelta(days=3),
            end_date=today() - timedelta(days=1),
        )
        assert booking.effective_status == BookingStatus.COMPLETED

        with pytest.raises(InvalidStateError) as exc_info:
            await bookings_service.approve_booking(db_session, org_admin, booking.id)
        assert exc_info.value.current_state == "completed"
        with pytest.raises(InvalidStateError) as exc_info:
            await bookings_service.reject_booking(
                db_session, org_admin, booking.id, "no"
            )
        assert exc_info.value.current_state == "completed"
        assert booking.status == BookingStatus.APPROVED

        with pytest.raises(InvalidStateError) as exc_info:
            await bookings_service.cancel_booking(
                db_session, org_admin, booking.id, "too late"
            )
        assert exc_info.value.code == "INVALID_STATE_FOR_CANCELLATION"
        assert exc_info.value.current_state == "completed"

        rows, total = await bookings_service.list_bookings(
            db_session, org_admin, BookingFilters(status=BookingStatus.COMPLETED)
        )
        assert total == 1
        assert rows[0].id == booking.id

    @pytest.mark.parametrize("reason", ["", "   ", None])
    async def test_reject_requires_reason(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        field_manager: Requester,
        reason,
    ):
        booking = await _booking(
            db_session, client_org, location, status=BookingStatus.PENDING_APPROVAL
        )
        with pytest.raises(ValidationError) as exc_info:
            await bookings_service.reject_booking(
                db_session, field_manager, booking.id, reason
            )
        assert exc_info.value.code == "REASON_REQUIRED"
        assert booking.status == BookingStatus.PENDING_APPROVAL

    async def test_cancel_requires_reason(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        field_manager: Requester,
    ):
        booking = await _booking(
            db_session, client_org, location, status=BookingStatus.APPROVED
        )
        with pytest.raises(ValidationError):
            await bookings_service.cancel_booking(
                db_session, field_manager, booking.id, " "
            )
        assert booking.status == BookingStatus.APPROVED

    async def test_cancel_records_actor(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        field_manager: Requester,
    ):
        booking = await _booking(
            db_session, client_org, location, status=BookingStatus.APPROVED
        )
        canceled = await bookings_service.cancel_booking(
            db_session, field_manager, booking.id, "client postponed"
        )
        assert canceled.status == BookingStatus.CANCELED
        assert canceled.canceled_by_id == field_manager.user_id
        assert canceled.cancel_reason == "client postponed"

    async def test_permission_checked_before_state(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        brand_agent: Requester,
    ):
        booking = await _booking(
            db_session,
            client_org,
            location,
            status=BookingStatus.APPROVED,
            created_by_id=brand_agent.user_id,
        )
        with pytest.raises(PermissionDeniedError) as exc_info:
            await bookings_service.approve_booking(db_session, brand_agent, booking.id)
        assert exc_info.value.code == "APPROVAL_PERMISSION_DENIED"

    async def test_submit_requires_complete_booking(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        brand_agent: Requester,
    ):
        booking = await bookings_service.create_booking(
            db_session,
            brand_agent,
            BookingCreate(title="Draft without venue"),
        )
        with pytest.raises(ValidationError) as exc_info:
            await bookings_service.submit_booking(db_session, brand_agent, booking.id)
        assert exc_info.value.code == "MISSING_REQUIRED_FIELDS"
        fields = {d["field"] for d in exc_info.value.details}
        assert fields == {"start_date", "end_date", "location_id"}


@pytest.mark.integration
class TestBookingValidation:
    async def test_end_before_start(
        self, db_session: AsyncSession, location: Location, brand_agent: Requester
    ):
        request = _create_request(
            location,
            start_date=today() + timedelta(days=5),
            end_date=today() + timedelta(days=4),
        )
        with pytest.raises(ValidationError) as exc_info:
            await bookings_service.create_booking(db_session, brand_agent, request)
        assert {"field": "end_date", "message": "must not be before start_date"} in (
            exc_info.value.details
        )

    async def test_recurring_needs_valid_pattern(
        self, db_session: AsyncSession, location: Location, brand_agent: Requester
    ):
        with pytest.raises(ValidationError) as exc_info:
            await bookings_service.create_booking(
                db_session,
                brand_agent,
                _create_request(location, is_recurring=True),
            )
        assert exc_info.value.details[0]["field"] == "recurrence_pattern"

        with pytest.raises(ValidationError):
            await bookings_service.create_booking(
                db_session,
                brand_agent,
                _create_request(
                    location, is_recurring=True, recurrence_pattern="FREQ=SOMETIMES"
                ),
            )

    async def test_location_must_belong_to_organization(
        self,
        db_session: AsyncSession,
        other_org: Organization,
        brand_agent: Requester,
    ):
        foreign = await create_async(
            LocationFactory, db_session, organization_id=other_org.id
        )
        with pytest.raises(ValidationError) as exc_info:
            await bookings_service.create_booking(
                db_session, brand_agent, _create_request(foreign)
            )
        assert exc_info.value.code == "INVALID_LOCATION"

    async def test_update_merges_with_stored_dates(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        field_manager: Requester,
    ):
        booking = await _booking(db_session, client_org, location)
        with pytest.raises(ValidationError):
            await bookings_service.update_booking(
                db_session,
                field_manager,
                booking.id,
                BookingUpdate(end_date=booking.start_date - timedelta(days=1)),
            )

        updated = await bookings_service.update_booking(
            db_session, field_manager, booking.id, BookingUpdate(budget=5000)
        )
        assert updated.budget == 5000


@pytest.mark.integration
class TestBookingVisibility:
    async def test_brand_agent_lists_only_approved(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        brand_agent: Requester,
    ):
        approved = await _booking(
            db_session, client_org, location, status=BookingStatus.APPROVED
        )
        await _booking(
            db_session, client_org, location, status=BookingStatus.PENDING_APPROVAL
        )

        rows, total = await bookings_service.list_bookings(
            db_session, brand_agent, BookingFilters()
        )
        assert total == 1
        assert [row.id for row in rows] == [approved.id]

    async def test_creator_can_fetch_own_draft(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        brand_agent: Requester,
    ):
        own = await _booking(
            db_session, client_org, location, created_by_id=brand_agent.user_id
        )
        other = await _booking(db_session, client_org, location)

        fetched = await bookings_service.get_booking(db_session, brand_agent, own.id)
        assert fetched.id == own.id
        with pytest.raises(PermissionDeniedError):
            await bookings_service.get_booking(db_session, brand_agent, other.id)

    async def test_other_organization_hidden(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        other_org: Organization,
        location: Location,
    ):
        booking = await _booking(
            db_session, client_org, location, status=BookingStatus.APPROVED
        )
        outsider = Requester("user_x", "organization_admin", other_org.id)

        rows, total = await bookings_service.list_bookings(
            db_session, outsider, BookingFilters()
        )
        assert total == 0
        with pytest.raises(PermissionDeniedError):
            await bookings_service.get_booking(db_session, outsider, booking.id)

    async def test_missing_booking(
        self, db_session: AsyncSession, super_admin: Requester
    ):
        with pytest.raises(NotFoundError):
            await bookings_service.get_booking(db_session, super_admin, "nope")

    async def test_creator_deletes_own_draft(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        location: Location,
        brand_agent: Requester,
    ):
        booking = await _booking(
            db_session, client_org, location, created_by_id=brand_agent.user_id
        )
        await bookings_service.delete_booking(db_session, brand_agent, booking.id)
        db_session.expunge_all()

        with pytest.raises(NotFoundError):
            await bookings_service.get_booking(db_session, brand_agent, booking.id)
