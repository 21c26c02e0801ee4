"""Tests for location requests and review."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import LocationStatus, Organization
from schemas import LocationCreate, LocationFilters, LocationUpdate
from services import locations_service
from services.errors import InvalidStateError, PermissionDeniedError, ValidationError
from tests.factories import LocationFactory, PendingLocationFactory, create_async


def _request(**overrides) -> LocationCreate:
    values = {"name": "Downtown Market Hall", "city": "Austin", "state": "TX"}
    values.update(overrides)
    return LocationCreate(**values)


async def _ids(db: AsyncSession, requester: Requester) -> set[str]:
    rows, _ = await locations_service.list_locations(db, requester, LocationFilters())
    return {row.id for row in rows}


@pytest.mark.integration
class TestLocationApproval:
    async def test_request_hidden_until_approved(
        self,
        db_session: AsyncSession,
        brand_agent: Requester,
        org_admin: Requester,
    ):
        location = await locations_service.create_location(
            db_session, brand_agent, _request()
        )
        assert location.status == LocationStatus.PENDING
        assert location.requested_by_id == brand_agent.user_id
        assert location.id not in await _ids(db_session, brand_agent)

        approved = await locations_service.approve_location(
            db_session, org_admin, location.id, notes="verified address"
        )
        assert approved.status == LocationStatus.APPROVED
        assert approved.approved_by_id == org_admin.user_id
        assert location.id in await _ids(db_session, brand_agent)

    async def test_privileged_creator_is_auto_approved(
        self, db_session: AsyncSession, field_manager: Requester
    ):
        location = await locations_service.create_location(
            db_session, field_manager, _request()
        )
        assert location.status == LocationStatus.APPROVED
        assert location.approved_by_id == field_manager.user_id

    async def test_requester_can_follow_own_request(
        self, db_session: AsyncSession, brand_agent: Requester
    ):
        location = await locations_service.create_location(
            db_session, brand_agent, _request()
        )
        fetched = await locations_service.get_location(
            db_session, brand_agent, location.id
        )
        assert fetched.id == location.id

        updated = await locations_service.update_location(
            db_session, brand_agent, location.id, LocationUpdate(zipcode="78701")
        )
        assert updated.zipcode == "78701"

    async def test_reject_records_reason(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        field_manager: Requester,
    ):
        location = await create_async(
            PendingLocationFactory, db_session, organization_id=client_org.id
        )
        rejected = await locations_service.reject_location(
            db_session, field_manager, location.id, "duplicate", notes="see #12"
        )
        assert rejected.status == LocationStatus.REJECTED
        assert rejected.rejection_reason == "duplicate"
        assert rejected.rejection_notes == "see #12"

        with pytest.raises(InvalidStateError) as exc_info:
            await locations_service.approve_location(
                db_session, field_manager, location.id
            )
        assert exc_info.value.code == "INVALID_STATE_FOR_APPROVAL"

    async def test_reject_requires_reason(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        field_manager: Requester,
    ):
        location = await create_async(
            PendingLocationFactory, db_session, organization_id=client_org.id
        )
        with pytest.raises(ValidationError):
            await locations_service.reject_location(
                db_session, field_manager, location.id, "  "
            )
        assert location.status == LocationStatus.PENDING

    async def test_brand_agent_cannot_approve(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        brand_agent: Requester,
    ):
        location = await create_async(
            PendingLocationFactory,
            db_session,
            organization_id=client_org.id,
            requested_by_id=brand_agent.user_id,
        )
        with pytest.raises(PermissionDeniedError) as exc_info:
            await locations_service.approve_location(
                db_session, brand_agent, location.id
            )
        assert exc_info.value.code == "APPROVAL_PERMISSION_DENIED"


@pytest.mark.integration
class TestLocationAccess:
    async def test_manager_cannot_delete(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        field_manager: Requester,
        org_admin: Requester,
    ):
        location = await create_async(
            LocationFactory, db_session, organization_id=client_org.id
        )
        with pytest.raises(PermissionDeniedError):
            await locations_service.delete_location(
                db_session, field_manager, location.id
            )

        await locations_service.delete_location(db_session, org_admin, location.id)
        assert location.id not in await _ids(db_session, org_admin)

    async def test_other_organizations_are_hidden(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        other_org: Organization,
        org_admin: Requester,
        super_admin: Requester,
    ):
        ours = await create_async(
            LocationFactory, db_session, organization_id=client_org.id
        )
        theirs = await create_async(
            LocationFactory, db_session, organization_id=other_org.id
        )

        assert await _ids(db_session, org_admin) == {ours.id}
        assert await _ids(db_session, super_admin) == {ours.id, theirs.id}
        with pytest.raises(PermissionDeniedError):
            await locations_service.get_location(db_session, org_admin, theirs.id)

    async def test_super_admin_must_name_organization(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        super_admin: Requester,
    ):
        with pytest.raises(ValidationError):
            await locations_service.create_location(
                db_session, super_admin, _request()
            )
        location = await locations_service.create_location(
            db_session, super_admin, _request(organization_id=client_org.id)
        )
        assert location.organization_id == client_org.id

    async def test_filters(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        org_admin: Requester,
    ):
        austin = await create_async(
            LocationFactory,
            db_session,
            organization_id=client_org.id,
            name="Riverside Plaza",
            address1="1 Main St",
            city="Austin",
        )
        await create_async(
            LocationFactory,
            db_session,
            organization_id=client_org.id,
            name="Harbor Center",
            address1="2 Main St",
            city="Boston",
        )

        rows, total = await locations_service.list_locations(
            db_session, org_admin, LocationFilters(city="austin")
        )
        assert total == 1
        assert rows[0].id == austin.id

        rows, _ = await locations_service.list_locations(
            db_session, org_admin, LocationFilters(search="harbor")
        )
        assert [row.name for row in rows] == ["Harbor Center"]


@pytest.mark.integration
class TestListVisibilityByRole:
    async def test_each_role_sees_a_superset_of_the_previous(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        other_org: Organization,
    ):
        for organization in (client_org, other_org):
            for status in LocationStatus:
                await create_async(
                    LocationFactory,
                    db_session,
                    organization_id=organization.id,
                    status=status,
                )
        chain = [
            Requester("user_guest", "guest", client_org.id),
            Requester("user_agent_1", "brand_agent", client_org.id),
            Requester("user_manager_1", "internal_field_manager", client_org.id),
            Requester("user_admin_1", "organization_admin", client_org.id),
            Requester("user_root", "super_admin", None),
        ]

        visible = [await _ids(db_session, requester) for requester in chain]

        for lower, higher in zip(visible, visible[1:], strict=False):
            assert lower <= higher
        assert len(visible[1]) == 1
        assert len(visible[2]) == len(LocationStatus)
        assert len(visible[-1]) == 2 * len(LocationStatus)
