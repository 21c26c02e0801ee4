"""Tests for organizations and membership."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import Organization, OrganizationType
from schemas import (
    AddMemberRequest,
    OrganizationCreate,
    OrganizationFilters,
    OrganizationUpdate,
)
from services import organizations_service
from services.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tests.factories import InternalOrganizationFactory, create_async

ROLES = ["brand_agent", "internal_field_manager", "organization_admin", "super_admin"]


@pytest.mark.integration
class TestDeleteOrganization:
    @pytest.mark.parametrize("role", ROLES)
    async def test_internal_organization_is_never_deleted(
        self, db_session: AsyncSession, role: str
    ):
        internal = await create_async(InternalOrganizationFactory, db_session)
        requester = Requester("user_1", role, internal.id)

        with pytest.raises(InvalidStateError) as exc_info:
            await organizations_service.delete_organization(
                db_session, requester, internal.id
            )
        assert exc_info.value.code == "INTERNAL_ORGANIZATION_DELETE_FORBIDDEN"

        organization = await organizations_service.get_organization(
            db_session, Requester("user_root", "super_admin"), internal.id
        )
        assert organization.id == internal.id

    async def test_client_delete_requires_platform_role(
        self,
        db_session: AsyncSession,
        other_org: Organization,
        super_admin: Requester,
    ):
        admin = Requester("user_admin_2", "organization_admin", other_org.id)
        with pytest.raises(PermissionDeniedError):
            await organizations_service.delete_organization(
                db_session, admin, other_org.id
            )

        await organizations_service.delete_organization(
            db_session, super_admin, other_org.id
        )
        with pytest.raises(NotFoundError):
            await organizations_service.get_organization(
                db_session, super_admin, other_org.id
            )


@pytest.mark.integration
class TestManageOrganization:
    async def test_only_super_admin_creates(
        self,
        db_session: AsyncSession,
        org_admin: Requester,
        super_admin: Requester,
    ):
        data = OrganizationCreate(
            name="  Acme Beverages ", type=OrganizationType.CLIENT
        )
        with pytest.raises(PermissionDeniedError):
            await organizations_service.create_organization(db_session, org_admin, data)

        organization = await organizations_service.create_organization(
            db_session, super_admin, data
        )
        assert organization.name == "Acme Beverages"
        assert organization.is_active

    async def test_unknown_parent_rejected(
        self, db_session: AsyncSession, super_admin: Requester
    ):
        data = OrganizationCreate(
            name="Child", type=OrganizationType.CLIENT, parent_id="missing"
        )
        with pytest.raises(ValidationError) as exc_info:
            await organizations_service.create_organization(
                db_session, super_admin, data
            )
        assert exc_info.value.code == "INVALID_PARENT"

    async def test_admin_updates_own_organization(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        other_org: Organization,
        org_admin: Requester,
    ):
        updated = await organizations_service.update_organization(
            db_session, org_admin, client_org.id, OrganizationUpdate(website="acme.io")
        )
        assert updated.website == "acme.io"

        with pytest.raises(PermissionDeniedError):
            await organizations_service.update_organization(
                db_session, org_admin, other_org.id, OrganizationUpdate(notes="x")
            )

    async def test_deactivate_then_activate(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        org_admin: Requester,
    ):
        deactivated = await organizations_service.deactivate_organization(
            db_session, org_admin, client_org.id, " contract ended "
        )
        assert not deactivated.is_active
        assert deactivated.deactivated_by_id == org_admin.user_id
        assert deactivated.deactivation_reason == "contract ended"

        with pytest.raises(InvalidStateError) as exc_info:
            await organizations_service.deactivate_organization(
                db_session, org_admin, client_org.id
            )
        assert exc_info.value.code == "ALREADY_INACTIVE"

        activated = await organizations_service.activate_organization(
            db_session, org_admin, client_org.id
        )
        assert activated.is_active
        assert activated.deactivated_at is None

    async def test_brand_agent_cannot_deactivate(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        brand_agent: Requester,
    ):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await organizations_service.deactivate_organization(
                db_session, brand_agent, client_org.id
            )
        assert exc_info.value.code == "DEACTIVATION_PERMISSION_DENIED"

    async def test_list_scoped_to_own_organization(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        other_org: Organization,
        org_admin: Requester,
        super_admin: Requester,
    ):
        rows, total = await organizations_service.list_organizations(
            db_session, org_admin, OrganizationFilters()
        )
        assert total == 1
        assert rows[0].id == client_org.id

        _, total = await organizations_service.list_organizations(
            db_session, super_admin, OrganizationFilters()
        )
        assert total == 2


@pytest.mark.integration
class TestMembership:
    async def test_first_membership_becomes_default(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        org_admin: Requester,
    ):
        membership = await organizations_service.add_member(
            db_session,
            org_admin,
            client_org.id,
            AddMemberRequest(user_id="user_new", role="Brand_Agent"),
        )
        assert membership.is_default
        assert membership.role == "brand_agent"

    async def test_duplicate_member_rejected(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        org_admin: Requester,
    ):
        request = AddMemberRequest(user_id="user_new", role="brand_agent")
        await organizations_service.add_member(
            db_session, org_admin, client_org.id, request
        )
        with pytest.raises(InvalidStateError) as exc_info:
            await organizations_service.add_member(
                db_session, org_admin, client_org.id, request
            )
        assert exc_info.value.code == "MEMBER_ALREADY_EXISTS"

    async def test_set_default_leaves_exactly_one(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        other_org: Organization,
        super_admin: Requester,
    ):
        for organization in (client_org, other_org):
            await organizations_service.add_member(
                db_session,
                super_admin,
                organization.id,
                AddMemberRequest(user_id="user_multi", role="brand_agent"),
            )
        member = Requester("user_multi", "brand_agent", client_org.id)

        memberships = await organizations_service.list_my_organizations(
            db_session, member
        )
        assert [m.organization_id for m in memberships if m.is_default] == [
            client_org.id
        ]

        memberships = await organizations_service.set_default_organization(
            db_session, member, other_org.id
        )
        defaults = [m.organization_id for m in memberships if m.is_default]
        assert defaults == [other_org.id]
        assert memberships[0].organization_id == other_org.id

    async def test_set_default_requires_membership(
        self,
        db_session: AsyncSession,
        other_org: Organization,
        brand_agent: Requester,
    ):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await organizations_service.set_default_organization(
                db_session, brand_agent, other_org.id
            )
        assert exc_info.value.code == "NOT_A_MEMBER"

    async def test_remove_member(
        self,
        db_session: AsyncSession,
        client_org: Organization,
        org_admin: Requester,
    ):
        await organizations_service.add_member(
            db_session,
            org_admin,
            client_org.id,
            AddMemberRequest(user_id="user_leaving", role="brand_agent"),
        )
        await organizations_service.remove_member(
            db_session, org_admin, client_org.id, "user_leaving"
        )
        with pytest.raises(NotFoundError):
            await organizations_service.remove_member(
                db_session, org_admin, client_org.id, "user_leaving"
            )
