"""Integration tests for organization and membership endpoints."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Requester
from models import Organization
from tests.factories import InternalOrganizationFactory, create_async, gateway_headers


@pytest.mark.integration
class TestOrganizationRoutes:
    async def test_internal_organization_delete_forbidden(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        super_admin: Requester,
    ):
        internal = await create_async(InternalOrganizationFactory, db_session)
        await db_session.commit()

        response = await client.delete(
            f"/api/organizations/{internal.id}", headers=gateway_headers(super_admin)
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INTERNAL_ORGANIZATION_DELETE_FORBIDDEN"

        response = await client.get(
            f"/api/organizations/{internal.id}", headers=gateway_headers(super_admin)
        )
        assert response.status_code == 200

    async def test_create_requires_platform_role(
        self,
        client: AsyncClient,
        org_admin: Requester,
        super_admin: Requester,
    ):
        payload = {"name": "Northwind Foods", "type": "client", "tier": "tier_1"}

        response = await client.post(
            "/api/organizations", json=payload, headers=gateway_headers(org_admin)
        )
        assert response.status_code == 403

        response = await client.post(
            "/api/organizations", json=payload, headers=gateway_headers(super_admin)
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["type"] == "client"
        assert data["is_active"] is True

    async def test_invalid_type_rejected(
        self, client: AsyncClient, super_admin: Requester
    ):
        response = await client.post(
            "/api/organizations",
            json={"name": "Bad", "type": "vendor"},
            headers=gateway_headers(super_admin),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_deactivate_without_body(
        self,
        client: AsyncClient,
        client_org: Organization,
        org_admin: Requester,
    ):
        response = await client.post(
            f"/api/organizations/{client_org.id}/deactivate",
            headers=gateway_headers(org_admin),
        )
        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is False


@pytest.mark.integration
class TestMembershipRoutes:
    async def test_switch_default_organization(
        self,
        client: AsyncClient,
        client_org: Organization,
        other_org: Organization,
        super_admin: Requester,
    ):
        for organization in (client_org, other_org):
            response = await client.post(
                f"/api/organizations/{organization.id}/members",
                json={"user_id": "user_roaming", "role": "brand_agent"},
                headers=gateway_headers(super_admin),
            )
            assert response.status_code == 201

        member = gateway_headers(Requester("user_roaming", "brand_agent", None))
        response = await client.put(
            "/api/me/organizations/default",
            json={"organization_id": other_org.id},
            headers=member,
        )
        assert response.status_code == 200

        response = await client.get("/api/me/organizations", headers=member)
        memberships = response.json()["data"]
        assert [m["organization_id"] for m in memberships if m["is_default"]] == [
            other_org.id
        ]

    async def test_default_requires_membership(
        self,
        client: AsyncClient,
        other_org: Organization,
        brand_agent: Requester,
    ):
        response = await client.put(
            "/api/me/organizations/default",
            json={"organization_id": other_org.id},
            headers=gateway_headers(brand_agent),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "NOT_A_MEMBER"

    async def test_list_members(
        self,
        client: AsyncClient,
        client_org: Organization,
        org_admin: Requester,
    ):
        await client.post(
            f"/api/organizations/{client_org.id}/members",
            json={"user_id": "user_listed", "role": "internal_field_manager"},
            headers=gateway_headers(org_admin),
        )

        response = await client.get(
            f"/api/organizations/{client_org.id}/members",
            headers=gateway_headers(org_admin),
        )
        page = response.json()["data"]
        assert page["total"] == 1
        assert page["items"][0]["user_id"] == "user_listed"
        assert page["items"][0]["is_default"] is True
