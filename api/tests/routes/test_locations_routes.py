"""Integration tests for location endpoints."""

import pytest
from httpx import AsyncClient

from core.auth import Requester
from tests.factories import gateway_headers


async def _listed_ids(client: AsyncClient, requester: Requester) -> set[str]:
    response = await client.get("/api/locations", headers=gateway_headers(requester))
    assert response.status_code == 200
    return {item["id"] for item in response.json()["data"]["items"]}


@pytest.mark.integration
class TestLocationRoutes:
    async def test_requested_location_visible_after_approval(
        self,
        client: AsyncClient,
        brand_agent: Requester,
        org_admin: Requester,
    ):
        response = await client.post(
            "/api/locations",
            json={"name": "Mall Atrium", "city": "Phoenix", "state": "AZ"},
            headers=gateway_headers(brand_agent),
        )
        assert response.status_code == 201
        location = response.json()["data"]
        assert location["status"] == "pending"
        assert location["id"] not in await _listed_ids(client, brand_agent)
        assert location["id"] in await _listed_ids(client, org_admin)

        response = await client.post(
            f"/api/locations/{location['id']}/approve",
            headers=gateway_headers(org_admin),
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "approved"
        assert location["id"] in await _listed_ids(client, brand_agent)

    async def test_reject_twice(
        self,
        client: AsyncClient,
        brand_agent: Requester,
        field_manager: Requester,
    ):
        response = await client.post(
            "/api/locations",
            json={"name": "Corner Lot", "city": "Tulsa"},
            headers=gateway_headers(brand_agent),
        )
        location_id = response.json()["data"]["id"]
        reject = {"reason": "zoning", "notes": "no permits for sampling"}

        response = await client.post(
            f"/api/locations/{location_id}/reject",
            json=reject,
            headers=gateway_headers(field_manager),
        )
        assert response.status_code == 200
        assert response.json()["data"]["rejection_reason"] == "zoning"

        response = await client.post(
            f"/api/locations/{location_id}/reject",
            json=reject,
            headers=gateway_headers(field_manager),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE_FOR_REJECTION"

    async def test_coordinates_validated(
        self, client: AsyncClient, field_manager: Requester
    ):
        response = await client.post(
            "/api/locations",
            json={"name": "Pier", "city": "Seattle", "geo_lat": 123.0},
            headers=gateway_headers(field_manager),
        )
        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "geo_lat"

    async def test_delete_requires_admin(
        self,
        client: AsyncClient,
        field_manager: Requester,
        org_admin: Requester,
    ):
        response = await client.post(
            "/api/locations",
            json={"name": "Depot", "city": "Omaha"},
            headers=gateway_headers(field_manager),
        )
        location_id = response.json()["data"]["id"]

        response = await client.delete(
            f"/api/locations/{location_id}", headers=gateway_headers(field_manager)
        )
        assert response.status_code == 403
        assert response.json()["code"] == "DELETE_PERMISSION_DENIED"

        response = await client.delete(
            f"/api/locations/{location_id}", headers=gateway_headers(org_admin)
        )
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": None,
            "error": None,
            "code": None,
        }
