"""Organization and membership repositories."""

from typing import Any

from sqlalchemy import ColumnElement, case, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import Organization, UserOrganization
from repositories.utils import log_slow_query, paginate


class OrganizationRepository:
    """Repository for Organization database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_organization_by_id")
    async def get_by_id(self, organization_id: str) -> Organization | None:
        result = await self.db.execute(
            select(Organization).where(Organization.id == organization_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("list_organizations")
    async def find_many(
        self,
        conditions: list[ColumnElement[bool]],
        *,
        page: int,
        limit: int,
    ) -> tuple[list[Organization], int]:
        stmt = (
            select(Organization)
            .where(*conditions)
            .order_by(Organization.name, Organization.id)
        )
        return await paginate(self.db, stmt, page=page, limit=limit)

    @log_slow_query("create_organization")
    async def create(self, **values: Any) -> Organization:
        organization = Organization(**values)
        self.db.add(organization)
        await self.db.flush()
        return organization

    @log_slow_query("update_organization")
    async def update(self, organization: Organization, **values: Any) -> Organization:
        """Apply the given field values. Callers pass only fields to change."""
        for name, value in values.items():
            setattr(organization, name, value)
        await self.db.flush()
        return organization

    @log_slow_query("delete_organization")
    async def delete(self, organization_id: str) -> None:
        """Delete by id. Dependent rows cascade in the database."""
        await self.db.execute(
            delete(Organization).where(Organization.id == organization_id)
        )


class UserOrganizationRepository:
    """Repository for organization membership."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_membership")
    async def get(self, user_id: str, organization_id: str) -> UserOrganization | None:
        result = await self.db.execute(
            select(UserOrganization)
            .where(
                UserOrganization.user_id == user_id,
                UserOrganization.organization_id == organization_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @log_slow_query("list_memberships_for_user")
    async def list_for_user(self, user_id: str) -> list[UserOrganization]:
        result = await self.db.execute(
            select(UserOrganization)
            .where(UserOrganization.user_id == user_id)
            .order_by(UserOrganization.is_default.desc(), UserOrganization.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @log_slow_query("list_members")
    async def list_for_organization(
        self, organization_id: str, *, page: int, limit: int
    ) -> tuple[list[UserOrganization], int]:
        stmt = (
            select(UserOrganization)
            .where(UserOrganization.organization_id == organization_id)
            .order_by(UserOrganization.created_at, UserOrganization.id)
        )
        return await paginate(self.db, stmt, page=page, limit=limit)

    @log_slow_query("add_member")
    async def add(
        self,
        user_id: str,
        organization_id: str,
        role: str,
        *,
        is_default: bool = False,
    ) -> UserOrganization:
        membership = UserOrganization(
            user_id=user_id,
            organization_id=organization_id,
            role=role,
            is_default=is_default,
        )
        self.db.add(membership)
        await self.db.flush()
        return membership

    @log_slow_query("remove_member")
    async def remove(self, user_id: str, organization_id: str) -> int:
        result = await self.db.execute(
            delete(UserOrganization).where(
                UserOrganization.user_id == user_id,
                UserOrganization.organization_id == organization_id,
            )
        )
        return result.rowcount

    @log_slow_query("set_default_organization")
    async def set_default(self, user_id: str, organization_id: str) -> int:
        """Make one membership the user's default in a single statement.

        UPDATE ... SET is_default = CASE WHEN organization_id = :org ... END
        flips every membership of the user at once, so concurrent callers
        never observe zero or two defaults.
        """
        result = await self.db.execute(
            update(UserOrganization)
            .where(UserOrganization.user_id == user_id)
            .values(
                is_default=case(
                    (UserOrganization.organization_id == organization_id, True),
                    else_=False,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
