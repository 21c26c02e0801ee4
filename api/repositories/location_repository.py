"""Location repository for database operations."""

from typing import Any

from sqlalchemy import ColumnElement, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Location
from repositories.utils import log_slow_query, paginate


class LocationRepository:
    """Repository for Location database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_location_by_id")
    async def get_by_id(self, location_id: str) -> Location | None:
        result = await self.db.execute(
            select(Location).where(Location.id == location_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("list_locations")
    async def find_many(
        self,
        conditions: list[ColumnElement[bool]],
        *,
        page: int,
        limit: int,
    ) -> tuple[list[Location], int]:
        stmt = (
            select(Location)
            .where(*conditions)
            .order_by(Location.name, Location.id)
        )
        return await paginate(self.db, stmt, page=page, limit=limit)

    @log_slow_query("create_location")
    async def create(self, **values: Any) -> Location:
        location = Location(**values)
        self.db.add(location)
        await self.db.flush()
        return location

    @log_slow_query("update_location")
    async def update(self, location: Location, **values: Any) -> Location:
        for name, value in values.items():
            setattr(location, name, value)
        await self.db.flush()
        return location

    @log_slow_query("delete_location")
    async def delete(self, location_id: str) -> None:
        await self.db.execute(delete(Location).where(Location.id == location_id))
