"""Identity rows for gateway-authenticated users."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import get_logger
from models import User
from repositories.utils import log_slow_query

logger = get_logger(__name__)

# Dialects with INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_user_by_id")
    async def get_by_id(self, user_id: str) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @log_slow_query("get_or_create_user")
    async def get_or_create(self, user_id: str, **profile: Any) -> User:
        """Return the user, inserting a row on first sight.

        Two first requests for the same user can race; the conflicting
        insert is ignored and both read the surviving row.
        """
        user = await self.get_by_id(user_id)
        if user is not None:
            return user

        row = {"id": user_id, **profile}
        bind = self.db.get_bind()
        insert = _UPSERT_INSERTS.get(bind.dialect.name) if bind else None
        if insert is not None:
            await self.db.execute(
                insert(User).values(**row).on_conflict_do_nothing(index_elements=["id"])
            )
        else:
            try:
                async with self.db.begin_nested():
                    self.db.add(User(**row))
            except IntegrityError:
                logger.debug("user.create.conflict", user_id=user_id)

        result = await self.db.execute(
            select(User).where(User.id == user_id).execution_options(
                populate_existing=True
            )
        )
        return result.scalar_one()

    @log_slow_query("fill_user_profile")
    async def fill_missing(self, user: User, **profile: Any) -> User:
        """Set profile fields that are still empty; never overwrite."""
        changed = False
        for field, value in profile.items():
            if getattr(user, field) is None:
                setattr(user, field, value)
                changed = True
        if changed:
            await self.db.flush()
        return user
