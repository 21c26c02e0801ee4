"""Tests for user row creation behind the gateway identity."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from services.users_service import ensure_user_exists


@pytest.mark.integration
class TestEnsureUserExists:
    async def test_creates_once(self, db_session: AsyncSession):
        first = await ensure_user_exists(db_session, "user_new", email="n@example.com")
        second = await ensure_user_exists(db_session, "user_new")

        assert first.id == second.id == "user_new"
        assert second.email == "n@example.com"

    async def test_fills_missing_profile_fields(self, db_session: AsyncSession):
        await ensure_user_exists(db_session, "user_expense_first")

        user = await ensure_user_exists(
            db_session, "user_expense_first", first_name="Dana", last_name="Reyes"
        )

        assert (user.first_name, user.last_name) == ("Dana", "Reyes")

    async def test_never_overwrites_profile(self, db_session: AsyncSession):
        await ensure_user_exists(db_session, "user_named", first_name="Sam")

        user = await ensure_user_exists(db_session, "user_named", first_name="Samuel")

        assert user.first_name == "Sam"
