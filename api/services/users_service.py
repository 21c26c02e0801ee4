"""User rows backing the gateway identity."""

from sqlalchemy.ext.asyncio import AsyncSession

from models import User
from repositories.user_repository import UserRepository
from services.errors import repository_errors


async def ensure_user_exists(
    db: AsyncSession,
    user_id: str,
    *,
    email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Return the user row for ``user_id``, creating it if needed.

    Memberships, staff profiles and expenses reference users by foreign
    key, but identities live in the gateway, so the row is created on
    first use. Profile values fill fields that are still empty, e.g. a
    user first seen through an expense gets a name once their staff
    profile is created.
    """
    profile = {
        field: value
        for field, value in (
            ("email", email),
            ("first_name", first_name),
            ("last_name", last_name),
        )
        if value is not None
    }
    repository = UserRepository(db)
    with repository_errors("USER_CREATE_FAILED"):
        user = await repository.get_or_create(user_id, **profile)
        return await repository.fill_missing(user, **profile)
