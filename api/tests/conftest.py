"""Shared fixtures: a fresh SQLite database per test, the app, and requesters.

Every test gets its own in-memory database. Service tests use
``db_session`` directly; route tests go through ``client``, which shares
the same connection, so fixtures commit before issuing requests.
"""

# Settings validate on import of main; the environment must be set first.
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OUTBOX_DISPATCH_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "development")

from collections.abc import AsyncGenerator, Generator
from unittest.mock import patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from core.auth import Requester
from core.config import clear_settings_cache
from core.database import Base, create_session_maker, enable_sqlite_foreign_keys
from core.wide_event import init_wide_event
from models import Organization, OrganizationType
from tests.factories import OrganizationFactory, create_async


@pytest.fixture(autouse=True)
def wide_event() -> dict:
    """Request-scoped context the middleware would normally open."""
    return init_wide_event()


@pytest.fixture(autouse=True)
def fresh_settings() -> Generator[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def rate_limits_off() -> Generator[None]:
    """Handlers are called back to back; slowapi would start returning 429."""
    with patch("core.ratelimit.limiter.enabled", False):
        yield


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite on a single shared connection (StaticPool)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Services only flush; commit here before handing data to another session."""
    async with session_maker() as session:
        yield session


# =============================================================================
# App and HTTP client
# =============================================================================


@pytest_asyncio.fixture
async def app(
    test_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[FastAPI]:
    """The real app with startup state pointed at the test database.

    The lifespan does not run, so the outbox dispatcher stays off.
    """
    from main import app as fastapi_app

    fastapi_app.state.engine = test_engine
    fastapi_app.state.session_maker = session_maker
    fastapi_app.state.init_done = True
    fastapi_app.state.init_error = None
    yield fastapi_app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


# =============================================================================
# Organizations and requesters
# =============================================================================


@pytest_asyncio.fixture
async def client_org(db_session: AsyncSession) -> Organization:
    organization = await create_async(
        OrganizationFactory, db_session, type=OrganizationType.CLIENT
    )
    await db_session.commit()
    return organization


@pytest_asyncio.fixture
async def other_org(db_session: AsyncSession) -> Organization:
    """A second client organization, for cross-tenant checks."""
    organization = await create_async(
        OrganizationFactory, db_session, type=OrganizationType.CLIENT
    )
    await db_session.commit()
    return organization


@pytest.fixture
def brand_agent(client_org: Organization) -> Requester:
    return Requester("user_agent_1", "brand_agent", client_org.id)


@pytest.fixture
def field_manager(client_org: Organization) -> Requester:
    return Requester("user_manager_1", "internal_field_manager", client_org.id)


@pytest.fixture
def org_admin(client_org: Organization) -> Requester:
    return Requester("user_admin_1", "organization_admin", client_org.id)


@pytest.fixture
def super_admin() -> Requester:
    return Requester("user_root", "super_admin", None)
