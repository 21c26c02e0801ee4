"""Factory Boy factories for generating test data.

Factories provide a clean way to create test objects with sensible defaults.
Override specific fields as needed in tests.

Usage:
    # Build in memory only
    org = OrganizationFactory.build()

    # Persist
    org = await create_async(OrganizationFactory, db_session)

    # Override fields
    location = await create_async(
        LocationFactory, db_session, organization_id=org.id, status="pending"
    )
"""

from datetime import UTC, datetime, time, timedelta
from decimal import Decimal

import factory
from faker import Faker
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import ORGANIZATION_HEADER, ROLE_HEADER, USER_ID_HEADER, Requester
from models import (
    Booking,
    BookingPriority,
    BookingStatus,
    Expense,
    ExpenseStatus,
    ExpenseType,
    Location,
    LocationStatus,
    Organization,
    OrganizationType,
    Skill,
    StaffAvailability,
    StaffMember,
    StaffStatus,
    StaffTimeOff,
    TimeOffStatus,
    User,
    today,
)

fake = Faker()


# =============================================================================
# Async Factory Helpers
# =============================================================================


async def create_async(
    factory_class: type[factory.Factory], db: AsyncSession, **kwargs
):
    """Create an instance using a factory and persist to database.

    Usage:
        staff = await create_async(StaffMemberFactory, db_session, user_id=u.id)
    """
    instance = factory_class.build(**kwargs)
    db.add(instance)
    await db.flush()
    await db.refresh(instance)
    return instance


async def create_batch_async(
    factory_class: type[factory.Factory], db: AsyncSession, size: int, **kwargs
):
    """Create multiple instances and persist to database."""
    instances = factory_class.build_batch(size, **kwargs)
    for instance in instances:
        db.add(instance)
    await db.flush()
    for instance in instances:
        await db.refresh(instance)
    return instances


def gateway_headers(requester: Requester) -> dict[str, str]:
    """Headers the upstream gateway forwards for ``requester``."""
    headers = {USER_ID_HEADER: requester.user_id, ROLE_HEADER: requester.role}
    if requester.organization_id:
        headers[ORGANIZATION_HEADER] = requester.organization_id
    return headers


# =============================================================================
# Identity and tenancy
# =============================================================================


class UserFactory(factory.Factory):
    class Meta:
        model = User

    id = factory.LazyFunction(lambda: f"user_{fake.uuid4().replace('-', '')[:24]}")
    email = factory.LazyAttribute(lambda _: fake.email())
    first_name = factory.LazyAttribute(lambda _: fake.first_name())
    last_name = factory.LazyAttribute(lambda _: fake.last_name())


class OrganizationFactory(factory.Factory):
    class Meta:
        model = Organization

    name = factory.LazyAttribute(lambda _: fake.company()[:255])
    type = OrganizationType.CLIENT
    is_active = True
    created_at = factory.LazyFunction(lambda: datetime.now(UTC))
    updated_at = factory.LazyFunction(lambda: datetime.now(UTC))


class InternalOrganizationFactory(OrganizationFactory):
    type = OrganizationType.INTERNAL


# =============================================================================
# Locations and bookings
# =============================================================================


class LocationFactory(factory.Factory):
    """Approved location; pass organization_id."""

    class Meta:
        model = Location

    name = factory.LazyAttribute(lambda _: f"{fake.city()} Store")
    city = factory.LazyAttribute(lambda _: fake.city())
    state = factory.LazyAttribute(lambda _: fake.state_abbr())
    address1 = factory.LazyAttribute(lambda _: fake.street_address())
    status = LocationStatus.APPROVED
    is_active = True
    requested_by_id = "user_seed"


class PendingLocationFactory(LocationFactory):
    status = LocationStatus.PENDING


class BookingFactory(factory.Factory):
    """Draft booking a week out; pass client_organization_id."""

    class Meta:
        model = Booking

    title = factory.LazyAttribute(lambda _: f"{fake.catch_phrase()[:200]} demo")
    start_date = factory.LazyFunction(lambda: today() + timedelta(days=7))
    end_date = factory.LazyAttribute(lambda obj: obj.start_date)
    start_time = time(9, 0)
    end_time = time(17, 0)
    status = BookingStatus.DRAFT
    priority = BookingPriority.MEDIUM
    requires_training = False
    is_recurring = False
    created_by_id = "user_seed"


# =============================================================================
# Staff
# =============================================================================


class StaffMemberFactory(factory.Factory):
    """Active staff member; pass user_id and organization_id."""

    class Meta:
        model = StaffMember

    title = factory.LazyAttribute(lambda _: fake.job()[:255])
    hire_date = factory.LazyFunction(lambda: today() - timedelta(days=365))
    status = StaffStatus.ACTIVE


class SkillFactory(factory.Factory):
    class Meta:
        model = Skill

    name = factory.Sequence(lambda n: f"Skill {n}")
    category = "sampling"


class AvailabilityRuleFactory(factory.Factory):
    """Monday 08:00-18:00; pass staff_id."""

    class Meta:
        model = StaffAvailability

    day_of_week = 0
    start_time = time(8, 0)
    end_time = time(18, 0)
    is_available = True


class TimeOffFactory(factory.Factory):
    """Pending time-off next month; pass staff_id."""

    class Meta:
        model = StaffTimeOff

    start_date = factory.LazyFunction(lambda: today() + timedelta(days=30))
    end_date = factory.LazyAttribute(lambda obj: obj.start_date + timedelta(days=2))
    status = TimeOffStatus.PENDING


# =============================================================================
# Expenses
# =============================================================================


class ExpenseFactory(factory.Factory):
    """Submitted expense; pass organization_id and agent_id."""

    class Meta:
        model = Expense

    expense_type = ExpenseType.MEALS
    amount = factory.LazyFunction(lambda: Decimal("25.00"))
    currency = "USD"
    expense_date = factory.LazyFunction(today)
    status = ExpenseStatus.SUBMITTED
    submitted_at = factory.LazyFunction(lambda: datetime.now(UTC))
