"""Repository layer for database operations.

Repositories encapsulate all database queries, keeping services free of
SQL. Driver failures surface as RepositoryError; row visibility rules live
in the service layer and arrive here as plain filter conditions.
"""

from repositories.booking_repository import BookingRepository
from repositories.expense_repository import ExpenseAggregate, ExpenseRepository
from repositories.location_repository import LocationRepository
from repositories.organization_repository import (
    OrganizationRepository,
    UserOrganizationRepository,
)
from repositories.outbox_repository import OutboxBacklog, OutboxRepository
from repositories.staff_repository import (
    AvailabilityRepository,
    SkillRepository,
    StaffRepository,
    TimeOffRepository,
)
from repositories.user_repository import UserRepository
from repositories.utils import RepositoryError, log_slow_query, paginate

__all__ = [
    "AvailabilityRepository",
    "BookingRepository",
    "ExpenseAggregate",
    "ExpenseRepository",
    "LocationRepository",
    "OrganizationRepository",
    "OutboxBacklog",
    "OutboxRepository",
    "RepositoryError",
    "SkillRepository",
    "StaffRepository",
    "TimeOffRepository",
    "UserOrganizationRepository",
    "UserRepository",
    "log_slow_query",
    "paginate",
]
