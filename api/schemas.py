"""Pydantic schemas for API request/response validation."""

from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import (
    BookingPriority,
    BookingStatus,
    ExpenseStatus,
    ExpenseType,
    LocationStatus,
    OrganizationTier,
    OrganizationType,
    StaffStatus,
    TimeOffStatus,
)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


# =============================================================================
# Envelope and pagination
# =============================================================================


class ServiceResponse(BaseModel, Generic[T]):
    """Envelope returned by every resource endpoint."""

    success: bool = True
    data: T | None = None
    error: str | None = None
    code: str | None = None


class PageData(BaseModel, Generic[T]):
    """One page of a list endpoint."""

    items: list[T] = Field(default_factory=list)
    total: int
    page: int
    limit: int


class PageQuery(BaseModel):
    """Pagination query parameters shared by list endpoints."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


def ok(data: Any) -> ServiceResponse[Any]:
    return ServiceResponse(success=True, data=data)


def page_of(
    model: type[M], rows: Sequence[Any], total: int, query: PageQuery
) -> PageData[M]:
    """Convert ORM rows into a typed page using ``model``."""
    return PageData[model](  # type: ignore[valid-type]
        items=[model.model_validate(row) for row in rows],
        total=total,
        page=query.page,
        limit=query.limit,
    )


def _strip_optional(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    return v or None


# =============================================================================
# Health
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    service: str


class PoolStatusResponse(BaseModel):
    """QueuePool counters; absent for SQLite."""

    pool_size: int
    checked_out: int
    overflow: int
    checked_in: int


class OutboxBacklogResponse(BaseModel):
    """Undispatched outbox events, split by whether retries remain."""

    pending: int
    exhausted: int


class DetailedHealthResponse(BaseModel):
    status: str
    service: str
    version: str
    database: bool
    pool: PoolStatusResponse | None = None
    outbox: OutboxBacklogResponse | None = None


# =============================================================================
# Organizations and membership
# =============================================================================


class OrganizationCreate(BaseModel):
    """Request to create an organization."""

    name: str = Field(min_length=1, max_length=255)
    type: OrganizationType
    tier: OrganizationTier | None = None
    parent_id: str | None = Field(default=None, max_length=36)
    is_active: bool = True
    billing_email: str | None = Field(default=None, max_length=255)
    billing_phone: str | None = Field(default=None, max_length=50)
    website: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=5000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v


class OrganizationUpdate(BaseModel):
    """Partial update of an organization. Unset fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    tier: OrganizationTier | None = None
    parent_id: str | None = Field(default=None, max_length=36)
    billing_email: str | None = Field(default=None, max_length=255)
    billing_phone: str | None = Field(default=None, max_length=50)
    website: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=5000)


class OrganizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: OrganizationType
    tier: OrganizationTier | None = None
    is_active: bool
    parent_id: str | None = None
    billing_email: str | None = None
    billing_phone: str | None = None
    website: str | None = None
    notes: str | None = None
    deactivated_at: datetime | None = None
    deactivated_by_id: str | None = None
    deactivation_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class OrganizationFilters(PageQuery):
    type: OrganizationType | None = None
    is_active: bool | None = None
    tier: OrganizationTier | None = None
    parent_id: str | None = None
    search: str | None = Field(default=None, max_length=255)


class DeactivateRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class AddMemberRequest(BaseModel):
    """Request to add a user to an organization."""

    user_id: str = Field(min_length=1, max_length=255)
    role: str = Field(min_length=1, max_length=50)
    is_default: bool = False

    @field_validator("role")
    @classmethod
    def normalize_role(cls, v: str) -> str:
        return v.strip().lower()


class MembershipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    organization_id: str
    role: str
    is_default: bool
    created_at: datetime


class SetDefaultOrganizationRequest(BaseModel):
    organization_id: str = Field(min_length=1, max_length=36)


# =============================================================================
# Locations
# =============================================================================


class LocationCreate(BaseModel):
    """Request to create (or request) a location.

    ``organization_id`` is honored only for super admins; everyone else
    creates locations in their own organization.
    """

    organization_id: str | None = Field(default=None, max_length=36)
    name: str = Field(min_length=1, max_length=255)
    type: str | None = Field(default=None, max_length=100)
    address1: str | None = Field(default=None, max_length=255)
    address2: str | None = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=255)
    state: str | None = Field(default=None, max_length=100)
    zipcode: str | None = Field(default=None, max_length=20)
    geo_lat: float | None = Field(default=None, ge=-90, le=90)
    geo_lng: float | None = Field(default=None, ge=-180, le=180)
    phone: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=5000)


class LocationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: str | None = Field(default=None, max_length=100)
    address1: str | None = Field(default=None, max_length=255)
    address2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, min_length=1, max_length=255)
    state: str | None = Field(default=None, max_length=100)
    zipcode: str | None = Field(default=None, max_length=20)
    geo_lat: float | None = Field(default=None, ge=-90, le=90)
    geo_lng: float | None = Field(default=None, ge=-180, le=180)
    phone: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=5000)
    is_active: bool | None = None


class LocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    name: str
    type: str | None = None
    address1: str | None = None
    address2: str | None = None
    city: str
    state: str | None = None
    zipcode: str | None = None
    geo_lat: float | None = None
    geo_lng: float | None = None
    phone: str | None = None
    notes: str | None = None
    status: LocationStatus
    is_active: bool
    requested_by_id: str | None = None
    approved_by_id: str | None = None
    approved_at: datetime | None = None
    approval_notes: str | None = None
    rejected_by_id: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    rejection_notes: str | None = None
    created_at: datetime
    updated_at: datetime


class LocationFilters(PageQuery):
    status: LocationStatus | None = None
    city: str | None = Field(default=None, max_length=255)
    state: str | None = Field(default=None, max_length=100)
    is_active: bool | None = None
    search: str | None = Field(default=None, max_length=255)


# =============================================================================
# Shared action bodies
# =============================================================================


class ApprovalNotesRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: str | None) -> str | None:
        return _strip_optional(v)


class RejectRequest(BaseModel):
    """Rejection body. Blank reasons are refused by the service."""

    reason: str = Field(max_length=2000)
    notes: str | None = Field(default=None, max_length=5000)


class ReasonRequest(BaseModel):
    reason: str = Field(max_length=2000)


# =============================================================================
# Bookings
# =============================================================================


class BookingCreate(BaseModel):
    """Request to create a draft booking.

    Schedule and recurrence consistency is checked by the service so the
    same rules apply to updates.
    """

    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    client_organization_id: str | None = Field(default=None, max_length=36)
    location_id: str | None = Field(default=None, max_length=36)
    activity_type_id: str | None = Field(default=None, max_length=36)
    start_date: date | None = None
    end_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    budget: int | None = None
    attendee_estimate: int | None = None
    priority: BookingPriority = BookingPriority.MEDIUM
    notes: str | None = Field(default=None, max_length=5000)
    staff_count: int | None = None
    requires_training: bool = False
    is_recurring: bool = False
    recurrence_pattern: str | None = Field(default=None, max_length=255)
    recurrence_end_date: date | None = None


class BookingUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    location_id: str | None = Field(default=None, max_length=36)
    activity_type_id: str | None = Field(default=None, max_length=36)
    start_date: date | None = None
    end_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    budget: int | None = None
    attendee_estimate: int | None = None
    priority: BookingPriority | None = None
    notes: str | None = Field(default=None, max_length=5000)
    staff_count: int | None = None
    requires_training: bool | None = None
    is_recurring: bool | None = None
    recurrence_pattern: str | None = Field(default=None, max_length=255)
    recurrence_end_date: date | None = None


class BookingApproveRequest(ApprovalNotesRequest):
    generate_occurrences: bool = True


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None = None
    client_organization_id: str
    location_id: str | None = None
    activity_type_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    budget: int | None = None
    attendee_estimate: int | None = None
    status: BookingStatus
    effective_status: BookingStatus
    priority: BookingPriority
    notes: str | None = None
    staff_count: int | None = None
    requires_training: bool
    is_recurring: bool
    recurrence_pattern: str | None = None
    recurrence_end_date: date | None = None
    created_by_id: str
    submitted_at: datetime | None = None
    approved_by_id: str | None = None
    approved_at: datetime | None = None
    approval_notes: str | None = None
    rejected_by_id: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    canceled_by_id: str | None = None
    canceled_at: datetime | None = None
    cancel_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class BookingOccurrenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: str
    occurrence_date: date
    start_time: time | None = None
    end_time: time | None = None


class BookingFilters(PageQuery):
    """Booking list filters. ``status=completed`` matches the derived state."""

    status: BookingStatus | None = None
    priority: BookingPriority | None = None
    location_id: str | None = None
    client_organization_id: str | None = None
    start_from: date | None = None
    start_to: date | None = None
    search: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_range(self) -> "BookingFilters":
        if self.start_from and self.start_to and self.start_to < self.start_from:
            raise ValueError("start_to must not be before start_from")
        return self


# =============================================================================
# Staff
# =============================================================================


class StaffCreate(BaseModel):
    """Request to register a user as staff.

    The user record is created on the fly when it does not exist yet.
    """

    user_id: str = Field(min_length=1, max_length=255)
    organization_id: str | None = Field(default=None, max_length=36)
    email: str | None = Field(default=None, max_length=255)
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    title: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    hire_date: date
    termination_date: date | None = None
    status: StaffStatus = StaffStatus.ACTIVE
    notes: str | None = Field(default=None, max_length=5000)


class StaffUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    hire_date: date | None = None
    termination_date: date | None = None
    notes: str | None = Field(default=None, max_length=5000)


class StaffStatusChangeRequest(BaseModel):
    status: StaffStatus
    termination_date: date | None = None
    reason: str | None = Field(default=None, max_length=2000)


class StaffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    organization_id: str
    title: str | None = None
    phone: str | None = None
    hire_date: date
    termination_date: date | None = None
    status: StaffStatus
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class StaffFilters(PageQuery):
    status: StaffStatus | None = None
    skill_id: str | None = None
    search: str | None = Field(default=None, max_length=255)


class SkillCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=2000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v


class SkillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: str | None = None
    description: str | None = None


class StaffSkillAssign(BaseModel):
    skill_id: str = Field(min_length=1, max_length=36)
    proficiency_level: int | None = Field(default=None, ge=1, le=5)
    certification_date: date | None = None
    certification_expiry: date | None = None


class StaffSkillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    skill_id: str
    skill: SkillResponse
    proficiency_level: int | None = None
    certification_date: date | None = None
    certification_expiry: date | None = None


class AvailabilityRuleCreate(BaseModel):
    """Weekly rule. ``day_of_week`` counts from Monday = 0."""

    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool = True


class AvailabilityRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    staff_id: str
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool


class AvailabilityCheckResponse(BaseModel):
    staff_id: str
    date: date
    start_time: time
    end_time: time
    available: bool


class TimeOffCreate(BaseModel):
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=2000)


class TimeOffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    staff_id: str
    start_date: date
    end_date: date
    reason: str | None = None
    status: TimeOffStatus
    requested_by_id: str | None = None
    reviewed_by_id: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    rejection_reason: str | None = None
    created_at: datetime


# =============================================================================
# Expenses
# =============================================================================


class ExpenseCreate(BaseModel):
    """Request to submit an expense (or save a draft).

    ``amount`` must be positive; the service enforces it so drafts and
    updates share the rule.
    """

    organization_id: str | None = Field(default=None, max_length=36)
    booking_id: str | None = Field(default=None, max_length=36)
    expense_type: ExpenseType
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=2000)
    expense_date: date
    receipt_url: str | None = Field(default=None, max_length=1000)
    mileage: Decimal | None = Field(default=None, max_digits=10, decimal_places=2)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if not v.isalpha():
            raise ValueError("Currency must be a three-letter code")
        return v


class ExpenseUpdate(BaseModel):
    booking_id: str | None = Field(default=None, max_length=36)
    expense_type: ExpenseType | None = None
    amount: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=2000)
    expense_date: date | None = None
    receipt_url: str | None = Field(default=None, max_length=1000)
    mileage: Decimal | None = Field(default=None, max_digits=10, decimal_places=2)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str | None) -> str | None:
        return v.strip().upper() if v is not None else None


class ExpenseApprovalRequest(BaseModel):
    approved: bool
    rejection_reason: str | None = Field(default=None, max_length=2000)


class ExpenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    agent_id: str
    booking_id: str | None = None
    expense_type: ExpenseType
    amount: Decimal
    currency: str
    description: str | None = None
    expense_date: date
    receipt_url: str | None = None
    mileage: Decimal | None = None
    status: ExpenseStatus
    submitted_at: datetime | None = None
    approved_by_id: str | None = None
    approved_at: datetime | None = None
    rejected_by_id: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ExpenseSummaryFilters(BaseModel):
    agent_id: str | None = None
    booking_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None


class ExpenseFilters(PageQuery, ExpenseSummaryFilters):
    status: ExpenseStatus | None = None
    expense_type: ExpenseType | None = None


class SummaryBucketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    count: int
    amount: Decimal


class ExpenseSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_expenses: int
    total_amount: Decimal
    pending_approval: int
    pending_amount: Decimal
    approved_amount: Decimal
    rejected_amount: Decimal
    by_category: dict[str, SummaryBucketResponse]
    by_status: dict[str, SummaryBucketResponse]
