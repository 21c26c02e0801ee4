"""SQLAlchemy models for workforce and booking management."""

import uuid
from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from core.database import Base


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def today() -> date:
    """Return current UTC date."""
    return datetime.now(UTC).date()


def new_id() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """String-backed enum column (no native PostgreSQL enum types)."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda x: [e.value for e in x],
    )


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Role(str, PyEnum):
    """Requester roles recognized by the access policy.

    Any other role string is treated as the most restrictive default.
    """

    BRAND_AGENT = "brand_agent"
    INTERNAL_FIELD_MANAGER = "internal_field_manager"
    ORGANIZATION_ADMIN = "organization_admin"
    SUPER_ADMIN = "super_admin"


class OrganizationType(str, PyEnum):
    INTERNAL = "internal"
    CLIENT = "client"
    PARTNER = "partner"


class OrganizationTier(str, PyEnum):
    TIER_1 = "tier_1"
    TIER_2 = "tier_2"
    TIER_3 = "tier_3"


class LocationStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BookingStatus(str, PyEnum):
    """Booking lifecycle states.

    COMPLETED is never stored: an approved booking whose end date has
    passed is reported as completed.
    """

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELED = "canceled"
    COMPLETED = "completed"


class BookingPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class StaffStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class TimeOffStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELED = "canceled"


class ExpenseType(str, PyEnum):
    MILEAGE = "mileage"
    MEALS = "meals"
    LODGING = "lodging"
    TRAVEL = "travel"
    SUPPLIES = "supplies"
    PARKING = "parking"
    OTHER = "other"


class ExpenseStatus(str, PyEnum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class User(TimestampMixin, Base):
    """Identity record, created on first authenticated request."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    memberships: Mapped[list["UserOrganization"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )


class Organization(TimestampMixin, Base):
    """Tenant boundary. Internal organizations can never be deleted."""

    __tablename__ = "organizations"
    __table_args__ = (
        Index("ix_organizations_parent", "parent_id"),
        Index("ix_organizations_type_active", "type", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[OrganizationType] = mapped_column(
        _enum(OrganizationType, "organization_type"), nullable=False
    )
    tier: Mapped[OrganizationTier | None] = mapped_column(
        _enum(OrganizationTier, "organization_tier"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    parent_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    billing_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billing_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deactivated_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deactivation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    memberships: Mapped[list["UserOrganization"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class UserOrganization(Base):
    """Membership of a user in an organization.

    At most one membership per user has is_default set.
    """

    __tablename__ = "user_organizations"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_user_organization"),
        Index("ix_user_organizations_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    user: Mapped["User"] = relationship(back_populates="memberships")
    organization: Mapped["Organization"] = relationship(back_populates="memberships")


class Location(TimestampMixin, Base):
    """Physical place belonging to one organization."""

    __tablename__ = "locations"
    __table_args__ = (
        Index("ix_locations_org_status", "organization_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    zipcode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    geo_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    geo_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[LocationStatus] = mapped_column(
        _enum(LocationStatus, "location_status"),
        default=LocationStatus.PENDING,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    requested_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Booking(TimestampMixin, Base):
    """Scheduled engagement for a client organization at a location."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_org_status", "client_organization_id", "status"),
        Index("ix_bookings_org_start", "client_organization_id", "start_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    location_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    activity_type_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    budget: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attendee_estimate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"),
        default=BookingStatus.DRAFT,
        nullable=False,
    )
    priority: Mapped[BookingPriority] = mapped_column(
        _enum(BookingPriority, "booking_priority"),
        default=BookingPriority.MEDIUM,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    staff_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requires_training: Mapped[bool] = mapped_column(Boolean, default=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    recurrence_pattern: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recurrence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_by_id: Mapped[str] = mapped_column(String(255), nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approved_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    canceled_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    occurrences: Mapped[list["BookingOccurrence"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BookingOccurrence.occurrence_date",
    )

    @property
    def effective_status(self) -> BookingStatus:
        """Stored status, or COMPLETED once an approved booking has ended."""
        if (
            self.status == BookingStatus.APPROVED
            and self.end_date is not None
            and self.end_date < today()
        ):
            return BookingStatus.COMPLETED
        return self.status


class BookingOccurrence(Base):
    """Concrete dated instance generated when a booking is approved."""

    __tablename__ = "booking_occurrences"
    __table_args__ = (
        UniqueConstraint(
            "booking_id", "occurrence_date", name="uq_booking_occurrence_date"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
    )
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    booking: Mapped["Booking"] = relationship(back_populates="occurrences")


class StaffMember(TimestampMixin, Base):
    """A user acting as a workforce resource in exactly one organization."""

    __tablename__ = "staff_members"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_staff_members_user"),
        Index("ix_staff_members_org_status", "organization_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[StaffStatus] = mapped_column(
        _enum(StaffStatus, "staff_status"),
        default=StaffStatus.ACTIVE,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    skills: Mapped[list["StaffSkill"]] = relationship(
        back_populates="staff",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    availability_rules: Mapped[list["StaffAvailability"]] = relationship(
        back_populates="staff",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    time_off_requests: Mapped[list["StaffTimeOff"]] = relationship(
        back_populates="staff",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Skill(Base):
    """Skill catalog entry."""

    __tablename__ = "skills"
    __table_args__ = (UniqueConstraint("name", name="uq_skills_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class StaffSkill(Base):
    """Skill held by a staff member, with optional certification window."""

    __tablename__ = "staff_skills"
    __table_args__ = (
        UniqueConstraint("staff_id", "skill_id", name="uq_staff_skill"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("staff_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    skill_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
    )
    proficiency_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    certification_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    certification_expiry: Mapped[date | None] = mapped_column(Date, nullable=True)

    staff: Mapped["StaffMember"] = relationship(back_populates="skills")
    skill: Mapped["Skill"] = relationship(lazy="joined")


class StaffAvailability(Base):
    """Weekly availability rule. day_of_week follows date.weekday() (Monday=0)."""

    __tablename__ = "staff_availability"
    __table_args__ = (
        Index("ix_staff_availability_staff_day", "staff_id", "day_of_week"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("staff_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    staff: Mapped["StaffMember"] = relationship(back_populates="availability_rules")


class StaffTimeOff(TimestampMixin, Base):
    """Time-off request covering an inclusive date range."""

    __tablename__ = "staff_time_off"
    __table_args__ = (
        Index("ix_staff_time_off_staff_status", "staff_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("staff_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TimeOffStatus] = mapped_column(
        _enum(TimeOffStatus, "time_off_status"),
        default=TimeOffStatus.PENDING,
        nullable=False,
    )
    requested_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    staff: Mapped["StaffMember"] = relationship(back_populates="time_off_requests")


class Expense(TimestampMixin, Base):
    """Cost record submitted by an agent, optionally tied to a booking."""

    __tablename__ = "expenses"
    __table_args__ = (
        Index("ix_expenses_org_status", "organization_id", "status"),
        Index("ix_expenses_agent_date", "agent_id", "expense_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    agent_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    booking_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
    )
    expense_type: Mapped[ExpenseType] = mapped_column(
        _enum(ExpenseType, "expense_type"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    receipt_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    mileage: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[ExpenseStatus] = mapped_column(
        _enum(ExpenseStatus, "expense_status"),
        default=ExpenseStatus.SUBMITTED,
        nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approved_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class OutboxEvent(Base):
    """Domain event written in the same transaction as the state change.

    Delivered at-least-once by the background dispatcher; consumers
    dedupe on id.
    """

    __tablename__ = "outbox_events"
    __table_args__ = (
        Index("ix_outbox_events_pending", "dispatched_at", "created_at"),
        Index("ix_outbox_events_aggregate", "aggregate_type", "aggregate_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    correlation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    dispatched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
