"""Booking repository for database operations."""

from datetime import date, time
from typing import Any

from sqlalchemy import ColumnElement, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Booking, BookingOccurrence
from repositories.utils import log_slow_query, paginate


class BookingRepository:
    """Repository for Booking and BookingOccurrence database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("get_booking_by_id")
    async def get_by_id(self, booking_id: str) -> Booking | None:
        result = await self.db.execute(select(Booking).where(Booking.id == booking_id))
        return result.scalar_one_or_none()

    @log_slow_query("list_bookings")
    async def find_many(
        self,
        conditions: list[ColumnElement[bool]],
        *,
        page: int,
        limit: int,
    ) -> tuple[list[Booking], int]:
        stmt = (
            select(Booking)
            .where(*conditions)
            .order_by(Booking.start_date.desc().nulls_last(), Booking.created_at.desc())
        )
        return await paginate(self.db, stmt, page=page, limit=limit)

    @log_slow_query("create_booking")
    async def create(self, **values: Any) -> Booking:
        booking = Booking(**values)
        self.db.add(booking)
        await self.db.flush()
        return booking

    @log_slow_query("update_booking")
    async def update(self, booking: Booking, **values: Any) -> Booking:
        for name, value in values.items():
            setattr(booking, name, value)
        await self.db.flush()
        return booking

    @log_slow_query("delete_booking")
    async def delete(self, booking_id: str) -> None:
        await self.db.execute(delete(Booking).where(Booking.id == booking_id))

    @log_slow_query("list_booking_occurrences")
    async def list_occurrences(self, booking_id: str) -> list[BookingOccurrence]:
        result = await self.db.execute(
            select(BookingOccurrence)
            .where(BookingOccurrence.booking_id == booking_id)
            .order_by(BookingOccurrence.occurrence_date)
        )
        return list(result.scalars().all())

    @log_slow_query("create_booking_occurrences")
    async def replace_occurrences(
        self,
        booking_id: str,
        dates: list[date],
        start_time: time | None,
        end_time: time | None,
    ) -> list[BookingOccurrence]:
        """Replace all occurrences of a booking with the given dates."""
        await self.db.execute(
            delete(BookingOccurrence).where(BookingOccurrence.booking_id == booking_id)
        )
        occurrences = [
            BookingOccurrence(
                booking_id=booking_id,
                occurrence_date=occurrence_date,
                start_time=start_time,
                end_time=end_time,
            )
            for occurrence_date in dates
        ]
        self.db.add_all(occurrences)
        await self.db.flush()
        return occurrences
