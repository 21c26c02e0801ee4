"""Outbox repository: durable domain events awaiting dispatch."""

from typing import Any, NamedTuple

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import OutboxEvent, utcnow
from repositories.utils import log_slow_query

# Errors are stored for operators, not parsed; keep rows bounded.
MAX_ERROR_LENGTH = 2000


class OutboxBacklog(NamedTuple):
    pending: int
    exhausted: int


class OutboxRepository:
    """Repository for OutboxEvent database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("add_outbox_event")
    async def add(self, **values: Any) -> OutboxEvent:
        event = OutboxEvent(**values)
        self.db.add(event)
        await self.db.flush()
        return event

    @log_slow_query("claim_outbox_events")
    async def claim_pending(self, limit: int, max_attempts: int) -> list[OutboxEvent]:
        """Oldest undispatched events still under the attempt limit.

        On PostgreSQL rows are locked with SKIP LOCKED so concurrent
        dispatchers never pick the same event in the same pass.
        """
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.dispatched_at.is_(None),
                OutboxEvent.attempts < max_attempts,
            )
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
            .limit(limit)
        )
        bind = self.db.get_bind()
        if bind is not None and bind.dialect.name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @log_slow_query("list_outbox_events")
    async def list_for_aggregate(
        self, aggregate_type: str, aggregate_id: str
    ) -> list[OutboxEvent]:
        result = await self.db.execute(
            select(OutboxEvent)
            .where(
                OutboxEvent.aggregate_type == aggregate_type,
                OutboxEvent.aggregate_id == aggregate_id,
            )
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
        )
        return list(result.scalars().all())

    @log_slow_query("mark_outbox_dispatched")
    async def mark_dispatched(self, event_id: str) -> None:
        await self.db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .values(dispatched_at=utcnow(), last_error=None)
            .execution_options(synchronize_session=False)
        )

    @log_slow_query("mark_outbox_failed")
    async def mark_failed(self, event_id: str, error: str) -> None:
        await self.db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .values(
                attempts=OutboxEvent.attempts + 1,
                last_error=error[:MAX_ERROR_LENGTH],
            )
            .execution_options(synchronize_session=False)
        )

    @log_slow_query("outbox_backlog")
    async def backlog(self, max_attempts: int) -> OutboxBacklog:
        """Undispatched events: still retryable, and out of attempts."""
        exhausted = OutboxEvent.attempts >= max_attempts
        result = await self.db.execute(
            select(
                func.count(case((~exhausted, OutboxEvent.id))),
                func.count(case((exhausted, OutboxEvent.id))),
            ).where(OutboxEvent.dispatched_at.is_(None))
        )
        pending, exhausted_count = result.one()
        return OutboxBacklog(pending=pending, exhausted=exhausted_count)
