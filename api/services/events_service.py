"""Transactional outbox for domain events.

State-changing services call ``record_event`` with the same session that
performs the change, so the event row commits (or rolls back) with it.
A background loop started in the app lifespan delivers pending events to
registered handlers.

Delivery is at-least-once: an event whose handlers fail is retried on the
next pass until ``outbox_max_attempts`` is reached. Handlers receive the
full OutboxEvent and should dedupe on ``event.id``.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.auth import Requester
from core.config import get_settings
from core.wide_event import get_request_id, set_wide_event_field
from models import (
    Booking,
    Expense,
    Location,
    Organization,
    OutboxEvent,
    StaffMember,
)
from repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)

WILDCARD = "*"

type EventHandler = Callable[[OutboxEvent], Awaitable[None]]

_AGGREGATE_TYPES: dict[type, str] = {
    Organization: "organization",
    Location: "location",
    Booking: "booking",
    StaffMember: "staff",
    Expense: "expense",
}


def _organization_of(aggregate: Any) -> str | None:
    if isinstance(aggregate, Organization):
        return aggregate.id
    if isinstance(aggregate, Booking):
        return aggregate.client_organization_id
    return getattr(aggregate, "organization_id", None)


async def record_event(
    db: AsyncSession,
    event_type: str,
    aggregate: Any,
    payload: dict[str, Any] | None = None,
    requester: Requester | None = None,
) -> OutboxEvent:
    """Write an outbox row in the caller's transaction.

    The correlation id is the current request id, or a fresh uuid when
    called outside a request (CLI, background jobs).
    """
    aggregate_type = _AGGREGATE_TYPES[type(aggregate)]
    event = await OutboxRepository(db).add(
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=str(aggregate.id),
        organization_id=_organization_of(aggregate),
        payload=jsonable_encoder(payload or {}),
        correlation_id=get_request_id() or str(uuid.uuid4()),
        actor_id=requester.user_id if requester else None,
    )
    set_wide_event_field("event_type", event_type)
    return event


class EventDispatcher:
    """Registry of event handlers keyed by event type.

    Handlers registered under ``"*"`` receive every event after the
    type-specific ones.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def register(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def subscribe(self, event_type: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: EventHandler) -> EventHandler:
            self.register(event_type, handler)
            return handler

        return decorator

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        return [*self._handlers.get(event_type, []), *self._handlers.get(WILDCARD, [])]

    async def dispatch(self, event: OutboxEvent) -> None:
        """Run every handler for the event. The first failure propagates."""
        for handler in self.handlers_for(event.event_type):
            await handler(event)


dispatcher = EventDispatcher()


@dispatcher.subscribe(WILDCARD)
async def log_event(event: OutboxEvent) -> None:
    logger.info(
        "outbox.event.delivered",
        extra={
            "event_id": event.id,
            "event_type": event.event_type,
            "aggregate_type": event.aggregate_type,
            "aggregate_id": event.aggregate_id,
            "correlation_id": event.correlation_id,
        },
    )


@dataclass(frozen=True)
class DispatchResult:
    claimed: int
    dispatched: int
    failed: int


async def dispatch_pending(
    session_maker: async_sessionmaker[AsyncSession],
    event_dispatcher: EventDispatcher | None = None,
    *,
    batch_size: int | None = None,
    max_attempts: int | None = None,
) -> DispatchResult:
    """Deliver one batch of pending events and record the outcome of each."""
    settings = get_settings()
    event_dispatcher = event_dispatcher or dispatcher
    batch_size = batch_size or settings.outbox_batch_size
    max_attempts = max_attempts or settings.outbox_max_attempts

    dispatched = failed = 0
    async with session_maker() as session:
        repo = OutboxRepository(session)
        events = await repo.claim_pending(batch_size, max_attempts)

        for event in events:
            try:
                await event_dispatcher.dispatch(event)
            except Exception as e:
                failed += 1
                logger.warning(
                    "outbox.dispatch.failed",
                    extra={
                        "event_id": event.id,
                        "event_type": event.event_type,
                        "attempt": event.attempts + 1,
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                await repo.mark_failed(event.id, f"{type(e).__name__}: {e}")
            else:
                dispatched += 1
                await repo.mark_dispatched(event.id)

        await session.commit()

    if events:
        logger.info(
            "outbox.dispatch.completed",
            extra={"claimed": len(events), "dispatched": dispatched, "failed": failed},
        )
    return DispatchResult(claimed=len(events), dispatched=dispatched, failed=failed)


async def outbox_dispatch_loop(
    session_maker: async_sessionmaker[AsyncSession],
    event_dispatcher: EventDispatcher | None = None,
) -> None:
    """Background loop that drains the outbox on a timer.

    Runs forever until cancelled. A full batch is followed immediately by
    another pass; pass failures are logged and retried after the interval.
    """
    settings = get_settings()
    while True:
        try:
            result = await dispatch_pending(session_maker, event_dispatcher)
        except Exception:
            logger.exception("outbox.dispatch.pass_failed")
        else:
            if result.failed == 0 and result.claimed >= settings.outbox_batch_size:
                continue
        await asyncio.sleep(settings.outbox_dispatch_interval_seconds)
