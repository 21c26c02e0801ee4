"""Repository utility functions for common database operations."""

import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import get_logger
from core.wide_event import set_wide_event_fields

logger = get_logger(__name__)

# Threshold for logging slow queries (milliseconds)
SLOW_QUERY_THRESHOLD_MS = 500

P = ParamSpec("P")
R = TypeVar("R")


class RepositoryError(Exception):
    """A database operation failed.

    The driver error is chained as ``__cause__`` and recorded for logging
    only; callers see the operation name.
    """

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Database operation failed: {operation}")


def log_slow_query(
    operation_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator to log slow repository operations and wrap driver errors.

    Records queries exceeding SLOW_QUERY_THRESHOLD_MS on the wide event.
    SQLAlchemy errors are logged and re-raised as RepositoryError.

    Usage:
        @log_slow_query("get_booking_by_id")
        async def get_by_id(self, booking_id: str) -> Booking | None:
            ...
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except SQLAlchemyError as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                set_wide_event_fields(
                    db_query_error=True,
                    db_operation=operation_name,
                    db_duration_ms=round(duration_ms, 2),
                    db_error=str(e),
                    db_error_type=type(e).__name__,
                )
                logger.warning(
                    "db.operation.failed",
                    operation=operation_name,
                    error_type=type(e).__name__,
                )
                raise RepositoryError(operation_name) from e

            duration_ms = (time.perf_counter() - start_time) * 1000
            if duration_ms > SLOW_QUERY_THRESHOLD_MS:
                set_wide_event_fields(
                    db_slow_query=True,
                    db_operation=operation_name,
                    db_duration_ms=round(duration_ms, 2),
                )
                logger.debug(
                    "db.query.slow",
                    operation=operation_name,
                    duration_ms=round(duration_ms, 2),
                )
            return result

        return wrapper

    return decorator


async def paginate(
    db: AsyncSession,
    stmt: Select[Any],
    *,
    page: int,
    limit: int,
) -> tuple[list[Any], int]:
    """Run a select with LIMIT/OFFSET and return (rows, total count).

    The count query reuses the statement's WHERE clause without ORDER BY.
    """
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar_one()

    offset = (page - 1) * limit
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all()), total
