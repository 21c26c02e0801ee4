"""Liveness, readiness and detailed health endpoints.

These sit outside ``/api``, are not wrapped in the response envelope, and
need no requester headers so orchestrator probes can call them.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from starlette import status

from core.config import get_settings
from core.database import check_db_connection, comprehensive_health_check
from core.ratelimit import limiter
from repositories.outbox_repository import OutboxRepository
from schemas import (
    DetailedHealthResponse,
    HealthResponse,
    OutboxBacklogResponse,
    PoolStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _unavailable(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe. Never touches the database."""
    return HealthResponse(status="healthy", service=get_settings().service_name)


async def _outbox_backlog(request: Request) -> OutboxBacklogResponse | None:
    settings = get_settings()
    try:
        async with request.app.state.session_maker() as session:
            backlog = await OutboxRepository(session).backlog(
                settings.outbox_max_attempts
            )
    except Exception:
        logger.warning("health.outbox_backlog.failed", exc_info=True)
        return None
    return OutboxBacklogResponse(**backlog._asdict())


@router.get("/health/detailed", response_model=DetailedHealthResponse)
@limiter.limit("30/minute")
async def health_detailed(request: Request) -> DetailedHealthResponse:
    """Database reachability, pool counters and the outbox backlog.

    Always 200. ``status`` is "unhealthy" when the database is down, and
    ``outbox.exhausted`` counts events that will not be retried.
    """
    settings = get_settings()
    result = await comprehensive_health_check(request.app.state.engine)
    pool = result["pool"]

    return DetailedHealthResponse(
        status="healthy" if result["database"] else "unhealthy",
        service=settings.service_name,
        version=settings.service_version,
        database=result["database"],
        pool=PoolStatusResponse(**pool._asdict()) if pool else None,
        outbox=await _outbox_backlog(request) if result["database"] else None,
    )


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"description": "Startup failed or database unreachable"}},
)
@limiter.limit("30/minute")
async def ready(request: Request) -> HealthResponse:
    """Readiness probe: 200 once startup finished and the database answers."""
    state = request.app.state
    init_error = getattr(state, "init_error", None)
    if init_error:
        raise _unavailable(f"Initialization failed: {init_error}")
    if not getattr(state, "init_done", False):
        raise _unavailable("Starting")

    try:
        await check_db_connection(state.engine)
    except Exception as e:
        raise _unavailable("Database unavailable") from e

    return HealthResponse(status="ready", service=get_settings().service_name)
