"""slowapi limiter shared by all routers.

Limits are keyed by requester when the identity headers were resolved and
by client address otherwise. ``memory://`` storage counts per process; any
deployment with more than one worker needs ``RATELIMIT_STORAGE_URI`` set
to a Redis URL.
"""

import logging

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from core.config import get_settings

logger = logging.getLogger(__name__)

READ_LIMIT = "60/minute"
WRITE_LIMIT = "30/minute"
DEFAULT_LIMIT = "100/minute"


def _get_request_identifier(request: Request) -> str:
    """``user:<id>`` once the requester dependency ran, else the client IP.

    FastAPI resolves route dependencies before slowapi's endpoint wrapper
    checks the limit, so authenticated routes are keyed per user.
    """
    requester_id = getattr(request.state, "requester_id", None)
    return f"user:{requester_id}" if requester_id else get_remote_address(request)


def _build_limiter() -> Limiter:
    settings = get_settings()
    storage_uri = settings.ratelimit_storage_uri
    if settings.is_deployed and storage_uri == "memory://":
        logger.warning(
            "ratelimit.memory_storage",
            extra={
                "environment": settings.environment,
                "hint": "Set RATELIMIT_STORAGE_URI to a Redis URL",
            },
        )
    return Limiter(
        key_func=_get_request_identifier,
        default_limits=[DEFAULT_LIMIT],
        storage_uri=storage_uri,
        # Redis outages degrade to per-process counting instead of 500s
        in_memory_fallback_enabled=storage_uri.startswith("redis://"),
        key_prefix="wf:",
    )


limiter = _build_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """429 in the standard error envelope, with ``Retry-After``."""
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "identifier": _get_request_identifier(request),
            "limit": str(exc.detail),
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "data": None,
            "error": "Rate limit exceeded. Please slow down.",
            "code": "RATE_LIMITED",
        },
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )
