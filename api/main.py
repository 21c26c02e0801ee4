"""FastAPI application for the workforce API."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import fastapi
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import get_settings
from core.database import (
    create_engine,
    create_session_maker,
    dispose_engine,
    init_db,
)
from core.logger import configure_logging
from core.middleware import SecurityHeadersMiddleware
from core.ratelimit import limiter, rate_limit_exceeded_handler
from core.telemetry import RequestTimingMiddleware
from routes import (
    bookings_router,
    expenses_router,
    health_router,
    locations_router,
    me_router,
    organizations_router,
    skills_router,
    staff_router,
)
from services.errors import GENERIC_ERROR_MESSAGE, ServiceError, ValidationError
from services.events_service import outbox_dispatch_loop

configure_logging()
logger = logging.getLogger(__name__)


def _envelope(
    status_code: int,
    message: str,
    code: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {
        "success": False,
        "data": None,
        "error": message,
        "code": code,
    }
    if details is not None:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render typed service errors in the response envelope."""
    if not isinstance(exc, ServiceError):
        return _envelope(500, GENERIC_ERROR_MESSAGE, "INTERNAL_ERROR")

    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "service.error",
        extra={
            "error_code": exc.code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=exc.status_code >= 500,
    )
    details = exc.details if isinstance(exc, ValidationError) else None
    return _envelope(exc.status_code, exc.message, exc.code, details)


async def validation_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Malformed requests are reported as 400 VALIDATION_ERROR."""
    if not isinstance(exc, RequestValidationError):
        return _envelope(500, GENERIC_ERROR_MESSAGE, "INTERNAL_ERROR")

    logger.warning(
        "request.validation_error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_count": len(exc.errors()),
        },
    )
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"][1:]) or None,
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return _envelope(400, "Invalid request", "VALIDATION_ERROR", details)


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StarletteHTTPException):
        return _envelope(500, GENERIC_ERROR_MESSAGE, "INTERNAL_ERROR")

    code = "UNAUTHORIZED" if exc.status_code == 401 else f"HTTP_{exc.status_code}"
    return _envelope(
        exc.status_code,
        str(exc.detail),
        code,
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unhandled exceptions."""
    logger.exception(
        "unhandled.exception",
        extra={
            "exc_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return _envelope(500, GENERIC_ERROR_MESSAGE, "INTERNAL_ERROR")


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    """Create DB engine at startup, start the outbox dispatcher, dispose on
    shutdown."""
    settings = get_settings()
    app.state.engine = create_engine()
    app.state.session_maker = create_session_maker(app.state.engine)

    app.state.init_done = False
    app.state.init_error = None

    try:
        await init_db(app.state.engine)
        app.state.init_done = True
        logger.info("init.complete")
    except TimeoutError:
        logger.error(
            "init.timeout",
            extra={"hint": "Startup hung, check DB connectivity"},
        )
        raise RuntimeError("Application startup timed out")
    except Exception as e:
        app.state.init_error = str(e)
        logger.error("init.failed", extra={"error": str(e)}, exc_info=True)
        raise

    background_tasks: list[asyncio.Task[None]] = []
    if settings.outbox_dispatch_enabled:
        background_tasks.append(
            asyncio.create_task(outbox_dispatch_loop(app.state.session_maker))
        )

    try:
        yield
    finally:
        for task in background_tasks:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("background.task.failed")

        await dispose_engine(app.state.engine)


_settings = get_settings()
_docs_enabled = _settings.docs_enabled

app = fastapi.FastAPI(
    title="Workforce API",
    version=_settings.service_version,
    lifespan=lifespan,
    docs_url="/docs" if _docs_enabled else None,
    redoc_url="/redoc" if _docs_enabled else None,
    openapi_url="/openapi.json" if _docs_enabled else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(SecurityHeadersMiddleware, hsts=_settings.is_deployed)

if _settings.allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-User-Id",
            "X-User-Role",
            "X-Organization-Id",
            "X-Request-Id",
        ],
        expose_headers=["X-Request-Duration-Ms", "X-Request-Id"],
        max_age=600,
    )

# Outermost, so the canonical log line covers every other middleware.
app.add_middleware(
    RequestTimingMiddleware,
    service_name=_settings.service_name,
    service_version=_settings.service_version,
    slow_request_ms=_settings.slow_request_threshold_ms,
)

app.include_router(health_router)
app.include_router(organizations_router)
app.include_router(me_router)
app.include_router(locations_router)
app.include_router(bookings_router)
app.include_router(staff_router)
app.include_router(skills_router)
app.include_router(expenses_router)
