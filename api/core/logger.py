"""Structured logging for the workforce API.

Our own events and stdlib records (uvicorn, sqlalchemy, slowapi) go through
one structlog ProcessorFormatter, so every line carries the same keys:

- ``service`` and ``environment`` on every line
- request-scoped keys (``request_id``, ``requester_id``) bound by the
  request middleware and the requester dependency
- anything passed via ``extra=`` on stdlib loggers

``LOG_FORMAT=json`` selects the JSON renderer used in deployed
environments; the console renderer is the default for local runs.

Usage:
    from core import get_logger
    logger = get_logger(__name__)
    logger.info("booking.approved", booking_id="b_1", approver_id="u_1")
"""

import logging
import os
import sys

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars
from structlog.types import EventDict, Processor, WrappedLogger

__all__ = [
    "bind_contextvars",
    "clear_contextvars",
    "configure_logging",
    "get_logger",
]

# Libraries that log per query or per request at INFO
_NOISY_LOGGERS = ("uvicorn.access", "aiosqlite", "sqlalchemy.engine.Engine")


def _service_context() -> Processor:
    service = os.environ.get("SERVICE_NAME", "workforce-api")
    environment = os.environ.get("ENVIRONMENT", "development")

    def add_service_context(
        _logger: WrappedLogger, _method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", service)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service_context


def configure_logging(
    level: str | None = None, json_output: bool | None = None
) -> None:
    """Route structlog and stdlib logging through one formatter.

    ``level`` and ``json_output`` default to ``LOG_LEVEL`` and
    ``LOG_FORMAT`` from the environment. Safe to call more than once.
    """
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "").lower() == "json"

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.stdlib.ExtraAdder(),
        _service_context(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger for ``name`` (usually ``__name__``)."""
    return structlog.stdlib.get_logger(name)
