"""Request-scoped context for the canonical ``request.completed`` line.

RequestTimingMiddleware opens an event when a request starts; the
requester dependency, routes and services add fields as they learn them
(``requester_id``, ``booking_id``, ``event_type`` ...); the middleware
logs the whole dict once when the response finishes and closes it.

Outside a request (CLI, outbox dispatcher) no event is open and the
setters do nothing.
"""

from contextvars import ContextVar
from typing import Any

_current: ContextVar[dict[str, Any] | None] = ContextVar("wide_event", default=None)


def init_wide_event() -> dict[str, Any]:
    """Open a fresh event for the current async context and return it."""
    event: dict[str, Any] = {}
    _current.set(event)
    return event


def get_wide_event() -> dict[str, Any]:
    """The open event, or a throwaway dict when none is open."""
    event = _current.get()
    return event if event is not None else {}


def get_request_id() -> str | None:
    """Id of the request being served; outbox events use it for correlation."""
    event = _current.get()
    return event.get("request_id") if event is not None else None


def set_wide_event_fields(**fields: Any) -> None:
    event = _current.get()
    if event is not None:
        event.update(fields)


def set_wide_event_field(key: str, value: Any) -> None:
    set_wide_event_fields(**{key: value})


def clear_wide_event() -> None:
    _current.set(None)
