"""Cross-cutting infrastructure for the workforce API.

    from core import get_logger, set_wide_event_fields
"""

from core.logger import bind_contextvars, clear_contextvars, get_logger
from core.wide_event import (
    get_wide_event,
    set_wide_event_field,
    set_wide_event_fields,
)

__all__ = [
    "bind_contextvars",
    "clear_contextvars",
    "get_logger",
    "get_wide_event",
    "set_wide_event_field",
    "set_wide_event_fields",
]
