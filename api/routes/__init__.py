"""API route modules."""

from .bookings_routes import router as bookings_router
from .expenses_routes import router as expenses_router
from .health_routes import router as health_router
from .locations_routes import router as locations_router
from .organizations_routes import me_router
from .organizations_routes import router as organizations_router
from .staff_routes import router as staff_router
from .staff_routes import skills_router

__all__ = [
    "bookings_router",
    "expenses_router",
    "health_router",
    "locations_router",
    "me_router",
    "organizations_router",
    "skills_router",
    "staff_router",
]
