"""Route handlers for the Web API."""

from smartpromptiq.web.routes.health import router as health_router
from smartpromptiq.web.routes.auth import router as auth_router
from smartpromptiq.web.routes.academy import router as academy_router
from smartpromptiq.web.routes.billing import router as billing_router
from smartpromptiq.web.routes.generate import router as generate_router
from smartpromptiq.web.routes.experiments import router as experiments_router
from smartpromptiq.web.routes.system import router as system_router

__all__ = [
    "health_router",
    "auth_router",
    "academy_router",
    "billing_router",
    "generate_router",
    "experiments_router",
    "system_router",
]
