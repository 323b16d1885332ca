"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from orderdesk.api.audit import router as audit_router
from orderdesk.api.health import router as health_router
from orderdesk.api.orders import router as orders_router
from orderdesk.api.webhooks import router as webhooks_router

__all__ = [
    "audit_router",
    "health_router",
    "orders_router",
    "webhooks_router",
]
