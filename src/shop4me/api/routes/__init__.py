"""API routes."""

from shop4me.api.routes.admin import router as admin_router
from shop4me.api.routes.callbacks import router as callbacks_router
from shop4me.api.routes.health import router as health_router
from shop4me.api.routes.orders import router as orders_router
from shop4me.api.routes.reconciliation import router as reconciliation_router

__all__ = [
    "admin_router",
    "callbacks_router",
    "health_router",
    "orders_router",
    "reconciliation_router",
]
