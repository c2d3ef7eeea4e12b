"""
API Routes

Modular route definitions for the shopbridge API.
"""
from shopbridge.api.routes.health import router as health_router
from shopbridge.api.routes.webhooks import router as webhooks_router
from shopbridge.api.routes.metrics import router as metrics_router
from shopbridge.api.routes.admin import router as admin_router

__all__ = [
    "health_router",
    "webhooks_router",
    "metrics_router",
    "admin_router",
]
