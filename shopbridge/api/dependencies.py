"""
FastAPI Dependencies

Reusable dependencies for readiness gating and admin authentication.
"""

import hmac
from fastapi import Request, HTTPException, status, Header
from typing import Optional
from loguru import logger

from shopbridge.config import settings
from shopbridge.message_queue.base import DeliveryStore
from shopbridge.services.ingestion import WebhookIngestionService


def require_service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        logger.warning(f"⏳ Request refused, {name} not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized"
        )
    return service


def get_store(request: Request) -> DeliveryStore:
    """Persistence interface, or 503 while starting up."""
    return require_service(request, "store")


def get_ingestion(request: Request) -> WebhookIngestionService:
    """Webhook ingestion service, or 503 while starting up."""
    return require_service(request, "ingestion")


async def require_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    """
    Dependency guarding admin routes.

    Checks the X-Admin-Token header against ADMIN_API_TOKEN in constant time.

    Raises:
        HTTPException: 401 if the token is missing or wrong,
            403 if no token is configured outside development
    """
    if not settings.admin_api_token:
        if settings.environment == "development":
            logger.warning("⚠️ ADMIN_API_TOKEN not configured, admin routes are open (development only)")
            return
        logger.error("❌ ADMIN_API_TOKEN not configured, refusing admin request")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API not configured"
        )

    if not x_admin_token:
        logger.warning("🚫 Missing X-Admin-Token header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin token"
        )

    if not hmac.compare_digest(x_admin_token.encode(), settings.admin_api_token.encode()):
        logger.warning("🚫 Invalid admin token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token"
        )
