"""
Health and Readiness Endpoints

Kubernetes-compatible health probes for load balancers and orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

router = APIRouter(tags=["Health"])

# API version - single source of truth
API_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if service is running.
    Used by load balancers and monitoring systems.
    """
    return {
        "status": "healthy",
        "service": "shopbridge",
        "version": API_VERSION
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness probe - checks if service can handle requests.

    Verifies:
    - Delivery services are initialized
    - The store answers a ping

    Returns 200 if ready, 503 if not ready.
    """
    store = getattr(request.app.state, "store", None)
    if store is None or getattr(request.app.state, "ingestion", None) is None:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": "Services not initialized"
            }
        )

    if not await store.ping():
        logger.error("Readiness check failed: store unreachable")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": "Store unreachable"
            }
        )

    drainer = getattr(request.app.state, "drainer", None)
    return {
        "status": "ready",
        "store": "connected",
        "drain_loop": "running" if drainer and drainer.is_running else "stopped"
    }


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "shopbridge",
        "version": API_VERSION,
        "endpoints": {
            "health": "/health",
            "ready": "/ready",
            "shopify_webhook": "/webhooks/shopify (POST)",
            "queue_metrics": "/metrics/queue",
            "admin": "/admin/*"
        }
    }
