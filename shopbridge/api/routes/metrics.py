"""
Metrics Endpoints

Queue statistics for observability.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from shopbridge.api.dependencies import get_store
from shopbridge.message_queue.base import DeliveryStore

router = APIRouter(tags=["Metrics"])


@router.get("/metrics/queue")
async def queue_metrics(store: DeliveryStore = Depends(get_store)):
    """
    Get outbound queue counts.

    Returns:
        total, pending, sent and failed message counts
    """
    try:
        stats = await store.queue_stats()
        return stats.model_dump()
    except Exception as e:
        logger.error(f"Failed to get queue metrics: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": str(e)}
        )
