"""
Webhook Endpoints

Storefront webhook handler. The body is read as raw bytes so the HMAC is
checked against exactly what was sent.
"""
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from loguru import logger
from typing import Optional

from shopbridge.api.dependencies import get_ingestion
from shopbridge.errors import ShopBridgeError
from shopbridge.services.ingestion import WebhookIngestionService

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/shopify")
async def shopify_webhook(
    request: Request,
    ingestion: WebhookIngestionService = Depends(get_ingestion),
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    x_shopify_topic: Optional[str] = Header(None),
):
    """
    Storefront webhook endpoint.

    Flow:
    1. Verify HMAC-SHA256 signature over the raw body
    2. Parse the event and route it by topic
    3. For paid orders: check the processed-order marker, then record the
       marker and one notification per line item together
    4. Return 200 so the storefront stops redelivering

    Responses:
        200: accepted or no-op
        400: missing headers or undecodable body
        401: signature failure
        503: not initialized
        500: unexpected failure (storefront will redeliver)
    """
    raw_body = await request.body()

    try:
        result = await ingestion.handle(raw_body, x_shopify_hmac_sha256, x_shopify_topic)
    except ShopBridgeError:
        raise
    except Exception as e:
        logger.error(
            f"❌ Webhook processing failed: {e}",
            extra={"topic": x_shopify_topic, "error": str(e)},
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "error": "Internal error processing webhook"
            }
        )

    logger.info(
        f"Webhook {x_shopify_topic} handled: {result.outcome}",
        extra={
            "topic": x_shopify_topic,
            "order_id": result.order_id,
            "messages_enqueued": result.messages_enqueued
        }
    )

    return {
        "status": "accepted",
        "outcome": str(result.outcome),
        "order_id": result.order_id,
        "messages_enqueued": result.messages_enqueued
    }
