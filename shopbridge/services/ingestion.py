"""
Webhook Ingestion Service

Verifies storefront webhooks, deduplicates orders against processed-order
markers and enqueues one notification per purchased line item. The same
order path is reused by reconciliation sync.
"""

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from shopbridge.config import DEFAULT_CATEGORIES, ProductCategory
from shopbridge.errors import AuthenticationError, NotReadyError, ValidationError
from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.orders import ProcessedOrderMarker, ShopifyOrder, SyncSource
from shopbridge.models.settings import ORDERS_ENABLED, is_enabled
from shopbridge.services.notifications import build_order_notifications
from shopbridge.utils.observability import log_business_event, logger
from shopbridge.utils.webhook_signature import WebhookSignatureVerifier

ORDER_TOPICS = ("orders/create", "orders/updated")
FULFILLED_TOPIC = "orders/fulfilled"
PRODUCT_TOPICS = ("products/create", "products/update")


class IngestionOutcome(StrEnum):
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    PENDING_PAYMENT = "pending_payment"
    DISABLED = "disabled"
    INFORMATIONAL = "informational"
    IGNORED = "ignored"


@dataclass
class IngestionResult:
    """What an accepted event led to."""
    outcome: IngestionOutcome
    order_id: Optional[str] = None
    messages_enqueued: int = 0


class WebhookIngestionService:
    """
    Ingestion pipeline: verify -> parse -> idempotency check -> record.

    Boundary failures raise ValidationError (400) or AuthenticationError
    (401). Storage failures propagate so the caller answers 500 and the
    storefront redelivers.
    """

    def __init__(
        self,
        store: DeliveryStore,
        notification_channel_id: str,
        webhook_secret: Optional[str] = None,
        allow_unsigned: bool = False,
        categories: Sequence[ProductCategory] = DEFAULT_CATEGORIES,
        shop_url: str = "",
        priority: int = 2,
        max_attempts: int = 3,
    ):
        """
        Initialize the ingestion service.

        Args:
            store: Persistence interface
            notification_channel_id: Channel order notifications go to
            webhook_secret: Shared HMAC secret
            allow_unsigned: Accept unsigned webhooks when no secret is set
                (callers must never enable this in production)
            categories: Product categories for notification decoration
            shop_url: Storefront domain used for product links
            priority: Queue priority of order notifications
            max_attempts: Delivery attempts per notification
        """
        self.store = store
        self.notification_channel_id = notification_channel_id
        self.allow_unsigned = allow_unsigned
        self.categories = list(categories)
        self.shop_url = shop_url
        self.priority = priority
        self.max_attempts = max_attempts
        self._verifier = WebhookSignatureVerifier(webhook_secret) if webhook_secret else None

    @classmethod
    def from_settings(cls, store: DeliveryStore, settings) -> "WebhookIngestionService":
        return cls(
            store=store,
            notification_channel_id=settings.notification_channel_id,
            webhook_secret=settings.shopify_webhook_secret,
            allow_unsigned=settings.unsigned_webhooks_permitted,
            categories=settings.product_categories,
            shop_url=settings.shopify_shop_url,
            priority=settings.order_notification_priority,
            max_attempts=settings.queue_default_max_attempts,
        )

    def _reject(self, topic: Optional[str], reason: str, error_class=AuthenticationError):
        log_business_event("webhook_rejected", topic or "unknown", reason=reason)
        return error_class(reason)

    def verify(self, raw_body: bytes, signature: Optional[str], topic: Optional[str] = None) -> None:
        """
        Authenticate a webhook body.

        Raises:
            ValidationError: signature header missing
            AuthenticationError: secret unset (and pass-through not allowed) or mismatch
        """
        if self._verifier is None:
            if self.allow_unsigned:
                logger.warning(f"Webhook secret not configured, accepting unsigned {topic} event")
                return
            raise self._reject(topic, "Webhook secret is not configured")

        if not signature:
            raise self._reject(topic, "Missing signature header", ValidationError)

        if not self._verifier.verify(raw_body, signature):
            raise self._reject(topic, "Invalid webhook signature")

    async def handle(
        self,
        raw_body: bytes,
        signature: Optional[str],
        topic: Optional[str],
    ) -> IngestionResult:
        """
        Process one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature: Signature header value
            topic: Topic header value

        Returns:
            IngestionResult describing what happened

        Raises:
            ValidationError: missing headers or undecodable body
            AuthenticationError: signature failure
        """
        if not topic:
            raise self._reject(topic, "Missing topic header", ValidationError)

        self.verify(raw_body, signature, topic)

        try:
            data = json.loads(raw_body)
        except (UnicodeDecodeError, ValueError):
            raise self._reject(topic, "Webhook body is not valid JSON", ValidationError)

        if topic in ORDER_TOPICS or topic == FULFILLED_TOPIC:
            try:
                order = ShopifyOrder.model_validate(data)
            except PydanticValidationError as e:
                raise self._reject(topic, f"Order payload is malformed: {e.error_count()} errors", ValidationError)

            return await self.process_order(
                order,
                source=SyncSource.WEBHOOK,
                require_paid=topic != FULFILLED_TOPIC,
            )

        if topic in PRODUCT_TOPICS:
            title = data.get("title") if isinstance(data, dict) else None
            logger.info(f"📦 Product event {topic}: {title}", extra={"topic": topic})
            return IngestionResult(outcome=IngestionOutcome.INFORMATIONAL)

        logger.info(f"Unhandled webhook topic {topic}, acknowledged", extra={"topic": topic})
        return IngestionResult(outcome=IngestionOutcome.IGNORED)

    async def process_order(
        self,
        order: ShopifyOrder,
        source: SyncSource = SyncSource.WEBHOOK,
        require_paid: bool = True,
    ) -> IngestionResult:
        """
        Record an order and enqueue its notifications exactly once.

        Args:
            order: Parsed storefront order
            source: Where the order came from (webhook or reconciliation)
            require_paid: Skip orders whose payment is still pending

        Returns:
            IngestionResult; RECORDED only when a new marker was written
        """
        order_id = order.external_id

        if require_paid and not order.is_paid:
            logger.info(
                f"⏳ Order {order.display_number} awaiting payment ({order.financial_status}), not announced",
                extra={"order_id": order_id, "financial_status": order.financial_status},
            )
            return IngestionResult(outcome=IngestionOutcome.PENDING_PAYMENT, order_id=order_id)

        if not is_enabled(await self.store.get_setting(ORDERS_ENABLED, "true")):
            logger.info(f"Order notifications disabled, acknowledging order {order_id}")
            return IngestionResult(outcome=IngestionOutcome.DISABLED, order_id=order_id)

        if await self.store.is_order_processed(order_id):
            logger.info(f"Order {order_id} already processed, skipping", extra={"order_id": order_id})
            return IngestionResult(outcome=IngestionOutcome.DUPLICATE, order_id=order_id)

        if order.line_items and not self.notification_channel_id:
            raise NotReadyError("Notification channel is not configured")

        messages = build_order_notifications(
            order,
            channel_id=self.notification_channel_id,
            categories=self.categories,
            shop_url=self.shop_url,
            priority=self.priority,
            max_attempts=self.max_attempts,
        )
        marker = ProcessedOrderMarker(
            shopify_order_id=order_id,
            order_number=order.display_number,
            notification_sent=bool(messages),
            sync_source=source,
        )

        if not await self.store.record_order(marker, messages):
            logger.info(f"Order {order_id} recorded concurrently, skipping", extra={"order_id": order_id})
            return IngestionResult(outcome=IngestionOutcome.DUPLICATE, order_id=order_id)

        log_business_event(
            "order_recorded",
            order_id,
            order_number=order.display_number,
            source=str(source),
            notifications=len(messages),
        )
        return IngestionResult(
            outcome=IngestionOutcome.RECORDED,
            order_id=order_id,
            messages_enqueued=len(messages),
        )
