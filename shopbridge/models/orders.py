"""
Storefront Order Models

ShopifyOrder/LineItem parse inbound webhook bodies and Admin API pages.
ProcessedOrderMarker is the idempotency record, one per external order.
"""
import datetime as dt
from enum import StrEnum
from typing import Annotated, List, Optional
from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from shopbridge.models.base import MongoBaseModel, utcnow

# Storefront ids arrive as JSON numbers; keep them as opaque strings
ExternalId = Annotated[str, BeforeValidator(str)]


class SyncSource(StrEnum):
    WEBHOOK = "webhook"
    RECONCILIATION_SYNC = "api_sync"


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[ExternalId] = None
    product_id: Optional[ExternalId] = None
    name: str = "a product"
    title: Optional[str] = None
    price: Optional[str] = None
    quantity: int = 1
    image_url: Optional[str] = None
    product_type: Optional[str] = None
    product_tags: List[str] = []


class ShopifyOrder(BaseModel):
    """Only the fields needed to notify; everything else is ignored."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: ExternalId
    order_number: Optional[ExternalId] = None
    name: Optional[str] = None
    email: Optional[str] = None
    total_price: Optional[str] = None
    currency: Optional[str] = Field(
        None, validation_alias=AliasChoices("currency", "currency_code")
    )
    financial_status: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    line_items: List[LineItem] = []

    @property
    def external_id(self) -> str:
        return self.id

    @property
    def display_number(self) -> str:
        return self.order_number or self.name or self.id

    @property
    def is_paid(self) -> bool:
        return (self.financial_status or "").lower() == "paid"


class ProcessedOrderMarker(MongoBaseModel):
    """
    Idempotency marker for an external order.

    `notification_sent` is decoupled from the marker's existence so an order
    can be recorded as seen without its notification being guaranteed.
    """
    shopify_order_id: str
    order_number: str
    processed_at: dt.datetime = Field(default_factory=utcnow)
    notification_sent: bool = False
    sync_source: SyncSource = SyncSource.WEBHOOK
