"""
Notification Builders

Turns storefront orders and operator templates into queue-ready messages
with chat-platform embeds.
"""

import datetime as dt
from typing import Any, Dict, List, Optional, Sequence

from shopbridge.config import DEFAULT_CATEGORIES, ProductCategory
from shopbridge.models.base import utcnow
from shopbridge.models.orders import LineItem, ShopifyOrder
from shopbridge.models.queue import (
    AutoDirectMessagePayload,
    Destination,
    OrderNotificationPayload,
    QueuedMessage,
)
from shopbridge.models.settings import MessageTemplate

GENERAL_CATEGORY = ProductCategory(name="General", emoji="🛒", fallback=True)

CATEGORY_COLORS = {
    "Adult Toys": "#ff69b4",
    "Accessories": "#4169e1",
    "General": "#00ff00",
}


def color_to_int(color: Optional[str], default: int = 0x00FF00) -> int:
    """Embed color from a `#rrggbb` string."""
    if not color:
        return default
    try:
        return int(color.lstrip("#"), 16)
    except ValueError:
        return default


def format_price(price: Optional[str]) -> Optional[str]:
    if price is None:
        return None
    try:
        return f"${float(price):.2f}"
    except ValueError:
        return price


def categorize_line_item(
    item: LineItem,
    categories: Sequence[ProductCategory] = DEFAULT_CATEGORIES,
) -> ProductCategory:
    """
    Pick the notification category for a line item.

    Matches product tags first, then product type, then falls back to the
    category flagged as fallback (or General).
    """
    tags = ",".join(item.product_tags).lower()
    if tags:
        for category in categories:
            if any(tag.strip().lower() in tags for tag in category.tags):
                return category

    if item.product_type:
        product_type = item.product_type.lower()
        for category in categories:
            if any(tag.strip().lower() in product_type for tag in category.tags):
                return category

    for category in categories:
        if category.fallback:
            return category
    return GENERAL_CATEGORY


def build_order_embed(
    order: ShopifyOrder,
    item: LineItem,
    category: ProductCategory,
    shop_url: str = "",
) -> Dict[str, Any]:
    """Embed announcing one purchased line item."""
    timestamp = (order.created_at or utcnow()).isoformat()
    embed: Dict[str, Any] = {
        "title": f"🛍️ Someone ordered {item.name}!",
        "description": f"{category.emoji} **{category.name}**",
        "color": color_to_int(CATEGORY_COLORS.get(category.name)),
        "timestamp": timestamp,
        "fields": [],
        "footer": {"text": "New Order"},
    }

    if item.image_url:
        embed["thumbnail"] = {"url": item.image_url}

    if item.product_id and shop_url:
        embed["fields"].append({
            "name": "🔗 View Product",
            "value": f"https://{shop_url}/products/{item.product_id}",
            "inline": False,
        })

    embed["fields"].append({"name": "📦 Product", "value": item.name, "inline": True})
    price = format_price(item.price)
    if price:
        embed["fields"].append({"name": "💰 Price", "value": price, "inline": True})

    return embed


def build_order_notifications(
    order: ShopifyOrder,
    channel_id: str,
    categories: Sequence[ProductCategory] = DEFAULT_CATEGORIES,
    shop_url: str = "",
    priority: int = 0,
    max_attempts: int = 3,
) -> List[QueuedMessage]:
    """
    One OrderNotification per line item, all targeting `channel_id`.

    An order without line items yields no messages.
    """
    messages = []
    for item in order.line_items:
        category = categorize_line_item(item, categories)
        payload = OrderNotificationPayload(
            order_id=order.external_id,
            order_number=order.display_number,
            product_name=item.name,
            product_id=item.product_id,
            price=item.price,
            currency=order.currency,
            image_url=item.image_url,
            category_name=category.name,
            category_emoji=category.emoji,
            embed=build_order_embed(order, item, category, shop_url),
        )
        messages.append(QueuedMessage(
            destination=Destination.channel(channel_id),
            payload=payload,
            priority=priority,
            max_attempts=max_attempts,
        ))
    return messages


def render_template(template: MessageTemplate, now: Optional[dt.datetime] = None) -> Dict[str, Any]:
    """Embed dict for an operator template."""
    embed: Dict[str, Any] = {
        "title": template.title,
        "description": template.description,
        "color": color_to_int(template.color),
        "timestamp": (now or utcnow()).isoformat(),
    }
    if template.image_url:
        embed["image"] = {"url": template.image_url}
    if template.thumbnail_url:
        embed["thumbnail"] = {"url": template.thumbnail_url}
    if template.footer_text:
        embed["footer"] = {"text": template.footer_text}
    if template.button_url:
        embed["fields"] = [{
            "name": f"🔗 {template.button_text or 'Open'}",
            "value": template.button_url,
            "inline": False,
        }]
    return {key: value for key, value in embed.items() if value is not None}


def build_welcome_message(
    user_id: str,
    template: MessageTemplate,
    max_attempts: int = 3,
) -> QueuedMessage:
    return QueuedMessage(
        destination=Destination.user(user_id),
        payload=AutoDirectMessagePayload(
            template_name=template.name,
            embed=render_template(template),
        ),
        max_attempts=max_attempts,
    )
