from typing import Optional

from shopbridge.models.base import MongoBaseModel

# Feature toggles consulted by producers before enqueueing
ORDERS_ENABLED = "orders_enabled"
AUTO_DM_ENABLED = "auto_dm_enabled"

DEFAULT_SETTINGS = {
    ORDERS_ENABLED: "true",
    AUTO_DM_ENABLED: "true",
}


def is_enabled(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"true", "1", "yes", "on"}


class Setting(MongoBaseModel):
    key: str
    value: str


class MessageTemplate(MongoBaseModel):
    """Operator-editable embed template (the welcome DM uses type `auto_dm`)."""
    name: str
    template_type: str
    title: Optional[str] = None
    description: Optional[str] = None
    color: str = "#00ff00"
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    footer_text: Optional[str] = None
    button_text: Optional[str] = None
    button_url: Optional[str] = None
    is_active: bool = False
    usage_count: int = 0


def default_welcome_template(shop_url: str) -> MessageTemplate:
    return MessageTemplate(
        name="Welcome Message",
        template_type="auto_dm",
        title="🎉 Welcome to the community!",
        description=(
            "Thanks for joining our community! "
            "Check out our latest products and exclusive offers."
        ),
        button_text="Visit Shop",
        button_url=f"https://{shop_url}" if shop_url else None,
        is_active=True,
    )
