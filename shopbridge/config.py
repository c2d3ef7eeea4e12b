"""
Centralized Configuration System
Environment-aware settings for the delivery engine, storefront and chat platform.
"""
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Literal, Optional


class ProductCategory(BaseModel):
    """Category used to decorate order notifications."""
    name: str
    emoji: str
    tags: List[str] = []
    fallback: bool = False


DEFAULT_CATEGORIES = [
    ProductCategory(name="Adult Toys", emoji="🪄", tags=["adult", "toy", "intimate", "adult-toys"]),
    ProductCategory(name="Accessories", emoji="🛍️", tags=["accessory", "accessories", "addon"]),
    ProductCategory(name="General", emoji="🛒", fallback=True),
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # ENVIRONMENT & LOGGING
    # ============================================
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # PERSISTENCE
    # ============================================
    storage_backend: Literal["mongodb", "memory"] = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "shopbridge"
    mongodb_max_pool_size: int = 20
    mongodb_min_pool_size: int = 1
    mongodb_server_selection_timeout_ms: int = 5000
    mongodb_use_transactions: bool = False  # Requires a replica set

    # ============================================
    # CHAT PLATFORM (Discord REST API)
    # ============================================
    discord_bot_token: Optional[str] = None
    discord_api_base_url: str = "https://discord.com/api/v10"
    discord_guild_id: Optional[str] = None
    notification_channel_id: str = ""
    verified_role_id: Optional[str] = None
    closed_dms_role_id: Optional[str] = None
    order_reactions: List[str] = ["🔥", "❤️", "🛍️"]
    reaction_delay_seconds: float = 15.0

    # ============================================
    # STOREFRONT (Shopify Admin API + webhooks)
    # ============================================
    shopify_shop_url: str = ""
    shopify_access_token: Optional[str] = None
    shopify_api_version: str = "2024-01"
    shopify_webhook_secret: Optional[str] = None
    webhook_allow_unsigned: bool = False  # Ignored in production

    # ============================================
    # OUTBOUND QUEUE
    # ============================================
    queue_poll_interval_seconds: float = 30.0
    queue_batch_size: int = 10
    queue_default_max_attempts: int = 3
    queue_delivery_timeout_seconds: float = 10.0
    queue_retry_base_seconds: float = 30.0
    queue_retry_max_seconds: float = 900.0
    queue_retention_days: int = 30
    queue_purge_interval_hours: float = 24.0
    order_notification_priority: int = 2

    # ============================================
    # OFFLINE RECONCILIATION SYNC
    # ============================================
    sync_window_hours: int = 24
    sync_inter_order_delay_seconds: float = 2.0
    sync_page_limit: int = 250
    sync_preview_ttl_seconds: int = 900

    # ============================================
    # MEMBER ENGAGEMENT (welcome DM)
    # ============================================
    auto_dm_delay_minutes: int = 65
    auto_dm_sweep_interval_seconds: float = 60.0
    auto_dm_max_per_sweep: int = 20
    auto_dm_send_delay_seconds: float = 1.0
    auto_dm_require_verified: bool = True

    # ============================================
    # ADMIN CONSOLE
    # ============================================
    admin_api_token: Optional[str] = None
    broadcast_stagger_seconds: float = 2.0

    # ============================================
    # HTTP SERVER
    # ============================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    product_categories: List[ProductCategory] = DEFAULT_CATEGORIES

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def unsigned_webhooks_permitted(self) -> bool:
        """Pass-through verification is only ever allowed outside production."""
        return self.webhook_allow_unsigned and not self.is_production


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
