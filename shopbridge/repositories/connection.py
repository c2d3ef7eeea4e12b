"""
MongoDB Connection Management
Singleton Motor client with connection pooling and lifecycle management.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from typing import Optional
from ..config import settings
from ..utils.observability import logger

MESSAGE_QUEUE = "message_queue"
PROCESSED_ORDERS = "processed_orders"
MEMBER_TRACKING = "member_tracking"
SETTINGS = "settings"
MESSAGE_TEMPLATES = "message_templates"


class DatabaseManager:
    """
    Singleton MongoDB client manager with async Motor.
    Handles connection lifecycle, pooling, and graceful shutdown.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None

    def __new__(cls) -> "DatabaseManager":
        """Enforce singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def connect(self) -> None:
        """
        Initialize MongoDB connection with configured pool settings.
        Idempotent - safe to call multiple times.
        """
        if self._client:
            if await self.ping():
                logger.debug("Reusing healthy MongoDB connection")
                return
            logger.warning("MongoDB connection lost. Rebuilding client...")
            self._client = None
            self._database = None

        logger.info(
            f"Connecting to MongoDB at {settings.mongodb_uri}",
            extra={
                "database": settings.mongodb_database,
                "max_pool_size": settings.mongodb_max_pool_size,
                "environment": settings.environment
            }
        )
        # tz_aware keeps stored UTC datetimes comparable with utcnow()
        self._client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
            tz_aware=True,
        )

        self._database = self._client[settings.mongodb_database]

    async def disconnect(self) -> None:
        """
        Close MongoDB connection and cleanup resources.
        Idempotent - safe to call multiple times.
        """
        if self._client is None:
            logger.debug("MongoDB client already disconnected")
            return

        logger.info("Closing MongoDB connection")
        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed")

    async def ping(self) -> bool:
        """True if the server answers a ping."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except (RuntimeError, PyMongoError) as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """
        Get the database instance.
        Raises RuntimeError if not connected.
        """
        if self._database is None:
            raise RuntimeError(
                "Database not connected. Call await db_manager.connect() first."
            )
        return self._database

    @property
    def client(self) -> AsyncIOMotorClient:
        """
        Get the Motor client instance.
        Raises RuntimeError if not connected.
        """
        if self._client is None:
            raise RuntimeError(
                "Database client not connected. Call await db_manager.connect() first."
            )
        return self._client

    async def create_indexes(self, database: Optional[AsyncIOMotorDatabase] = None) -> None:
        """
        Create all required indexes for optimal query performance.
        Should be called during application startup.

        Args:
            database: Target database (defaults to the connected one)
        """
        db = database if database is not None else self.database

        logger.info("Creating MongoDB indexes")

        # Drain selection: pending rows by schedule, then priority/age order
        await db[MESSAGE_QUEUE].create_index(
            [("status", 1), ("scheduled_for", 1), ("priority", -1), ("created_at", 1)],
            name="idx_queue_due"
        )
        await db[MESSAGE_QUEUE].create_index(
            [("status", 1), ("created_at", 1)],
            name="idx_queue_retention"
        )

        # Idempotency markers: one per external order
        await db[PROCESSED_ORDERS].create_index(
            "shopify_order_id", unique=True, name="idx_shopify_order_unique"
        )
        await db[PROCESSED_ORDERS].create_index(
            "processed_at", name="idx_processed_at"
        )

        await db[MEMBER_TRACKING].create_index("user_id", unique=True, name="idx_user_id_unique")
        await db[MEMBER_TRACKING].create_index(
            [("still_in_server", 1), ("welcome_dm_sent", 1), ("joined_at", 1)],
            name="idx_auto_dm_candidates"
        )

        await db[SETTINGS].create_index("key", unique=True, name="idx_setting_key_unique")
        await db[MESSAGE_TEMPLATES].create_index(
            [("template_type", 1), ("is_active", 1)],
            name="idx_template_active"
        )

        logger.info("MongoDB indexes created successfully")


# Singleton instance
db_manager = DatabaseManager()

