"""
Processed Order Repository
Idempotency markers for storefront orders.
"""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
import datetime as dt

from .base import BaseRepository
from .connection import PROCESSED_ORDERS
from ..models.orders import ProcessedOrderMarker
from ..utils.observability import logger


class OrderRepository(BaseRepository[ProcessedOrderMarker]):
    """
    Repository for processed-order markers.

    The unique index on `shopify_order_id` is what makes marker creation
    at-most-once; a DuplicateKeyError means another writer got there first.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, PROCESSED_ORDERS, ProcessedOrderMarker)

    async def get_by_order_id(self, shopify_order_id: str) -> Optional[ProcessedOrderMarker]:
        return await self.find_one({"shopify_order_id": shopify_order_id})

    async def exists(self, shopify_order_id: str) -> bool:
        return await self.collection.count_documents(
            {"shopify_order_id": shopify_order_id}, limit=1
        ) > 0

    async def insert_if_absent(
        self,
        marker: ProcessedOrderMarker,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> bool:
        """
        Insert a marker.

        Returns:
            True if inserted, False if the order was already marked
        """
        try:
            await self.create(marker, session=session)
            return True
        except DuplicateKeyError:
            logger.debug(f"Order {marker.shopify_order_id} already marked as processed")
            return False

    async def delete_by_order_id(self, shopify_order_id: str) -> bool:
        result = await self.collection.delete_one({"shopify_order_id": shopify_order_id})
        return result.deleted_count > 0

    async def count_since(self, since: dt.datetime) -> int:
        return await self.count({"processed_at": {"$gte": since}})

    async def latest(self) -> Optional[ProcessedOrderMarker]:
        return await self.find_one({}, sort=[("processed_at", -1)])
