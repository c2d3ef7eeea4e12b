"""
MongoDB Delivery Store
DeliveryStore implementation backed by the per-collection repositories.
"""
from typing import Any, List, Optional, Sequence
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
import datetime as dt

from .members import MemberRepository
from .messages import MessageRepository
from .orders import OrderRepository
from .settings import SettingsRepository, TemplateRepository
from ..message_queue.base import DeliveryStore
from ..models.base import utcnow
from ..models.members import MemberRecord
from ..models.orders import ProcessedOrderMarker
from ..models.queue import MessageStatus, QueuedMessage, QueueStats
from ..models.settings import MessageTemplate
from ..utils.observability import logger


class MongoDeliveryStore(DeliveryStore):
    """
    MongoDB-backed store.

    Single-document writes are atomic on their own. `record_order` groups
    the marker and its messages either in a multi-document transaction
    (replica set required) or, without transactions, by deleting whatever
    was written when a later write fails.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
        use_transactions: bool = False,
    ):
        """
        Initialize the store.

        Args:
            database: Motor database instance
            client: Motor client, required when use_transactions is set
            use_transactions: Group record_order writes in a transaction
        """
        super().__init__()
        if use_transactions and client is None:
            raise ValueError("a client is required for transactional writes")

        self._client = client
        self._use_transactions = use_transactions
        self.messages = MessageRepository(database)
        self.orders = OrderRepository(database)
        self.members = MemberRepository(database)
        self.settings = SettingsRepository(database)
        self.templates = TemplateRepository(database)

    async def ping(self) -> bool:
        try:
            await self.messages.database.command("ping")
            return True
        except Exception as e:
            logger.warning(f"Store ping failed: {e}")
            return False

    # ==================== Message queue ====================

    async def enqueue(self, message: QueuedMessage) -> str:
        message.status = MessageStatus.PENDING
        created = await self.messages.create(message)
        self._notify_enqueued()
        return created.id

    async def enqueue_many(self, messages) -> List[str]:
        batch = list(messages)
        for message in batch:
            message.status = MessageStatus.PENDING
        created = await self.messages.bulk_create(batch)
        if created:
            self._notify_enqueued()
        return [m.id for m in created]

    async def get_message(self, message_id: str) -> Optional[QueuedMessage]:
        return await self.messages.find_by_id(message_id)

    async def fetch_due(self, limit: int, now: dt.datetime) -> List[QueuedMessage]:
        return await self.messages.fetch_due(limit, now)

    async def mark_sent(self, message_id: str, sent_at: dt.datetime, attempts: int) -> bool:
        return await self.messages.mark_sent(message_id, sent_at, attempts)

    async def mark_failed(self, message_id: str, reason: str, attempts: int) -> bool:
        return await self.messages.mark_failed(message_id, reason, attempts)

    async def record_retry(self, message_id: str, reason: str, next_attempt_at: dt.datetime) -> bool:
        return await self.messages.record_retry(message_id, reason, next_attempt_at)

    async def purge_older_than(
        self,
        retention: dt.timedelta,
        statuses: Sequence[MessageStatus],
        now: Optional[dt.datetime] = None,
    ) -> int:
        return await self.messages.purge_older_than((now or utcnow()) - retention, statuses)

    async def queue_stats(self) -> QueueStats:
        return await self.messages.stats()

    async def list_failed(self, limit: int = 50) -> List[QueuedMessage]:
        return await self.messages.list_failed(limit)

    # ==================== Processed orders ====================

    async def is_order_processed(self, shopify_order_id: str) -> bool:
        return await self.orders.exists(shopify_order_id)

    async def mark_order_processed(self, marker: ProcessedOrderMarker) -> bool:
        return await self.orders.insert_if_absent(marker)

    async def record_order(
        self,
        marker: ProcessedOrderMarker,
        messages: Sequence[QueuedMessage],
    ) -> bool:
        batch = list(messages)
        if self._use_transactions:
            written = await self._record_order_transactional(marker, batch)
        else:
            written = await self._record_order_compensating(marker, batch)

        if written and batch:
            self._notify_enqueued()
        return written

    async def _record_order_transactional(
        self,
        marker: ProcessedOrderMarker,
        messages: List[QueuedMessage],
    ) -> bool:
        try:
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    await self.orders.create(marker, session=session)
                    await self.messages.bulk_create(messages, session=session)
        except DuplicateKeyError:
            logger.debug(f"Order {marker.shopify_order_id} already marked as processed")
            return False
        return True

    async def _record_order_compensating(
        self,
        marker: ProcessedOrderMarker,
        messages: List[QueuedMessage],
    ) -> bool:
        if not await self.orders.insert_if_absent(marker):
            return False

        try:
            await self.messages.bulk_create(messages)
        except Exception:
            # bulk_create assigns ids up front, so partial inserts are known
            written_ids = [m.id for m in messages if m.id]
            logger.error(
                f"Enqueue failed for order {marker.shopify_order_id}, rolling back marker",
                extra={"order_id": marker.shopify_order_id, "messages": len(messages)},
            )
            await self.messages.delete_by_ids(written_ids)
            await self.orders.delete_by_order_id(marker.shopify_order_id)
            raise
        return True

    async def get_order_marker(self, shopify_order_id: str) -> Optional[ProcessedOrderMarker]:
        return await self.orders.get_by_order_id(shopify_order_id)

    async def count_processed_since(self, since: dt.datetime) -> int:
        return await self.orders.count_since(since)

    async def last_processed_order(self) -> Optional[ProcessedOrderMarker]:
        return await self.orders.latest()

    # ==================== Members ====================

    async def get_member(self, user_id: str) -> Optional[MemberRecord]:
        return await self.members.get_by_user_id(user_id)

    async def upsert_member(self, member: MemberRecord) -> MemberRecord:
        return await self.members.upsert(member)

    async def update_member_fields(self, user_id: str, **fields: Any) -> bool:
        return await self.members.update_by_user_id(user_id, **fields)

    async def list_members_for_auto_dm(
        self,
        limit: int,
        require_verified: bool = True,
        joined_before: Optional[dt.datetime] = None,
    ) -> List[MemberRecord]:
        return await self.members.list_auto_dm_candidates(limit, require_verified, joined_before)

    async def list_reachable_members(self, limit: int = 1000) -> List[MemberRecord]:
        return await self.members.list_reachable(limit)

    # ==================== Settings & templates ====================

    async def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = await self.settings.get_value(key)
        return default if value is None else value

    async def set_setting(self, key: str, value: str) -> None:
        await self.settings.set_value(key, value)

    async def all_settings(self) -> dict[str, str]:
        return await self.settings.all_values()

    async def get_active_template(self, template_type: str) -> Optional[MessageTemplate]:
        return await self.templates.get_active(template_type)

    async def save_template(self, template: MessageTemplate) -> MessageTemplate:
        return await self.templates.save(template)

    async def increment_template_usage(self, template_id: str) -> None:
        await self.templates.increment_usage(template_id)
