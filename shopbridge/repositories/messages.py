"""
Message Queue Repository
Queue-specific persistence: due selection and guarded status transitions.
"""
from typing import List, Optional, Sequence
from motor.motor_asyncio import AsyncIOMotorDatabase
import datetime as dt

from .base import BaseRepository, to_object_id
from .connection import MESSAGE_QUEUE
from ..models.queue import MessageStatus, QueuedMessage, QueueStats

PENDING = MessageStatus.PENDING.value


class MessageRepository(BaseRepository[QueuedMessage]):
    """
    Repository for the outbound queue.

    Transition writes filter on `status: pending`, so a row that is already
    terminal is never modified; callers inspect the returned bool.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, MESSAGE_QUEUE, QueuedMessage)

    async def fetch_due(self, limit: int, now: dt.datetime) -> List[QueuedMessage]:
        """
        Pending messages scheduled at or before `now`.

        Ordered by priority desc, created_at asc, _id asc.
        """
        return await self.find_many(
            {"status": PENDING, "scheduled_for": {"$lte": now}},
            limit=limit,
            sort=[("priority", -1), ("created_at", 1), ("_id", 1)],
        )

    async def _transition(self, message_id: str, fields: dict, inc: Optional[dict] = None) -> bool:
        object_id = to_object_id(message_id)
        if object_id is None:
            return False
        return await self.update_fields({"_id": object_id, "status": PENDING}, fields, inc=inc)

    async def mark_sent(self, message_id: str, sent_at: dt.datetime, attempts: int) -> bool:
        return await self._transition(
            message_id,
            {"status": MessageStatus.SENT.value, "sent_at": sent_at, "attempts": attempts},
        )

    async def mark_failed(self, message_id: str, reason: str, attempts: int) -> bool:
        return await self._transition(
            message_id,
            {"status": MessageStatus.FAILED.value, "last_error": reason, "attempts": attempts},
        )

    async def record_retry(self, message_id: str, reason: str, next_attempt_at: dt.datetime) -> bool:
        return await self._transition(
            message_id,
            {"last_error": reason, "scheduled_for": next_attempt_at},
            inc={"attempts": 1},
        )

    async def purge_older_than(self, cutoff: dt.datetime, statuses: Sequence[MessageStatus]) -> int:
        """Delete rows in `statuses` created before `cutoff`."""
        result = await self.collection.delete_many({
            "status": {"$in": [str(status) for status in statuses]},
            "created_at": {"$lt": cutoff},
        })
        return result.deleted_count

    async def stats(self) -> QueueStats:
        pipeline = [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        counts = {}
        async for row in self.collection.aggregate(pipeline):
            counts[row["_id"]] = row["count"]

        return QueueStats(
            total=sum(counts.values()),
            pending=counts.get(PENDING, 0),
            sent=counts.get(MessageStatus.SENT.value, 0),
            failed=counts.get(MessageStatus.FAILED.value, 0),
        )

    async def list_failed(self, limit: int = 50) -> List[QueuedMessage]:
        return await self.find_many(
            {"status": MessageStatus.FAILED.value},
            limit=limit,
            sort=[("updated_at", -1)],
        )
