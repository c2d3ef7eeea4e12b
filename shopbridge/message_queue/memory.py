"""
In-Memory Delivery Store

Store implementation for testing and single-instance development runs.
Data is lost on restart.
"""

import asyncio
import datetime as dt
import itertools
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId

from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.base import utcnow
from shopbridge.models.members import MemberRecord
from shopbridge.models.orders import ProcessedOrderMarker
from shopbridge.models.queue import MessageStatus, QueuedMessage, QueueStats
from shopbridge.models.settings import MessageTemplate


class InMemoryDeliveryStore(DeliveryStore):
    """
    In-memory store implementation.

    Uses an asyncio.Lock so each mutation is atomic with respect to other
    coroutines. Models are copied on the way in and out so callers never
    hold a reference to stored state.

    Suitable for:
    - Testing
    - Single-instance development runs

    Not suitable for:
    - Production (no durability)
    """

    def __init__(self):
        super().__init__()
        self._messages: Dict[str, QueuedMessage] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()
        self._markers: Dict[str, ProcessedOrderMarker] = {}
        self._members: Dict[str, MemberRecord] = {}
        self._settings: Dict[str, str] = {}
        self._templates: Dict[str, MessageTemplate] = {}
        self._lock = asyncio.Lock()

    # ==================== Message queue ====================

    def _insert_message(self, message: QueuedMessage) -> str:
        stored = message.model_copy(deep=True)
        if not stored.id:
            stored.id = str(ObjectId())
        stored.status = MessageStatus.PENDING
        self._messages[stored.id] = stored
        self._sequence[stored.id] = next(self._counter)
        return stored.id

    async def enqueue(self, message: QueuedMessage) -> str:
        async with self._lock:
            message_id = self._insert_message(message)
        self._notify_enqueued()
        return message_id

    async def enqueue_many(self, messages) -> List[str]:
        async with self._lock:
            ids = [self._insert_message(message) for message in messages]
        if ids:
            self._notify_enqueued()
        return ids

    async def get_message(self, message_id: str) -> Optional[QueuedMessage]:
        async with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    async def fetch_due(self, limit: int, now: dt.datetime) -> List[QueuedMessage]:
        async with self._lock:
            due = [m for m in self._messages.values() if m.is_due(now)]
            due.sort(key=lambda m: (-m.priority, m.created_at, self._sequence[m.id]))
            return [m.model_copy(deep=True) for m in due[:limit]]

    def _pending(self, message_id: str) -> Optional[QueuedMessage]:
        message = self._messages.get(message_id)
        if message is None or message.status != MessageStatus.PENDING:
            return None
        return message

    async def mark_sent(self, message_id: str, sent_at: dt.datetime, attempts: int) -> bool:
        async with self._lock:
            message = self._pending(message_id)
            if message is None:
                return False
            message.status = MessageStatus.SENT
            message.sent_at = sent_at
            message.attempts = attempts
            message.updated_at = utcnow()
            return True

    async def mark_failed(self, message_id: str, reason: str, attempts: int) -> bool:
        async with self._lock:
            message = self._pending(message_id)
            if message is None:
                return False
            message.status = MessageStatus.FAILED
            message.last_error = reason
            message.attempts = attempts
            message.updated_at = utcnow()
            return True

    async def record_retry(self, message_id: str, reason: str, next_attempt_at: dt.datetime) -> bool:
        async with self._lock:
            message = self._pending(message_id)
            if message is None:
                return False
            message.attempts += 1
            message.last_error = reason
            message.scheduled_for = next_attempt_at
            message.updated_at = utcnow()
            return True

    async def purge_older_than(
        self,
        retention: dt.timedelta,
        statuses: Sequence[MessageStatus],
        now: Optional[dt.datetime] = None,
    ) -> int:
        cutoff = (now or utcnow()) - retention
        async with self._lock:
            doomed = [
                message_id
                for message_id, message in self._messages.items()
                if message.status in statuses and message.created_at < cutoff
            ]
            for message_id in doomed:
                del self._messages[message_id]
                del self._sequence[message_id]
            return len(doomed)

    async def queue_stats(self) -> QueueStats:
        async with self._lock:
            statuses = [m.status for m in self._messages.values()]
        return QueueStats(
            total=len(statuses),
            pending=statuses.count(MessageStatus.PENDING),
            sent=statuses.count(MessageStatus.SENT),
            failed=statuses.count(MessageStatus.FAILED),
        )

    async def list_failed(self, limit: int = 50) -> List[QueuedMessage]:
        async with self._lock:
            failed = [m for m in self._messages.values() if m.status == MessageStatus.FAILED]
            failed.sort(key=lambda m: m.updated_at, reverse=True)
            return [m.model_copy(deep=True) for m in failed[:limit]]

    # ==================== Processed orders ====================

    async def is_order_processed(self, shopify_order_id: str) -> bool:
        async with self._lock:
            return shopify_order_id in self._markers

    async def mark_order_processed(self, marker: ProcessedOrderMarker) -> bool:
        async with self._lock:
            if marker.shopify_order_id in self._markers:
                return False
            self._markers[marker.shopify_order_id] = self._new_marker(marker)
            return True

    def _new_marker(self, marker: ProcessedOrderMarker) -> ProcessedOrderMarker:
        stored = marker.model_copy(deep=True)
        if not stored.id:
            stored.id = str(ObjectId())
        return stored

    async def record_order(
        self,
        marker: ProcessedOrderMarker,
        messages: Sequence[QueuedMessage],
    ) -> bool:
        async with self._lock:
            if marker.shopify_order_id in self._markers:
                return False
            self._markers[marker.shopify_order_id] = self._new_marker(marker)
            for message in messages:
                self._insert_message(message)
        if messages:
            self._notify_enqueued()
        return True

    async def get_order_marker(self, shopify_order_id: str) -> Optional[ProcessedOrderMarker]:
        async with self._lock:
            marker = self._markers.get(shopify_order_id)
            return marker.model_copy(deep=True) if marker else None

    async def count_processed_since(self, since: dt.datetime) -> int:
        async with self._lock:
            return sum(1 for m in self._markers.values() if m.processed_at >= since)

    async def last_processed_order(self) -> Optional[ProcessedOrderMarker]:
        async with self._lock:
            if not self._markers:
                return None
            latest = max(self._markers.values(), key=lambda m: m.processed_at)
            return latest.model_copy(deep=True)

    # ==================== Members ====================

    async def get_member(self, user_id: str) -> Optional[MemberRecord]:
        async with self._lock:
            member = self._members.get(user_id)
            return member.model_copy(deep=True) if member else None

    async def upsert_member(self, member: MemberRecord) -> MemberRecord:
        async with self._lock:
            stored = member.model_copy(deep=True)
            existing = self._members.get(member.user_id)
            if existing is not None:
                stored.id = existing.id
                stored.created_at = existing.created_at
            elif not stored.id:
                stored.id = str(ObjectId())
            stored.updated_at = utcnow()
            self._members[member.user_id] = stored
            return stored.model_copy(deep=True)

    async def update_member_fields(self, user_id: str, **fields: Any) -> bool:
        async with self._lock:
            member = self._members.get(user_id)
            if member is None:
                return False
            self._members[user_id] = member.model_copy(update={**fields, "updated_at": utcnow()})
            return True

    async def list_members_for_auto_dm(
        self,
        limit: int,
        require_verified: bool = True,
        joined_before: Optional[dt.datetime] = None,
    ) -> List[MemberRecord]:
        async with self._lock:
            eligible = [
                m for m in self._members.values()
                if m.is_auto_dm_eligible(require_verified)
                and (joined_before is None or m.joined_at < joined_before)
            ]
            eligible.sort(key=lambda m: m.joined_at)
            return [m.model_copy(deep=True) for m in eligible[:limit]]

    async def list_reachable_members(self, limit: int = 1000) -> List[MemberRecord]:
        async with self._lock:
            reachable = [
                m for m in self._members.values()
                if m.still_in_server and not m.has_opted_out
            ]
            reachable.sort(key=lambda m: m.joined_at)
            return [m.model_copy(deep=True) for m in reachable[:limit]]

    # ==================== Settings & templates ====================

    async def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        async with self._lock:
            return self._settings.get(key, default)

    async def set_setting(self, key: str, value: str) -> None:
        async with self._lock:
            self._settings[key] = value

    async def all_settings(self) -> dict[str, str]:
        async with self._lock:
            return dict(self._settings)

    async def get_active_template(self, template_type: str) -> Optional[MessageTemplate]:
        async with self._lock:
            for template in self._templates.values():
                if template.template_type == template_type and template.is_active:
                    return template.model_copy(deep=True)
            return None

    async def save_template(self, template: MessageTemplate) -> MessageTemplate:
        async with self._lock:
            stored = template.model_copy(deep=True)
            if not stored.id:
                stored.id = str(ObjectId())
            if stored.is_active:
                for other in self._templates.values():
                    if other.template_type == stored.template_type:
                        other.is_active = False
            stored.updated_at = utcnow()
            self._templates[stored.id] = stored
            return stored.model_copy(deep=True)

    async def increment_template_usage(self, template_id: str) -> None:
        async with self._lock:
            template = self._templates.get(template_id)
            if template is not None:
                template.usage_count += 1
