"""
Persistence Interface

Abstract store for everything the delivery subsystem keeps durably:
queued messages, processed-order markers, member state, settings and
message templates. Engine-agnostic; MongoDB and in-memory backends
implement it.
"""

import datetime as dt
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, Optional, Sequence

from shopbridge.models.members import MemberRecord
from shopbridge.models.orders import ProcessedOrderMarker
from shopbridge.models.queue import MessageStatus, QueuedMessage, QueueStats
from shopbridge.models.settings import MessageTemplate
from shopbridge.utils.observability import logger

EnqueueListener = Callable[[], None]


class DeliveryStore(ABC):
    """
    Abstract persistence interface.

    Every queue mutation is atomic per message. Status transitions are
    guarded on `status == pending` so a terminal row can never be moved.
    """

    def __init__(self) -> None:
        self._enqueue_listeners: List[EnqueueListener] = []

    # ==================== Enqueue notification ====================

    def add_enqueue_listener(self, listener: EnqueueListener) -> None:
        """Register a callback fired after messages are inserted (wakes the drain loop)."""
        self._enqueue_listeners.append(listener)

    def _notify_enqueued(self) -> None:
        for listener in self._enqueue_listeners:
            try:
                listener()
            except Exception as e:
                logger.warning(f"Enqueue listener failed: {e}")

    # ==================== Message queue ====================

    @abstractmethod
    async def enqueue(self, message: QueuedMessage) -> str:
        """
        Insert a pending message.

        Args:
            message: Message to enqueue

        Returns:
            Assigned message ID
        """

    async def enqueue_many(self, messages: Iterable[QueuedMessage]) -> List[str]:
        """Insert several messages in order."""
        ids = []
        for message in messages:
            ids.append(await self.enqueue(message))
        return ids

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[QueuedMessage]:
        """Fetch one message by id."""

    @abstractmethod
    async def fetch_due(self, limit: int, now: dt.datetime) -> List[QueuedMessage]:
        """
        Select pending messages eligible for delivery.

        Args:
            limit: Maximum batch size
            now: Messages with scheduled_for <= now are eligible

        Returns:
            Messages ordered by priority desc, then created_at asc
        """

    @abstractmethod
    async def mark_sent(self, message_id: str, sent_at: dt.datetime, attempts: int) -> bool:
        """Pending -> sent. Returns False if the message was not pending."""

    @abstractmethod
    async def mark_failed(self, message_id: str, reason: str, attempts: int) -> bool:
        """Pending -> failed (terminal). Returns False if the message was not pending."""

    @abstractmethod
    async def record_retry(
        self,
        message_id: str,
        reason: str,
        next_attempt_at: dt.datetime,
    ) -> bool:
        """
        Record a failed attempt that will be retried.

        Increments attempts, stores the error and pushes scheduled_for
        forward. Returns False if the message was not pending.
        """

    @abstractmethod
    async def purge_older_than(
        self,
        retention: dt.timedelta,
        statuses: Sequence[MessageStatus],
        now: Optional[dt.datetime] = None,
    ) -> int:
        """Delete messages in `statuses` created before now - retention. Returns count."""

    @abstractmethod
    async def queue_stats(self) -> QueueStats:
        """Aggregate pending/sent/failed counts."""

    @abstractmethod
    async def list_failed(self, limit: int = 50) -> List[QueuedMessage]:
        """Most recent failed messages, newest first."""

    # ==================== Processed orders ====================

    @abstractmethod
    async def is_order_processed(self, shopify_order_id: str) -> bool:
        """True if a marker exists for the external order."""

    @abstractmethod
    async def mark_order_processed(self, marker: ProcessedOrderMarker) -> bool:
        """Insert a marker. Returns False if one already existed."""

    @abstractmethod
    async def record_order(
        self,
        marker: ProcessedOrderMarker,
        messages: Sequence[QueuedMessage],
    ) -> bool:
        """
        Write a marker and its messages as one logical transaction.

        Returns False (and writes nothing) if the marker already existed.
        On any other failure nothing is left behind and the error propagates.
        """

    @abstractmethod
    async def get_order_marker(self, shopify_order_id: str) -> Optional[ProcessedOrderMarker]:
        """Fetch a marker by external order id."""

    @abstractmethod
    async def count_processed_since(self, since: dt.datetime) -> int:
        """Markers created at or after `since`."""

    @abstractmethod
    async def last_processed_order(self) -> Optional[ProcessedOrderMarker]:
        """Most recently processed marker."""

    # ==================== Members ====================

    @abstractmethod
    async def get_member(self, user_id: str) -> Optional[MemberRecord]:
        """Fetch a member record."""

    @abstractmethod
    async def upsert_member(self, member: MemberRecord) -> MemberRecord:
        """Create or replace the record keyed by user_id."""

    @abstractmethod
    async def update_member_fields(self, user_id: str, **fields: Any) -> bool:
        """Partial update. Returns False if the member is unknown."""

    @abstractmethod
    async def list_members_for_auto_dm(
        self,
        limit: int,
        require_verified: bool = True,
        joined_before: Optional[dt.datetime] = None,
    ) -> List[MemberRecord]:
        """
        Members passing the stored-state welcome DM gate, oldest join first.

        `joined_before` restricts the result to members who joined earlier.
        """

    @abstractmethod
    async def list_reachable_members(self, limit: int = 1000) -> List[MemberRecord]:
        """Members still present who have not closed DMs."""

    # ==================== Settings & templates ====================

    @abstractmethod
    async def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Read a feature toggle."""

    @abstractmethod
    async def set_setting(self, key: str, value: str) -> None:
        """Write a feature toggle."""

    @abstractmethod
    async def all_settings(self) -> dict[str, str]:
        """All stored toggles."""

    @abstractmethod
    async def get_active_template(self, template_type: str) -> Optional[MessageTemplate]:
        """Active template of the given type, if any."""

    @abstractmethod
    async def save_template(self, template: MessageTemplate) -> MessageTemplate:
        """Insert or update a template; activating one deactivates others of its type."""

    @abstractmethod
    async def increment_template_usage(self, template_id: str) -> None:
        """Bump a template's usage counter."""

    # ==================== Lifecycle ====================

    async def ping(self) -> bool:
        """Readiness probe. Backends with a remote engine override this."""
        return True

    async def seed_defaults(self, defaults: dict[str, str], templates: Iterable[MessageTemplate]) -> None:
        """Insert default settings and templates that are not stored yet."""
        for key, value in defaults.items():
            if await self.get_setting(key) is None:
                await self.set_setting(key, value)

        for template in templates:
            if await self.get_active_template(template.template_type) is None:
                await self.save_template(template)
