"""
Operator Messaging

Enqueues operator-authored messages: a post in a channel, a DM to one
member, or a DM broadcast to every reachable member.
"""

import datetime as dt
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.base import utcnow
from shopbridge.models.queue import (
    CustomChannelMessagePayload,
    CustomDirectMessagePayload,
    Destination,
    QueuedMessage,
)
from shopbridge.utils.observability import log_business_event, logger


@dataclass
class BroadcastResult:
    recipients: int
    first_delivery_at: Optional[dt.datetime] = None
    last_delivery_at: Optional[dt.datetime] = None


class OperatorMessaging:
    """
    Producer of CustomChannelMessage and CustomDirectMessage rows.

    Broadcasts are staggered through `scheduled_for` so the drain loop
    spreads them out instead of bursting into the platform's rate limits.
    """

    def __init__(
        self,
        store: DeliveryStore,
        stagger_seconds: float = 2.0,
        max_attempts: int = 3,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        self.store = store
        self.stagger_seconds = stagger_seconds
        self.max_attempts = max_attempts
        self._clock = clock

    async def send_to_channel(
        self,
        channel_id: str,
        content: Optional[str] = None,
        embed: Optional[Dict[str, Any]] = None,
        author_id: Optional[str] = None,
        priority: int = 1,
    ) -> str:
        message = QueuedMessage(
            destination=Destination.channel(channel_id),
            payload=CustomChannelMessagePayload(content=content, embed=embed, author_id=author_id),
            priority=priority,
            max_attempts=self.max_attempts,
        )
        message_id = await self.store.enqueue(message)
        log_business_event("custom_channel_message_enqueued", message_id, channel_id=channel_id, author_id=author_id)
        return message_id

    async def send_direct(
        self,
        user_id: str,
        content: Optional[str] = None,
        embed: Optional[Dict[str, Any]] = None,
        author_id: Optional[str] = None,
        priority: int = 1,
    ) -> str:
        message = QueuedMessage(
            destination=Destination.user(user_id),
            payload=CustomDirectMessagePayload(content=content, embed=embed, author_id=author_id),
            priority=priority,
            max_attempts=self.max_attempts,
        )
        message_id = await self.store.enqueue(message)
        log_business_event("custom_dm_enqueued", message_id, user_id=user_id, author_id=author_id)
        return message_id

    async def broadcast(
        self,
        content: Optional[str] = None,
        embed: Optional[Dict[str, Any]] = None,
        author_id: Optional[str] = None,
        limit: int = 1000,
    ) -> BroadcastResult:
        """
        DM every member still in the server who has not closed DMs.

        Args:
            content: Message text
            embed: Optional embed
            author_id: Operator who requested the broadcast
            limit: Maximum recipients

        Returns:
            BroadcastResult with recipient count and delivery window
        """
        members = await self.store.list_reachable_members(limit)
        if not members:
            logger.info("Broadcast requested but no reachable members")
            return BroadcastResult(recipients=0)

        start = self._clock()
        messages = [
            QueuedMessage(
                destination=Destination.user(member.user_id),
                payload=CustomDirectMessagePayload(content=content, embed=embed, author_id=author_id),
                max_attempts=self.max_attempts,
                scheduled_for=start + dt.timedelta(seconds=index * self.stagger_seconds),
            )
            for index, member in enumerate(members)
        ]
        await self.store.enqueue_many(messages)

        result = BroadcastResult(
            recipients=len(messages),
            first_delivery_at=messages[0].scheduled_for,
            last_delivery_at=messages[-1].scheduled_for,
        )
        log_business_event("broadcast_enqueued", author_id or "operator", recipients=result.recipients)
        return result
