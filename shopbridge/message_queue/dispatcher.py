"""
Message Dispatcher

Routes a queued message to the chat platform according to its kind and
schedules best-effort follow-ups (reactions on order notifications).
"""

import asyncio
from typing import Optional, Sequence

from shopbridge.errors import DeliveryError
from shopbridge.models.queue import MessageKind, QueuedMessage
from shopbridge.services.chat_platform import ChatPlatform, SentMessage
from shopbridge.utils.observability import logger

CHANNEL_KINDS = (MessageKind.ORDER_NOTIFICATION, MessageKind.CUSTOM_CHANNEL_MESSAGE)
DIRECT_KINDS = (MessageKind.AUTO_DIRECT_MESSAGE, MessageKind.CUSTOM_DIRECT_MESSAGE)


class MessageDispatcher:
    """
    Delivers one message per call.

    Attributes:
        platform: Chat platform client
        reactions: Emoji added to order notifications after a delay
        reaction_delay: Seconds to wait before reacting
    """

    def __init__(
        self,
        platform: ChatPlatform,
        reactions: Sequence[str] = (),
        reaction_delay: float = 15.0,
    ):
        self.platform = platform
        self.reactions = list(reactions)
        self.reaction_delay = reaction_delay
        self._background: set[asyncio.Task] = set()

    async def dispatch(self, message: QueuedMessage) -> SentMessage:
        """
        Deliver a message to its destination.

        Args:
            message: Pending message

        Returns:
            Receipt from the platform

        Raises:
            DeliveryError: transient failure (retryable)
            PermanentRecipientError: recipient unreachable for good
        """
        kind = message.kind
        body = message.payload.to_platform()
        target = message.destination.identifier

        if kind in CHANNEL_KINDS:
            receipt = await self.platform.send_to_channel(target, body)
        elif kind in DIRECT_KINDS:
            receipt = await self.platform.send_direct_message(target, body)
        else:
            raise DeliveryError(f"No route for message kind {kind}")

        if kind == MessageKind.ORDER_NOTIFICATION and self.reactions:
            self._schedule_reactions(receipt)

        return receipt

    def _schedule_reactions(self, receipt: SentMessage) -> None:
        task = asyncio.create_task(self._react_later(receipt))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _react_later(self, receipt: SentMessage) -> None:
        await asyncio.sleep(self.reaction_delay)
        try:
            await self.platform.add_reactions(receipt.channel_id, receipt.message_id, self.reactions)
            logger.info(f"✅ Added {len(self.reactions)} reactions to order notification {receipt.message_id}")
        except Exception as e:
            logger.warning(
                f"Failed to add reactions to {receipt.message_id}: {e}",
                extra={"message_id": receipt.message_id, "error": str(e)},
            )

    async def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Cancel pending reaction tasks."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.wait(list(self._background), timeout=timeout)
