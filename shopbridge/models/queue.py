"""
Outbound Queue Models

QueuedMessage is the durable unit of delivery. Its payload is a tagged
union keyed by message kind, so the dispatcher can route exhaustively.
"""
import datetime as dt
from enum import StrEnum
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, model_validator

from shopbridge.models.base import MongoBaseModel, utcnow


class MessageKind(StrEnum):
    ORDER_NOTIFICATION = "order"
    AUTO_DIRECT_MESSAGE = "auto_dm"
    CUSTOM_DIRECT_MESSAGE = "custom_dm"
    CUSTOM_CHANNEL_MESSAGE = "custom_channel"


class DestinationKind(StrEnum):
    CHANNEL = "channel"
    USER = "user"


class MessageStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


TERMINAL_STATUSES = (MessageStatus.SENT, MessageStatus.FAILED)

# Which destination each kind is allowed to target
KIND_DESTINATIONS: Dict[MessageKind, DestinationKind] = {
    MessageKind.ORDER_NOTIFICATION: DestinationKind.CHANNEL,
    MessageKind.CUSTOM_CHANNEL_MESSAGE: DestinationKind.CHANNEL,
    MessageKind.AUTO_DIRECT_MESSAGE: DestinationKind.USER,
    MessageKind.CUSTOM_DIRECT_MESSAGE: DestinationKind.USER,
}


class Destination(BaseModel):
    """Where a message goes: a channel or a user (DM)."""
    model_config = ConfigDict(use_enum_values=True)

    kind: DestinationKind
    identifier: str = Field(..., min_length=1)

    @classmethod
    def channel(cls, channel_id: str) -> "Destination":
        return cls(kind=DestinationKind.CHANNEL, identifier=channel_id)

    @classmethod
    def user(cls, user_id: str) -> "Destination":
        return cls(kind=DestinationKind.USER, identifier=user_id)


class MessageContent(BaseModel):
    """Renderable body shared by every payload kind."""
    model_config = ConfigDict(use_enum_values=True)

    content: Optional[str] = None
    embed: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _require_body(self):
        if not self.content and not self.embed:
            raise ValueError("message needs content or an embed")
        return self

    def to_platform(self) -> Dict[str, Any]:
        """Body in the chat platform's create-message shape."""
        body: Dict[str, Any] = {}
        if self.content:
            body["content"] = self.content
        if self.embed:
            body["embeds"] = [self.embed]
        return body


class OrderNotificationPayload(MessageContent):
    kind: Literal[MessageKind.ORDER_NOTIFICATION] = MessageKind.ORDER_NOTIFICATION
    order_id: str
    order_number: str
    product_name: str
    product_id: Optional[str] = None
    price: Optional[str] = None
    currency: Optional[str] = None
    image_url: Optional[str] = None
    category_name: Optional[str] = None
    category_emoji: Optional[str] = None


class AutoDirectMessagePayload(MessageContent):
    kind: Literal[MessageKind.AUTO_DIRECT_MESSAGE] = MessageKind.AUTO_DIRECT_MESSAGE
    template_name: str


class CustomDirectMessagePayload(MessageContent):
    kind: Literal[MessageKind.CUSTOM_DIRECT_MESSAGE] = MessageKind.CUSTOM_DIRECT_MESSAGE
    author_id: Optional[str] = None


class CustomChannelMessagePayload(MessageContent):
    kind: Literal[MessageKind.CUSTOM_CHANNEL_MESSAGE] = MessageKind.CUSTOM_CHANNEL_MESSAGE
    author_id: Optional[str] = None


MessagePayload = Annotated[
    Union[
        OrderNotificationPayload,
        AutoDirectMessagePayload,
        CustomDirectMessagePayload,
        CustomChannelMessagePayload,
    ],
    Field(discriminator="kind"),
]


class QueuedMessage(MongoBaseModel):
    """
    Message in the outbound queue.

    Attributes:
        destination: Channel or user the message is delivered to
        payload: Kind-specific body, opaque to the queue itself
        status: pending -> sent | failed (both terminal)
        attempts: Delivery attempts made so far
        max_attempts: Ceiling before the message becomes failed
        priority: Higher is served first
        scheduled_for: Not eligible for delivery before this instant
        sent_at: Set on success
        last_error: Set on every failed attempt
    """
    destination: Destination
    payload: MessagePayload
    status: MessageStatus = MessageStatus.PENDING
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    priority: int = 0
    scheduled_for: dt.datetime = Field(default_factory=utcnow)
    sent_at: Optional[dt.datetime] = None
    last_error: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self):
        if self.attempts > self.max_attempts:
            raise ValueError("attempts cannot exceed max_attempts")
        expected = KIND_DESTINATIONS[self.kind]
        if self.destination.kind != expected:
            raise ValueError(
                f"{self.kind.value} messages must target a {expected.value}"
            )
        return self

    @property
    def kind(self) -> MessageKind:
        return MessageKind(self.payload.kind)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_due(self, now: dt.datetime) -> bool:
        return self.status == MessageStatus.PENDING and self.scheduled_for <= now


class QueueStats(BaseModel):
    """Aggregate counts shown to operators."""
    total: int = 0
    pending: int = 0
    sent: int = 0
    failed: int = 0
