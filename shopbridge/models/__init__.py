"""Domain models for the delivery subsystem."""
from shopbridge.models.base import MongoBaseModel
from shopbridge.models.members import MemberRecord
from shopbridge.models.orders import LineItem, ProcessedOrderMarker, ShopifyOrder, SyncSource
from shopbridge.models.queue import (
    AutoDirectMessagePayload,
    CustomChannelMessagePayload,
    CustomDirectMessagePayload,
    Destination,
    DestinationKind,
    MessageKind,
    MessageStatus,
    OrderNotificationPayload,
    QueuedMessage,
    QueueStats,
)
from shopbridge.models.settings import MessageTemplate, Setting

__all__ = [
    "MongoBaseModel",
    "MemberRecord",
    "LineItem",
    "ProcessedOrderMarker",
    "ShopifyOrder",
    "SyncSource",
    "AutoDirectMessagePayload",
    "CustomChannelMessagePayload",
    "CustomDirectMessagePayload",
    "Destination",
    "DestinationKind",
    "MessageKind",
    "MessageStatus",
    "OrderNotificationPayload",
    "QueuedMessage",
    "QueueStats",
    "MessageTemplate",
    "Setting",
]
