"""
Outbound Message Queue

Durable, at-least-once delivery for chat platform messages:
- Abstract store interface with MongoDB and in-memory backends
- Centralized state transitions with exponential backoff and jitter
- Dispatcher routing by message kind
- Drain loop with wake-on-enqueue and retention purge
"""

from shopbridge.message_queue.base import DeliveryStore
from shopbridge.message_queue.dispatcher import MessageDispatcher
from shopbridge.message_queue.memory import InMemoryDeliveryStore
from shopbridge.message_queue.transitions import RetryPolicy, TransitionOutcome
from shopbridge.message_queue.worker import QueueDrainer

__all__ = [
    "DeliveryStore",
    "MessageDispatcher",
    "InMemoryDeliveryStore",
    "RetryPolicy",
    "TransitionOutcome",
    "QueueDrainer",
]
