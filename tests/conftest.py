import pytest
import datetime as dt
from unittest.mock import AsyncMock

from shopbridge.message_queue import InMemoryDeliveryStore
from shopbridge.models.queue import (
    AutoDirectMessagePayload,
    CustomChannelMessagePayload,
    Destination,
    OrderNotificationPayload,
    QueuedMessage,
)
from shopbridge.services.chat_platform import MemberSnapshot, SentMessage


@pytest.fixture
def now():
    """Fixed reference instant."""
    return dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.UTC)


@pytest.fixture
def store():
    """Returns an empty in-memory store."""
    return InMemoryDeliveryStore()


@pytest.fixture
def mock_platform():
    """Chat platform double whose calls all succeed."""
    platform = AsyncMock()
    platform.send_to_channel = AsyncMock(return_value=SentMessage(message_id="m-1", channel_id="chan-1"))
    platform.send_direct_message = AsyncMock(return_value=SentMessage(message_id="m-2", channel_id="dm-1"))
    platform.add_reactions = AsyncMock(return_value=None)
    platform.fetch_member = AsyncMock(
        side_effect=lambda user_id: MemberSnapshot(user_id=user_id, role_ids=["role-verified"])
    )
    return platform


def make_channel_message(**overrides) -> QueuedMessage:
    """Custom channel message with sensible defaults."""
    fields = {
        "destination": Destination.channel("chan-1"),
        "payload": CustomChannelMessagePayload(content="hello"),
    }
    fields.update(overrides)
    return QueuedMessage(**fields)


def make_order_message(**overrides) -> QueuedMessage:
    fields = {
        "destination": Destination.channel("chan-1"),
        "payload": OrderNotificationPayload(
            order_id="1001",
            order_number="1001",
            product_name="Test Product",
            embed={"title": "🛍️ Someone ordered Test Product!"},
        ),
    }
    fields.update(overrides)
    return QueuedMessage(**fields)


def make_dm_message(user_id: str = "user-1", **overrides) -> QueuedMessage:
    fields = {
        "destination": Destination.user(user_id),
        "payload": AutoDirectMessagePayload(template_name="Welcome Message", content="Welcome!"),
    }
    fields.update(overrides)
    return QueuedMessage(**fields)


@pytest.fixture
def paid_order():
    """Storefront order A1001: paid, one line item."""
    return {
        "id": 1001,
        "order_number": 1001,
        "name": "#A1001",
        "email": "buyer@example.com",
        "total_price": "29.99",
        "currency": "USD",
        "financial_status": "paid",
        "created_at": "2024-05-01T11:30:00+00:00",
        "line_items": [
            {
                "id": 501,
                "product_id": 9001,
                "name": "Test Product",
                "price": "29.99",
                "quantity": 1,
            }
        ],
    }


@pytest.fixture
def pending_order(paid_order):
    """Storefront order A1002: payment still pending."""
    return {**paid_order, "id": 1002, "order_number": 1002, "name": "#A1002", "financial_status": "pending"}


@pytest.fixture
def channel_message():
    """Factory for custom channel messages."""
    return make_channel_message


@pytest.fixture
def order_message():
    """Factory for order notification messages."""
    return make_order_message


@pytest.fixture
def dm_message():
    """Factory for welcome DM messages."""
    return make_dm_message
