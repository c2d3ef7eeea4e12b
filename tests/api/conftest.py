import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import State
from unittest.mock import AsyncMock, MagicMock

from shopbridge.api.main import app, attach_services
from shopbridge.config import Settings
from shopbridge.utils.webhook_signature import WebhookSignatureVerifier

WEBHOOK_SECRET = "test_webhook_secret"


@pytest.fixture
def client():
    """Create test client (lifespan not run; services attached per test)."""
    return TestClient(app)


@pytest.fixture
def api_settings():
    return Settings(
        _env_file=None,
        environment="development",
        notification_channel_id="chan-orders",
        shopify_webhook_secret=WEBHOOK_SECRET,
        shopify_shop_url="test-shop.myshopify.com",
    )


@pytest.fixture
def mock_shopify():
    shopify = MagicMock()
    shopify.get_shop = AsyncMock(return_value={"name": "Test Shop"})
    shopify.list_orders_since = AsyncMock(return_value=[])
    shopify.list_orders_after_id = AsyncMock(return_value=[])
    shopify.close = AsyncMock()
    return shopify


@pytest.fixture
def services(store, mock_platform, mock_shopify, api_settings):
    """Attach in-memory services to the app; reset state afterwards."""
    attach_services(app, store, mock_platform, mock_shopify, config=api_settings)
    yield app.state
    app.state = State()


@pytest.fixture
def signed_headers():
    """Builds storefront webhook headers signed with the test secret."""
    def build(body: bytes, topic: str = "orders/create") -> dict:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Topic": topic,
            "X-Shopify-Hmac-Sha256": WebhookSignatureVerifier(WEBHOOK_SECRET).compute_signature(body, hex_format=False),
        }
    return build
