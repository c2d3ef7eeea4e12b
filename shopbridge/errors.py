"""
Error Taxonomy

Exceptions raised across ingestion, delivery and reconciliation.
Boundary errors map to HTTP statuses; delivery errors drive the retry policy.
"""
from typing import Optional


class ShopBridgeError(Exception):
    """Base class for all shopbridge errors."""
    pass


class AuthenticationError(ShopBridgeError):
    """Webhook signature missing or invalid. Never enqueued, never retried."""
    pass


class ValidationError(ShopBridgeError):
    """Required headers or fields are missing or malformed."""
    pass


class NotReadyError(ShopBridgeError):
    """Subsystem not initialized yet. Upstream is expected to redeliver."""
    pass


class DeliveryError(ShopBridgeError):
    """Transient delivery failure (destination unreachable, rate limited, timeout)."""
    pass


class PermanentRecipientError(DeliveryError):
    """
    Recipient can never be reached (e.g. DMs closed).

    Short-circuits the message to Failed with no further retries.
    """
    pass


class UpstreamAPIError(ShopBridgeError):
    """Storefront Admin API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectivityError(UpstreamAPIError):
    """Storefront API unreachable or credentials rejected."""
    pass


class InvalidTransitionError(ShopBridgeError):
    """Attempted to move a queued message out of a terminal state."""
    pass
