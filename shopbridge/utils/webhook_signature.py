"""
Storefront Webhook Signature Verification

HMAC-SHA256 verification of webhook bodies. The digest is computed over
the raw request bytes, before any JSON parsing, and compared in constant
time.
"""

import base64
import binascii
import hashlib
import hmac
from typing import Optional
from loguru import logger

SIGNATURE_PREFIX = "sha256="


class WebhookSignatureVerifier:
    """
    Validates webhook signatures using HMAC-SHA256.

    Two header encodings are accepted:
    - `sha256=<hex digest>`
    - the storefront's native base64 digest (X-Shopify-Hmac-SHA256)
    """

    def __init__(self, secret: str):
        """
        Initialize signature verifier.

        Args:
            secret: Shared webhook signing secret
        """
        if not secret:
            raise ValueError("webhook secret must not be empty")
        self.secret = secret

    def compute_digest(self, raw_body: bytes) -> bytes:
        """
        Compute the raw HMAC-SHA256 digest of a request body.

        Args:
            raw_body: Request body exactly as received

        Returns:
            32-byte digest
        """
        return hmac.new(
            self.secret.encode("utf-8"),
            raw_body,
            hashlib.sha256,
        ).digest()

    def compute_signature(self, raw_body: bytes, hex_format: bool = True) -> str:
        """Header value a sender would attach to `raw_body`."""
        digest = self.compute_digest(raw_body)
        if hex_format:
            return SIGNATURE_PREFIX + digest.hex()
        return base64.b64encode(digest).decode("utf-8")

    def verify(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """
        Verify a signature header against the body.

        Args:
            raw_body: Request body exactly as received
            signature: Signature header value

        Returns:
            True if the signature matches, False otherwise
        """
        if not signature:
            return False

        provided = self._decode(signature.strip())
        if provided is None:
            logger.warning("Webhook signature header is not valid hex or base64")
            return False

        return hmac.compare_digest(self.compute_digest(raw_body), provided)

    @staticmethod
    def _decode(signature: str) -> Optional[bytes]:
        try:
            if signature.startswith(SIGNATURE_PREFIX):
                return bytes.fromhex(signature[len(SIGNATURE_PREFIX):])
            return base64.b64decode(signature, validate=True)
        except (ValueError, binascii.Error):
            return None


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Convenience function to validate a webhook signature.

    Args:
        raw_body: Request body bytes
        signature: Signature header
        secret: Shared signing secret

    Returns:
        True if valid, False otherwise
    """
    return WebhookSignatureVerifier(secret).verify(raw_body, signature)
