"""
TTL Store

Keyed in-memory store whose entries expire. Holds pending operator
interactions such as reconciliation previews awaiting confirmation.
"""

import secrets
import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class TTLStore(Generic[T]):
    """
    Dictionary with per-entry expiry.

    Expired entries are dropped lazily on access and on every insert.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, T]] = {}

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def put(self, value: T, key: Optional[str] = None) -> str:
        """
        Store a value.

        Args:
            value: Item to keep
            key: Explicit key; a random URL-safe token is generated when omitted

        Returns:
            The key the value is stored under
        """
        self.purge_expired()
        key = key or secrets.token_urlsafe(16)
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        return key

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def pop(self, key: str) -> Optional[T]:
        """Remove and return a live value (None if missing or expired)."""
        value = self.get(key)
        self._entries.pop(key, None)
        return value

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)
