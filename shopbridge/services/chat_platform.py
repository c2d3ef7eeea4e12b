"""
Chat Platform Adapter

The delivery engine talks to the community chat platform through the
ChatPlatform protocol. DiscordRestClient implements it over the Discord
REST API with httpx; tests substitute an AsyncMock.
"""

import httpx
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import quote

from shopbridge.config import get_settings
from shopbridge.errors import DeliveryError, PermanentRecipientError
from shopbridge.utils.observability import logger

# Discord JSON error code: "Cannot send messages to this user"
CANNOT_MESSAGE_USER = 50007


@dataclass
class SentMessage:
    """Receipt for a delivered message."""
    message_id: str
    channel_id: str


@dataclass
class MemberSnapshot:
    """Live view of a guild member."""
    user_id: str
    username: Optional[str] = None
    role_ids: List[str] = field(default_factory=list)

    def has_role(self, role_id: Optional[str]) -> bool:
        return bool(role_id) and role_id in self.role_ids


class ChatPlatform(Protocol):
    """
    Protocol for the chat platform client.

    Implement this to deliver through another platform or a test double.
    """

    async def send_to_channel(self, channel_id: str, body: Dict[str, Any]) -> SentMessage:
        """
        Post a message to a channel.

        Raises:
            DeliveryError: channel unknown or transport failure
        """
        ...

    async def send_direct_message(self, user_id: str, body: Dict[str, Any]) -> SentMessage:
        """
        Send a DM to a user.

        Raises:
            PermanentRecipientError: user has DMs closed
            DeliveryError: user unknown or transport failure
        """
        ...

    async def add_reactions(self, channel_id: str, message_id: str, emojis: Sequence[str]) -> None:
        """Add reactions to a posted message, in order."""
        ...

    async def fetch_member(self, user_id: str) -> Optional[MemberSnapshot]:
        """Current member state, or None if the user left the guild."""
        ...


class DiscordRestClient:
    """
    Discord REST implementation of ChatPlatform.

    Uses a bot token. Error mapping:
    - 404 (unknown channel/user) -> DeliveryError
    - 429 and 5xx -> DeliveryError (the queue's backoff handles the retry)
    - 403 with code 50007 on a DM -> PermanentRecipientError
    - httpx transport errors -> DeliveryError
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        guild_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize the REST client.

        Args:
            token: Bot token (defaults to settings)
            base_url: API root (defaults to settings)
            guild_id: Guild used for member lookups (defaults to settings)
            client: Preconfigured httpx client (tests inject a MockTransport)
            timeout: Per-request timeout in seconds
        """
        settings = get_settings()
        self._token = token or settings.discord_bot_token
        self._base_url = (base_url or settings.discord_api_base_url).rstrip("/")
        self._guild_id = guild_id or settings.discord_guild_id
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return self._token is not None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                headers={"Authorization": f"Bot {self._token}"},
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Chat platform unreachable: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "?")
            raise DeliveryError(f"Rate limited by chat platform (retry after {retry_after}s)")
        return response

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[int]:
        try:
            return response.json().get("code")
        except ValueError:
            return None

    async def send_to_channel(self, channel_id: str, body: Dict[str, Any]) -> SentMessage:
        response = await self._request("POST", f"/channels/{channel_id}/messages", json=body)

        if response.status_code == 404:
            raise DeliveryError(f"Channel {channel_id} not found")
        if response.is_error:
            raise DeliveryError(
                f"Channel send failed ({response.status_code}): {response.text[:200]}"
            )

        data = response.json()
        return SentMessage(message_id=str(data["id"]), channel_id=str(data.get("channel_id", channel_id)))

    async def send_direct_message(self, user_id: str, body: Dict[str, Any]) -> SentMessage:
        opened = await self._request("POST", "/users/@me/channels", json={"recipient_id": user_id})
        if opened.status_code == 404:
            raise DeliveryError(f"User {user_id} not found")
        if opened.is_error:
            raise DeliveryError(f"Could not open DM with {user_id} ({opened.status_code})")

        dm_channel_id = str(opened.json()["id"])
        response = await self._request("POST", f"/channels/{dm_channel_id}/messages", json=body)

        if response.status_code == 403 and self._error_code(response) == CANNOT_MESSAGE_USER:
            raise PermanentRecipientError(f"User {user_id} has DMs closed")
        if response.is_error:
            raise DeliveryError(f"DM send failed ({response.status_code}): {response.text[:200]}")

        data = response.json()
        return SentMessage(message_id=str(data["id"]), channel_id=dm_channel_id)

    async def add_reactions(self, channel_id: str, message_id: str, emojis: Sequence[str]) -> None:
        for emoji in emojis:
            path = f"/channels/{channel_id}/messages/{message_id}/reactions/{quote(emoji)}/@me"
            response = await self._request("PUT", path)
            if response.is_error:
                raise DeliveryError(f"Reaction {emoji} failed ({response.status_code})")

    async def fetch_member(self, user_id: str) -> Optional[MemberSnapshot]:
        if not self._guild_id:
            raise DeliveryError("discord_guild_id is not configured")

        response = await self._request("GET", f"/guilds/{self._guild_id}/members/{user_id}")
        if response.status_code == 404:
            return None
        if response.is_error:
            raise DeliveryError(f"Member lookup failed ({response.status_code})")

        data = response.json()
        user = data.get("user") or {}
        return MemberSnapshot(
            user_id=str(user.get("id", user_id)),
            username=user.get("username"),
            role_ids=[str(role) for role in data.get("roles", [])],
        )


class LogOnlyChatPlatform:
    """
    Fallback platform that only logs deliveries.

    Used in development when no bot token is configured.
    """

    async def send_to_channel(self, channel_id: str, body: Dict[str, Any]) -> SentMessage:
        logger.warning(
            f"Chat platform not configured, channel message logged only: {channel_id}",
            extra={"channel_id": channel_id, "body": body},
        )
        return SentMessage(message_id="log-only", channel_id=channel_id)

    async def send_direct_message(self, user_id: str, body: Dict[str, Any]) -> SentMessage:
        logger.warning(
            f"Chat platform not configured, DM logged only: {user_id}",
            extra={"user_id": user_id, "body": body},
        )
        return SentMessage(message_id="log-only", channel_id=f"dm:{user_id}")

    async def add_reactions(self, channel_id: str, message_id: str, emojis: Sequence[str]) -> None:
        return None

    async def fetch_member(self, user_id: str) -> Optional[MemberSnapshot]:
        return MemberSnapshot(user_id=user_id)
