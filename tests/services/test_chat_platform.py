"""Tests for the Discord REST chat platform adapter."""

import httpx
import pytest

from shopbridge.errors import DeliveryError, PermanentRecipientError
from shopbridge.services.chat_platform import DiscordRestClient, LogOnlyChatPlatform

BASE = "https://discord.test/api/v10"


def make_client(handler) -> DiscordRestClient:
    return DiscordRestClient(
        token="bot-token",
        base_url=BASE,
        guild_id="guild-1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestDiscordRestClient:

    async def test_send_to_channel(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": "msg-1", "channel_id": "chan-1"})

        receipt = await make_client(handler).send_to_channel("chan-1", {"content": "hi"})

        assert receipt.message_id == "msg-1"
        assert receipt.channel_id == "chan-1"
        assert seen == {"auth": "Bot bot-token", "path": "/api/v10/channels/chan-1/messages"}

    async def test_unknown_channel(self):
        client = make_client(lambda request: httpx.Response(404, json={"code": 10003}))

        with pytest.raises(DeliveryError):
            await client.send_to_channel("missing", {"content": "hi"})

    async def test_rate_limited_is_transient(self):
        client = make_client(lambda request: httpx.Response(429, headers={"Retry-After": "2"}))

        with pytest.raises(DeliveryError) as exc_info:
            await client.send_to_channel("chan-1", {"content": "hi"})

        assert not isinstance(exc_info.value, PermanentRecipientError)

    async def test_transport_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(DeliveryError):
            await make_client(handler).send_to_channel("chan-1", {"content": "hi"})

    async def test_direct_message_opens_dm_channel(self):
        paths = []

        def handler(request: httpx.Request):
            paths.append(request.url.path)
            if request.url.path.endswith("/users/@me/channels"):
                return httpx.Response(200, json={"id": "dm-77"})
            return httpx.Response(200, json={"id": "msg-2"})

        receipt = await make_client(handler).send_direct_message("user-1", {"content": "hi"})

        assert receipt.channel_id == "dm-77"
        assert paths == ["/api/v10/users/@me/channels", "/api/v10/channels/dm-77/messages"]

    async def test_closed_dms_is_permanent(self):
        def handler(request: httpx.Request):
            if request.url.path.endswith("/users/@me/channels"):
                return httpx.Response(200, json={"id": "dm-77"})
            return httpx.Response(403, json={"code": 50007, "message": "Cannot send messages to this user"})

        with pytest.raises(PermanentRecipientError):
            await make_client(handler).send_direct_message("user-1", {"content": "hi"})

    async def test_other_forbidden_is_transient(self):
        def handler(request: httpx.Request):
            if request.url.path.endswith("/users/@me/channels"):
                return httpx.Response(200, json={"id": "dm-77"})
            return httpx.Response(403, json={"code": 50013})

        with pytest.raises(DeliveryError) as exc_info:
            await make_client(handler).send_direct_message("user-1", {"content": "hi"})

        assert not isinstance(exc_info.value, PermanentRecipientError)

    async def test_add_reactions_in_order(self):
        paths = []

        def handler(request: httpx.Request):
            paths.append(request.url.raw_path.decode())
            return httpx.Response(204)

        await make_client(handler).add_reactions("chan-1", "msg-1", ["🔥", "❤️"])

        assert len(paths) == 2
        assert paths[0].startswith("/api/v10/channels/chan-1/messages/msg-1/reactions/%F0%9F%94%A5")

    async def test_fetch_member(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/api/v10/guilds/guild-1/members/user-1"
            return httpx.Response(200, json={"user": {"id": "user-1", "username": "alice"}, "roles": [111, 222]})

        member = await make_client(handler).fetch_member("user-1")

        assert member.username == "alice"
        assert member.role_ids == ["111", "222"]
        assert member.has_role("222") is True
        assert member.has_role(None) is False

    async def test_fetch_member_left(self):
        client = make_client(lambda request: httpx.Response(404, json={"code": 10007}))

        assert await client.fetch_member("user-1") is None


class TestLogOnlyChatPlatform:

    async def test_deliveries_succeed(self):
        platform = LogOnlyChatPlatform()

        receipt = await platform.send_direct_message("user-1", {"content": "hi"})

        assert receipt.channel_id == "dm:user-1"
        assert (await platform.fetch_member("user-1")).user_id == "user-1"
