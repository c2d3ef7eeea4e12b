"""Tests for operator messaging."""

import datetime as dt
import pytest

from shopbridge.models.members import MemberRecord
from shopbridge.models.queue import MessageKind
from shopbridge.services.announcements import OperatorMessaging


@pytest.fixture
def messaging(store, now):
    return OperatorMessaging(store, stagger_seconds=2.0, max_attempts=4, clock=lambda: now)


class TestOperatorMessaging:

    async def test_send_to_channel(self, messaging, store):
        message_id = await messaging.send_to_channel("chan-9", content="Sale starts now", author_id="op-1")

        message = await store.get_message(message_id)
        assert message.kind == MessageKind.CUSTOM_CHANNEL_MESSAGE
        assert message.destination.identifier == "chan-9"
        assert message.payload.author_id == "op-1"
        assert message.priority == 1
        assert message.max_attempts == 4

    async def test_send_direct(self, messaging, store):
        message_id = await messaging.send_direct("user-3", embed={"title": "Hi"})

        message = await store.get_message(message_id)
        assert message.kind == MessageKind.CUSTOM_DIRECT_MESSAGE
        assert message.destination.identifier == "user-3"

    async def test_broadcast_skips_unreachable_members(self, messaging, store, now):
        await store.upsert_member(MemberRecord(user_id="a", joined_at=now - dt.timedelta(days=3)))
        await store.upsert_member(MemberRecord(user_id="b", joined_at=now - dt.timedelta(days=2)))
        await store.upsert_member(MemberRecord(user_id="closed", has_closed_dms_role=True))
        await store.upsert_member(MemberRecord(user_id="left", still_in_server=False))
        await store.upsert_member(MemberRecord(user_id="opted-out", opt_out_at=now - dt.timedelta(days=1)))

        result = await messaging.broadcast(content="Hello everyone")

        assert result.recipients == 2
        assert result.first_delivery_at == now
        assert result.last_delivery_at == now + dt.timedelta(seconds=2)
        assert (await store.queue_stats()).pending == 2

    async def test_broadcast_staggered(self, messaging, store, now):
        for i in range(3):
            await store.upsert_member(MemberRecord(user_id=f"m{i}", joined_at=now - dt.timedelta(days=3 - i)))

        await messaging.broadcast(content="Hello")

        assert len(await store.fetch_due(10, now)) == 1
        assert len(await store.fetch_due(10, now + dt.timedelta(seconds=4))) == 3

    async def test_broadcast_no_members(self, messaging, store):
        result = await messaging.broadcast(content="Anyone?")

        assert result.recipients == 0
        assert (await store.queue_stats()).total == 0
