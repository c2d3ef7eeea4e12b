"""
Tests for QueueDrainer.
"""

import pytest
import asyncio
import datetime as dt
from unittest.mock import AsyncMock

from shopbridge.errors import DeliveryError, PermanentRecipientError
from shopbridge.message_queue import MessageDispatcher, QueueDrainer, RetryPolicy
from shopbridge.models.queue import MessageStatus


class TestQueueDrainer:
    """Test suite for QueueDrainer."""

    @pytest.fixture
    def clock(self, now):
        return lambda: now

    @pytest.fixture
    def drainer(self, store, mock_platform, clock):
        dispatcher = MessageDispatcher(mock_platform)
        return QueueDrainer(
            store=store,
            dispatcher=dispatcher,
            policy=RetryPolicy(base_seconds=30, max_seconds=900),
            batch_size=10,
            delivery_timeout=0.5,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_drain_marks_sent(self, store, drainer, channel_message, mock_platform, now):
        message_id = await store.enqueue(channel_message(scheduled_for=now))

        report = await drainer.drain_once()

        assert report.fetched == 1
        assert report.sent == 1
        stored = await store.get_message(message_id)
        assert stored.status == MessageStatus.SENT
        assert stored.attempts == 1
        assert stored.sent_at == now
        mock_platform.send_to_channel.assert_awaited_once_with("chan-1", {"content": "hello"})

    @pytest.mark.asyncio
    async def test_transient_failure_reschedules(self, store, drainer, channel_message, mock_platform, now):
        mock_platform.send_to_channel = AsyncMock(side_effect=DeliveryError("rate limited"))
        message_id = await store.enqueue(channel_message(scheduled_for=now))

        report = await drainer.drain_once()

        assert report.retried == 1
        stored = await store.get_message(message_id)
        assert stored.status == MessageStatus.PENDING
        assert stored.attempts == 1
        assert stored.last_error == "rate limited"
        assert now + dt.timedelta(seconds=24) <= stored.scheduled_for <= now + dt.timedelta(seconds=36)

        # Not due again until the backoff elapses
        assert (await drainer.drain_once()).fetched == 0

    @pytest.mark.asyncio
    async def test_permanent_error_fails_without_retry(self, store, drainer, dm_message, mock_platform, now):
        mock_platform.send_direct_message = AsyncMock(side_effect=PermanentRecipientError("DMs closed"))
        message_id = await store.enqueue(dm_message(scheduled_for=now))

        report = await drainer.drain_once()

        assert report.failed == 1
        stored = await store.get_message(message_id)
        assert stored.status == MessageStatus.FAILED
        assert stored.attempts == 1
        mock_platform.send_direct_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, store, drainer, channel_message, mock_platform, now):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        mock_platform.send_to_channel = AsyncMock(side_effect=hang)
        message_id = await store.enqueue(channel_message(scheduled_for=now))

        report = await drainer.drain_once()

        assert report.retried == 1
        assert "timed out" in (await store.get_message(message_id)).last_error

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail(self, store, drainer, channel_message, mock_platform, now):
        mock_platform.send_to_channel = AsyncMock(side_effect=DeliveryError("down"))
        message_id = await store.enqueue(channel_message(scheduled_for=now, attempts=2, max_attempts=3))

        report = await drainer.drain_once()

        assert report.failed == 1
        stored = await store.get_message(message_id)
        assert stored.status == MessageStatus.FAILED
        assert stored.attempts == 3

    @pytest.mark.asyncio
    async def test_batch_continues_after_failure(self, store, drainer, channel_message, mock_platform, now):
        mock_platform.send_to_channel = AsyncMock(side_effect=[DeliveryError("first"), None])
        await store.enqueue(channel_message(scheduled_for=now))
        await store.enqueue(channel_message(scheduled_for=now))

        report = await drainer.drain_once()

        assert report.retried == 1
        assert report.sent == 1

    @pytest.mark.asyncio
    async def test_store_error_on_mark_sent_does_not_stop_batch(self, store, drainer, channel_message, mock_platform, now):
        first = await store.enqueue(channel_message(scheduled_for=now))
        second = await store.enqueue(channel_message(scheduled_for=now))
        real_mark_sent = store.mark_sent
        calls = []

        async def mark_sent(*args):
            calls.append(args[0])
            if len(calls) == 1:
                raise RuntimeError("store unavailable")
            return await real_mark_sent(*args)

        store.mark_sent = mark_sent

        report = await drainer.drain_once()

        assert report.sent == 1
        assert mock_platform.send_to_channel.await_count == 2
        assert (await store.get_message(first)).status == MessageStatus.PENDING
        assert (await store.get_message(second)).status == MessageStatus.SENT

    @pytest.mark.asyncio
    async def test_store_error_on_retry_does_not_stop_batch(self, store, drainer, channel_message, mock_platform, now):
        mock_platform.send_to_channel = AsyncMock(side_effect=[DeliveryError("first"), None])
        await store.enqueue(channel_message(scheduled_for=now))
        second = await store.enqueue(channel_message(scheduled_for=now))
        store.record_retry = AsyncMock(side_effect=RuntimeError("store unavailable"))

        report = await drainer.drain_once()

        assert report.retried == 0
        assert report.sent == 1
        assert (await store.get_message(second)).status == MessageStatus.SENT

    @pytest.mark.asyncio
    async def test_concurrent_drain_is_skipped(self, drainer):
        drainer._draining = True

        report = await drainer.drain_once()

        assert report.skipped is True

    @pytest.mark.asyncio
    async def test_purge_once(self, store, drainer, channel_message, now):
        old = now - dt.timedelta(days=40)
        message_id = await store.enqueue(channel_message(created_at=old))
        await store.mark_sent(message_id, old, 1)

        assert await drainer.purge_once() == 1

    @pytest.mark.asyncio
    async def test_enqueue_wakes_running_loop(self, store, mock_platform, channel_message):
        """A message enqueued while the loop sleeps is delivered without waiting for the poll."""
        drainer = QueueDrainer(
            store=store,
            dispatcher=MessageDispatcher(mock_platform),
            poll_interval=60,
        )
        drainer.start()
        try:
            await asyncio.sleep(0.05)
            message_id = await store.enqueue(channel_message())

            for _ in range(50):
                if (await store.get_message(message_id)).status == MessageStatus.SENT:
                    break
                await asyncio.sleep(0.02)

            assert (await store.get_message(message_id)).status == MessageStatus.SENT
        finally:
            await drainer.stop()

        assert drainer.is_running is False
