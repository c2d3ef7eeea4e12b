"""
Tests for queue metrics endpoint.
"""
import pytest
from unittest.mock import AsyncMock


class TestQueueMetrics:

    @pytest.mark.asyncio
    async def test_counts(self, client, services, store, channel_message, now):
        await store.enqueue(channel_message())
        sent_id = await store.enqueue(channel_message())
        await store.mark_sent(sent_id, now, 1)

        response = client.get("/metrics/queue")

        assert response.status_code == 200
        assert response.json() == {"total": 2, "pending": 1, "sent": 1, "failed": 0}

    def test_503_before_startup(self, client):
        assert client.get("/metrics/queue").status_code == 503

    def test_store_failure_returns_500(self, client, services, store):
        store.queue_stats = AsyncMock(side_effect=RuntimeError("db down"))

        response = client.get("/metrics/queue")

        assert response.status_code == 500
        assert "db down" in response.json()["error"]
