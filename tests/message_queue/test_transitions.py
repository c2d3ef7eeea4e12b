"""
Tests for queue state transitions and retry policy.
"""
import pytest
import datetime as dt

from shopbridge.errors import DeliveryError, InvalidTransitionError, PermanentRecipientError
from shopbridge.message_queue.transitions import (
    RetryPolicy,
    TransitionOutcome,
    plan_failure,
    plan_success,
    record_delivery_failure,
    record_delivery_success,
)
from shopbridge.models.queue import MessageStatus


class TestRetryPolicy:

    @pytest.fixture
    def policy(self):
        return RetryPolicy(base_seconds=30, max_seconds=900, jitter=0.2)

    @pytest.mark.parametrize("attempts,expected", [(1, 30), (2, 60), (3, 120), (5, 480), (6, 900), (10, 900)])
    def test_delay_without_jitter(self, policy, attempts, expected):
        """rand() == 0.5 is the midpoint of the jitter band."""
        assert policy.delay_for(attempts, rand=lambda: 0.5) == pytest.approx(expected)

    def test_jitter_bounds(self, policy):
        assert policy.delay_for(2, rand=lambda: 0.0) == pytest.approx(60 * 0.8)
        assert policy.delay_for(2, rand=lambda: 0.999999) == pytest.approx(60 * 1.2, rel=1e-4)

    def test_delay_never_exceeds_cap_with_jitter(self, policy):
        assert policy.delay_for(20, rand=lambda: 0.999999) <= 900 * 1.2


class TestPlans:

    def test_success_increments_attempts(self, channel_message):
        plan = plan_success(channel_message())

        assert plan.outcome == TransitionOutcome.SENT
        assert plan.attempts == 1

    def test_failure_below_max_retries(self, channel_message, now):
        plan = plan_failure(channel_message(), DeliveryError("boom"), now, RetryPolicy(), rand=lambda: 0.5)

        assert plan.outcome == TransitionOutcome.RETRY
        assert plan.attempts == 1
        assert plan.next_attempt_at == now + dt.timedelta(seconds=30)
        assert plan.reason == "boom"

    def test_failure_at_max_fails(self, channel_message, now):
        message = channel_message(attempts=2, max_attempts=3)

        plan = plan_failure(message, DeliveryError("boom"), now, RetryPolicy())

        assert plan.outcome == TransitionOutcome.FAILED
        assert plan.attempts == 3

    def test_permanent_error_fails_immediately(self, dm_message, now):
        plan = plan_failure(dm_message(), PermanentRecipientError("DMs closed"), now, RetryPolicy())

        assert plan.outcome == TransitionOutcome.FAILED
        assert plan.attempts == 1

    def test_terminal_message_rejected(self, channel_message, now):
        message = channel_message(status=MessageStatus.SENT, attempts=1)

        with pytest.raises(InvalidTransitionError):
            plan_success(message)
        with pytest.raises(InvalidTransitionError):
            plan_failure(message, DeliveryError("x"), now, RetryPolicy())


class TestRecording:

    @pytest.mark.asyncio
    async def test_retry_then_fail(self, store, channel_message, now):
        """A message is attempted at most max_attempts times."""
        message_id = await store.enqueue(channel_message(max_attempts=2))
        policy = RetryPolicy()

        first = await record_delivery_failure(store, await store.get_message(message_id), DeliveryError("e1"), policy, now)
        assert first.outcome == TransitionOutcome.RETRY
        stored = await store.get_message(message_id)
        assert stored.attempts == 1
        assert stored.status == MessageStatus.PENDING
        assert stored.scheduled_for > now

        second = await record_delivery_failure(store, stored, DeliveryError("e2"), policy, now)
        assert second.outcome == TransitionOutcome.FAILED
        stored = await store.get_message(message_id)
        assert stored.status == MessageStatus.FAILED
        assert stored.attempts == 2
        assert stored.last_error == "e2"

    @pytest.mark.asyncio
    async def test_sent_is_immutable(self, store, channel_message, now):
        message_id = await store.enqueue(channel_message())
        pending = await store.get_message(message_id)

        await record_delivery_success(store, pending, now)

        # Stale copy still says pending; the store guard refuses it
        with pytest.raises(InvalidTransitionError):
            await record_delivery_failure(store, pending, DeliveryError("late"), RetryPolicy(), now)

        stored = await store.get_message(message_id)
        assert stored.status == MessageStatus.SENT
        assert stored.sent_at == now
