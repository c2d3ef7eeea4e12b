"""
Queue State Transitions

Every status change of a QueuedMessage goes through this module:

    pending --success-------------------------> sent
    pending --failure, attempts < max---------> pending (rescheduled)
    pending --failure, attempts reaches max---> failed
    pending --permanent recipient error-------> failed

Sent and failed are terminal. The planning functions are pure; the
`record_*` coroutines apply a plan through the store, whose writes are
guarded on `status == pending`.
"""

import datetime as dt
import random
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Optional

from shopbridge.errors import InvalidTransitionError, PermanentRecipientError
from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.base import utcnow
from shopbridge.models.queue import MessageStatus, QueuedMessage


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with multiplicative jitter.

    delay = min(base * 2^(attempts - 1), max) * U(1 - jitter, 1 + jitter)
    """
    base_seconds: float = 30.0
    max_seconds: float = 900.0
    jitter: float = 0.2

    def delay_for(self, attempts: int, rand: Callable[[], float] = random.random) -> float:
        """
        Seconds to wait before the next attempt.

        Args:
            attempts: Attempts made so far (>= 1)
            rand: Uniform [0, 1) source, injectable for tests

        Returns:
            Delay in seconds
        """
        exponent = max(attempts - 1, 0)
        raw = min(self.base_seconds * (2 ** exponent), self.max_seconds)
        return raw * (1 - self.jitter + 2 * self.jitter * rand())

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            base_seconds=settings.queue_retry_base_seconds,
            max_seconds=settings.queue_retry_max_seconds,
        )


class TransitionOutcome(StrEnum):
    SENT = "sent"
    RETRY = "retry"
    FAILED = "failed"


@dataclass(frozen=True)
class TransitionPlan:
    outcome: TransitionOutcome
    attempts: int
    next_attempt_at: Optional[dt.datetime] = None
    reason: Optional[str] = None


def ensure_pending(message: QueuedMessage) -> None:
    if message.status != MessageStatus.PENDING:
        raise InvalidTransitionError(
            f"Message {message.id} is {message.status}; terminal messages are immutable"
        )


def plan_success(message: QueuedMessage) -> TransitionPlan:
    ensure_pending(message)
    attempts = min(message.attempts + 1, message.max_attempts)
    return TransitionPlan(outcome=TransitionOutcome.SENT, attempts=attempts)


def plan_failure(
    message: QueuedMessage,
    error: BaseException,
    now: dt.datetime,
    policy: RetryPolicy,
    rand: Callable[[], float] = random.random,
) -> TransitionPlan:
    """
    Decide what a failed attempt does to a pending message.

    Args:
        message: Message whose delivery failed
        error: What went wrong
        now: Reference instant for rescheduling
        policy: Backoff policy
        rand: Jitter source

    Returns:
        RETRY with a new schedule, or FAILED
    """
    ensure_pending(message)
    attempts = message.attempts + 1
    reason = str(error) or error.__class__.__name__

    if isinstance(error, PermanentRecipientError) or attempts >= message.max_attempts:
        return TransitionPlan(
            outcome=TransitionOutcome.FAILED,
            attempts=min(attempts, message.max_attempts),
            reason=reason,
        )

    delay = policy.delay_for(attempts, rand)
    return TransitionPlan(
        outcome=TransitionOutcome.RETRY,
        attempts=attempts,
        next_attempt_at=now + dt.timedelta(seconds=delay),
        reason=reason,
    )


async def record_delivery_success(
    store: DeliveryStore,
    message: QueuedMessage,
    now: Optional[dt.datetime] = None,
) -> TransitionPlan:
    plan = plan_success(message)
    applied = await store.mark_sent(message.id, now or utcnow(), plan.attempts)
    if not applied:
        raise InvalidTransitionError(f"Message {message.id} was no longer pending")
    return plan


async def record_delivery_failure(
    store: DeliveryStore,
    message: QueuedMessage,
    error: BaseException,
    policy: RetryPolicy,
    now: Optional[dt.datetime] = None,
) -> TransitionPlan:
    """
    Apply a failed attempt: reschedule with backoff or move to failed.

    Raises:
        InvalidTransitionError: if the stored message is no longer pending
    """
    plan = plan_failure(message, error, now or utcnow(), policy)

    if plan.outcome == TransitionOutcome.FAILED:
        applied = await store.mark_failed(message.id, plan.reason, plan.attempts)
    else:
        applied = await store.record_retry(message.id, plan.reason, plan.next_attempt_at)

    if not applied:
        raise InvalidTransitionError(f"Message {message.id} was no longer pending")
    return plan
