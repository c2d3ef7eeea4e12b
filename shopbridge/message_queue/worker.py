"""
Queue Drainer

Background worker that drains due messages from the store, delivers them
and applies the resulting state transition. A second periodic task purges
old terminal rows.
"""

import asyncio
import datetime as dt
import time
from dataclasses import dataclass
from typing import Callable, Optional

from shopbridge.errors import DeliveryError, InvalidTransitionError
from shopbridge.message_queue.base import DeliveryStore
from shopbridge.message_queue.dispatcher import MessageDispatcher
from shopbridge.message_queue.transitions import (
    RetryPolicy,
    TransitionOutcome,
    record_delivery_failure,
    record_delivery_success,
)
from shopbridge.models.base import utcnow
from shopbridge.models.queue import TERMINAL_STATUSES, QueuedMessage
from shopbridge.utils.observability import log_delivery_attempt, logger
from shopbridge.utils.periodic import PeriodicTask


@dataclass
class DrainReport:
    """Counts from one drain pass."""
    fetched: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    skipped: bool = False


class QueueDrainer:
    """
    Single-consumer drain loop for the outbound queue.

    Polls every `poll_interval` seconds and is woken immediately when the
    store reports an enqueue. Each pass handles at most `batch_size`
    messages, sequentially, each wrapped in a `delivery_timeout`.

    Attributes:
        store: Persistence interface
        dispatcher: Routes messages to the chat platform
        policy: Backoff policy for failed attempts
    """

    def __init__(
        self,
        store: DeliveryStore,
        dispatcher: MessageDispatcher,
        policy: Optional[RetryPolicy] = None,
        batch_size: int = 10,
        poll_interval: float = 30.0,
        delivery_timeout: float = 10.0,
        retention: dt.timedelta = dt.timedelta(days=30),
        purge_interval: float = 24 * 3600,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        """
        Initialize queue drainer.

        Args:
            store: Persistence interface
            dispatcher: Delivery router
            policy: Retry policy (defaults to RetryPolicy())
            batch_size: Messages per pass
            poll_interval: Seconds between passes
            delivery_timeout: Per-delivery timeout in seconds
            retention: Age after which terminal rows are purged
            purge_interval: Seconds between purge runs
            clock: Source of "now", injectable for tests
        """
        self.store = store
        self.dispatcher = dispatcher
        self.policy = policy or RetryPolicy()
        self.batch_size = batch_size
        self.delivery_timeout = delivery_timeout
        self.retention = retention
        self._clock = clock
        self._drain_task = PeriodicTask("Queue drainer", self.drain_once, poll_interval, run_immediately=True)
        self._purge_task = PeriodicTask("Queue purge", self.purge_once, purge_interval, run_immediately=True)
        self._draining = False

        store.add_enqueue_listener(self.wake)

    @property
    def is_running(self) -> bool:
        return self._drain_task.is_running

    def start(self) -> None:
        self._drain_task.start()
        self._purge_task.start()

    async def stop(self) -> None:
        await self._drain_task.stop()
        await self._purge_task.stop()
        await self.dispatcher.shutdown()

    def wake(self) -> None:
        """Trigger an immediate pass if the loop is idle."""
        if self.is_running and not self._draining:
            self._drain_task.wake()

    async def drain_once(self) -> DrainReport:
        """
        Run one drain pass.

        Returns immediately (skipped=True) if a pass is already running.
        """
        if self._draining:
            logger.debug("Drain pass already running, skipping")
            return DrainReport(skipped=True)

        self._draining = True
        report = DrainReport()
        try:
            batch = await self.store.fetch_due(self.batch_size, self._clock())
            report.fetched = len(batch)

            for message in batch:
                outcome = await self._deliver(message)
                if outcome == TransitionOutcome.SENT:
                    report.sent += 1
                elif outcome == TransitionOutcome.RETRY:
                    report.retried += 1
                elif outcome == TransitionOutcome.FAILED:
                    report.failed += 1
        finally:
            self._draining = False

        if report.fetched:
            logger.info(
                f"📤 Drain pass: {report.sent} sent, {report.retried} retrying, {report.failed} failed",
                extra={"fetched": report.fetched, "sent": report.sent, "retried": report.retried, "failed": report.failed},
            )
        return report

    async def _deliver(self, message: QueuedMessage) -> Optional[TransitionOutcome]:
        started = time.perf_counter()
        try:
            try:
                await asyncio.wait_for(self.dispatcher.dispatch(message), timeout=self.delivery_timeout)
            except asyncio.TimeoutError:
                raise DeliveryError(f"Delivery timed out after {self.delivery_timeout}s")
        except Exception as e:
            return await self._record_failure(message, e)

        duration_ms = (time.perf_counter() - started) * 1000
        try:
            plan = await record_delivery_success(self.store, message, self._clock())
        except InvalidTransitionError as e:
            logger.warning(f"Sent message {message.id} could not be marked sent: {e}")
            return None
        except Exception as e:
            logger.error(
                f"❌ Store error marking message {message.id} sent: {e}",
                extra={"message_id": message.id, "error": str(e)},
            )
            return None

        log_delivery_attempt(message.id, message.kind.value, "sent", plan.attempts, duration_ms=duration_ms)
        return plan.outcome

    async def _record_failure(self, message: QueuedMessage, error: Exception) -> Optional[TransitionOutcome]:
        try:
            plan = await record_delivery_failure(self.store, message, error, self.policy, self._clock())
        except InvalidTransitionError as e:
            logger.warning(f"Failed message {message.id} could not be updated: {e}")
            return None
        except Exception as e:
            logger.error(
                f"❌ Store error recording failure for message {message.id}: {e}",
                extra={"message_id": message.id, "error": str(e)},
            )
            return None

        log_delivery_attempt(message.id, message.kind.value, plan.outcome.value, plan.attempts, error=plan.reason)
        if plan.outcome == TransitionOutcome.FAILED:
            logger.error(
                f"❌ Message {message.id} failed permanently: {plan.reason}",
                extra={
                    "message_id": message.id,
                    "kind": message.kind.value,
                    "attempts": plan.attempts,
                    "error": plan.reason,
                },
            )
        return plan.outcome

    async def purge_once(self) -> int:
        """Delete sent/failed rows older than the retention window."""
        removed = await self.store.purge_older_than(self.retention, TERMINAL_STATUSES, self._clock())
        if removed:
            logger.info(f"🧹 Purged {removed} terminal messages older than {self.retention.days} days")
        return removed
