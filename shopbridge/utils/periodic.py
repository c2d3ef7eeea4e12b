"""
Periodic Task

Background loop that runs an async job on a fixed period, can be woken
early, and never overlaps itself.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional
from loguru import logger


class PeriodicTask:
    """
    Runs `job` every `interval` seconds until stopped.

    Attributes:
        name: Label used in logs
        job: Async callable executed on each tick
        interval: Seconds between ticks
        run_immediately: Tick once as soon as the loop starts
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        interval: float,
        run_immediately: bool = False,
    ):
        self.name = name
        self.job = job
        self.interval = interval
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._stopping = False
        self._in_tick = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_tick(self) -> bool:
        return self._in_tick

    def start(self) -> None:
        """Start the loop on the running event loop."""
        if self.is_running:
            logger.warning(f"{self.name} already running")
            return

        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"🚀 {self.name} started (interval={self.interval}s)")

    def wake(self) -> None:
        """Request an immediate tick."""
        self._wake.set()

    async def run_once(self) -> bool:
        """
        Execute one tick unless a tick is already in progress.

        Returns:
            True if the job ran, False if it was skipped
        """
        if self._in_tick:
            logger.debug(f"{self.name} tick skipped, previous tick still running")
            return False

        self._in_tick = True
        try:
            await self.job()
        except Exception as e:
            logger.error(f"{self.name} tick failed: {e}", exc_info=True)
        finally:
            self._in_tick = False
        return True

    async def stop(self) -> None:
        """Stop the loop, cancelling any sleep or tick in progress."""
        if not self._task:
            return

        self._stopping = True
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"🛑 {self.name} stopped")

    async def _loop(self) -> None:
        if self.run_immediately:
            await self.run_once()

        while not self._stopping:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

            if self._stopping:
                break
            await self.run_once()
