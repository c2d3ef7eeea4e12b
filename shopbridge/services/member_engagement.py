"""
Scheduled Member Engagement

Sends one welcome DM to new community members after a waiting period.
Every send is gated on compliance state at fire time: a member holding
the closed-DMs role, or one who left, is never messaged.
"""

import asyncio
import datetime as dt
from enum import StrEnum
from typing import Awaitable, Callable, Dict, Iterable, Optional

from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.base import utcnow
from shopbridge.models.members import MemberRecord
from shopbridge.models.settings import AUTO_DM_ENABLED, is_enabled
from shopbridge.services.chat_platform import ChatPlatform
from shopbridge.services.notifications import build_welcome_message
from shopbridge.utils.observability import log_business_event, logger
from shopbridge.utils.periodic import PeriodicTask

WELCOME_TEMPLATE_TYPE = "auto_dm"


class WelcomeDmDecision(StrEnum):
    """Why a fire-time check did or did not enqueue a DM."""
    ENQUEUED = "enqueued"
    DISABLED = "disabled"
    UNKNOWN_MEMBER = "unknown_member"
    LEFT_SERVER = "left_server"
    ALREADY_SENT = "already_sent"
    CLOSED_DMS = "closed_dms"
    NOT_VERIFIED = "not_verified"
    NO_TEMPLATE = "no_template"


class WelcomeDmScheduler:
    """
    Producer of AutoDirectMessage queue rows.

    Join events start an in-process timer; a periodic sweep picks up
    members whose timer was lost (e.g. across a restart). Both paths go
    through `process_member`, which marks the member first and enqueues
    second so a member can never be scheduled twice.

    Usage:
        scheduler = WelcomeDmScheduler.from_settings(store, platform, settings)
        scheduler.start()
        await scheduler.on_member_join("123", "alice", role_ids=["verified"])
    """

    def __init__(
        self,
        store: DeliveryStore,
        platform: ChatPlatform,
        verified_role_id: Optional[str] = None,
        closed_dms_role_id: Optional[str] = None,
        delay: dt.timedelta = dt.timedelta(minutes=65),
        require_verified: bool = True,
        sweep_interval: float = 60.0,
        max_per_sweep: int = 20,
        send_delay: float = 1.0,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        """
        Initialize the scheduler.

        Args:
            store: Persistence interface
            platform: Chat platform (live member lookups at fire time)
            verified_role_id: Role that marks a verified member
            closed_dms_role_id: Role that opts a member out of DMs
            delay: Wait between join and welcome DM
            require_verified: Only DM verified members
            sweep_interval: Seconds between sweeps
            max_per_sweep: Members handled per sweep
            send_delay: Seconds between members within a sweep
            max_attempts: Delivery attempts per DM
            sleep: Awaitable sleep, injectable for tests
            clock: Source of "now", injectable for tests
        """
        self.store = store
        self.platform = platform
        self.verified_role_id = verified_role_id
        self.closed_dms_role_id = closed_dms_role_id
        self.delay = delay
        self.require_verified = require_verified
        self.max_per_sweep = max_per_sweep
        self.send_delay = send_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._clock = clock
        self._timers: Dict[str, asyncio.Task] = {}
        self._sweep_task = PeriodicTask("Welcome DM sweep", self.sweep, sweep_interval)

    @classmethod
    def from_settings(cls, store: DeliveryStore, platform: ChatPlatform, settings) -> "WelcomeDmScheduler":
        return cls(
            store=store,
            platform=platform,
            verified_role_id=settings.verified_role_id,
            closed_dms_role_id=settings.closed_dms_role_id,
            delay=dt.timedelta(minutes=settings.auto_dm_delay_minutes),
            require_verified=settings.auto_dm_require_verified,
            sweep_interval=settings.auto_dm_sweep_interval_seconds,
            max_per_sweep=settings.auto_dm_max_per_sweep,
            send_delay=settings.auto_dm_send_delay_seconds,
            max_attempts=settings.queue_default_max_attempts,
        )

    @property
    def scheduled_user_ids(self) -> set[str]:
        return {user_id for user_id, task in self._timers.items() if not task.done()}

    def start(self) -> None:
        self._sweep_task.start()

    async def shutdown(self) -> None:
        """Stop the sweep and cancel outstanding timers."""
        await self._sweep_task.stop()
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    async def _auto_dm_enabled(self) -> bool:
        return is_enabled(await self.store.get_setting(AUTO_DM_ENABLED, "true"))

    def _has_role(self, role_ids: Iterable[str], role_id: Optional[str]) -> bool:
        return bool(role_id) and role_id in set(role_ids)

    # ==================== Gateway events ====================

    async def on_member_join(
        self,
        user_id: str,
        username: Optional[str] = None,
        role_ids: Iterable[str] = (),
        joined_at: Optional[dt.datetime] = None,
    ) -> MemberRecord:
        """
        Record a join and schedule the welcome DM if the member may receive one.

        A rejoining member keeps their welcome_dm_sent and opt-out history.
        """
        roles = list(role_ids)
        has_closed = self._has_role(roles, self.closed_dms_role_id)
        now = self._clock()
        existing = await self.store.get_member(user_id)
        previously_opted_out = existing is not None and existing.opt_out_at is not None

        member = MemberRecord(
            user_id=user_id,
            username=username,
            joined_at=joined_at or now,
            is_verified=self._has_role(roles, self.verified_role_id),
            has_closed_dms_role=has_closed or previously_opted_out,
            welcome_dm_sent=existing.welcome_dm_sent if existing else False,
            still_in_server=True,
            dm_sent_at=existing.dm_sent_at if existing else None,
            opt_out_at=(existing.opt_out_at if existing else None) or (now if has_closed else None),
        )
        stored = await self.store.upsert_member(member)

        if stored.has_opted_out:
            logger.info(f"Member {user_id} joined with DMs closed or previously opted out, no welcome DM")
        elif stored.welcome_dm_sent:
            logger.info(f"Member {user_id} rejoined, welcome DM already sent")
        elif not await self._auto_dm_enabled():
            logger.info(f"Auto DM disabled, not scheduling welcome DM for {user_id}")
        else:
            self.schedule(user_id)
            log_business_event(
                "welcome_dm_scheduled",
                user_id,
                fire_at=(now + self.delay).isoformat(),
            )
        return stored

    async def on_member_leave(self, user_id: str) -> None:
        self.cancel(user_id)
        if await self.store.update_member_fields(user_id, still_in_server=False):
            logger.info(f"👋 Member {user_id} left the server")

    async def on_member_roles_updated(self, user_id: str, role_ids: Iterable[str]) -> None:
        """Mirror verified/closed-DMs roles onto the stored record."""
        roles = list(role_ids)
        member = await self.store.get_member(user_id)
        if member is None:
            logger.debug(f"Role update for untracked member {user_id}, ignoring")
            return

        has_closed = self._has_role(roles, self.closed_dms_role_id)
        fields = {
            "is_verified": self._has_role(roles, self.verified_role_id),
            "has_closed_dms_role": has_closed,
        }
        if has_closed:
            self.cancel(user_id)
            if not member.has_closed_dms_role:
                fields["opt_out_at"] = self._clock()
                log_business_event("member_opted_out", user_id)

        await self.store.update_member_fields(user_id, **fields)

    # ==================== Timers ====================

    def schedule(self, user_id: str, delay: Optional[dt.timedelta] = None) -> None:
        """(Re)start the welcome DM timer for a member."""
        self.cancel(user_id)
        seconds = (delay if delay is not None else self.delay).total_seconds()
        self._timers[user_id] = asyncio.create_task(
            self._fire_after(user_id, seconds),
            name=f"welcome-dm-{user_id}",
        )

    def cancel(self, user_id: str) -> bool:
        task = self._timers.pop(user_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _fire_after(self, user_id: str, seconds: float) -> None:
        await self._sleep(seconds)
        # Past this point the timer is no longer cancellable by member events
        self._timers.pop(user_id, None)
        try:
            await self.process_member(user_id)
        except Exception as e:
            logger.error(
                f"❌ Welcome DM processing failed for {user_id}: {e}",
                extra={"user_id": user_id, "error": str(e)},
            )

    # ==================== Fire path ====================

    async def process_member(self, user_id: str) -> WelcomeDmDecision:
        """
        Re-validate a member and enqueue their welcome DM.

        The member is marked welcome_dm_sent before the enqueue. If the
        enqueue then fails, the member stays marked but unsent and the
        error is logged and re-raised.

        Returns:
            The decision taken
        """
        if not await self._auto_dm_enabled():
            return WelcomeDmDecision.DISABLED

        member = await self.store.get_member(user_id)
        if member is None:
            return WelcomeDmDecision.UNKNOWN_MEMBER
        if not member.still_in_server:
            return WelcomeDmDecision.LEFT_SERVER
        if member.welcome_dm_sent:
            return WelcomeDmDecision.ALREADY_SENT
        if member.has_opted_out:
            return WelcomeDmDecision.CLOSED_DMS

        snapshot = await self.platform.fetch_member(user_id)
        if snapshot is None:
            await self.store.update_member_fields(user_id, still_in_server=False)
            logger.info(f"Member {user_id} no longer in server, welcome DM dropped")
            return WelcomeDmDecision.LEFT_SERVER

        if snapshot.has_role(self.closed_dms_role_id):
            await self.store.update_member_fields(
                user_id, has_closed_dms_role=True, opt_out_at=self._clock()
            )
            log_business_event("welcome_dm_blocked", user_id, reason="closed_dms")
            return WelcomeDmDecision.CLOSED_DMS

        is_verified = snapshot.has_role(self.verified_role_id) if self.verified_role_id else member.is_verified
        if self.require_verified and not is_verified:
            logger.info(f"Member {user_id} not verified, welcome DM withheld")
            return WelcomeDmDecision.NOT_VERIFIED

        template = await self.store.get_active_template(WELCOME_TEMPLATE_TYPE)
        if template is None:
            logger.warning("No active auto_dm template, welcome DM withheld")
            return WelcomeDmDecision.NO_TEMPLATE

        message = build_welcome_message(user_id, template, max_attempts=self.max_attempts)

        await self.store.update_member_fields(
            user_id, welcome_dm_sent=True, dm_sent_at=self._clock(), is_verified=is_verified
        )
        try:
            await self.store.enqueue(message)
        except Exception:
            logger.error(
                f"Member {user_id} marked as welcomed but the DM could not be enqueued",
                extra={"user_id": user_id},
            )
            raise

        if template.id:
            await self.store.increment_template_usage(template.id)
        log_business_event("welcome_dm_enqueued", user_id, template=template.name)
        return WelcomeDmDecision.ENQUEUED

    async def sweep(self) -> int:
        """
        Process up to `max_per_sweep` eligible members, oldest join first.

        Only members who joined more than `delay` ago are picked, so the
        sweep never pre-empts a running timer.

        Returns:
            Number of DMs enqueued
        """
        if not await self._auto_dm_enabled():
            return 0

        candidates = await self.store.list_members_for_auto_dm(
            self.max_per_sweep,
            require_verified=self.require_verified,
            joined_before=self._clock() - self.delay,
        )
        pending_timers = self.scheduled_user_ids

        enqueued = 0
        for index, member in enumerate(candidates):
            if member.user_id in pending_timers:
                continue
            if index:
                await self._sleep(self.send_delay)
            try:
                if await self.process_member(member.user_id) == WelcomeDmDecision.ENQUEUED:
                    enqueued += 1
            except Exception as e:
                logger.error(f"❌ Sweep failed for member {member.user_id}: {e}")

        if enqueued:
            logger.info(f"⏰ Welcome DM sweep enqueued {enqueued} DMs")
        return enqueued
