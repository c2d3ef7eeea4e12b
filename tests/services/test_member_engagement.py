"""Tests for the welcome DM scheduler."""

import asyncio
import datetime as dt
import pytest
from unittest.mock import AsyncMock

from shopbridge.models.members import MemberRecord
from shopbridge.models.queue import MessageKind
from shopbridge.models.settings import AUTO_DM_ENABLED, MessageTemplate
from shopbridge.services.chat_platform import MemberSnapshot
from shopbridge.services.member_engagement import WelcomeDmDecision, WelcomeDmScheduler

VERIFIED = "role-verified"
CLOSED_DMS = "role-closed-dms"


# --- FIXTURES ---

@pytest.fixture
async def seeded_store(store):
    """Store with an active welcome template."""
    await store.save_template(MessageTemplate(
        name="Welcome Message", template_type="auto_dm", title="Welcome!", is_active=True
    ))
    return store


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def scheduler(seeded_store, mock_platform, clock):
    """Scheduler whose timers fire as soon as the loop yields."""
    return WelcomeDmScheduler(
        store=seeded_store,
        platform=mock_platform,
        verified_role_id=VERIFIED,
        closed_dms_role_id=CLOSED_DMS,
        delay=dt.timedelta(minutes=65),
        sleep=AsyncMock(),
        clock=clock,
    )


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def dm_count(store) -> int:
    return (await store.queue_stats()).total


# --- JOIN / TIMER ---

class TestMemberJoin:

    async def test_join_schedules_and_fires(self, scheduler, seeded_store):
        await scheduler.on_member_join("u1", "alice", role_ids=[VERIFIED])
        await settle()

        member = await seeded_store.get_member("u1")
        assert member.welcome_dm_sent is True
        assert member.dm_sent_at is not None

        [message] = await seeded_store.fetch_due(10, dt.datetime.now(dt.UTC) + dt.timedelta(minutes=1))
        assert message.kind == MessageKind.AUTO_DIRECT_MESSAGE
        assert message.destination.identifier == "u1"

        template = await seeded_store.get_active_template("auto_dm")
        assert template.usage_count == 1

    async def test_timer_waits_for_delay(self, seeded_store, mock_platform, clock):
        sleep = AsyncMock()
        scheduler = WelcomeDmScheduler(
            seeded_store, mock_platform, VERIFIED, CLOSED_DMS,
            delay=dt.timedelta(minutes=65), sleep=sleep, clock=clock,
        )

        await scheduler.on_member_join("u1", role_ids=[VERIFIED])
        await settle()

        sleep.assert_awaited_once_with(65 * 60)

    async def test_closed_dms_on_join_never_scheduled(self, scheduler, seeded_store, now):
        await scheduler.on_member_join("u1", role_ids=[VERIFIED, CLOSED_DMS])
        await settle()

        member = await seeded_store.get_member("u1")
        assert member.has_closed_dms_role is True
        assert member.opt_out_at == now
        assert "u1" not in scheduler.scheduled_user_ids
        assert await dm_count(seeded_store) == 0

    async def test_rejoin_keeps_welcome_history(self, scheduler, seeded_store):
        await seeded_store.upsert_member(MemberRecord(user_id="u1", welcome_dm_sent=True, still_in_server=False))

        await scheduler.on_member_join("u1", role_ids=[VERIFIED])
        await settle()

        member = await seeded_store.get_member("u1")
        assert member.still_in_server is True
        assert member.welcome_dm_sent is True
        assert await dm_count(seeded_store) == 0

    async def test_rejoin_after_closing_dms_stays_opted_out(self, scheduler, seeded_store, now):
        """Roles are dropped on leave, so the rejoin shows only the verified role."""
        await scheduler.on_member_join("u1", role_ids=[VERIFIED, CLOSED_DMS])
        await scheduler.on_member_leave("u1")

        await scheduler.on_member_join("u1", role_ids=[VERIFIED])
        await settle()

        member = await seeded_store.get_member("u1")
        assert member.opt_out_at == now
        assert member.has_closed_dms_role is True
        assert "u1" not in scheduler.scheduled_user_ids
        assert await dm_count(seeded_store) == 0

    async def test_disabled_feature_not_scheduled(self, scheduler, seeded_store):
        await seeded_store.set_setting(AUTO_DM_ENABLED, "false")

        await scheduler.on_member_join("u1", role_ids=[VERIFIED])
        await settle()

        assert await dm_count(seeded_store) == 0
        assert (await seeded_store.get_member("u1")).welcome_dm_sent is False


# --- ROLE CHANGES / LEAVE ---

class TestMemberUpdates:

    @pytest.fixture
    def slow_scheduler(self, seeded_store, mock_platform, clock):
        """Scheduler whose timers never fire on their own."""
        async def forever(seconds):
            await asyncio.Event().wait()

        return WelcomeDmScheduler(
            seeded_store, mock_platform, VERIFIED, CLOSED_DMS, sleep=forever, clock=clock,
        )

    async def test_closing_dms_cancels_timer(self, slow_scheduler, seeded_store, now):
        await slow_scheduler.on_member_join("u1", role_ids=[VERIFIED])
        assert "u1" in slow_scheduler.scheduled_user_ids

        await slow_scheduler.on_member_roles_updated("u1", [VERIFIED, CLOSED_DMS])
        await settle()

        assert "u1" not in slow_scheduler.scheduled_user_ids
        member = await seeded_store.get_member("u1")
        assert member.has_closed_dms_role is True
        assert member.opt_out_at == now
        await slow_scheduler.shutdown()

    async def test_leave_cancels_timer(self, slow_scheduler, seeded_store):
        await slow_scheduler.on_member_join("u1", role_ids=[VERIFIED])

        await slow_scheduler.on_member_leave("u1")
        await settle()

        assert "u1" not in slow_scheduler.scheduled_user_ids
        assert (await seeded_store.get_member("u1")).still_in_server is False
        await slow_scheduler.shutdown()

    async def test_verification_mirrored(self, slow_scheduler, seeded_store):
        await slow_scheduler.on_member_join("u1")

        await slow_scheduler.on_member_roles_updated("u1", [VERIFIED])

        assert (await seeded_store.get_member("u1")).is_verified is True
        await slow_scheduler.shutdown()

    async def test_shutdown_cancels_all_timers(self, slow_scheduler):
        await slow_scheduler.on_member_join("u1", role_ids=[VERIFIED])
        await slow_scheduler.on_member_join("u2", role_ids=[VERIFIED])

        await slow_scheduler.shutdown()

        assert slow_scheduler.scheduled_user_ids == set()


# --- FIRE-TIME CHECKS ---

class TestProcessMember:

    async def test_live_closed_dms_role_blocks_send(self, scheduler, seeded_store, mock_platform):
        """The stored record is stale; the live lookup shows DMs closed."""
        await seeded_store.upsert_member(MemberRecord(user_id="u1", is_verified=True))
        mock_platform.fetch_member = AsyncMock(
            return_value=MemberSnapshot(user_id="u1", role_ids=[VERIFIED, CLOSED_DMS])
        )

        decision = await scheduler.process_member("u1")

        assert decision == WelcomeDmDecision.CLOSED_DMS
        assert await dm_count(seeded_store) == 0
        member = await seeded_store.get_member("u1")
        assert member.has_closed_dms_role is True
        assert member.welcome_dm_sent is False

    async def test_recorded_opt_out_blocks_send(self, scheduler, seeded_store, now):
        """The closed-DMs role was removed again, the opt-out still counts."""
        await seeded_store.upsert_member(
            MemberRecord(user_id="u1", is_verified=True, opt_out_at=now - dt.timedelta(days=1))
        )

        assert await scheduler.process_member("u1") == WelcomeDmDecision.CLOSED_DMS
        assert await dm_count(seeded_store) == 0

    async def test_member_gone_from_guild(self, scheduler, seeded_store, mock_platform):
        await seeded_store.upsert_member(MemberRecord(user_id="u1", is_verified=True))
        mock_platform.fetch_member = AsyncMock(return_value=None)

        assert await scheduler.process_member("u1") == WelcomeDmDecision.LEFT_SERVER
        assert (await seeded_store.get_member("u1")).still_in_server is False

    async def test_unverified_withheld(self, scheduler, seeded_store, mock_platform):
        await seeded_store.upsert_member(MemberRecord(user_id="u1"))
        mock_platform.fetch_member = AsyncMock(return_value=MemberSnapshot(user_id="u1"))

        assert await scheduler.process_member("u1") == WelcomeDmDecision.NOT_VERIFIED
        assert await dm_count(seeded_store) == 0

    async def test_no_template(self, store, mock_platform, clock):
        scheduler = WelcomeDmScheduler(store, mock_platform, VERIFIED, CLOSED_DMS, clock=clock)
        await store.upsert_member(MemberRecord(user_id="u1", is_verified=True))

        assert await scheduler.process_member("u1") == WelcomeDmDecision.NO_TEMPLATE
        assert (await store.get_member("u1")).welcome_dm_sent is False

    async def test_marked_before_enqueue(self, scheduler, seeded_store):
        """If the enqueue fails, the member stays marked so nothing double-sends."""
        await seeded_store.upsert_member(MemberRecord(user_id="u1", is_verified=True))
        seeded_store.enqueue = AsyncMock(side_effect=RuntimeError("insert failed"))

        with pytest.raises(RuntimeError):
            await scheduler.process_member("u1")

        assert (await seeded_store.get_member("u1")).welcome_dm_sent is True

    async def test_second_fire_is_noop(self, scheduler, seeded_store):
        await seeded_store.upsert_member(MemberRecord(user_id="u1", is_verified=True))

        assert await scheduler.process_member("u1") == WelcomeDmDecision.ENQUEUED
        assert await scheduler.process_member("u1") == WelcomeDmDecision.ALREADY_SENT
        assert await dm_count(seeded_store) == 1


# --- SWEEP ---

class TestSweep:

    async def test_sweep_picks_overdue_members(self, scheduler, seeded_store, now):
        old = now - dt.timedelta(hours=2)
        await seeded_store.upsert_member(MemberRecord(user_id="a", is_verified=True, joined_at=old))
        await seeded_store.upsert_member(MemberRecord(user_id="b", is_verified=True, joined_at=old))

        assert await scheduler.sweep() == 2
        assert await dm_count(seeded_store) == 2

    async def test_sweep_skips_recent_joins(self, scheduler, seeded_store, now):
        await seeded_store.upsert_member(
            MemberRecord(user_id="a", is_verified=True, joined_at=now - dt.timedelta(minutes=10))
        )

        assert await scheduler.sweep() == 0

    async def test_sweep_never_messages_closed_dms(self, scheduler, seeded_store, now):
        old = now - dt.timedelta(hours=2)
        await seeded_store.upsert_member(
            MemberRecord(user_id="a", is_verified=True, has_closed_dms_role=True, joined_at=old)
        )

        assert await scheduler.sweep() == 0
        assert await dm_count(seeded_store) == 0

    async def test_sweep_skips_past_opt_outs(self, scheduler, seeded_store, now):
        old = now - dt.timedelta(hours=2)
        await seeded_store.upsert_member(
            MemberRecord(user_id="a", is_verified=True, joined_at=old, opt_out_at=old)
        )

        assert await scheduler.sweep() == 0
        assert await dm_count(seeded_store) == 0

    async def test_sweep_respects_batch_limit(self, seeded_store, mock_platform, clock, now):
        scheduler = WelcomeDmScheduler(
            seeded_store, mock_platform, VERIFIED, CLOSED_DMS,
            max_per_sweep=3, sleep=AsyncMock(), clock=clock,
        )
        for i in range(5):
            await seeded_store.upsert_member(
                MemberRecord(user_id=f"m{i}", is_verified=True, joined_at=now - dt.timedelta(hours=3, minutes=i))
            )

        assert await scheduler.sweep() == 3

    async def test_sweep_disabled(self, scheduler, seeded_store, now):
        await seeded_store.set_setting(AUTO_DM_ENABLED, "false")
        await seeded_store.upsert_member(
            MemberRecord(user_id="a", is_verified=True, joined_at=now - dt.timedelta(hours=2))
        )

        assert await scheduler.sweep() == 0
