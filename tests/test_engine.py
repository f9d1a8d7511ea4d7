import asyncio
import unittest

from raidbot.signups.eligibility import EligibilityResult
from raidbot.signups.engine import SignupStatus
from raidbot.utils.rate_limiter import RateLimiter
from raidbot.utils.raid_utils import ALREADY_SIGNED_UP_MESSAGE, CLOSED_MESSAGE

from fakes import CHANNEL_ID, CREATOR_ID, FakeGateway, build_engine, museum_raid, role_raid, team_raid


class EngineTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.gateway = FakeGateway()
        self.engine = build_engine(self.gateway)

    def track(self, record):
        self.engine.add_raid(record)
        return record

    async def settle(self):
        await self.engine.notifier.drain()

    async def asyncTearDown(self):
        await self.settle()


class TestRegister(EngineTestCase):

    async def test_signup_into_open_slot(self):
        record = self.track(role_raid())

        outcome = await self.engine.register(record.message_id, 1, "🛡️")

        self.assertEqual(outcome.status, SignupStatus.SIGNED_UP)
        self.assertTrue(outcome.changed)
        self.assertEqual(record.roster.slots[0].users, [1])
        self.assertEqual(self.engine.metrics.counters["registrations"], 1)
        self.assertEqual(self.engine.audit.events(record.raid_id), ["SIGNUP"])
        self.engine.renderer.render.assert_awaited_with(record)
        self.assertIn(record.message_id, self.engine.index.dirty)

    async def test_full_slot_waitlists_and_notifies(self):
        record = self.track(role_raid())
        await self.engine.register(record.message_id, 1, "🛡️")

        outcome = await self.engine.register(record.message_id, 2, "🛡️")
        await self.settle()

        self.assertEqual(outcome.status, SignupStatus.WAITLISTED)
        self.assertEqual(record.roster.slots[0].waitlist, [2])
        self.assertEqual(len(record.roster.slots[0].users), 1)
        self.assertEqual(
            self.gateway.messages_for(2),
            [
                "The Tank role is full. You've been added to the waitlist and will be "
                "notified when a spot opens."
            ],
        )

    async def test_same_slot_twice_is_silent(self):
        record = self.track(role_raid())
        await self.engine.register(record.message_id, 1, "⚔️")

        outcome = await self.engine.register(record.message_id, 1, "⚔️")
        await self.settle()

        self.assertEqual(outcome.status, SignupStatus.ALREADY_REGISTERED)
        self.assertFalse(outcome.retract_reaction)
        self.assertIsNone(outcome.message)
        self.assertEqual(record.roster.slots[2].users, [1])
        self.assertEqual(self.gateway.messages_for(1), [])

    async def test_second_slot_is_refused(self):
        record = self.track(role_raid())
        await self.engine.register(record.message_id, 1, "⚔️")

        outcome = await self.engine.register(record.message_id, 1, "💚")
        await self.settle()

        self.assertEqual(outcome.status, SignupStatus.ALREADY_REGISTERED)
        self.assertTrue(outcome.retract_reaction)
        self.assertEqual(record.roster.slots[1].users, [])
        self.assertEqual(self.gateway.messages_for(1), [ALREADY_SIGNED_UP_MESSAGE])

    async def test_waitlisted_participant_cannot_take_another_slot(self):
        record = self.track(role_raid())
        await self.engine.register(record.message_id, 1, "🛡️")
        await self.engine.register(record.message_id, 2, "🛡️")

        outcome = await self.engine.register(record.message_id, 2, "⚔️")

        self.assertEqual(outcome.status, SignupStatus.ALREADY_REGISTERED)
        self.assertEqual(record.roster.slots[2].users, [])

    async def test_closed_raid_rejects_signups(self):
        record = self.track(role_raid())
        record.close(1_700_000_000, "manual")

        outcome = await self.engine.register(record.message_id, 1, "🛡️")
        await self.settle()

        self.assertEqual(outcome.status, SignupStatus.CLOSED)
        self.assertTrue(outcome.retract_reaction)
        self.assertEqual(record.roster.total_filled(), 0)
        self.assertEqual(self.engine.audit.events(record.raid_id), ["BLOCKED"])
        self.assertEqual(self.gateway.messages_for(1), [CLOSED_MESSAGE])

    async def test_restricted_participant(self):
        async def deny(record, user_id):
            return EligibilityResult(False, "You need the Raider role.")

        self.engine.eligibility = deny
        record = self.track(museum_raid())

        outcome = await self.engine.register(record.message_id, 1, "✅")
        await self.settle()

        self.assertEqual(outcome.status, SignupStatus.RESTRICTED)
        self.assertTrue(outcome.retract_reaction)
        self.assertEqual(record.roster.signups, [])
        self.assertEqual(self.gateway.messages_for(1), ["You need the Raider role."])

    async def test_rate_limited_before_lock(self):
        self.engine.rate_limiter = RateLimiter(max_requests=1, window_seconds=60)
        record = self.track(museum_raid())
        await self.engine.register(record.message_id, 1, "✅")

        handle = await self.engine.locks.acquire(record.message_id)
        outcome = await asyncio.wait_for(
            self.engine.register(record.message_id, 1, "✅"), timeout=1
        )
        self.engine.locks.release(handle)

        self.assertEqual(outcome.status, SignupStatus.RATE_LIMITED)
        self.assertTrue(outcome.retract_reaction)

    async def test_unknown_raid_and_slot(self):
        record = self.track(role_raid())

        outcome = await self.engine.register(424242, 1, "🛡️")
        self.assertEqual(outcome.status, SignupStatus.UNKNOWN_RAID)

        outcome = await self.engine.register(record.message_id, 1, "🎯")
        self.assertEqual(outcome.status, SignupStatus.UNKNOWN_SLOT)
        self.assertEqual(record.roster.total_filled(), 0)

    async def test_creator_told_once_when_raid_fills(self):
        record = self.track(role_raid())
        for user_id, emoji in ((1, "🛡️"), (2, "💚"), (3, "⚔️"), (4, "⚔️"), (5, "⚔️")):
            await self.engine.register(record.message_id, user_id, emoji)
        await self.settle()

        self.assertTrue(record.roster.is_full())
        self.assertEqual(record.roster.slots[2].waitlist, [5])
        creator_messages = self.gateway.messages_for(CREATOR_ID)
        self.assertEqual(len(creator_messages), 1)
        self.assertIn("is now full", creator_messages[0])

    async def test_notification_failure_does_not_undo_signup(self):
        self.gateway.unresolvable_users.add(2)
        self.gateway.failing_channels.add(CHANNEL_ID)
        self.gateway.missing_members.add(2)
        record = self.track(museum_raid(max_slots=1))
        await self.engine.register(record.message_id, 1, "✅")

        outcome = await self.engine.register(record.message_id, 2, "✅")
        await self.settle()

        self.assertEqual(outcome.status, SignupStatus.WAITLISTED)
        self.assertEqual(record.roster.waitlist, [2])
        self.assertEqual(self.engine.metrics.counters["dm_failures"], 1)

    async def test_render_failure_does_not_undo_signup(self):
        self.engine.renderer.render.side_effect = RuntimeError("discord down")
        record = self.track(museum_raid())

        outcome = await self.engine.register(record.message_id, 1, "✅")

        self.assertEqual(outcome.status, SignupStatus.SIGNED_UP)
        self.assertEqual(record.roster.signups, [1])
        self.assertIn(record.message_id, self.engine.index.dirty)

    async def test_concurrent_signups_respect_capacity(self):
        record = self.track(museum_raid(max_slots=3))

        outcomes = await asyncio.gather(
            *(self.engine.register(record.message_id, user_id, "✅") for user_id in range(1, 11))
        )

        statuses = [outcome.status for outcome in outcomes]
        self.assertEqual(statuses.count(SignupStatus.SIGNED_UP), 3)
        self.assertEqual(statuses.count(SignupStatus.WAITLISTED), 7)
        self.assertEqual(len(record.roster.signups), 3)
        self.assertEqual(list(record.roster.iter_violations()), [])

    async def test_concurrent_duplicate_reactions_register_once(self):
        record = self.track(role_raid())

        await asyncio.gather(
            self.engine.register(record.message_id, 1, "⚔️"),
            self.engine.register(record.message_id, 1, "⚔️"),
            self.engine.register(record.message_id, 1, "🛡️"),
        )

        self.assertEqual(record.roster.total_filled(), 1)
        self.assertEqual(list(record.roster.iter_violations()), [])


class TestUnregister(EngineTestCase):

    async def test_leaving_promotes_waitlist_head(self):
        record = self.track(role_raid())
        for user_id in (1, 2, 3):
            await self.engine.register(record.message_id, user_id, "🛡️")

        outcome = await self.engine.unregister(record.message_id, 1, "🛡️")
        await self.settle()

        tank = record.roster.slots[0]
        self.assertEqual(outcome.status, SignupStatus.REMOVED)
        self.assertTrue(outcome.promoted)
        self.assertEqual(tank.users, [2])
        self.assertEqual(tank.waitlist, [3])
        self.assertIn("automatically assigned to position 1 (Tank)", self.gateway.messages_for(2)[-1])
        self.assertEqual(self.engine.metrics.counters["unregistrations"], 1)
        self.assertEqual(self.engine.metrics.counters["promotions"], 1)

    async def test_leaving_the_waitlist(self):
        record = self.track(museum_raid(max_slots=1))
        await self.engine.register(record.message_id, 1, "✅")
        await self.engine.register(record.message_id, 2, "✅")

        outcome = await self.engine.unregister(record.message_id, 2, "✅")

        self.assertEqual(outcome.status, SignupStatus.LEFT_WAITLIST)
        self.assertEqual(record.roster.waitlist, [])
        self.assertEqual(record.roster.signups, [1])

    async def test_not_registered(self):
        record = self.track(museum_raid())
        outcome = await self.engine.unregister(record.message_id, 9, "✅")
        self.assertEqual(outcome.status, SignupStatus.NOT_REGISTERED)
        self.assertFalse(outcome.changed)

    async def test_closed_roster_is_frozen(self):
        record = self.track(museum_raid())
        await self.engine.register(record.message_id, 1, "✅")
        record.close(1_700_000_000, "manual")

        outcome = await self.engine.unregister(record.message_id, 1, "✅")

        self.assertEqual(outcome.status, SignupStatus.CLOSED)
        self.assertEqual(record.roster.signups, [1])

    async def test_team_promotion_stays_in_team(self):
        record = self.track(team_raid(teams=2, per_team=1))
        await self.engine.register(record.message_id, 1, 0)
        await self.engine.register(record.message_id, 2, 0)
        await self.engine.register(record.message_id, 3, 1)
        await self.engine.register(record.message_id, 4, 1)

        await self.engine.unregister(record.message_id, 1, 0)

        first, second = record.roster.teams
        self.assertEqual(first.users, [2])
        self.assertEqual(second.users, [3])
        self.assertEqual(second.waitlist, [4])

    async def test_museum_lifecycle(self):
        record = self.track(museum_raid(max_slots=2))
        for user_id in (1, 2, 3):
            await self.engine.register(record.message_id, user_id, "✅")
        self.assertEqual(record.roster.waitlist, [3])

        await self.engine.unregister(record.message_id, 2, "✅")
        self.assertEqual(record.roster.signups, [1, 3])

        self.assertTrue(await self.engine.close(record.message_id, closed_by=77))
        outcome = await self.engine.register(record.message_id, 4, "✅")

        self.assertEqual(outcome.status, SignupStatus.CLOSED)
        self.assertEqual(record.attendance_count, 2)
        self.assertEqual(record.roster.signups, [1, 3])


class TestManualOperations(EngineTestCase):

    async def test_close_is_idempotent(self):
        record = self.track(role_raid())
        self.assertTrue(await self.engine.close(record.message_id, closed_by=5))
        self.assertFalse(await self.engine.close(record.message_id, closed_by=6))
        self.assertEqual(record.closed_by, 5)
        self.assertEqual(self.engine.metrics.counters["raids_closed"], 1)
        self.assertEqual(self.engine.metrics.gauges["open_raids"], 0)

    async def test_reopen_fills_capacity_freed_while_closed(self):
        record = self.track(museum_raid(max_slots=1))
        await self.engine.register(record.message_id, 1, "✅")
        await self.engine.register(record.message_id, 2, "✅")
        await self.engine.close(record.message_id)
        record.roster.signups.remove(1)

        self.assertTrue(await self.engine.reopen(record.message_id, reopened_by=5))

        self.assertFalse(record.closed)
        self.assertEqual(record.roster.signups, [2])
        self.assertIn("REOPENED", self.engine.audit.events(record.raid_id))
        self.assertFalse(await self.engine.reopen(record.message_id))

    async def test_explicit_promote(self):
        record = self.track(team_raid(teams=2, per_team=1))
        record.roster.teams[1].waitlist.append(8)

        self.assertTrue(await self.engine.promote(record.message_id, team_index=1))
        self.assertEqual(record.roster.teams[1].users, [8])
        self.assertFalse(await self.engine.promote(424242))

    async def test_send_test_notification(self):
        self.assertTrue(await self.engine.send_test_notification(1, channel_id=600, guild_id=500))
        self.gateway.unresolvable_users.add(2)
        self.assertFalse(await self.engine.send_test_notification(2))


if __name__ == "__main__":
    unittest.main()
