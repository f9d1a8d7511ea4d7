import unittest

from raidbot.signups.roster import (
    FlatRoster,
    InvariantViolation,
    RaidRecord,
    RaidType,
    RoleRoster,
    RoleSlot,
    TeamRoster,
)

from fakes import museum_raid, role_raid, team_raid


class TestRoleRoster(unittest.TestCase):

    def setUp(self):
        self.record = role_raid()
        self.roster = self.record.roster

    def test_pool_for_by_emoji_and_index(self):
        self.assertIs(self.roster.pool_for("🛡️"), self.roster.slots[0])
        self.assertIs(self.roster.pool_for(2), self.roster.slots[2])
        self.assertIsNone(self.roster.pool_for("🎯"))
        self.assertIsNone(self.roster.pool_for(7))

    def test_locate_prefers_users_over_waitlist(self):
        self.roster.slots[0].users.append(1)
        self.roster.slots[2].waitlist.append(2)

        placement = self.roster.locate(1)
        self.assertFalse(placement.waitlisted)
        self.assertEqual(placement.index, 0)

        placement = self.roster.locate(2)
        self.assertTrue(placement.waitlisted)
        self.assertIs(placement.pool, self.roster.slots[2])

        self.assertIsNone(self.roster.locate(3))

    def test_purge_keeps_the_given_pool(self):
        tank, healer, dps = self.roster.slots
        tank.users.append(5)
        healer.waitlist.append(5)
        dps.users.append(5)

        self.roster.purge(5, keep=tank)

        self.assertEqual(tank.users, [5])
        self.assertEqual(healer.waitlist, [])
        self.assertEqual(dps.users, [])

    def test_capacity_and_fill(self):
        self.assertEqual(self.roster.total_capacity(), 4)
        self.assertFalse(self.roster.is_full())
        for slot, users in zip(self.roster.slots, ([1], [2], [3, 4])):
            slot.users.extend(users)
        self.assertEqual(self.roster.total_filled(), 4)
        self.assertTrue(self.roster.is_full())
        self.assertEqual(self.roster.participant_ids(), [1, 2, 3, 4])

    def test_zero_capacity_is_never_full(self):
        roster = RoleRoster(slots=[RoleSlot(capacity=0, emoji="❓", name="Flex")])
        self.assertFalse(roster.is_full())

    def test_label_for_registered_participant_only(self):
        self.roster.slots[1].users.append(8)
        self.roster.slots[0].waitlist.append(9)
        self.assertEqual(self.roster.label_for(8), "Healer")
        self.assertIsNone(self.roster.label_for(9))

    def test_iter_violations_reports_broken_rosters(self):
        tank = self.roster.slots[0]
        tank.users.extend([1, 2])
        self.roster.slots[2].users.append(1)
        self.roster.slots[1].waitlist.append(2)

        problems = list(self.roster.iter_violations())

        self.assertIn("pool 0 over capacity (2/1)", problems)
        self.assertIn("user 1 registered twice", problems)
        self.assertIn("user 2 both registered and waitlisted", problems)

    def test_snapshot_keys(self):
        self.roster.slots[0].users.append(11)
        self.roster.slots[0].waitlist.append(12)
        data = self.record.to_dict()

        self.assertEqual(data["type"], "raid")
        self.assertEqual(data["signups"][0]["emoji"], "🛡️")
        self.assertEqual(data["signups"][0]["slots"], 1)
        self.assertEqual(data["signups"][0]["users"], [11])
        self.assertEqual(data["signups"][0]["waitlist"], [12])

        restored = RaidRecord.from_dict(data)
        self.assertEqual(restored, self.record)


class TestFlatRoster(unittest.TestCase):

    def test_single_pool(self):
        roster = FlatRoster(max_slots=2, signups=[1], waitlist=[3])
        self.assertEqual(roster.max_slots, 2)
        self.assertIs(roster.pool_for("✅"), roster.pool)
        self.assertIs(roster.pool_for(None), roster.pool)
        self.assertIsNone(roster.pool_for("🛡️"))
        self.assertEqual(roster.scope_pools(), [roster.pool])

    def test_snapshot_uses_museum_keys(self):
        record = museum_raid(max_slots=3, title="Friday Museum")
        record.roster.signups.extend([1, 2])
        data = record.to_dict()

        self.assertEqual(data["maxSlots"], 3)
        self.assertEqual(data["signups"], [1, 2])
        self.assertEqual(data["waitlist"], [])
        self.assertEqual(RaidRecord.from_dict(data).roster, record.roster)

    def test_missing_max_slots_defaults_to_twelve(self):
        self.assertEqual(FlatRoster.from_dict({"signups": []}).max_slots, 12)


class TestTeamRoster(unittest.TestCase):

    def test_empty_builds_named_teams(self):
        roster = TeamRoster.empty(3, 4)
        self.assertEqual([team.name for team in roster.teams], ["Team 1", "Team 2", "Team 3"])
        self.assertTrue(all(team.capacity == 4 for team in roster.teams))
        self.assertEqual(roster.total_capacity(), 12)

    def test_scope_is_one_team(self):
        roster = TeamRoster.empty(2, 2)
        self.assertEqual(roster.scope_pools(1), [roster.teams[1]])

    def test_scope_without_team_index_is_a_contract_error(self):
        roster = TeamRoster.empty(2, 2)
        with self.assertRaises(InvariantViolation):
            roster.scope_pools(None)
        with self.assertRaises(InvariantViolation):
            roster.scope_pools(5)

    def test_pool_for_rejects_non_index_targets(self):
        roster = TeamRoster.empty(2, 2)
        self.assertIsNone(roster.pool_for("1️⃣"))
        self.assertIsNone(roster.pool_for(True))
        self.assertIs(roster.pool_for(0), roster.teams[0])


class TestRaidRecord(unittest.TestCase):

    def test_roster_must_match_type(self):
        with self.assertRaises(InvariantViolation):
            RaidRecord(
                raid_id="X",
                message_id=1,
                guild_id=1,
                channel_id=1,
                creator_id=1,
                type=RaidType.MUSEUM,
                roster=TeamRoster.empty(1, 1),
            )

    def test_team_types(self):
        self.assertTrue(RaidType.KEY.is_team_based)
        self.assertTrue(RaidType.CHALLENGE.is_team_based)
        self.assertFalse(RaidType.MUSEUM.is_team_based)

    def test_close_is_idempotent(self):
        record = team_raid()
        record.roster.teams[0].users.extend([1, 2])
        record.roster.teams[1].users.append(3)

        self.assertTrue(record.close(1_700_000_000, "manual", closed_by=42))
        self.assertEqual(record.attendance_count, 3)
        self.assertFalse(record.close(1_700_000_500, "key_start"))
        self.assertEqual(record.closed_at, 1_700_000_000)
        self.assertEqual(record.closed_reason, "manual")
        self.assertEqual(record.closed_by, 42)

    def test_reopen_clears_close_state(self):
        record = role_raid()
        record.close(1_700_000_000, "auto_full")
        record.auto_close_executed = True

        self.assertTrue(record.reopen())
        self.assertFalse(record.closed)
        self.assertIsNone(record.closed_at)
        self.assertIsNone(record.closed_reason)
        self.assertFalse(record.auto_close_executed)
        self.assertFalse(record.reopen())

    def test_display_name_falls_back_to_type_label(self):
        self.assertEqual(museum_raid().display_name, "Museum Signup")
        self.assertEqual(role_raid(title="Hard Mode").display_name, "Hard Mode")


if __name__ == "__main__":
    unittest.main()
