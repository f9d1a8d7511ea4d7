import os
import tempfile
import unittest
from unittest.mock import AsyncMock

import aiosqlite

from raidbot.database.raid_index import RaidIndex
from raidbot.database.raid_store import RaidStore

from fakes import museum_raid, role_raid, team_raid


class StoreTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.db_path = os.path.join(tmp.name, "raids.db")
        self.store = RaidStore(db_path=self.db_path)


class TestRaidStore(StoreTestCase):

    async def test_save_and_load(self):
        raid = role_raid(scheduled_at=1_700_000_000, title="Weekly Clear")
        raid.roster.slots[0].users.append(1)
        raid.roster.slots[0].waitlist.append(2)
        museum = museum_raid(max_slots=5)
        museum.roster.signups.append(3)
        key = team_raid()
        key.close(1_700_000_100, "key_start")

        written = await self.store.save_raids([r.to_dict() for r in (raid, museum, key)])
        self.assertEqual(written, 3)

        loaded = {r.message_id: r for r in await self.store.load_raids()}
        self.assertEqual(loaded[raid.message_id], raid)
        self.assertEqual(loaded[museum.message_id].roster.signups, [3])
        self.assertTrue(loaded[key.message_id].closed)
        self.assertEqual(loaded[key.message_id].closed_reason, "key_start")

    async def test_save_overwrites_snapshot(self):
        raid = museum_raid()
        await self.store.save_raid(raid)
        raid.roster.signups.append(9)
        await self.store.save_raid(raid)

        stored = await self.store.get_raid(raid.message_id)
        self.assertEqual(stored.roster.signups, [9])
        self.assertEqual(len(await self.store.load_raids()), 1)

    async def test_delete(self):
        raid = museum_raid()
        await self.store.save_raid(raid)
        await self.store.delete_raids([raid.message_id])
        self.assertIsNone(await self.store.get_raid(raid.message_id))

    async def test_unreadable_rows_are_skipped(self):
        await self.store.save_raid(museum_raid())
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO active_raids (message_id, raid_id, guild_id, payload, updated_at) "
                "VALUES (1, 'broken', 1, '{not json', 0)"
            )
            await db.commit()

        with self.assertLogs("raidbot.raid_store", level="ERROR"):
            records = await self.store.load_raids()

        self.assertEqual([r.raid_id for r in records], ["R2000"])


class TestRaidIndex(StoreTestCase):

    async def test_flush_writes_dirty_records_only(self):
        index = RaidIndex(self.store)
        raid = museum_raid()
        index.add(raid)

        self.assertEqual(await index.flush(), 1)
        self.assertEqual(await index.flush(), 0)

        raid.roster.signups.append(4)
        index.mark_updated(raid.message_id)
        self.assertEqual(await index.flush(), 1)

        reloaded = RaidIndex(self.store)
        self.assertEqual(await reloaded.load(), 1)
        self.assertEqual(reloaded.get(raid.message_id).roster.signups, [4])

    async def test_evicted_records_leave_the_store(self):
        index = RaidIndex(self.store)
        raid = role_raid()
        index.add(raid)
        await index.flush()

        self.assertIs(index.evict(raid.message_id), raid)
        await index.flush()

        self.assertIsNone(await self.store.get_raid(raid.message_id))
        self.assertNotIn(raid.message_id, index)

    async def test_failed_flush_keeps_records_dirty(self):
        store = AsyncMock()
        store.save_raids.side_effect = OSError("disk full")
        index = RaidIndex(store)
        raid = museum_raid()
        index.add(raid)

        with self.assertLogs("raidbot.raid_index", level="ERROR"):
            self.assertEqual(await index.flush(), 0)

        self.assertEqual(index.dirty, {raid.message_id})

    async def test_find_by_raid_id(self):
        index = RaidIndex()
        raid = museum_raid(guild_id=1)
        index.add(raid)

        self.assertIs(index.find_by_raid_id(raid.raid_id), raid)
        self.assertIs(index.find_by_raid_id(raid.raid_id, guild_id=1), raid)
        self.assertIsNone(index.find_by_raid_id(raid.raid_id, guild_id=2))


if __name__ == "__main__":
    unittest.main()
