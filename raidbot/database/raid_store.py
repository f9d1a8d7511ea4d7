"""SQLite storage for active raid records."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

import aiosqlite

from raidbot.signups.roster import RaidRecord


logger = logging.getLogger("raidbot.raid_store")


class RaidStore:
    """SQLite-based storage for raid records, one JSON snapshot per announcement."""

    def __init__(self, db_path: str = "data/raids.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    async def initialize(self) -> None:
        """Ensure the database schema exists."""
        if self._initialized:
            return

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")

            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS active_raids (
                    message_id INTEGER PRIMARY KEY,
                    raid_id TEXT NOT NULL,
                    guild_id INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )

            await db.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_active_raids_guild
                ON active_raids(guild_id, raid_id)
                """
            )

            await db.commit()

        self._initialized = True
        logger.info("Raid store initialized at %s", self.db_path)

    async def save_raids(self, payloads: Iterable[dict]) -> int:
        """Upsert serialized raid records. Returns how many rows were written."""
        await self.initialize()
        updated_at = int(datetime.now(timezone.utc).timestamp())
        rows = [
            (
                int(data["messageId"]),
                str(data["raidId"]),
                int(data["guildId"]),
                json.dumps(data),
                updated_at,
            )
            for data in payloads
        ]
        if not rows:
            return 0

        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                """
                INSERT INTO active_raids (message_id, raid_id, guild_id, payload, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id)
                DO UPDATE SET raid_id = excluded.raid_id,
                              guild_id = excluded.guild_id,
                              payload = excluded.payload,
                              updated_at = excluded.updated_at
                """,
                rows,
            )
            await db.commit()
        return len(rows)

    async def save_raid(self, record: RaidRecord) -> None:
        await self.save_raids([record.to_dict()])

    async def delete_raids(self, message_ids: Iterable[int]) -> None:
        await self.initialize()
        ids = [(int(message_id),) for message_id in message_ids]
        if not ids:
            return
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany("DELETE FROM active_raids WHERE message_id = ?", ids)
            await db.commit()

    async def get_raid(self, message_id: int) -> Optional[RaidRecord]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT payload FROM active_raids WHERE message_id = ?",
                (message_id,),
            )
            row = await cursor.fetchone()
        return RaidRecord.from_dict(json.loads(row[0])) if row else None

    async def load_raids(self) -> List[RaidRecord]:
        """Load every stored raid. Rows that fail to parse are skipped."""
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT message_id, payload FROM active_raids")
            rows = await cursor.fetchall()

        records: List[RaidRecord] = []
        for message_id, payload in rows:
            try:
                records.append(RaidRecord.from_dict(json.loads(payload)))
            except (KeyError, ValueError, TypeError):
                logger.error("Skipping unreadable raid row %s", message_id, exc_info=True)
        return records
