"""In-memory index of active raids with write-behind persistence."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from raidbot.signups.roster import RaidRecord
from .raid_store import RaidStore


logger = logging.getLogger("raidbot.raid_index")


class RaidIndex:
    """
    Holds every active raid keyed by announcement message ID.

    ``mark_updated`` only flags a record; ``flush`` writes flagged records to
    the store. Records are serialized synchronously inside ``flush`` so a
    snapshot never captures a half-applied mutation.
    """

    def __init__(self, store: Optional[RaidStore] = None):
        self.store = store
        self._raids: Dict[int, RaidRecord] = {}
        self._dirty: Set[int] = set()
        self._evicted: Set[int] = set()

    def __len__(self) -> int:
        return len(self._raids)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._raids

    def add(self, record: RaidRecord) -> None:
        self._raids[record.message_id] = record
        self._evicted.discard(record.message_id)
        self._dirty.add(record.message_id)

    def get(self, message_id: int) -> Optional[RaidRecord]:
        return self._raids.get(message_id)

    def find_by_raid_id(self, raid_id: str, guild_id: Optional[int] = None) -> Optional[RaidRecord]:
        for record in self._raids.values():
            if record.raid_id != raid_id:
                continue
            if guild_id is None or record.guild_id == guild_id:
                return record
        return None

    def all_records(self) -> List[RaidRecord]:
        return list(self._raids.values())

    def mark_updated(self, message_id: int) -> None:
        if message_id in self._raids:
            self._dirty.add(message_id)

    @property
    def dirty(self) -> Set[int]:
        return set(self._dirty)

    def evict(self, message_id: int) -> Optional[RaidRecord]:
        record = self._raids.pop(message_id, None)
        self._dirty.discard(message_id)
        if record is not None:
            self._evicted.add(message_id)
        return record

    async def load(self) -> int:
        if not self.store:
            return 0
        records = await self.store.load_raids()
        for record in records:
            self._raids[record.message_id] = record
        logger.info("Loaded %d active raids", len(records))
        return len(records)

    async def flush(self) -> int:
        """Persist flagged records and drop evicted ones from the store."""
        if not self.store:
            self._dirty.clear()
            self._evicted.clear()
            return 0

        dirty, self._dirty = self._dirty, set()
        evicted, self._evicted = self._evicted, set()
        payloads = [self._raids[mid].to_dict() for mid in dirty if mid in self._raids]

        try:
            written = await self.store.save_raids(payloads)
            await self.store.delete_raids(evicted)
        except Exception:
            logger.error("Failed to persist raid state", exc_info=True)
            self._dirty |= {mid for mid in dirty if mid in self._raids}
            self._evicted |= evicted
            return 0
        return written
