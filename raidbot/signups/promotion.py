"""Moves waitlisted participants into vacated slots."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from raidbot.utils.audit_log import AuditEvent, AuditTrail
from raidbot.utils.metrics import RaidMetrics
from raidbot.utils.notifier import Notifier
from raidbot.utils.raid_utils import promoted_message
from .roster import RaidRecord, SignupPool


logger = logging.getLogger("raidbot.signups.promotion")


@dataclass(frozen=True)
class Promotion:
    user_id: int
    pool: SignupPool
    position: int


class WaitlistPromoter:
    """
    FIFO waitlist promotion.

    The caller must hold the raid's lock. Scope follows the roster shape:
    every role slot, the single flat pool, or one team.
    """

    def __init__(self, index, notifier: Notifier, metrics: RaidMetrics, audit: AuditTrail):
        self.index = index
        self.notifier = notifier
        self.metrics = metrics
        self.audit = audit

    def fill(self, record: RaidRecord, team_index: Optional[int] = None) -> List[Promotion]:
        """Apply promotions to the roster without side effects."""
        if record.closed:
            return []

        pools = record.roster.scope_pools(team_index)
        all_pools = record.roster.pools()
        promotions: List[Promotion] = []

        # A purge can free room in a pool that was already scanned.
        changed = True
        while changed:
            changed = False
            for pool in pools:
                while pool.waitlist and pool.has_room():
                    user_id = pool.waitlist.pop(0)
                    if user_id in pool.users:
                        continue
                    record.roster.purge(user_id, keep=pool)
                    pool.users.append(user_id)
                    position = next(i for i, p in enumerate(all_pools) if p is pool)
                    promotions.append(Promotion(user_id, pool, position))
                    changed = True
        return promotions

    def promote(self, record: RaidRecord, team_index: Optional[int] = None) -> bool:
        """Promote and notify. Returns True if anyone moved up."""
        promotions = self.fill(record, team_index)
        for promotion in promotions:
            self.notifier.dispatch(
                promotion.user_id,
                promoted_message(record, promotion.pool, promotion.position),
                channel_id=record.channel_id,
                guild_id=record.guild_id,
            )
            self.metrics.increment("promotions")
            self.audit.record(
                record.raid_id,
                AuditEvent.PROMOTED,
                f"<@{promotion.user_id}> promoted from waitlist into "
                f"{promotion.pool.label or 'signups'}",
            )
            self.index.mark_updated(record.message_id)

        if promotions:
            logger.info(
                "Promoted %d participant(s) in raid %s", len(promotions), record.raid_id
            )
        return bool(promotions)
