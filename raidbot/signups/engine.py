"""Signup state machine driven by reaction add/remove events."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from raidbot.utils.audit_log import AuditEvent, AuditTrail
from raidbot.utils.metrics import RaidMetrics
from raidbot.utils.notifier import Notifier
from raidbot.utils.rate_limiter import RateLimiter
from raidbot.utils.raid_utils import (
    ALREADY_SIGNED_UP_MESSAGE,
    CLOSED_MESSAGE,
    RATE_LIMITED_MESSAGE,
    creator_full_message,
    waitlisted_message,
)
from .eligibility import ALLOWED, EligibilityResult
from .locks import RaidLockRegistry
from .promotion import WaitlistPromoter
from .roster import RaidRecord, TeamRoster


logger = logging.getLogger("raidbot.signups.engine")


class SignupStatus(str, Enum):
    SIGNED_UP = "signed_up"
    WAITLISTED = "waitlisted"
    ALREADY_REGISTERED = "already_registered"
    CLOSED = "closed"
    RESTRICTED = "restricted"
    RATE_LIMITED = "rate_limited"
    UNKNOWN_RAID = "unknown_raid"
    UNKNOWN_SLOT = "unknown_slot"
    REMOVED = "removed"
    LEFT_WAITLIST = "left_waitlist"
    NOT_REGISTERED = "not_registered"


@dataclass(frozen=True)
class SignupOutcome:
    """Result of a register/unregister call, rendered by the caller as feedback."""

    status: SignupStatus
    message: Optional[str] = None
    retract_reaction: bool = False
    promoted: bool = False

    @property
    def changed(self) -> bool:
        return self.status in (
            SignupStatus.SIGNED_UP,
            SignupStatus.WAITLISTED,
            SignupStatus.REMOVED,
            SignupStatus.LEFT_WAITLIST,
        )


EligibilityCheck = Callable[[RaidRecord, int], Awaitable[EligibilityResult]]


async def allow_everyone(record: RaidRecord, user_id: int) -> EligibilityResult:
    return ALLOWED


class SignupEngine:
    """
    Applies register/unregister events to raid rosters.

    Every mutation of a raid happens while holding that raid's lock from the
    shared :class:`RaidLockRegistry`, including the waitlist promotion that
    follows an unregister. Notifications are dispatched in the background
    and never decide whether a mutation commits.
    """

    def __init__(
        self,
        index,
        locks: RaidLockRegistry,
        promoter: WaitlistPromoter,
        notifier: Notifier,
        renderer,
        metrics: RaidMetrics,
        audit: AuditTrail,
        eligibility: EligibilityCheck = allow_everyone,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.index = index
        self.locks = locks
        self.promoter = promoter
        self.notifier = notifier
        self.renderer = renderer
        self.metrics = metrics
        self.audit = audit
        self.eligibility = eligibility
        self.rate_limiter = rate_limiter
        self._clock = clock

    def add_raid(self, record: RaidRecord) -> None:
        """Start tracking a raid created by the command layer."""
        self.index.add(record)
        self.metrics.observe_raids(self.index.all_records())
        logger.info("Tracking %s %s (message %s)", record.type.value, record.raid_id, record.message_id)

    def _notify(self, record: RaidRecord, user_id: int, message: str) -> None:
        self.notifier.dispatch(
            user_id, message, channel_id=record.channel_id, guild_id=record.guild_id
        )

    async def commit(self, record: RaidRecord) -> None:
        """Render, flag for persistence and refresh gauges. Caller holds the lock."""
        await self._render(record)
        self.index.mark_updated(record.message_id)
        self.metrics.observe_raids(self.index.all_records())

    async def _render(self, record: RaidRecord) -> None:
        try:
            await self.renderer.render(record)
        except Exception:
            logger.warning("Render failed for raid %s", record.raid_id, exc_info=True)

    async def register(
        self, message_id: int, user_id: int, target: Any = None
    ) -> SignupOutcome:
        """Handle a participant asking for a slot, team or flat signup."""
        if self.rate_limiter and not self.rate_limiter.is_allowed(user_id):
            if message_id in self.index:
                record = self.index.get(message_id)
                self._notify(record, user_id, RATE_LIMITED_MESSAGE)
            return SignupOutcome(SignupStatus.RATE_LIMITED, RATE_LIMITED_MESSAGE, True)

        if message_id not in self.index:
            return SignupOutcome(SignupStatus.UNKNOWN_RAID)

        async with self.locks.hold(message_id):
            record = self.index.get(message_id)
            if record is None:
                return SignupOutcome(SignupStatus.UNKNOWN_RAID)

            if record.closed:
                self.audit.record(
                    record.raid_id, AuditEvent.BLOCKED, f"<@{user_id}> tried to join a closed raid"
                )
                self._notify(record, user_id, CLOSED_MESSAGE)
                return SignupOutcome(SignupStatus.CLOSED, CLOSED_MESSAGE, True)

            verdict = await self.eligibility(record, user_id)
            if not verdict.allowed:
                self.audit.record(
                    record.raid_id, AuditEvent.RESTRICTED, f"<@{user_id}> lacks a signup role"
                )
                if verdict.denied_reason:
                    self._notify(record, user_id, verdict.denied_reason)
                return SignupOutcome(SignupStatus.RESTRICTED, verdict.denied_reason, True)

            pool = record.roster.pool_for(target)
            if pool is None:
                return SignupOutcome(SignupStatus.UNKNOWN_SLOT)

            placement = record.roster.locate(user_id)
            if placement is not None:
                if placement.pool is pool:
                    return SignupOutcome(SignupStatus.ALREADY_REGISTERED)
                self._notify(record, user_id, ALREADY_SIGNED_UP_MESSAGE)
                return SignupOutcome(
                    SignupStatus.ALREADY_REGISTERED, ALREADY_SIGNED_UP_MESSAGE, True
                )

            if pool.has_room():
                pool.users.append(user_id)
                await self.commit(record)
                self.audit.record(
                    record.raid_id,
                    AuditEvent.SIGNUP,
                    f"<@{user_id}> signed up for {pool.label or record.display_name}",
                )
                self.metrics.increment("registrations")
                if record.roster.total_filled() == record.roster.total_capacity():
                    self._notify(record, record.creator_id, creator_full_message(record))
                return SignupOutcome(SignupStatus.SIGNED_UP)

            pool.waitlist.append(user_id)
            await self.commit(record)
            self.audit.record(
                record.raid_id,
                AuditEvent.WAITLIST,
                f"<@{user_id}> waitlisted for {pool.label or record.display_name}",
            )
            self.metrics.increment("waitlisted")
            message = waitlisted_message(record, pool)
            self._notify(record, user_id, message)
            return SignupOutcome(SignupStatus.WAITLISTED, message)

    async def unregister(
        self, message_id: int, user_id: int, target: Any = None
    ) -> SignupOutcome:
        """Handle a participant releasing a slot, team or flat signup."""
        if message_id not in self.index:
            return SignupOutcome(SignupStatus.UNKNOWN_RAID)

        async with self.locks.hold(message_id):
            record = self.index.get(message_id)
            if record is None:
                return SignupOutcome(SignupStatus.UNKNOWN_RAID)
            if record.closed:
                return SignupOutcome(SignupStatus.CLOSED)

            pool = record.roster.pool_for(target)
            if pool is None:
                return SignupOutcome(SignupStatus.UNKNOWN_SLOT)

            if user_id in pool.users:
                pool.users.remove(user_id)
                self.audit.record(
                    record.raid_id,
                    AuditEvent.UNSIGN,
                    f"<@{user_id}> left {pool.label or record.display_name}",
                )
                self.metrics.increment("unregistrations")
                team_index = target if isinstance(record.roster, TeamRoster) else None
                promoted = self.promoter.promote(record, team_index)
                await self.commit(record)
                return SignupOutcome(SignupStatus.REMOVED, promoted=promoted)

            if user_id in pool.waitlist:
                pool.waitlist.remove(user_id)
                await self.commit(record)
                return SignupOutcome(SignupStatus.LEFT_WAITLIST)

            return SignupOutcome(SignupStatus.NOT_REGISTERED)

    async def promote(self, message_id: int, team_index: Optional[int] = None) -> bool:
        """Fill open capacity from the waitlist outside of a reaction event."""
        async with self.locks.hold(message_id):
            record = self.index.get(message_id)
            if record is None:
                return False
            promoted = self.promoter.promote(record, team_index)
            if promoted:
                await self.commit(record)
            return promoted

    async def close(
        self, message_id: int, closed_by: Optional[int] = None, reason: str = "manual"
    ) -> bool:
        """Seal a raid's roster. Closing an already closed raid is a no-op."""
        async with self.locks.hold(message_id):
            record = self.index.get(message_id)
            if record is None or not record.close(int(self._clock()), reason, closed_by):
                return False
            self.metrics.increment("raids_closed")
            self.audit.record(
                record.raid_id,
                AuditEvent.CLOSED,
                f"Closed ({reason}) with {record.attendance_count} participant(s)",
            )
            await self.commit(record)
            return True

    async def reopen(self, message_id: int, reopened_by: Optional[int] = None) -> bool:
        """Re-open a closed raid and fill any capacity freed while it was closed."""
        async with self.locks.hold(message_id):
            record = self.index.get(message_id)
            if record is None or not record.reopen():
                return False
            self.audit.record(
                record.raid_id,
                AuditEvent.REOPENED,
                f"Reopened by <@{reopened_by}>" if reopened_by else "Reopened",
            )
            if isinstance(record.roster, TeamRoster):
                for team_index in range(len(record.roster.teams)):
                    self.promoter.promote(record, team_index)
            else:
                self.promoter.promote(record)
            await self.commit(record)
            return True

    async def send_test_notification(
        self,
        user_id: int,
        channel_id: Optional[int] = None,
        guild_id: Optional[int] = None,
    ) -> bool:
        """Run the full delivery chain for a participant and wait for the result."""
        return await self.notifier.notify_user(
            user_id,
            "This is a test notification from the raid signup bot. "
            "If you can read this, raid notices will reach you.",
            channel_id=channel_id,
            guild_id=guild_id,
        )
