"""Background task that closes, reminds and retires raids on a timer."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from discord.ext import commands, tasks

from raidbot.signups.engine import SignupEngine
from raidbot.signups.roster import InvariantViolation, RaidRecord, RaidType
from raidbot.utils.audit_log import AuditEvent
from raidbot.utils.config import Config, RaidGuildSettings
from raidbot.utils.raid_utils import creator_reminder_message, participant_reminder_message


logger = logging.getLogger("raidbot.tasks.raid_scheduler")

RecurringSpawner = Callable[[], Awaitable[None]]

START_CLOSE_REASONS = {
    RaidType.RAID: "raid_start",
    RaidType.MUSEUM: "museum_start",
    RaidType.KEY: "key_start",
    RaidType.CHALLENGE: "challenge_start",
}


class RaidScheduler(commands.Cog):
    """Closes raids automatically, sends reminders and evicts old raids."""

    def __init__(
        self,
        bot: commands.Bot,
        config: Config,
        engine: SignupEngine,
        spawn_recurring: Optional[RecurringSpawner] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bot = bot
        self.config = config
        self.engine = engine
        self.spawn_recurring = spawn_recurring
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()

    async def cog_load(self) -> None:
        if not self.config.raid_enabled:
            return
        self.lifecycle_task.change_interval(seconds=self.config.raid_scheduler_interval_seconds)
        self.lifecycle_task.start()

    async def cog_unload(self) -> None:
        if self.lifecycle_task.is_running():
            self.lifecycle_task.cancel()
        await self.drain()
        await self.engine.index.flush()

    @tasks.loop(seconds=60)
    async def lifecycle_task(self) -> None:
        await self.run_tick()

    @lifecycle_task.before_loop
    async def before_lifecycle_task(self) -> None:
        await self.bot.wait_until_ready()

    async def run_tick(self, now_ts: Optional[int] = None) -> None:
        """Scan every raid in memory once."""
        if now_ts is None:
            now_ts = int(time.time())

        for record in self.engine.index.all_records():
            try:
                await self._process_raid(record, now_ts)
            except InvariantViolation:
                raise
            except Exception:
                logger.error(
                    "Scheduler failed on raid %s", record.raid_id, exc_info=True
                )

        if self.spawn_recurring:
            try:
                await self.spawn_recurring()
            except Exception:
                logger.error("Failed to check recurring raids", exc_info=True)

        await self.engine.index.flush()
        self.engine.metrics.observe_raids(self.engine.index.all_records())
        if self.engine.rate_limiter:
            self.engine.rate_limiter.cleanup()

    async def _process_raid(self, record: RaidRecord, now_ts: int) -> None:
        if record.closed:
            retention = self.config.raid_retention_hours * 3600
            if record.closed_at and now_ts - record.closed_at >= retention:
                await self._retire(record)
            return

        if not record.scheduled_at:
            return

        settings = self.config.guild_raid_settings(record.guild_id)
        seconds_until = record.scheduled_at - now_ts

        if (
            record.type != RaidType.MUSEUM
            and not record.auto_close_executed
            and settings.auto_close_seconds > 0
            and seconds_until <= settings.auto_close_seconds
            and record.roster.is_full()
        ):
            await self._auto_close(record, now_ts, "auto_full", require_full=True)
            return

        if not record.auto_close_executed and seconds_until <= 0:
            await self._auto_close(record, now_ts, START_CLOSE_REASONS[record.type])
            return

        if seconds_until <= 0:
            return

        await self._send_reminders(record, settings, seconds_until)

    async def _auto_close(
        self, record: RaidRecord, now_ts: int, reason: str, require_full: bool = False
    ) -> bool:
        async with self.engine.locks.hold(record.message_id):
            if self.engine.index.get(record.message_id) is not record:
                return False
            if record.closed or record.auto_close_executed:
                return False
            if require_full and not record.roster.is_full():
                return False

            record.close(now_ts, reason)
            record.auto_close_executed = True
            self.engine.metrics.increment("raids_closed")

            if reason == "auto_full":
                text = f"{record.display_name} {record.raid_id} auto-closed when full."
            else:
                text = (
                    f"{record.display_name} {record.raid_id} auto-locked at start time with "
                    f"{record.attendance_count} participant(s). Attendance recorded."
                )
            self.engine.audit.record(record.raid_id, AuditEvent.CLOSED, text)
            await self.engine.commit(record)

        logger.info("Raid %s closed by scheduler (%s)", record.raid_id, reason)
        return True

    async def _send_reminders(
        self, record: RaidRecord, settings: RaidGuildSettings, seconds_until: int
    ) -> None:
        def creator_due() -> bool:
            return (
                settings.creator_reminders_enabled
                and not record.creator_reminder_sent
                and seconds_until <= settings.creator_reminder_seconds
            )

        def participants_due() -> bool:
            return (
                settings.participant_reminders_enabled
                and not record.participant_reminder_sent
                and seconds_until <= settings.participant_reminder_seconds
            )

        if not (creator_due() or participants_due()):
            return

        send_creator = False
        recipients: List[Tuple[int, str]] = []
        async with self.engine.locks.hold(record.message_id):
            if record.closed or self.engine.index.get(record.message_id) is not record:
                return
            if creator_due():
                record.creator_reminder_sent = True
                send_creator = True
            if participants_due():
                record.participant_reminder_sent = True
                recipients = [
                    (user_id, participant_reminder_message(record, user_id))
                    for user_id in record.roster.participant_ids()
                ]
            self.engine.index.mark_updated(record.message_id)

        if send_creator:
            self.engine.notifier.dispatch(
                record.creator_id,
                creator_reminder_message(record),
                channel_id=record.channel_id,
                guild_id=record.guild_id,
            )
            self.engine.metrics.increment("reminders_sent")
            self.engine.audit.record(record.raid_id, AuditEvent.REMINDER, "Creator reminder sent")

        if recipients:
            self._spawn(self._send_participant_reminders(record, recipients))
            self.engine.audit.record(
                record.raid_id,
                AuditEvent.REMINDER,
                f"Participant reminder queued for {len(recipients)} participant(s)",
            )

    async def _send_participant_reminders(
        self, record: RaidRecord, recipients: List[Tuple[int, str]]
    ) -> int:
        """Deliver reminders in fixed-size concurrent batches with a pause between them."""
        batch_size = self.config.reminder_batch_size
        pause = self.config.reminder_batch_pause_seconds
        delivered = 0

        for start in range(0, len(recipients), batch_size):
            batch = recipients[start:start + batch_size]
            results = await asyncio.gather(
                *(
                    self.engine.notifier.notify_user(
                        user_id,
                        message,
                        channel_id=record.channel_id,
                        guild_id=record.guild_id,
                    )
                    for user_id, message in batch
                ),
                return_exceptions=True,
            )
            for (user_id, _), result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(
                        "Participant reminder for %s failed: %s", user_id, result
                    )
                elif result:
                    delivered += 1
            self.engine.metrics.increment("reminders_sent", len(batch))
            if start + batch_size < len(recipients):
                await self._sleep(pause)

        logger.info(
            "Sent participant reminders for raid %s (%d/%d delivered)",
            record.raid_id,
            delivered,
            len(recipients),
        )
        return delivered

    async def _retire(self, record: RaidRecord) -> None:
        message_id = record.message_id
        async with self.engine.locks.hold(message_id):
            if self.engine.index.get(message_id) is not record:
                return
            self.engine.index.evict(message_id)
        self.engine.locks.dispose(message_id)
        self.engine.audit.record(
            record.raid_id, AuditEvent.EVICTED, "Closed raid retired from memory"
        )
        logger.info("Retired raid %s", record.raid_id)

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for reminder batches still being delivered."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.engine.notifier.drain()


async def setup(
    bot: commands.Bot,
    config: Config,
    engine: SignupEngine,
    spawn_recurring: Optional[RecurringSpawner] = None,
) -> None:
    """Setup the raid scheduler."""
    await bot.add_cog(RaidScheduler(bot, config, engine, spawn_recurring))
    logger.info("RaidScheduler cog loaded")
