"""Structured audit trail of raid state transitions."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set, Tuple

import discord

logger = logging.getLogger("raidbot.audit")


class AuditEvent(str, Enum):
    SIGNUP = "SIGNUP"
    WAITLIST = "WAITLIST"
    UNSIGN = "UNSIGN"
    PROMOTED = "PROMOTED"
    BLOCKED = "BLOCKED"
    RESTRICTED = "RESTRICTED"
    DM_FAILED = "DM_FAILED"
    CLOSED = "CLOSED"
    REOPENED = "REOPENED"
    REMINDER = "REMINDER"
    EVICTED = "EVICTED"


AUDIT_COLORS = {
    AuditEvent.SIGNUP: discord.Color.green(),
    AuditEvent.WAITLIST: discord.Color.gold(),
    AuditEvent.UNSIGN: discord.Color.orange(),
    AuditEvent.PROMOTED: discord.Color.teal(),
    AuditEvent.BLOCKED: discord.Color.red(),
    AuditEvent.RESTRICTED: discord.Color.red(),
    AuditEvent.DM_FAILED: discord.Color.dark_red(),
}


class AuditTrail:
    """
    Fire-and-forget log of every signup transition.

    Every entry goes to the ``raidbot.audit`` logger. When a client and an
    audit channel are configured, entries are also posted there as embeds
    from a background task.
    """

    def __init__(
        self,
        bot: Optional[discord.Client] = None,
        channel_id: Optional[int] = None,
        history_size: int = 200,
    ):
        self.bot = bot
        self.channel_id = channel_id
        self.history_size = history_size
        self.history: List[Tuple[str, str, str]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._warned_missing_channel = False

    def record(self, scope: str, event: AuditEvent, text: str) -> None:
        event = AuditEvent(event)
        logger.info("[%s] %s: %s", scope, event.value, text)
        self.history.append((scope, event.value, text))
        if len(self.history) > self.history_size:
            del self.history[: len(self.history) - self.history_size]

        if not self.bot or not self.channel_id:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._post(scope, event, text))
        except RuntimeError:
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for audit posts still on their way to the channel."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def events(self, scope: Optional[str] = None) -> List[str]:
        """Event kinds recorded so far, optionally for one scope."""
        return [event for entry_scope, event, _ in self.history if scope in (None, entry_scope)]

    async def _post(self, scope: str, event: AuditEvent, text: str) -> None:
        channel = self.bot.get_channel(self.channel_id)
        if not isinstance(channel, discord.TextChannel):
            if not self._warned_missing_channel:
                logger.warning("Configured audit channel %s not found", self.channel_id)
                self._warned_missing_channel = True
            return

        embed = discord.Embed(
            title=f"{event.value} · {scope}",
            description=text,
            color=AUDIT_COLORS.get(event, discord.Color.blurple()),
            timestamp=datetime.now(timezone.utc),
        )
        embed.set_footer(text="Raid Audit")
        try:
            await channel.send(embed=embed, allowed_mentions=discord.AllowedMentions.none())
        except Exception as exc:
            logger.warning("Failed to send audit entry: %s", exc)
