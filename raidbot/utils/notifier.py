"""Participant notifications with a DM -> channel -> member-DM fallback chain."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from .audit_log import AuditEvent, AuditTrail
from .circuit_breaker import CircuitBreaker, CircuitOpenError
from .discord_gateway import DirectMessagesClosed
from .metrics import RaidMetrics

logger = logging.getLogger("raidbot.notifier")


class Notifier:
    """
    Delivers a message to a single participant.

    Delivery paths, each tried only when the previous one failed:
    1. Direct message through the DM breaker, retried with backoff
    2. Channel post in the raid's channel that mentions the participant
    3. Direct message through the guild member handle

    A participant who has DMs turned off is not an outage: the refusal skips
    straight to the next path and never counts against the DM breaker.

    Failures never raise; they bump the ``dm_failures`` counter and leave a
    ``DM_FAILED`` audit entry.
    """

    def __init__(
        self,
        gateway,
        dm_breaker: CircuitBreaker,
        api_breaker: CircuitBreaker,
        metrics: RaidMetrics,
        audit: AuditTrail,
        dm_attempts: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.dm_breaker = dm_breaker
        self.api_breaker = api_breaker
        self.metrics = metrics
        self.audit = audit
        self.dm_attempts = max(1, dm_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()

    async def _send_direct(self, handle, message: str) -> bool:
        # Runs inside the DM breaker; a privacy refusal is a completed call
        try:
            await self.gateway.deliver_direct(handle, message)
        except DirectMessagesClosed:
            return False
        return True

    async def _direct_message(self, handle, message: str) -> bool:
        """DM with bounded retries. Returns False when the recipient refuses DMs."""
        for attempt in range(1, self.dm_attempts + 1):
            try:
                return await self.dm_breaker.call(self._send_direct, handle, message)
            except CircuitOpenError:
                raise
            except Exception as exc:
                if attempt == self.dm_attempts:
                    raise
                logger.info(
                    "DM attempt %d/%d to %s failed: %s",
                    attempt,
                    self.dm_attempts,
                    handle.id,
                    exc,
                )
                await self._sleep(self.retry_delay * attempt)
        return False

    async def notify_user(
        self,
        user_id: int,
        message: str,
        channel_id: Optional[int] = None,
        guild_id: Optional[int] = None,
    ) -> bool:
        """Try every delivery path in order. Returns True once one succeeds."""
        try:
            handle = await self.api_breaker.call(self.gateway.resolve_participant, user_id)
            if await self._direct_message(handle, message):
                return True
            logger.info("User %s does not accept DMs, falling back", user_id)
        except Exception as exc:
            logger.warning("Could not DM user %s: %s", user_id, exc)

        if channel_id:
            try:
                await self.api_breaker.call(
                    self.gateway.post_in_channel,
                    channel_id,
                    f"<@{user_id}> {message}",
                    mention_user_id=user_id,
                )
                return True
            except Exception as exc:
                logger.warning(
                    "Fallback channel notice for user %s in %s failed: %s",
                    user_id,
                    channel_id,
                    exc,
                )

        if guild_id:
            try:
                member = await self.api_breaker.call(
                    self.gateway.resolve_member, guild_id, user_id
                )
                if await self._direct_message(member, message):
                    return True
            except Exception as exc:
                logger.warning("Member DM fallback for user %s failed: %s", user_id, exc)

        self.metrics.increment("dm_failures")
        self.audit.record(
            f"user:{user_id}",
            AuditEvent.DM_FAILED,
            "Notification could not be delivered by any path",
        )
        return False

    def dispatch(
        self,
        user_id: int,
        message: str,
        channel_id: Optional[int] = None,
        guild_id: Optional[int] = None,
    ) -> asyncio.Task:
        """Send in the background; the caller does not wait for delivery."""
        task = asyncio.get_running_loop().create_task(
            self.notify_user(user_id, message, channel_id=channel_id, guild_id=guild_id)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every dispatched notification to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
