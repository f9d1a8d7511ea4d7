"""Event handlers for raid signups via reactions."""

from __future__ import annotations

import logging
from typing import Any

import discord
from discord.ext import commands

from raidbot.signups.engine import SignupEngine, SignupOutcome
from raidbot.signups.roster import (
    MUSEUM_SIGNUP_EMOJI,
    FlatRoster,
    RaidRecord,
    RoleRoster,
    TeamRoster,
)
from raidbot.utils.config import Config
from raidbot.utils.raid_utils import TEAM_EMOJIS


logger = logging.getLogger("raidbot.events.raid")

NO_TARGET = object()


def reaction_target(record: RaidRecord, emoji: str) -> Any:
    """Map a reaction emoji to the roster target it stands for, or NO_TARGET."""
    roster = record.roster
    if isinstance(roster, RoleRoster):
        if any(slot.emoji == emoji for slot in roster.slots):
            return emoji
        return NO_TARGET
    if isinstance(roster, FlatRoster):
        return MUSEUM_SIGNUP_EMOJI if emoji == MUSEUM_SIGNUP_EMOJI else NO_TARGET
    if isinstance(roster, TeamRoster):
        if emoji in TEAM_EMOJIS:
            index = TEAM_EMOJIS.index(emoji)
            if index < len(roster.teams):
                return index
    return NO_TARGET


class RaidEvents(commands.Cog):
    """Turns reaction add/remove events on raid announcements into signups."""

    def __init__(self, bot: commands.Bot, config: Config, engine: SignupEngine, gateway):
        self.bot = bot
        self.config = config
        self.engine = engine
        self.gateway = gateway

    def _is_own_reaction(self, payload: discord.RawReactionActionEvent) -> bool:
        if self.bot.user and payload.user_id == self.bot.user.id:
            return True
        member = getattr(payload, "member", None)
        return bool(member and member.bot)

    def _target_for(self, payload: discord.RawReactionActionEvent) -> Any:
        record = self.engine.index.get(payload.message_id)
        if record is None:
            return NO_TARGET
        return reaction_target(record, str(payload.emoji))

    async def _retract(self, payload: discord.RawReactionActionEvent) -> None:
        try:
            await self.gateway.remove_reaction(
                payload.channel_id, payload.message_id, str(payload.emoji), payload.user_id
            )
        except Exception as exc:
            logger.warning(
                "Could not remove reaction %s from %s on %s: %s",
                payload.emoji,
                payload.user_id,
                payload.message_id,
                exc,
            )

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        if payload.guild_id is None:
            return
        if not self.config.raid_enabled:
            return
        if self._is_own_reaction(payload):
            return

        target = self._target_for(payload)
        if target is NO_TARGET:
            return

        outcome: SignupOutcome = await self.engine.register(
            payload.message_id, payload.user_id, target
        )
        logger.debug(
            "Reaction add by %s on %s -> %s", payload.user_id, payload.message_id, outcome.status
        )
        if outcome.retract_reaction:
            await self._retract(payload)

    @commands.Cog.listener()
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        if payload.guild_id is None:
            return
        if not self.config.raid_enabled:
            return
        if self.bot.user and payload.user_id == self.bot.user.id:
            return

        target = self._target_for(payload)
        if target is NO_TARGET:
            return

        outcome = await self.engine.unregister(payload.message_id, payload.user_id, target)
        logger.debug(
            "Reaction remove by %s on %s -> %s",
            payload.user_id,
            payload.message_id,
            outcome.status,
        )


async def setup(bot: commands.Bot, config: Config, engine: SignupEngine, gateway) -> None:
    """Setup the raid events cog."""
    await bot.add_cog(RaidEvents(bot, config, engine, gateway))
    logger.info("RaidEvents cog loaded")
