"""Shared helpers for raid announcements and participant notices."""

from __future__ import annotations

import logging
from typing import List, Optional

import discord

from raidbot.signups.roster import (
    FlatRoster,
    RaidRecord,
    RaidType,
    RoleRoster,
    SignupPool,
    TeamRoster,
)
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger("raidbot.raid_utils")

TEAM_EMOJIS = ["1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣", "6️⃣", "7️⃣", "8️⃣", "9️⃣"]

TYPE_COLORS = {
    RaidType.RAID: discord.Color.blurple(),
    RaidType.MUSEUM: discord.Color.green(),
    RaidType.KEY: discord.Color.gold(),
    RaidType.CHALLENGE: discord.Color.red(),
}


def build_message_link(record: RaidRecord) -> Optional[str]:
    if not record.guild_id or not record.channel_id or not record.message_id:
        return None
    return (
        f"https://discord.com/channels/{record.guild_id}/"
        f"{record.channel_id}/{record.message_id}"
    )


def format_time_label(record: RaidRecord) -> str:
    if record.scheduled_at:
        return f"<t:{record.scheduled_at}:F>"
    return "Not specified"


def _lines(*lines: Optional[str]) -> str:
    return "\n".join(line for line in lines if line)


def waitlisted_message(record: RaidRecord, pool: SignupPool) -> str:
    if isinstance(record.roster, RoleRoster):
        spot = f"The {pool.label} role"
    elif isinstance(record.roster, TeamRoster):
        spot = pool.label
    else:
        spot = record.display_name
    return (
        f"{spot} is full. You've been added to the waitlist and will be "
        "notified when a spot opens."
    )


def promoted_message(record: RaidRecord, pool: SignupPool, position: int) -> str:
    link = build_message_link(record)
    if isinstance(record.roster, FlatRoster):
        return _lines(
            f"You're now signed up for {record.display_name} (ID: `{record.raid_id}`).",
            f"Scheduled: {format_time_label(record)}",
            f"Signup link: {link}" if link else None,
            "If you can no longer make it, please remove your reaction or tell staff.",
        )
    return _lines(
        f"Good news! A spot opened in {record.display_name} (ID: `{record.raid_id}`).",
        f"You've been automatically assigned to position {position + 1} ({pool.label}).",
        f"Scheduled: {format_time_label(record)}",
        f"Signup link: {link}" if link else None,
        "If this no longer works for you, please contact a staff member.",
    )


def creator_full_message(record: RaidRecord) -> str:
    return f"Your {record.display_name} (ID: `{record.raid_id}`) is now full!"


CLOSED_MESSAGE = (
    "Signups for this raid are closed. Please contact a staff member if you need assistance."
)
RATE_LIMITED_MESSAGE = (
    "You're reacting too quickly. Please wait a few seconds and try again."
)
ALREADY_SIGNED_UP_MESSAGE = (
    "You're already signed up for this raid! Please remove your current signup "
    "before choosing a different spot."
)


def restricted_message(raid_type: RaidType, role_names: List[str]) -> str:
    kind = "museum" if raid_type == RaidType.MUSEUM else "raid"
    if not role_names:
        return (
            f"You are not allowed to sign up for this {kind}. Please contact a "
            "staff member if you believe this is a mistake."
        )
    return _lines(
        f"You need one of these roles to sign up for this {kind}:",
        *[f"> {name}" for name in role_names],
        "If you need access, please reach out to a staff member.",
    )


def creator_reminder_message(record: RaidRecord) -> str:
    link = build_message_link(record)
    return _lines(
        f"Reminder: your {record.display_name} (ID: `{record.raid_id}`) starts soon.",
        f"Scheduled time: {format_time_label(record)}",
        f"Signup link: {link}" if link else None,
    )


def participant_reminder_message(record: RaidRecord, user_id: int) -> str:
    link = build_message_link(record)
    role_name = record.roster.label_for(user_id)
    return _lines(
        f"Reminder: {record.display_name} (ID: `{record.raid_id}`) is starting soon.",
        f"Scheduled time: {format_time_label(record)}",
        f"Your role: **{role_name}**" if role_name else None,
        f"Signup link: {link}" if link else None,
    )


def _format_user_list(user_ids: List[int]) -> str:
    if not user_ids:
        return "—"
    return ", ".join(f"<@{user_id}>" for user_id in user_ids)


def signup_emojis(record: RaidRecord) -> List[str]:
    """Reactions the announcement should carry for this raid shape."""
    roster = record.roster
    if isinstance(roster, RoleRoster):
        return [slot.emoji for slot in roster.slots if slot.emoji]
    if isinstance(roster, TeamRoster):
        return TEAM_EMOJIS[: len(roster.teams)]
    return ["✅"]


def build_raid_embed(record: RaidRecord) -> discord.Embed:
    """Build the public raid embed with roster details."""
    roster = record.roster
    capacity = roster.total_capacity()
    filled = roster.total_filled()
    open_slots = max(capacity - filled, 0)

    if record.closed or (capacity and open_slots == 0):
        signup_label = "SIGNUPS CLOSED"
        color = discord.Color.red()
    elif open_slots <= 2:
        signup_label = "ALMOST FULL"
        color = discord.Color.gold()
    else:
        signup_label = "SIGNUPS OPEN"
        color = TYPE_COLORS.get(record.type, discord.Color.green())

    embed = discord.Embed(
        title=f"{record.display_name} · {signup_label}",
        color=color,
    )
    embed.add_field(name="Date + Time", value=format_time_label(record), inline=False)
    embed.add_field(name="Created by", value=f"<@{record.creator_id}>", inline=True)
    embed.add_field(name="Slots", value=f"{filled}/{capacity} · Open: {open_slots}", inline=True)

    if isinstance(roster, FlatRoster):
        embed.add_field(
            name=f"✅ Signups ({len(roster.signups)}/{roster.max_slots})",
            value=_format_user_list(roster.signups),
            inline=False,
        )
        if roster.waitlist:
            embed.add_field(
                name=f"Waitlist ({len(roster.waitlist)})",
                value=_format_user_list(roster.waitlist),
                inline=False,
            )
    else:
        emojis = signup_emojis(record)
        for index, pool in enumerate(roster.pools()):
            emoji = emojis[index] if index < len(emojis) else ""
            value = _format_user_list(pool.users)
            if pool.waitlist:
                value = f"{value}\nWaitlist: {_format_user_list(pool.waitlist)}"
            embed.add_field(
                name=f"{emoji} {pool.label} ({len(pool.users)}/{pool.capacity})",
                value=value,
                inline=False,
            )

    if record.closed:
        if record.closed_by:
            status = f"Closed by <@{record.closed_by}> on <t:{record.closed_at}:F>"
        else:
            status = f"Closed automatically on <t:{record.closed_at}:F>"
        embed.add_field(name="Status", value=status, inline=False)

    embed.set_footer(text=f"Raid ID: {record.raid_id}")
    return embed


class RaidRenderer:
    """Re-renders the announcement after a roster change."""

    def __init__(self, gateway, api_breaker: CircuitBreaker):
        self.gateway = gateway
        self.api_breaker = api_breaker

    async def render(self, record: RaidRecord) -> bool:
        try:
            message = await self.api_breaker.call(
                self.gateway.fetch_message, record.channel_id, record.message_id
            )
            await self.api_breaker.call(message.edit, embed=build_raid_embed(record))
        except Exception:
            logger.warning("Failed to update raid message %s", record.raid_id, exc_info=True)
            return False

        if record.closed:
            try:
                await message.clear_reactions()
            except Exception:
                logger.warning(
                    "Failed to remove reactions for closed raid %s", record.raid_id, exc_info=True
                )
        else:
            await self._restore_reactions(record, message)
        return True

    async def _restore_reactions(self, record: RaidRecord, message: discord.Message) -> None:
        present = {str(reaction.emoji) for reaction in message.reactions if reaction.me}
        for emoji in signup_emojis(record):
            if emoji in present:
                continue
            try:
                await message.add_reaction(emoji)
            except Exception:
                logger.warning("Failed to add signup reaction %s", emoji, exc_info=True)
