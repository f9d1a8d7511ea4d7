"""Thin wrapper around the discord.py client primitives the raid engine needs."""

import logging
from typing import Optional, Union

import discord

logger = logging.getLogger("raidbot.gateway")

Messageable = Union[discord.User, discord.Member]

# "Cannot send messages to this user"
DMS_DISABLED_CODE = 50007


class DirectMessagesClosed(Exception):
    """The participant does not accept direct messages from the bot."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} does not accept direct messages")


class DiscordGateway:
    """
    Platform capability used by notification delivery and rendering.

    Every method may raise ``discord.HTTPException`` (or a subclass); callers
    wrap them in circuit breakers. A DM refused by the recipient's privacy
    settings surfaces as :class:`DirectMessagesClosed` instead.
    """

    def __init__(self, bot: discord.Client):
        self.bot = bot

    async def resolve_participant(self, user_id: int) -> discord.User:
        user = self.bot.get_user(user_id)
        if user:
            return user
        return await self.bot.fetch_user(user_id)

    async def resolve_member(self, guild_id: int, user_id: int) -> discord.Member:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            guild = await self.bot.fetch_guild(guild_id)
        member = guild.get_member(user_id)
        if member:
            return member
        return await guild.fetch_member(user_id)

    async def deliver_direct(self, handle: Messageable, content: str) -> None:
        try:
            await handle.send(content)
        except discord.Forbidden as e:
            if e.code == DMS_DISABLED_CODE:
                raise DirectMessagesClosed(handle.id) from e
            raise

    async def resolve_channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        return channel

    async def post_in_channel(
        self, channel_id: int, content: str, mention_user_id: Optional[int] = None
    ) -> None:
        channel = await self.resolve_channel(channel_id)
        if mention_user_id is not None:
            allowed = discord.AllowedMentions(
                everyone=False, roles=False, users=[discord.Object(id=mention_user_id)]
            )
        else:
            allowed = discord.AllowedMentions.none()
        await channel.send(content, allowed_mentions=allowed)

    async def fetch_message(self, channel_id: int, message_id: int) -> discord.Message:
        channel = await self.resolve_channel(channel_id)
        return await channel.fetch_message(message_id)

    async def remove_reaction(
        self, channel_id: int, message_id: int, emoji: str, user_id: int
    ) -> None:
        message = await self.fetch_message(channel_id, message_id)
        await message.remove_reaction(emoji, discord.Object(id=user_id))
