"""
Raid Admin Commands - Manual close/reopen, DM diagnostics and counters.
"""

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from raidbot.signups.engine import SignupEngine
from raidbot.signups.roster import RaidRecord
from raidbot.utils.config import Config

logger = logging.getLogger("raidbot.commands.raid_admin")

GENERIC_FAILURE = "❌ Something went wrong. Please try again or check the logs."


class RaidAdminCommands(commands.Cog):
    """Staff commands that act on raids already posted."""

    def __init__(self, bot: commands.Bot, config: Config, engine: SignupEngine):
        self.bot = bot
        self.config = config
        self.engine = engine

    async def _defer(self, interaction: discord.Interaction) -> bool:
        try:
            await interaction.response.defer(ephemeral=True)
        except discord.errors.NotFound:
            logger.warning("Interaction expired - bot may have been reconnecting")
            return False
        except Exception as e:
            logger.error(f"Error during defer: {e}", exc_info=True)
            return False
        return True

    def _find(self, interaction: discord.Interaction, raid_id: str) -> Optional[RaidRecord]:
        guild_id = interaction.guild.id if interaction.guild else None
        return self.engine.index.find_by_raid_id(raid_id.strip(), guild_id)

    @app_commands.command(name="raid-close", description="[Raid] Close signups for a raid")
    @app_commands.checks.has_permissions(manage_guild=True)
    @app_commands.describe(raid_id="Raid ID shown in the announcement footer")
    async def raid_close(self, interaction: discord.Interaction, raid_id: str):
        if not await self._defer(interaction):
            return

        try:
            record = self._find(interaction, raid_id)
            if record is None:
                await interaction.followup.send(
                    f"❌ No active raid with ID `{raid_id}`.", ephemeral=True
                )
                return

            closed = await self.engine.close(record.message_id, closed_by=interaction.user.id)
            if not closed:
                await interaction.followup.send(
                    f"ℹ️ {record.display_name} `{record.raid_id}` is already closed.",
                    ephemeral=True,
                )
                return

            await interaction.followup.send(
                f"🔒 Closed {record.display_name} `{record.raid_id}` with "
                f"{record.attendance_count} participant(s).",
                ephemeral=True,
            )
            logger.info(f"{interaction.user} closed raid {record.raid_id}")

        except Exception as e:
            logger.error(f"Error closing raid {raid_id}: {e}", exc_info=True)
            await interaction.followup.send(GENERIC_FAILURE, ephemeral=True)

    @app_commands.command(name="raid-reopen", description="[Raid] Reopen signups for a raid")
    @app_commands.checks.has_permissions(manage_guild=True)
    @app_commands.describe(raid_id="Raid ID shown in the announcement footer")
    async def raid_reopen(self, interaction: discord.Interaction, raid_id: str):
        if not await self._defer(interaction):
            return

        try:
            record = self._find(interaction, raid_id)
            if record is None:
                await interaction.followup.send(
                    f"❌ No active raid with ID `{raid_id}`.", ephemeral=True
                )
                return

            reopened = await self.engine.reopen(
                record.message_id, reopened_by=interaction.user.id
            )
            if not reopened:
                await interaction.followup.send(
                    f"ℹ️ {record.display_name} `{record.raid_id}` is already open.",
                    ephemeral=True,
                )
                return

            await interaction.followup.send(
                f"🔓 Reopened {record.display_name} `{record.raid_id}`.", ephemeral=True
            )
            logger.info(f"{interaction.user} reopened raid {record.raid_id}")

        except Exception as e:
            logger.error(f"Error reopening raid {raid_id}: {e}", exc_info=True)
            await interaction.followup.send(GENERIC_FAILURE, ephemeral=True)

    @app_commands.command(
        name="raid-testdm",
        description="[Raid] Check that raid notices can reach you (or another member)",
    )
    @app_commands.describe(member="Member to test (defaults to you)")
    async def raid_testdm(
        self, interaction: discord.Interaction, member: Optional[discord.Member] = None
    ):
        if not await self._defer(interaction):
            return

        target = member or interaction.user
        if member and member.id != interaction.user.id:
            perms = getattr(interaction.user, "guild_permissions", None)
            if not perms or not perms.manage_guild:
                await interaction.followup.send(
                    "❌ You can only test notifications for yourself.", ephemeral=True
                )
                return

        try:
            delivered = await self.engine.send_test_notification(
                target.id,
                channel_id=interaction.channel_id,
                guild_id=interaction.guild.id if interaction.guild else None,
            )
            if delivered:
                message = f"✅ Test notification delivered to {target.mention}."
            else:
                message = (
                    f"⚠️ Could not reach {target.mention} by DM or in this channel. "
                    "Check their privacy settings."
                )
            await interaction.followup.send(message, ephemeral=True)

        except Exception as e:
            logger.error(f"Error sending test notification: {e}", exc_info=True)
            await interaction.followup.send(GENERIC_FAILURE, ephemeral=True)

    @app_commands.command(name="raid-stats", description="[Raid] Show signup counters")
    @app_commands.checks.has_permissions(manage_guild=True)
    async def raid_stats(self, interaction: discord.Interaction):
        if not await self._defer(interaction):
            return

        try:
            stats = self.engine.metrics.get_stats()
            embed = discord.Embed(title="📊 Raid Signup Stats", color=discord.Color.blurple())
            for name, value in stats.items():
                embed.add_field(name=name.replace("_", " ").title(), value=str(value), inline=True)

            notifier = self.engine.notifier
            breakers = (notifier.dm_breaker.get_state(), notifier.api_breaker.get_state())
            embed.add_field(
                name="Circuit Breakers",
                value="\n".join(f"`{state['name']}`: {state['state']}" for state in breakers),
                inline=False,
            )
            await interaction.followup.send(embed=embed, ephemeral=True)

        except Exception as e:
            logger.error(f"Error building raid stats: {e}", exc_info=True)
            await interaction.followup.send(GENERIC_FAILURE, ephemeral=True)


async def setup(bot: commands.Bot, config: Config, engine: SignupEngine):
    """Setup function for loading the cog."""
    await bot.add_cog(RaidAdminCommands(bot, config, engine))
    logger.info("RaidAdminCommands cog loaded")
