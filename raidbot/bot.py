"""Main bot file for the raid signup bot."""

import logging
import sys
from typing import Optional

import discord
from discord.ext import commands

from raidbot.utils import Config, setup_logger
from raidbot.utils.audit_log import AuditTrail
from raidbot.utils.circuit_breaker import CircuitBreaker
from raidbot.utils.config import BreakerSettings
from raidbot.utils.discord_gateway import DiscordGateway
from raidbot.utils.metrics import RaidMetrics
from raidbot.utils.notifier import Notifier
from raidbot.utils.raid_utils import RaidRenderer
from raidbot.utils.rate_limiter import RateLimiter
from raidbot.database import RaidIndex, RaidStore
from raidbot.signups.eligibility import SignupRolePolicy
from raidbot.signups.engine import SignupEngine
from raidbot.signups.locks import RaidLockRegistry
from raidbot.signups.promotion import WaitlistPromoter
from raidbot.commands.raid_admin import GENERIC_FAILURE, setup as setup_raid_admin
from raidbot.events.raid_events import setup as setup_raid_events
from raidbot.tasks.raid_scheduler import setup as setup_raid_scheduler

PERMISSION_DENIED = "❌ You don't have permission to use this command."


def build_breaker(name: str, settings: BreakerSettings) -> CircuitBreaker:
    return CircuitBreaker(
        name=name,
        failure_threshold=settings.failure_threshold,
        success_threshold=settings.success_threshold,
        timeout=settings.timeout_seconds,
    )


class RaidBot(commands.Bot):
    """Main raid signup bot class."""

    def __init__(self, config: Config, store: RaidStore, *args, **kwargs):
        """
        Initialize the raid bot.

        Args:
            config: Configuration object
            store: RaidStore holding raid snapshots across restarts
        """
        self.config = config
        self.store = store
        self.logger = logging.getLogger("raidbot.bot")
        self.engine: Optional[SignupEngine] = None
        self.gateway: Optional[DiscordGateway] = None

        intents = discord.Intents.default()
        intents.members = True  # signup role checks
        intents.reactions = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            *args,
            **kwargs
        )

    def build_engine(self) -> SignupEngine:
        """Wire the signup engine and the collaborators it shares with the scheduler."""
        config = self.config
        index = RaidIndex(self.store)
        locks = RaidLockRegistry()
        gateway = DiscordGateway(self)
        dm_breaker = build_breaker("discord-dm", config.dm_breaker)
        api_breaker = build_breaker("discord-api", config.api_breaker)
        metrics = RaidMetrics()
        audit = AuditTrail(bot=self, channel_id=config.raid_audit_channel_id)
        notifier = Notifier(
            gateway,
            dm_breaker,
            api_breaker,
            metrics,
            audit,
            dm_attempts=config.dm_retry_attempts,
            retry_delay=config.dm_retry_delay_seconds,
        )
        rate_limit = config.raid_rate_limit

        self.gateway = gateway
        return SignupEngine(
            index=index,
            locks=locks,
            promoter=WaitlistPromoter(index, notifier, metrics, audit),
            notifier=notifier,
            renderer=RaidRenderer(gateway, api_breaker),
            metrics=metrics,
            audit=audit,
            eligibility=SignupRolePolicy(config, gateway, api_breaker),
            rate_limiter=RateLimiter(
                max_requests=rate_limit["max_requests"],
                window_seconds=rate_limit["window_seconds"],
            ),
        )

    async def setup_hook(self):
        """Setup hook called when bot is starting."""
        self.logger.info("Setting up bot...")

        self.tree.on_error = self.on_app_command_error
        await self.store.initialize()
        self.engine = self.build_engine()
        loaded = await self.engine.index.load()
        self.engine.metrics.observe_raids(self.engine.index.all_records())
        self.logger.info(f"Raid index loaded ({loaded} active raids)")

        await setup_raid_admin(self, self.config, self.engine)
        self.logger.info("Commands loaded")

        await setup_raid_events(self, self.config, self.engine, self.gateway)
        self.logger.info("Event handlers loaded")

        await setup_raid_scheduler(self, self.config, self.engine)
        self.logger.info("Background tasks loaded")

        try:
            if self.config.guild_ids:
                for guild_id in self.config.guild_ids:
                    guild = discord.Object(id=guild_id)
                    self.tree.copy_global_to(guild=guild)
                    await self.tree.sync(guild=guild)
                    self.logger.info(f"Synced commands to guild {guild_id}")
            else:
                await self.tree.sync()
                self.logger.info("Synced commands globally")
        except Exception as e:
            self.logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        self.logger.info(f"Bot is ready! Logged in as {self.user.name} ({self.user.id})")

    async def on_app_command_error(
        self,
        interaction: discord.Interaction,
        error: discord.app_commands.AppCommandError
    ):
        """Handle application command errors."""
        if isinstance(error, discord.app_commands.CheckFailure):
            self.logger.info(f"{interaction.user} failed a command check: {error}")
            message = PERMISSION_DENIED
        else:
            self.logger.error(f"App command error: {error}", exc_info=True)
            message = GENERIC_FAILURE

        if not interaction.response.is_done():
            await interaction.response.send_message(message, ephemeral=True)
        else:
            await interaction.followup.send(message, ephemeral=True)

    async def close(self):
        """Clean shutdown of the bot"""
        self.logger.info("Shutting down raid bot...")

        scheduler = self.get_cog("RaidScheduler")
        if scheduler is not None:
            scheduler.lifecycle_task.cancel()
            try:
                await scheduler.drain()
            except Exception as e:
                self.logger.error(f"Error draining scheduled reminders: {e}")

        if self.engine is not None:
            await self.engine.notifier.drain()
            written = await self.engine.index.flush()
            self.engine.metrics.log_stats()
            self.logger.info(f"Persisted {written} raid(s) on shutdown")
            await self.engine.audit.drain()

        await super().close()

        self.logger.info("Raid bot shutdown complete")


def main():
    """Main entry point for the bot."""
    try:
        config = Config()
        token = config.discord_token
    except FileNotFoundError as e:
        print(f"❌ Configuration Error: {e}")
        sys.exit(1)
    except ValueError as e:
        print(f"❌ Configuration Error: {e}")
        sys.exit(1)

    logger = setup_logger(
        name="raidbot",
        level=config.log_level,
        log_file=config.log_file,
        log_format=config.log_format,
        audit_file=config.audit_log_file
    )

    logger.info("=" * 50)
    logger.info("Raid Bot Starting...")
    logger.info("=" * 50)

    store = RaidStore(config.raid_db_path)
    bot = RaidBot(config, store)

    try:
        bot.run(token, log_handler=None)
    except discord.LoginFailure:
        logger.error("❌ Failed to login. Please check your bot token.")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
