"""Configuration loader for the raid signup bot."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass(frozen=True)
class RaidGuildSettings:
    """Scheduler thresholds for one guild."""

    auto_close_seconds: int = 0
    creator_reminders_enabled: bool = True
    creator_reminder_seconds: int = 30 * 60
    participant_reminders_enabled: bool = True
    participant_reminder_seconds: int = 10 * 60


@dataclass(frozen=True)
class BreakerSettings:
    failure_threshold: int
    success_threshold: int
    timeout_seconds: float


class Config:
    """Configuration manager for the raid signup bot."""

    def __init__(self, config_path: str = "config/config.yaml"):
        """
        Initialize configuration from YAML file.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}\n"
                f"Please copy config/config.example.yaml to config/config.yaml and configure it."
            )

        with open(self.config_path, "r", encoding="utf-8") as f:
            self._config = yaml.safe_load(f) or {}

    def reload(self) -> None:
        """Reload configuration from YAML file."""
        self.load()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'discord.token')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

            if value is None:
                return default

        return value

    @property
    def discord_token(self) -> str:
        """Get Discord bot token."""
        token = self.get("discord.token")
        if not token or token == "YOUR_BOT_TOKEN_HERE":
            raise ValueError("Discord token not configured in config.yaml")
        return token

    @property
    def guild_ids(self) -> List[int]:
        """Guilds to sync slash commands to (empty = global)."""
        return [int(gid) for gid in self.get("discord.guild_ids", [])]

    @property
    def log_level(self) -> str:
        """Get logging level."""
        return self.get("logging.level", "INFO")

    @property
    def log_file(self) -> str:
        """Get log file path."""
        return self.get("logging.file", "logs/raidbot.log")

    @property
    def log_format(self) -> str:
        """Get log format string."""
        return self.get(
            "logging.format",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    @property
    def audit_log_file(self) -> Optional[str]:
        """Separate audit trail file, or None to keep it in the main log only."""
        return self.get("logging.audit_file")

    @property
    def raid_enabled(self) -> bool:
        return bool(self.get("raid.enabled", True))

    @property
    def raid_db_path(self) -> str:
        return self.get("raid.db_path", "data/raids.db")

    @property
    def raid_scheduler_interval_seconds(self) -> int:
        """Seconds between lifecycle scheduler ticks."""
        return int(self.get("raid.scheduler.interval_seconds", 60))

    @property
    def raid_retention_hours(self) -> int:
        """Hours a closed raid stays in memory before eviction."""
        return int(self.get("raid.scheduler.retention_hours", 24))

    @property
    def reminder_batch_size(self) -> int:
        return max(1, int(self.get("raid.reminders.batch_size", 5)))

    @property
    def reminder_batch_pause_seconds(self) -> float:
        return float(self.get("raid.reminders.batch_pause_seconds", 10))

    @property
    def dm_retry_attempts(self) -> int:
        """Direct message attempts before falling back to the channel."""
        return max(1, int(self.get("raid.notifications.dm_attempts", 3)))

    @property
    def dm_retry_delay_seconds(self) -> float:
        return float(self.get("raid.notifications.retry_delay_seconds", 1))

    @property
    def raid_audit_channel_id(self) -> Optional[int]:
        channel_id = self.get("raid.audit_channel_id")
        return int(channel_id) if channel_id else None

    @property
    def raid_rate_limit(self) -> Dict[str, float]:
        """Reaction rate limit per participant."""
        return {
            "max_requests": int(self.get("raid.rate_limit.max_requests", 5)),
            "window_seconds": float(self.get("raid.rate_limit.window_seconds", 10)),
        }

    @property
    def dm_breaker(self) -> BreakerSettings:
        return self._breaker("dm", 10, 3, 30)

    @property
    def api_breaker(self) -> BreakerSettings:
        return self._breaker("api", 5, 2, 60)

    def _breaker(
        self, name: str, failures: int, successes: int, timeout: float
    ) -> BreakerSettings:
        prefix = f"raid.circuit_breakers.{name}"
        return BreakerSettings(
            failure_threshold=int(self.get(f"{prefix}.failure_threshold", failures)),
            success_threshold=int(self.get(f"{prefix}.success_threshold", successes)),
            timeout_seconds=float(self.get(f"{prefix}.timeout_seconds", timeout)),
        )

    def _guild_section(self, guild_id: int) -> Dict[str, Any]:
        """Per-guild block under ``raid.guilds``, keyed by int or str in YAML."""
        guilds = self.get("raid.guilds", {}) or {}
        section = guilds.get(guild_id, guilds.get(str(guild_id)))
        return section if isinstance(section, dict) else {}

    def raid_signup_roles(self, guild_id: int, raid_type: str) -> List[int]:
        """
        Get role IDs allowed to sign up for a raid shape in a guild.

        An empty list means everyone may sign up.
        """
        guild_roles = self._guild_section(guild_id).get("signup_roles") or {}
        if isinstance(guild_roles, dict):
            roles = guild_roles.get(raid_type, guild_roles.get("default", []))
        else:
            roles = guild_roles
        if not roles:
            roles = self.get("raid.signup_roles", [])
        return [int(role_id) for role_id in roles or []]

    def guild_raid_settings(self, guild_id: int) -> RaidGuildSettings:
        """Scheduler settings with per-guild overrides applied."""
        base = self.get("raid.scheduler", {}) or {}
        override = self._guild_section(guild_id).get("scheduler") or {}
        merged = {**base, **override}
        defaults = RaidGuildSettings()
        return RaidGuildSettings(
            auto_close_seconds=int(merged.get("auto_close_seconds", defaults.auto_close_seconds)),
            creator_reminders_enabled=bool(
                merged.get("creator_reminders_enabled", defaults.creator_reminders_enabled)
            ),
            creator_reminder_seconds=int(
                merged.get("creator_reminder_seconds", defaults.creator_reminder_seconds)
            ),
            participant_reminders_enabled=bool(
                merged.get("participant_reminders_enabled", defaults.participant_reminders_enabled)
            ),
            participant_reminder_seconds=int(
                merged.get("participant_reminder_seconds", defaults.participant_reminder_seconds)
            ),
        )
