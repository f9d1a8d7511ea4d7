"""Command modules for the raid signup bot."""

from .raid_admin import RaidAdminCommands

__all__ = ["RaidAdminCommands"]
