"""Database modules for the raid signup bot."""

from .raid_store import RaidStore
from .raid_index import RaidIndex

__all__ = ["RaidStore", "RaidIndex"]
