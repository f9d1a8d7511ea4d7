"""Signup role restrictions per guild and raid shape."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from raidbot.utils.circuit_breaker import CircuitBreaker
from raidbot.utils.config import Config
from raidbot.utils.raid_utils import restricted_message
from .roster import RaidRecord


logger = logging.getLogger("raidbot.signups.eligibility")


@dataclass(frozen=True)
class EligibilityResult:
    allowed: bool
    denied_reason: Optional[str] = None


ALLOWED = EligibilityResult(True)


class SignupRolePolicy:
    """
    Allows a signup when the member holds one of the configured signup roles.

    If the member cannot be fetched the signup is permitted: availability
    wins over strictness here, and the failure is logged.
    """

    def __init__(self, config: Config, gateway, api_breaker: CircuitBreaker):
        self.config = config
        self.gateway = gateway
        self.api_breaker = api_breaker

    async def __call__(self, record: RaidRecord, user_id: int) -> EligibilityResult:
        allowed_roles = set(self.config.raid_signup_roles(record.guild_id, record.type.value))
        if not allowed_roles:
            return ALLOWED

        try:
            member = await self.api_breaker.call(
                self.gateway.resolve_member, record.guild_id, user_id
            )
        except Exception as exc:
            logger.warning(
                "Failed to fetch member %s for signup role check, allowing: %s", user_id, exc
            )
            return ALLOWED

        if any(role.id in allowed_roles for role in getattr(member, "roles", [])):
            return ALLOWED

        names: List[str] = []
        guild = getattr(member, "guild", None)
        for role_id in sorted(allowed_roles):
            role = guild.get_role(role_id) if guild else None
            names.append(role.name if role else f"Role ID {role_id}")
        return EligibilityResult(False, restricted_message(record.type, names))
