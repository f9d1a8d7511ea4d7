"""Roster model for raid signups: slots, teams, flat capacity and waitlists."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union


MUSEUM_SIGNUP_EMOJI = "✅"
DEFAULT_MUSEUM_SLOTS = 12


class InvariantViolation(RuntimeError):
    """Raised when a caller breaks the roster or lock contract."""


class RaidType(str, Enum):
    RAID = "raid"
    MUSEUM = "museum"
    KEY = "key"
    CHALLENGE = "challenge"

    @property
    def is_team_based(self) -> bool:
        return self in (RaidType.KEY, RaidType.CHALLENGE)

    @property
    def label(self) -> str:
        return {
            RaidType.RAID: "Raid",
            RaidType.MUSEUM: "Museum Signup",
            RaidType.KEY: "Gold Key Boss",
            RaidType.CHALLENGE: "Challenge Mode",
        }[self]


@dataclass
class SignupPool:
    """A capacity-bounded list of participants with its own waitlist."""

    capacity: int
    users: List[int] = field(default_factory=list)
    waitlist: List[int] = field(default_factory=list)

    def has_room(self) -> bool:
        return len(self.users) < self.capacity

    @property
    def label(self) -> str:
        return ""


@dataclass
class RoleSlot(SignupPool):
    emoji: str = ""
    name: str = ""

    @property
    def label(self) -> str:
        return self.name


@dataclass
class Team(SignupPool):
    name: str = ""

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True)
class Placement:
    """Where a participant currently sits in a roster."""

    pool: SignupPool
    index: int
    waitlisted: bool


class Roster:
    """Operations shared by every roster shape."""

    def pools(self) -> List[SignupPool]:
        raise NotImplementedError

    def pool_for(self, target: Any) -> Optional[SignupPool]:
        raise NotImplementedError

    def scope_pools(self, team_index: Optional[int] = None) -> List[SignupPool]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    def locate(self, participant_id: int) -> Optional[Placement]:
        for index, pool in enumerate(self.pools()):
            if participant_id in pool.users:
                return Placement(pool, index, False)
        for index, pool in enumerate(self.pools()):
            if participant_id in pool.waitlist:
                return Placement(pool, index, True)
        return None

    def purge(self, participant_id: int, keep: Optional[SignupPool] = None) -> None:
        """Drop a participant from every waitlist and from every pool except ``keep``."""
        for pool in self.pools():
            pool.waitlist[:] = [uid for uid in pool.waitlist if uid != participant_id]
            if pool is not keep:
                pool.users[:] = [uid for uid in pool.users if uid != participant_id]

    def total_capacity(self) -> int:
        return sum(pool.capacity for pool in self.pools())

    def total_filled(self) -> int:
        return sum(len(pool.users) for pool in self.pools())

    def is_full(self) -> bool:
        capacity = self.total_capacity()
        if capacity <= 0:
            return False
        return self.total_filled() >= capacity

    def participant_ids(self) -> List[int]:
        seen: List[int] = []
        for pool in self.pools():
            for user_id in pool.users:
                if user_id not in seen:
                    seen.append(user_id)
        return seen

    def label_for(self, participant_id: int) -> Optional[str]:
        placement = self.locate(participant_id)
        if not placement or placement.waitlisted:
            return None
        return placement.pool.label or None

    def iter_violations(self) -> Iterator[str]:
        """Yield a description of every broken roster invariant."""
        registered: Dict[int, int] = {}
        waiting: Dict[int, int] = {}
        for index, pool in enumerate(self.pools()):
            if len(pool.users) > pool.capacity:
                yield f"pool {index} over capacity ({len(pool.users)}/{pool.capacity})"
            for user_id in pool.users:
                if user_id in registered:
                    yield f"user {user_id} registered twice"
                registered[user_id] = index
            for user_id in pool.waitlist:
                if user_id in waiting:
                    yield f"user {user_id} waitlisted twice"
                waiting[user_id] = index
        for user_id in set(registered) & set(waiting):
            yield f"user {user_id} both registered and waitlisted"


@dataclass
class RoleRoster(Roster):
    slots: List[RoleSlot] = field(default_factory=list)

    def pools(self) -> List[SignupPool]:
        return list(self.slots)

    def pool_for(self, target: Any) -> Optional[SignupPool]:
        if isinstance(target, int) and not isinstance(target, bool):
            if 0 <= target < len(self.slots):
                return self.slots[target]
            return None
        for slot in self.slots:
            if slot.emoji == target:
                return slot
        return None

    def scope_pools(self, team_index: Optional[int] = None) -> List[SignupPool]:
        return list(self.slots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signups": [
                {
                    "emoji": slot.emoji,
                    "name": slot.name,
                    "slots": slot.capacity,
                    "users": list(slot.users),
                    "waitlist": list(slot.waitlist),
                }
                for slot in self.slots
            ]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleRoster":
        return cls(
            slots=[
                RoleSlot(
                    capacity=int(entry.get("slots", 0)),
                    users=[int(uid) for uid in entry.get("users", [])],
                    waitlist=[int(uid) for uid in entry.get("waitlist", [])],
                    emoji=entry.get("emoji", ""),
                    name=entry.get("name", ""),
                )
                for entry in data.get("signups", [])
            ]
        )


class FlatRoster(Roster):
    """Single pool bounded by ``max_slots`` (museum signups)."""

    def __init__(
        self,
        max_slots: int = DEFAULT_MUSEUM_SLOTS,
        signups: Optional[List[int]] = None,
        waitlist: Optional[List[int]] = None,
    ):
        self.pool = SignupPool(
            capacity=max_slots,
            users=list(signups or []),
            waitlist=list(waitlist or []),
        )

    def __repr__(self) -> str:
        return (
            f"FlatRoster(max_slots={self.max_slots}, signups={self.signups}, "
            f"waitlist={self.waitlist})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FlatRoster):
            return NotImplemented
        return self.pool == other.pool

    @property
    def max_slots(self) -> int:
        return self.pool.capacity

    @property
    def signups(self) -> List[int]:
        return self.pool.users

    @property
    def waitlist(self) -> List[int]:
        return self.pool.waitlist

    def pools(self) -> List[SignupPool]:
        return [self.pool]

    def pool_for(self, target: Any) -> Optional[SignupPool]:
        if target in (None, 0, MUSEUM_SIGNUP_EMOJI):
            return self.pool
        return None

    def scope_pools(self, team_index: Optional[int] = None) -> List[SignupPool]:
        return [self.pool]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxSlots": self.max_slots,
            "signups": list(self.signups),
            "waitlist": list(self.waitlist),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlatRoster":
        return cls(
            max_slots=int(data.get("maxSlots") or DEFAULT_MUSEUM_SLOTS),
            signups=[int(uid) for uid in data.get("signups", [])],
            waitlist=[int(uid) for uid in data.get("waitlist", [])],
        )


@dataclass
class TeamRoster(Roster):
    max_per_team: int = 4
    teams: List[Team] = field(default_factory=list)

    @classmethod
    def empty(cls, team_count: int, max_per_team: int) -> "TeamRoster":
        return cls(
            max_per_team=max_per_team,
            teams=[
                Team(capacity=max_per_team, name=f"Team {index + 1}")
                for index in range(team_count)
            ],
        )

    def pools(self) -> List[SignupPool]:
        return list(self.teams)

    def pool_for(self, target: Any) -> Optional[SignupPool]:
        if isinstance(target, int) and not isinstance(target, bool):
            if 0 <= target < len(self.teams):
                return self.teams[target]
        return None

    def scope_pools(self, team_index: Optional[int] = None) -> List[SignupPool]:
        if team_index is None or not 0 <= team_index < len(self.teams):
            raise InvariantViolation(f"No team at index {team_index}")
        return [self.teams[team_index]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxPerTeam": self.max_per_team,
            "teams": [
                {"name": team.name, "users": list(team.users), "waitlist": list(team.waitlist)}
                for team in self.teams
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TeamRoster":
        max_per_team = int(data.get("maxPerTeam", 4))
        return cls(
            max_per_team=max_per_team,
            teams=[
                Team(
                    capacity=max_per_team,
                    users=[int(uid) for uid in entry.get("users", [])],
                    waitlist=[int(uid) for uid in entry.get("waitlist", [])],
                    name=entry.get("name") or f"Team {index + 1}",
                )
                for index, entry in enumerate(data.get("teams", []))
            ],
        )


AnyRoster = Union[RoleRoster, FlatRoster, TeamRoster]

ROSTER_CLASSES = {
    RaidType.RAID: RoleRoster,
    RaidType.MUSEUM: FlatRoster,
    RaidType.KEY: TeamRoster,
    RaidType.CHALLENGE: TeamRoster,
}


@dataclass
class RaidRecord:
    """One posted raid announcement and its roster."""

    raid_id: str
    message_id: int
    guild_id: int
    channel_id: int
    creator_id: int
    type: RaidType
    roster: AnyRoster
    scheduled_at: Optional[int] = None
    title: str = ""
    closed: bool = False
    closed_at: Optional[int] = None
    closed_by: Optional[int] = None
    closed_reason: Optional[str] = None
    auto_close_executed: bool = False
    creator_reminder_sent: bool = False
    participant_reminder_sent: bool = False
    attendance_count: Optional[int] = None

    def __post_init__(self) -> None:
        self.type = RaidType(self.type)
        expected = ROSTER_CLASSES[self.type]
        if not isinstance(self.roster, expected):
            raise InvariantViolation(
                f"Raid {self.raid_id} of type {self.type.value} needs a {expected.__name__}"
            )

    @property
    def display_name(self) -> str:
        return self.title or self.type.label

    def close(self, now_ts: int, reason: str, closed_by: Optional[int] = None) -> bool:
        """Seal the roster. Returns False when the raid was already closed."""
        if self.closed:
            return False
        self.closed = True
        self.closed_at = now_ts
        self.closed_by = closed_by
        self.closed_reason = reason
        self.attendance_count = self.roster.total_filled()
        return True

    def reopen(self) -> bool:
        if not self.closed:
            return False
        self.closed = False
        self.closed_at = None
        self.closed_by = None
        self.closed_reason = None
        self.auto_close_executed = False
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "raidId": self.raid_id,
            "messageId": self.message_id,
            "guildId": self.guild_id,
            "channelId": self.channel_id,
            "creatorId": self.creator_id,
            "type": self.type.value,
            "timestamp": self.scheduled_at,
            "title": self.title,
            "closed": self.closed,
            "closedAt": self.closed_at,
            "closedBy": self.closed_by,
            "closedReason": self.closed_reason,
            "autoCloseExecuted": self.auto_close_executed,
            "creatorReminderSent": self.creator_reminder_sent,
            "participantReminderSent": self.participant_reminder_sent,
            "attendanceCount": self.attendance_count,
        }
        data.update(self.roster.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RaidRecord":
        raid_type = RaidType(data.get("type", RaidType.RAID.value))
        roster = ROSTER_CLASSES[raid_type].from_dict(data)
        return cls(
            raid_id=str(data["raidId"]),
            message_id=int(data["messageId"]),
            guild_id=int(data["guildId"]),
            channel_id=int(data["channelId"]),
            creator_id=int(data["creatorId"]),
            type=raid_type,
            roster=roster,
            scheduled_at=data.get("timestamp"),
            title=data.get("title") or "",
            closed=bool(data.get("closed", False)),
            closed_at=data.get("closedAt"),
            closed_by=data.get("closedBy"),
            closed_reason=data.get("closedReason"),
            auto_close_executed=bool(data.get("autoCloseExecuted", False)),
            creator_reminder_sent=bool(data.get("creatorReminderSent", False)),
            participant_reminder_sent=bool(data.get("participantReminderSent", False)),
            attendance_count=data.get("attendanceCount"),
        )
