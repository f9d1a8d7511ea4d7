"""Counters and gauges for raid signup activity."""

import logging
from typing import Dict, Iterable

logger = logging.getLogger("raidbot.metrics")

COUNTERS = (
    "registrations",
    "waitlisted",
    "unregistrations",
    "promotions",
    "dm_failures",
    "raids_closed",
    "reminders_sent",
)

GAUGES = ("open_raids", "participants")

HELP_TEXT = {
    "registrations": "Participants signed directly into a slot",
    "waitlisted": "Participants placed on a waitlist",
    "unregistrations": "Participants who left a slot",
    "promotions": "Waitlisted participants promoted into a slot",
    "dm_failures": "Notifications that failed on every delivery path",
    "raids_closed": "Raids closed manually or by the scheduler",
    "reminders_sent": "Reminder notifications dispatched",
    "open_raids": "Raids currently accepting signups",
    "participants": "Participants registered across open raids",
}


class RaidMetrics:
    """
    In-process metrics surface for external reporting.

    Tracks:
    - Signup, waitlist, promotion and close counters
    - Notification delivery failures
    - Open raid and participant gauges
    """

    def __init__(self):
        self.counters: Dict[str, int] = {name: 0 for name in COUNTERS}
        self.gauges: Dict[str, int] = {name: 0 for name in GAUGES}

    def increment(self, name: str, amount: int = 1) -> None:
        if name not in self.counters:
            logger.warning("Unknown metric: %s", name)
            return
        self.counters[name] += amount

    def set_gauge(self, name: str, value: int) -> None:
        if name not in self.gauges:
            logger.warning("Unknown gauge: %s", name)
            return
        self.gauges[name] = value

    def observe_raids(self, records: Iterable) -> None:
        """Recompute gauges from the raids currently held in memory."""
        open_raids = 0
        participants = 0
        for record in records:
            if record.closed:
                continue
            open_raids += 1
            participants += record.roster.total_filled()
        self.gauges["open_raids"] = open_raids
        self.gauges["participants"] = participants

    def get_stats(self) -> Dict[str, int]:
        return {**self.counters, **self.gauges}

    def log_stats(self) -> None:
        stats = self.get_stats()
        logger.info(
            "📊 Raid stats: %d open raids, %d participants, %d signups, "
            "%d promotions, %d DM failures",
            stats["open_raids"],
            stats["participants"],
            stats["registrations"],
            stats["promotions"],
            stats["dm_failures"],
        )

    def render_text(self, prefix: str = "raidbot") -> str:
        """Prometheus text exposition of all counters and gauges."""
        lines = []
        for name, value in self.counters.items():
            lines.append(f"# HELP {prefix}_{name}_total {HELP_TEXT[name]}")
            lines.append(f"# TYPE {prefix}_{name}_total counter")
            lines.append(f"{prefix}_{name}_total {value}")
        for name, value in self.gauges.items():
            lines.append(f"# HELP {prefix}_{name} {HELP_TEXT[name]}")
            lines.append(f"# TYPE {prefix}_{name} gauge")
            lines.append(f"{prefix}_{name} {value}")
        return "\n".join(lines) + "\n"
