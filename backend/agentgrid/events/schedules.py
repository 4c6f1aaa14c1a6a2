"""
Calendar schedules for recurring maintenance events
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from typing import List, Optional, Tuple

import pytz


class Cadence(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class ScheduleEntry:
    """One recurring trigger and the operations it requests"""

    name: str
    cadence: Cadence
    operations: Tuple[str, ...]
    hour: int
    minute: int = 0
    weekday: Optional[int] = None  # 0=Monday, weekly only
    day: Optional[int] = None  # day of month, monthly only

    def __post_init__(self):
        if self.cadence == Cadence.WEEKLY and self.weekday is None:
            raise ValueError(f"Weekly schedule '{self.name}' needs a weekday")
        if self.cadence == Cadence.MONTHLY and self.day is None:
            raise ValueError(f"Monthly schedule '{self.name}' needs a day")


DEFAULT_SCHEDULES = (
    ScheduleEntry("daily", Cadence.DAILY, ("audit", "health_check"), hour=9),
    ScheduleEntry("weekly", Cadence.WEEKLY, ("optimize", "consolidate_fields"), hour=2, weekday=0),
    ScheduleEntry("monthly", Cadence.MONTHLY, ("audit", "optimize", "backup"), hour=3, day=1),
)


def _matches_day(entry: ScheduleEntry, day: datetime) -> bool:
    if entry.cadence == Cadence.DAILY:
        return True
    if entry.cadence == Cadence.WEEKLY:
        return day.weekday() == entry.weekday
    # Months shorter than the configured day fire on their last day
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.day == min(entry.day, last_day)


@dataclass
class ScheduleTable:
    """Computes fire times for a set of schedule entries in one timezone"""

    entries: List[ScheduleEntry] = field(default_factory=lambda: list(DEFAULT_SCHEDULES))
    timezone: str = "UTC"

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    def next_fire(self, entry: ScheduleEntry, after: datetime) -> datetime:
        """First fire time strictly after ``after`` (aware datetime), in UTC"""
        tz = self.tz
        local_after = after.astimezone(tz)
        trigger_time = time(entry.hour, entry.minute)

        # 31 days covers every monthly entry
        for days_ahead in range(0, 32):
            date = local_after.date() + timedelta(days=days_ahead)
            candidate = tz.localize(datetime.combine(date, trigger_time))
            if candidate > local_after and _matches_day(entry, candidate):
                return candidate.astimezone(pytz.utc)

        raise ValueError(f"No fire time found for schedule '{entry.name}'")

    def next_due(self, after: datetime) -> Tuple[datetime, List[ScheduleEntry]]:
        """Earliest upcoming fire time and every entry due at that instant"""
        fire_times = [(self.next_fire(entry, after), entry) for entry in self.entries]
        earliest = min(t for t, _ in fire_times)
        return earliest, [entry for t, entry in fire_times if t == earliest]

    def upcoming(self, after: datetime) -> List[dict]:
        return sorted(
            (
                {
                    "name": entry.name,
                    "cadence": entry.cadence.value,
                    "operations": list(entry.operations),
                    "next_fire": self.next_fire(entry, after).isoformat(),
                }
                for entry in self.entries
            ),
            key=lambda item: item["next_fire"],
        )
