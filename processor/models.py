"""Data models for calendar event processing."""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from dateutil import parser as date_parser


class Category(str, Enum):
    """Coarse, privacy-safe category of a calendar event."""
    SURGERY = 'Surgery'
    CONTROL = 'Control'
    EXAM = 'Exam'
    ONLINE = 'Online'
    BUSY = 'Busy'
    AVAILABLE = 'Available'
    CANCELLED = 'Cancelled'
    ANESTHESIA = 'Anesthesia'


@dataclass(frozen=True)
class RawEvent:
    """Event as fetched from the upstream calendar."""
    event_id: str
    title: str
    start: Optional[datetime]
    end: Optional[datetime]
    color_tag: Optional[str] = None
    location: str = ''
    description: str = ''
    all_day: bool = False

    def to_dict(self) -> dict:
        """Serialize to a JSON-safe dict for snapshot storage."""
        return {
            'id': self.event_id,
            'title': self.title,
            'start': self.start.isoformat() if self.start else None,
            'end': self.end.isoformat() if self.end else None,
            'color_tag': self.color_tag,
            'location': self.location,
            'description': self.description,
            'all_day': self.all_day,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RawEvent':
        """Rebuild an event from :meth:`to_dict` output."""
        start = data.get('start')
        end = data.get('end')
        return cls(
            event_id=data['id'],
            title=data.get('title') or '',
            start=date_parser.isoparse(start) if start else None,
            end=date_parser.isoparse(end) if end else None,
            color_tag=data.get('color_tag'),
            location=data.get('location') or '',
            description=data.get('description') or '',
            all_day=bool(data.get('all_day', False)),
        )


@dataclass(frozen=True)
class ClassifiedEvent:
    """Raw event with its computed category."""
    raw: RawEvent
    category: Category

    @property
    def event_id(self) -> str:
        return self.raw.event_id

    @property
    def start(self) -> datetime:
        return self.raw.start

    @property
    def end(self) -> datetime:
        return self.raw.end

    @property
    def member_count(self) -> int:
        return 1


@dataclass(frozen=True)
class MergedBlock:
    """Run of adjacent events collapsed into one summary record.

    ``title`` is already localized and generic; ``members`` stays internal
    and is never serialized.
    """
    block_id: str
    start: datetime
    end: datetime
    category: Category
    member_count: int
    title: str
    members: tuple = ()


@dataclass(frozen=True)
class AvailableSlot:
    """Synthesized free window the public may book."""
    slot_id: str
    start: datetime
    end: datetime
    title: str
    category: Category = Category.AVAILABLE


@dataclass(frozen=True)
class Interval:
    """Half-open ``[start, end)`` range between two aware instants."""
    start: datetime
    end: datetime

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def overlaps(self, other: 'Interval') -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class TimeWindow:
    """Civil time-of-day window, e.g. 08:00-09:30."""
    start: time
    end: time


@dataclass(frozen=True)
class BlackoutWindow:
    """Recurring window subtracted from availability on some weekdays.

    Weekdays follow :meth:`date.weekday` (Monday is 0). ``valid_from`` and
    ``valid_until`` optionally restrict the blackout to a date range.
    """
    weekdays: FrozenSet[int]
    window: TimeWindow
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None

    def applies_to(self, day: date) -> bool:
        if day.weekday() not in self.weekdays:
            return False
        if self.valid_from and day < self.valid_from:
            return False
        if self.valid_until and day > self.valid_until:
            return False
        return True


@dataclass(frozen=True)
class DayPolicy:
    """Business window and blackouts resolved for one calendar date."""
    business: Optional[TimeWindow]
    blackouts: List[TimeWindow]


SUNDAY = 6

DEFAULT_WEEKDAY_HOURS: Dict[int, TimeWindow] = {
    **{weekday: TimeWindow(time(8, 0), time(23, 0)) for weekday in range(6)},
    SUNDAY: TimeWindow(time(8, 0), time(9, 30)),
}

DEFAULT_BLACKOUTS: List[BlackoutWindow] = [
    BlackoutWindow(
        weekdays=frozenset({1, 2, 3}),
        window=TimeWindow(time(19, 30), time(20, 30)),
    ),
]


@dataclass
class SchedulePolicy:
    """Scheduling policy inputs, all overridable."""
    timezone: str = 'Europe/Istanbul'
    weekday_hours: Dict[int, TimeWindow] = field(
        default_factory=lambda: dict(DEFAULT_WEEKDAY_HOURS)
    )
    blackouts: List[BlackoutWindow] = field(
        default_factory=lambda: list(DEFAULT_BLACKOUTS)
    )
    min_slot_minutes: int = 15
    preop_buffer_minutes: int = 10
    merge_gap_minutes: int = 15
    surgery_min_minutes: int = 60
    horizon_days: int = 14

    def resolve(self, day: date) -> DayPolicy:
        """
        Resolve the business window and blackouts for a date.

        Args:
            day: Civil date in the policy timezone

        Returns:
            DayPolicy for that date; ``business`` is None on closed days
        """
        return DayPolicy(
            business=self.weekday_hours.get(day.weekday()),
            blackouts=[
                blackout.window for blackout in self.blackouts
                if blackout.applies_to(day)
            ],
        )
