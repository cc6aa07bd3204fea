"""Availability derivation: free bookable windows inside business hours.

All interval math here works on absolute instants. Civil wall-clock policy
values are converted once, through :mod:`processor.civil_time`, before any
interval is built.
"""
import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional

from processor.civil_time import civil_instant, to_civil, zone
from processor.labels import DEFAULT_LANGUAGE, category_label
from processor.models import (
    AvailableSlot,
    Category,
    Interval,
    SchedulePolicy,
)

logger = logging.getLogger(__name__)


def flatten(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Merge overlapping or touching intervals into maximal disjoint runs.

    Args:
        intervals: Intervals in any order; empty ones are ignored

    Returns:
        Disjoint intervals sorted by start
    """
    flattened: List[Interval] = []
    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if interval.end <= interval.start:
            continue
        if flattened and interval.start <= flattened[-1].end:
            if interval.end > flattened[-1].end:
                flattened[-1] = Interval(flattened[-1].start, interval.end)
        else:
            flattened.append(interval)
    return flattened


def free_windows(business: Interval, busy: List[Interval], min_minutes: int) -> List[Interval]:
    """
    Walk a cursor through the business window, collecting the gaps.

    Args:
        business: Business window of the day
        busy: Flattened busy runs, see :func:`flatten`
        min_minutes: Minimum length of a returned window

    Returns:
        Free windows inside ``business`` not touching any busy run
    """
    windows = []
    cursor = business.start

    for run in busy:
        gap_end = min(run.start, business.end)
        if cursor < business.end and gap_end > cursor:
            candidate = Interval(cursor, gap_end)
            if candidate.minutes >= min_minutes:
                windows.append(candidate)
        cursor = max(cursor, run.end)

    if cursor < business.end:
        candidate = Interval(cursor, business.end)
        if candidate.minutes >= min_minutes:
            windows.append(candidate)

    return windows


def subtract_blackouts(window: Interval, blackouts: List[Interval], min_minutes: int) -> List[Interval]:
    """
    Cut blackout windows out of a free window.

    Each blackout splits an intersecting piece into at most a before and an
    after fragment. Fragments shorter than ``min_minutes`` are dropped.
    """
    pieces = [window]
    for blackout in sorted(blackouts, key=lambda b: b.start):
        remaining = []
        for piece in pieces:
            if not piece.overlaps(blackout):
                remaining.append(piece)
                continue
            if piece.start < blackout.start:
                remaining.append(Interval(piece.start, blackout.start))
            if blackout.end < piece.end:
                remaining.append(Interval(blackout.end, piece.end))
        pieces = remaining
    return [piece for piece in pieces if piece.minutes >= min_minutes]


def busy_intervals(items: Iterable, preop_buffer_minutes: int) -> List[Interval]:
    """Busy intervals of events or blocks; surgeries start earlier by the pre-op buffer."""
    buffer = timedelta(minutes=preop_buffer_minutes)
    intervals = []
    for item in items:
        start = item.start
        if item.category == Category.SURGERY:
            start -= buffer
        intervals.append(Interval(start, item.end))
    return intervals


def business_interval(
    day: date,
    policy: SchedulePolicy,
    tzone: Optional[tzinfo] = None,
) -> Optional[Interval]:
    """Business window of ``day`` as instants, None on closed days."""
    window = policy.resolve(day).business
    if window is None:
        return None
    tzone = tzone or zone(policy.timezone)
    return Interval(civil_instant(day, window.start, tzone), civil_instant(day, window.end, tzone))


def derive_availability(
    items: Iterable,
    day: date,
    policy: SchedulePolicy,
    not_before: Optional[datetime] = None,
    language: str = DEFAULT_LANGUAGE,
) -> List[AvailableSlot]:
    """
    Compute the bookable slots of one civil day.

    Args:
        items: Events and merged blocks overlapping the day
        day: Civil date in ``policy.timezone``
        policy: Business hours, blackouts and granularity
        not_before: Instant before which no slot may start
        language: Language of the slot label

    Returns:
        Available slots in chronological order
    """
    tzone = zone(policy.timezone)
    business = business_interval(day, policy, tzone)
    if business is None:
        return []
    if not_before is not None and not_before > business.start:
        business = Interval(min(not_before, business.end), business.end)

    busy = flatten(busy_intervals(items, policy.preop_buffer_minutes))
    blackouts = [
        Interval(civil_instant(day, window.start, tzone), civil_instant(day, window.end, tzone))
        for window in policy.resolve(day).blackouts
    ]

    title = category_label(Category.AVAILABLE, language)
    slots = []
    for window in free_windows(business, busy, policy.min_slot_minutes):
        for fragment in subtract_blackouts(window, blackouts, policy.min_slot_minutes):
            slots.append(AvailableSlot(
                slot_id=f"available-{to_civil(fragment.start, tzone):%Y%m%d-%H%M}",
                start=fragment.start,
                end=fragment.end,
                title=title,
            ))

    logger.debug(f"Derived {len(slots)} available slots for {day} from {len(busy)} busy runs")
    return slots
