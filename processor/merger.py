"""Merge engine collapsing dense runs of visits into summary blocks."""
import logging
from collections import OrderedDict
from datetime import date, timedelta, tzinfo
from typing import Dict, Iterable, List, Union

from processor.civil_time import civil_date
from processor.labels import DEFAULT_LANGUAGE, summary_title
from processor.models import Category, ClassifiedEvent, MergedBlock

logger = logging.getLogger(__name__)

NEVER_MERGE = frozenset({Category.SURGERY, Category.ONLINE})

# Display category for blocks mixing several categories.
MIXED_BLOCK_CATEGORY = Category.CONTROL

MergeItem = Union[ClassifiedEvent, MergedBlock]


def _flush(buffer: List[ClassifiedEvent], language: str) -> MergeItem:
    """
    Turn a pending buffer into one output item.

    A single event is returned unchanged; several become a MergedBlock.
    """
    if len(buffer) == 1:
        return buffer[0]

    categories = {event.category for event in buffer}
    category = categories.pop() if len(categories) == 1 else MIXED_BLOCK_CATEGORY

    return MergedBlock(
        block_id=f"group-{buffer[0].event_id}",
        start=buffer[0].start,
        end=max(event.end for event in buffer),
        category=category,
        member_count=len(buffer),
        title=summary_title((event.category for event in buffer), language),
        members=tuple(buffer),
    )


def merge(
    events: Iterable[ClassifiedEvent],
    gap_minutes: int = 15,
    language: str = DEFAULT_LANGUAGE,
) -> List[MergeItem]:
    """
    Merge one day's chronologically sorted events.

    Surgery and online events are never merged and flush the pending
    buffer. Any other event joins the buffer when it starts less than
    ``gap_minutes`` after the latest end in the buffer, whatever its
    category.

    Args:
        events: Classified events of a single civil day, sorted by start
        gap_minutes: Maximum gap that still joins a run
        language: Language for summary titles

    Returns:
        Events and merged blocks in chronological order
    """
    gap = timedelta(minutes=gap_minutes)
    merged: List[MergeItem] = []
    buffer: List[ClassifiedEvent] = []
    # Members may nest inside a longer one, so the run ends at the latest end.
    run_end = None

    for event in events:
        if event.category in NEVER_MERGE:
            if buffer:
                merged.append(_flush(buffer, language))
                buffer = []
            merged.append(event)
            continue

        if buffer and event.start - run_end >= gap:
            merged.append(_flush(buffer, language))
            buffer = []
        run_end = event.end if not buffer else max(run_end, event.end)
        buffer.append(event)

    if buffer:
        merged.append(_flush(buffer, language))

    return merged


def group_by_day(events: Iterable[ClassifiedEvent], tzone: tzinfo) -> Dict[date, List[ClassifiedEvent]]:
    """Group events by the civil date of their start, each day sorted."""
    days: Dict[date, List[ClassifiedEvent]] = OrderedDict()
    for event in sorted(events, key=lambda e: (e.start, e.end, e.event_id)):
        days.setdefault(civil_date(event.start, tzone), []).append(event)
    return days


def merge_by_day(
    events: Iterable[ClassifiedEvent],
    tzone: tzinfo,
    gap_minutes: int = 15,
    language: str = DEFAULT_LANGUAGE,
) -> Dict[date, List[MergeItem]]:
    """Run :func:`merge` per civil day so that no run spans midnight."""
    result = OrderedDict()
    for day, day_events in group_by_day(events, tzone).items():
        result[day] = merge(day_events, gap_minutes=gap_minutes, language=language)
        logger.debug(f"Merged {len(day_events)} events into {len(result[day])} items for {day}")
    return result
