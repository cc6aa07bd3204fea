"""Event processor turning raw calendar events into public records."""
import hashlib
import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Union

from dateutil import parser as date_parser

from processor.availability import derive_availability
from processor.civil_time import civil_date, day_bounds, iter_days, zone
from processor.classifier import classify
from processor.labels import category_label, resolve_language
from processor.merger import merge_by_day
from processor.models import (
    AvailableSlot,
    Category,
    ClassifiedEvent,
    MergedBlock,
    RawEvent,
    SchedulePolicy,
)

logger = logging.getLogger(__name__)

OutputItem = Union[ClassifiedEvent, MergedBlock, AvailableSlot]


class EventProcessor:
    """Processor classifying, merging and deriving availability for events."""

    WEEKLY_OVERVIEW_DAYS = 14

    def __init__(self, policy: Optional[SchedulePolicy] = None, language: str = 'tr'):
        """
        Initialize the processor.

        Args:
            policy: Scheduling policy (default: SchedulePolicy())
            language: Language of public titles, 'tr' or 'en'
        """
        self.policy = policy or SchedulePolicy()
        self.language = resolve_language(language)
        self.tzone = zone(self.policy.timezone)

    def process_events(self, raw_events: List[RawEvent], time_min: datetime) -> List[dict]:
        """
        Run the full pipeline over a fetched batch.

        Args:
            raw_events: Raw events from the calendar source
            time_min: Lower time bound of the request; earlier events are
                dropped and no slot starts before it

        Returns:
            Chronologically sorted public records
        """
        classified = []
        for event in raw_events:
            processed_event = self._process_single_event(event, time_min)
            if processed_event:
                classified.append(processed_event)

        logger.info(
            f"Classified {len(classified)} events out of "
            f"{len(raw_events)} total events"
        )

        merged_days = merge_by_day(
            classified,
            self.tzone,
            gap_minutes=self.policy.merge_gap_minutes,
            language=self.language,
        )
        items: List[OutputItem] = [
            item for day_items in merged_days.values() for item in day_items
        ]

        slots = self._derive_slots(items, time_min)
        logger.info(
            f"Produced {len(items)} busy items and {len(slots)} available slots"
        )

        output = sorted(items + slots, key=self._sort_key)
        return [self._to_record(item) for item in output]

    def _process_single_event(self, event: RawEvent, time_min: datetime) -> Optional[ClassifiedEvent]:
        """
        Validate and classify a single event.

        Args:
            event: Raw event

        Returns:
            ClassifiedEvent, or None for malformed, past or cancelled events
        """
        if not self._validate_required_fields(event):
            return None

        if event.end <= time_min:
            return None

        if not event.event_id:
            event = replace(event, event_id=self.generate_event_id(event.start, event.end))

        # All-day entries span whole days; their length says nothing about surgery.
        start, end = (None, None) if event.all_day else (event.start, event.end)
        category = classify(
            event.title,
            event.color_tag,
            start,
            end,
            surgery_min_minutes=self.policy.surgery_min_minutes,
        )

        if category == Category.CANCELLED:
            logger.debug(f"Dropping cancelled event {event.event_id}")
            return None

        return ClassifiedEvent(raw=event, category=category)

    def _validate_required_fields(self, event: RawEvent) -> bool:
        """
        Check that an event has a usable time range.

        Returns:
            True if valid, False otherwise
        """
        if event.start is None or event.end is None:
            logger.warning(f"Event {event.event_id!r} missing start or end, skipping")
            return False

        if event.end <= event.start:
            logger.warning(f"Event {event.event_id!r} ends before it starts, skipping")
            return False

        return True

    def _derive_slots(self, items: List[OutputItem], time_min: datetime) -> List[AvailableSlot]:
        """Derive available slots for every day of the horizon."""
        buffer = timedelta(minutes=self.policy.preop_buffer_minutes)
        first_day = civil_date(time_min, self.tzone)
        slots = []

        for day in iter_days(first_day, self.policy.horizon_days):
            bounds = day_bounds(day, self.tzone)
            day_items = [
                item for item in items
                if item.start - buffer < bounds.end and item.end > bounds.start
            ]
            slots.extend(derive_availability(
                day_items,
                day,
                self.policy,
                not_before=time_min,
                language=self.language,
            ))

        return slots

    @staticmethod
    def _sort_key(item: OutputItem):
        item_id = item.slot_id if isinstance(item, AvailableSlot) else (
            item.block_id if isinstance(item, MergedBlock) else item.event_id
        )
        return item.start, item.end, item_id

    def _to_record(self, item: OutputItem) -> dict:
        """
        Serialize an item into the public record shape.

        Titles are always generic: upstream text never leaves this method.
        """
        if isinstance(item, AvailableSlot):
            record_id, title = item.slot_id, item.title
        elif isinstance(item, MergedBlock):
            record_id, title = item.block_id, item.title
        else:
            record_id, title = item.event_id, category_label(item.category, self.language)

        record = {
            'id': record_id,
            'title': title,
            'start': item.start.astimezone(self.tzone).isoformat(),
            'end': item.end.astimezone(self.tzone).isoformat(),
            'category': item.category.value,
        }
        if isinstance(item, MergedBlock):
            record['memberCount'] = item.member_count
        return record

    def surgery_counts(self, records: List[dict], first_day: date,
                       days: int = WEEKLY_OVERVIEW_DAYS) -> List[Dict[str, object]]:
        """
        Count surgeries per civil day for the weekly overview.

        Args:
            records: Output of :meth:`process_events`
            first_day: First civil date of the overview
            days: Number of days (default: 14)

        Returns:
            List of {'date': 'YYYY-MM-DD', 'count': int}, one per day
        """
        counts = {day: 0 for day in iter_days(first_day, days)}
        for record in records:
            if record['category'] != Category.SURGERY.value:
                continue
            day = civil_date(date_parser.isoparse(record['start']), self.tzone)
            if day in counts:
                counts[day] += 1
        return [{'date': day.isoformat(), 'count': count} for day, count in counts.items()]

    def generate_event_id(self, start: datetime, end: datetime) -> str:
        """
        Generate a stable identifier for an event the upstream left without one.

        Args:
            start: Event start
            end: Event end

        Returns:
            SHA256 hex digest of the time range
        """
        composite = f"{start.isoformat()}|{end.isoformat()}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()
