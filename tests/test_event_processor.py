"""Unit tests for EventProcessor."""
import json
import logging
import random
from datetime import date, datetime, timedelta

import pytest
from dateutil import parser as date_parser
from dateutil import tz

from processor.classifier import classify
from processor.event_processor import EventProcessor
from processor.models import Category, RawEvent, SchedulePolicy

IST = tz.gettz('Europe/Istanbul')
MONDAY = date(2026, 10, 19)
TIME_MIN = datetime(2026, 10, 19, 0, 0, tzinfo=IST)


def at(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=IST)


def raw(event_id, title, start, minutes, **kwargs):
    return RawEvent(
        event_id=event_id,
        title=title,
        start=start,
        end=start + timedelta(minutes=minutes) if start else None,
        **kwargs
    )


def one_day_processor(language='tr'):
    return EventProcessor(policy=SchedulePolicy(horizon_days=1), language=language)


def sample_events():
    return [
        raw("s1", "🔪 Ayşe Yılmaz rinoplasti tel 0555 123 45 67", at(10), 90),
        raw("c1", "K1 Ahmet Kaya", at(14, 0), 10),
        raw("c2", "K2 Mehmet Demir", at(14, 20), 10),
        raw("x1", "İptal Ali Veli", at(16), 30),
    ]


class TestEventProcessor:
    """Test cases for EventProcessor class."""

    def test_process_events_full_day(self):
        """Test classification, merging and slot derivation together."""
        processor = one_day_processor()

        records = processor.process_events(sample_events(), TIME_MIN)

        assert records == [
            {
                'id': 'available-20261019-0800',
                'title': 'Müsait',
                'start': '2026-10-19T08:00:00+03:00',
                'end': '2026-10-19T09:50:00+03:00',
                'category': 'Available',
            },
            {
                'id': 's1',
                'title': 'Ameliyat',
                'start': '2026-10-19T10:00:00+03:00',
                'end': '2026-10-19T11:30:00+03:00',
                'category': 'Surgery',
            },
            {
                'id': 'available-20261019-1130',
                'title': 'Müsait',
                'start': '2026-10-19T11:30:00+03:00',
                'end': '2026-10-19T14:00:00+03:00',
                'category': 'Available',
            },
            {
                'id': 'group-c1',
                'title': '2 Kontrol',
                'start': '2026-10-19T14:00:00+03:00',
                'end': '2026-10-19T14:30:00+03:00',
                'category': 'Control',
                'memberCount': 2,
            },
            {
                'id': 'available-20261019-1430',
                'title': 'Müsait',
                'start': '2026-10-19T14:30:00+03:00',
                'end': '2026-10-19T23:00:00+03:00',
                'category': 'Available',
            },
        ]

    def test_no_upstream_text_leaks(self):
        """Test that names, phones and procedures never reach a record."""
        records = one_day_processor().process_events(sample_events(), TIME_MIN)
        payload = json.dumps(records, ensure_ascii=False).lower()

        for fragment in ["ayşe", "yılmaz", "rinoplasti", "0555", "ahmet", "mehmet", "ali"]:
            assert fragment not in payload

    def test_english_titles(self):
        records = one_day_processor('en').process_events(sample_events(), TIME_MIN)
        titles = {record['id']: record['title'] for record in records}

        assert titles['s1'] == 'Surgery'
        assert titles['group-c1'] == '2 Control'
        assert titles['available-20261019-0800'] == 'Available'

    def test_unknown_language_falls_back_to_turkish(self):
        processor = EventProcessor(language='de')
        assert processor.language == 'tr'

    def test_cancelled_events_are_dropped_and_free_their_time(self):
        events = [raw("x1", "iptal Ali", at(10), 60), raw("x2", "Ali", at(12), 60, color_tag="11")]
        records = one_day_processor().process_events(events, TIME_MIN)

        assert [record['category'] for record in records] == ['Available']
        assert records[0]['start'] == '2026-10-19T08:00:00+03:00'
        assert records[0]['end'] == '2026-10-19T23:00:00+03:00'

    def test_malformed_events_are_skipped(self, caplog):
        """Test that events without a usable time range are skipped with a warning."""
        events = [
            raw("no-start", "Ali", None, 0),
            RawEvent(event_id="backwards", title="Ali", start=at(11), end=at(10)),
            raw("ok", "Muayene Ali", at(9), 20),
        ]

        with caplog.at_level(logging.WARNING):
            records = one_day_processor().process_events(events, TIME_MIN)

        ids = [record['id'] for record in records]
        assert "ok" in ids
        assert "no-start" not in ids
        assert "backwards" not in ids
        assert "missing start or end" in caplog.text
        assert "ends before it starts" in caplog.text

    def test_events_ending_before_time_min_are_dropped(self):
        time_min = at(12)
        events = [raw("past", "Muayene", at(10), 60), raw("future", "Muayene", at(13), 30)]

        records = one_day_processor().process_events(events, time_min)

        ids = [record['id'] for record in records]
        assert ids == ['available-20261019-1200', 'future', 'available-20261019-1330']

    def test_event_without_id_gets_stable_id(self):
        processor = one_day_processor()
        event = raw("", "Muayene", at(9), 30)

        records = processor.process_events([event], TIME_MIN)
        exam = [record for record in records if record['category'] == 'Exam'][0]

        assert exam['id'] == processor.generate_event_id(event.start, event.end)
        assert len(exam['id']) == 64

    def test_all_day_event_is_not_classified_by_duration(self):
        """Test that a full-day entry without a marker does not become surgery."""
        event = RawEvent(
            event_id="allday",
            title="K1 Ahmet",
            start=at(0),
            end=at(0, day=MONDAY + timedelta(days=1)),
            all_day=True,
        )
        records = one_day_processor().process_events([event], TIME_MIN)

        assert records == [{
            'id': 'allday',
            'title': 'Kontrol',
            'start': '2026-10-19T00:00:00+03:00',
            'end': '2026-10-20T00:00:00+03:00',
            'category': 'Control',
        }]

    def test_unmarked_long_event_is_surgery(self):
        records = one_day_processor().process_events([raw("e", "Mehmet Demir", at(9), 120)], TIME_MIN)
        assert [r['category'] for r in records if r['id'] == 'e'] == ['Surgery']

    def test_surgery_min_minutes_from_policy(self):
        processor = EventProcessor(policy=SchedulePolicy(horizon_days=1, surgery_min_minutes=30))
        records = processor.process_events([raw("e", "Mehmet Demir", at(9), 45)], TIME_MIN)
        assert [r['category'] for r in records if r['id'] == 'e'] == ['Surgery']

    def test_horizon_covers_all_days(self):
        """Test two weeks of empty calendar yield the policy's open windows."""
        records = EventProcessor().process_events([], TIME_MIN)

        # Mon, Fri, Sat, Sun give one window each; Tue to Thu are split by the blackout.
        assert len(records) == 20
        assert records[0]['start'] == '2026-10-19T08:00:00+03:00'
        assert records[-1]['start'] == '2026-11-01T08:00:00+03:00'
        assert records[-1]['end'] == '2026-11-01T09:30:00+03:00'

    def test_slots_start_no_earlier_than_time_min(self):
        records = one_day_processor().process_events([], at(12, 10))
        assert records[0]['start'] == '2026-10-19T12:10:00+03:00'

    def test_surgery_buffer_before_opening(self):
        """Test a surgery just after opening pushes the first slot past its end."""
        tuesday = MONDAY + timedelta(days=1)
        processor = EventProcessor(policy=SchedulePolicy(horizon_days=2))
        events = [raw("s", "🔪 Ali", at(8, 5, day=tuesday), 90)]

        records = processor.process_events(events, TIME_MIN)
        tuesday_slots = [
            record for record in records
            if record['category'] == 'Available' and record['start'].startswith('2026-10-20')
        ]

        assert tuesday_slots[0]['start'] == '2026-10-20T09:35:00+03:00'

    def test_records_are_sorted(self):
        events = list(reversed(sample_events()))
        records = one_day_processor().process_events(events, TIME_MIN)
        starts = [record['start'] for record in records]
        assert starts == sorted(starts)

    def test_idempotent(self):
        processor = one_day_processor()
        assert processor.process_events(sample_events(), TIME_MIN) == \
            processor.process_events(sample_events(), TIME_MIN)

    def test_only_blocks_carry_member_count(self):
        records = one_day_processor().process_events(sample_events(), TIME_MIN)
        with_count = [record['id'] for record in records if 'memberCount' in record]
        assert with_count == ['group-c1']

    def test_surgery_counts(self):
        processor = one_day_processor()
        tuesday = MONDAY + timedelta(days=1)
        events = sample_events() + [
            raw("s2", "🔪 Can", at(9, day=tuesday), 60),
            raw("s3", "🔪 Ece", at(12, day=tuesday), 60),
        ]
        processor.policy.horizon_days = 2

        records = processor.process_events(events, TIME_MIN)
        counts = processor.surgery_counts(records, MONDAY, days=3)

        assert counts == [
            {'date': '2026-10-19', 'count': 1},
            {'date': '2026-10-20', 'count': 2},
            {'date': '2026-10-21', 'count': 0},
        ]

    def test_surgery_counts_defaults_to_two_weeks(self):
        counts = one_day_processor().surgery_counts([], MONDAY)
        assert len(counts) == EventProcessor.WEEKLY_OVERVIEW_DAYS
        assert all(entry['count'] == 0 for entry in counts)

    def test_generate_event_id(self):
        """Test event ID generation is consistent."""
        processor = EventProcessor()

        id1 = processor.generate_event_id(at(9), at(10))
        id2 = processor.generate_event_id(at(9), at(10))
        id3 = processor.generate_event_id(at(9), at(11))

        assert id1 == id2
        assert id1 != id3
        assert len(id1) == 64


class TestBookedTimeStaysBusy:
    """Pipeline tests for visits nested inside longer busy events."""

    TITLES = ["🔪 Ali", "K1 Ayşe", "Muayene Can", "Online görüşme", "Kongre", "İptal Ece", "Mehmet"]

    def test_visit_inside_congress_keeps_congress_busy(self):
        events = [
            raw("a", "kongre", at(9), 9 * 60),
            raw("b", "k1 Ayşe", at(9, 30), 15),
        ]

        records = one_day_processor().process_events(events, TIME_MIN)

        assert [(r['id'], r['start'][11:16], r['end'][11:16]) for r in records] == [
            ('available-20261019-0800', '08:00', '09:00'),
            ('group-a', '09:00', '18:00'),
            ('available-20261019-1800', '18:00', '23:00'),
        ]
        assert records[1]['title'] == '1 Dolu, 1 Kontrol'
        assert records[1]['memberCount'] == 2

    def test_visit_on_leave_day_keeps_day_closed(self):
        """Test an all-day leave with a control visit offers no slot that day."""
        leave = RawEvent(
            event_id="leave",
            title="İzin",
            start=at(0),
            end=at(0, day=MONDAY + timedelta(days=1)),
            all_day=True,
        )
        events = [leave, raw("c", "K1 Ahmet", at(10), 15)]

        records = one_day_processor().process_events(events, TIME_MIN)

        assert [record['id'] for record in records] == ['group-leave']
        assert records[0]['title'] == '1 Dolu, 1 Kontrol'
        assert records[0]['end'] == '2026-10-20T00:00:00+03:00'

    @pytest.mark.parametrize("seed", range(25))
    def test_available_never_overlaps_booked_time(self, seed):
        """Test on random calendars that no slot overlaps a kept event or surgery buffer."""
        rng = random.Random(seed)
        policy = SchedulePolicy(horizon_days=3)
        processor = EventProcessor(policy=policy)
        events = []
        for index in range(rng.randrange(1, 15)):
            start = at(6) + timedelta(minutes=5 * rng.randrange(0, 3 * 24 * 12))
            minutes = rng.choice([10, 15, 20, 45, 90, 240, 600, 24 * 60])
            events.append(raw(f"e{index}", rng.choice(self.TITLES), start, minutes))

        records = processor.process_events(events, TIME_MIN)

        buffer = timedelta(minutes=policy.preop_buffer_minutes)
        booked = []
        for event in events:
            category = classify(event.title, event.color_tag, event.start, event.end)
            if category == Category.CANCELLED:
                continue
            start = event.start - buffer if category == Category.SURGERY else event.start
            booked.append((start, event.end))

        for record in records:
            if record['category'] != 'Available':
                continue
            slot_start = date_parser.isoparse(record['start'])
            slot_end = date_parser.isoparse(record['end'])
            for busy_start, busy_end in booked:
                assert not (slot_start < busy_end and busy_start < slot_end)
