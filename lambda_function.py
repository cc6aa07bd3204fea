"""AWS Lambda handler exposing the clinic calendar's public availability."""
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, time as clock
from typing import Any, Dict, Mapping, Optional

from dateutil import parser as date_parser

from calendar_source.cached_source import CachedCalendarSource, CalendarUnavailableError, EventCache
from calendar_source.google_calendar import GoogleCalendarSource
from processor.civil_time import civil_date, civil_instant, zone
from processor.event_processor import EventProcessor
from processor.models import SchedulePolicy
from storage.snapshot_store import LocalSnapshotStore, S3SnapshotStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Settings:
    """Runtime configuration read from the environment."""
    calendar_id: str = ''
    client_email: str = ''
    private_key: str = ''
    api_key: str = ''
    timezone: str = 'Europe/Istanbul'
    language: str = 'tr'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    cache_ttl_seconds: int = 300
    min_slot_minutes: int = 15
    preop_buffer_minutes: int = 10
    merge_gap_minutes: int = 15
    surgery_min_minutes: int = 60
    horizon_days: int = 14
    snapshot_path: str = ''
    snapshot_bucket: str = ''
    snapshot_key: str = 'calendar-snapshot.json'

    def policy(self) -> SchedulePolicy:
        return SchedulePolicy(
            timezone=self.timezone,
            min_slot_minutes=self.min_slot_minutes,
            preop_buffer_minutes=self.preop_buffer_minutes,
            merge_gap_minutes=self.merge_gap_minutes,
            surgery_min_minutes=self.surgery_min_minutes,
            horizon_days=self.horizon_days,
        )


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Read settings from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        Settings with defaults for unset variables
    """
    env = os.environ if environ is None else environ
    return Settings(
        calendar_id=env.get('CALENDAR_ID', ''),
        client_email=env.get('GOOGLE_CLIENT_EMAIL', ''),
        private_key=env.get('GOOGLE_PRIVATE_KEY', ''),
        api_key=env.get('GOOGLE_API_KEY', ''),
        timezone=env.get('TIMEZONE', 'Europe/Istanbul'),
        language=env.get('LANGUAGE', 'tr'),
        log_level=env.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
        cache_ttl_seconds=int(env.get('CACHE_TTL_SECONDS', '300')),
        min_slot_minutes=int(env.get('MIN_SLOT_MINUTES', '15')),
        preop_buffer_minutes=int(env.get('PREOP_BUFFER_MINUTES', '10')),
        merge_gap_minutes=int(env.get('MERGE_GAP_MINUTES', '15')),
        surgery_min_minutes=int(env.get('SURGERY_MIN_MINUTES', '60')),
        horizon_days=int(env.get('HORIZON_DAYS', '14')),
        snapshot_path=env.get('SNAPSHOT_PATH', ''),
        snapshot_bucket=env.get('SNAPSHOT_BUCKET', ''),
        snapshot_key=env.get('SNAPSHOT_KEY', 'calendar-snapshot.json'),
    )


def build_source(settings: Settings) -> CachedCalendarSource:
    """Wire the upstream calendar, cache and snapshot store together."""
    if settings.client_email and settings.private_key:
        upstream = GoogleCalendarSource.from_service_account(
            settings.calendar_id,
            settings.client_email,
            settings.private_key,
            timeout=settings.timeout_seconds,
            timezone=settings.timezone,
        )
    else:
        upstream = GoogleCalendarSource(
            settings.calendar_id,
            api_key=settings.api_key or None,
            timeout=settings.timeout_seconds,
            timezone=settings.timezone,
        )

    if settings.snapshot_bucket:
        snapshot_store = S3SnapshotStore(settings.snapshot_bucket, settings.snapshot_key)
    else:
        snapshot_store = LocalSnapshotStore(settings.snapshot_path or None)

    return CachedCalendarSource(
        upstream,
        cache=EventCache(ttl_seconds=settings.cache_ttl_seconds),
        snapshot_store=snapshot_store,
    )


def parse_time_min(value: Optional[str], timezone: str, now: Optional[datetime] = None) -> datetime:
    """
    Resolve the request's lower time bound.

    Args:
        value: ISO timestamp from the query string, may be empty
        timezone: Zone for naive timestamps and the default
        now: Current instant (default: wall clock)

    Returns:
        Aware datetime; start of today in ``timezone`` when ``value`` is empty

    Raises:
        ValueError: If ``value`` is not an ISO timestamp
    """
    tzone = zone(timezone)
    if not value:
        today = (now or datetime.now(tzone)).astimezone(tzone).date()
        return civil_instant(today, clock(0, 0), tzone)

    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tzone)
    return parsed


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json; charset=utf-8'},
        'body': json.dumps(body, ensure_ascii=False),
    }


VIEWS = ('events', 'overview')


def handle_request(event: Dict[str, Any], source, settings: Settings) -> Dict[str, Any]:
    """
    Serve one calendar request.

    Query parameters are ``timeMin``, ``lang`` and ``view``. The default
    ``events`` view returns the public records; ``overview`` returns the
    per-day surgery counts of the next two weeks.

    Args:
        event: API Gateway proxy event
        source: Calendar source with ``fetch_events(time_min)``
        settings: Runtime settings

    Returns:
        Response dict with statusCode, headers and JSON body
    """
    logger = logging.getLogger(__name__)
    start_time = time.time()
    params = (event or {}).get('queryStringParameters') or {}

    try:
        time_min = parse_time_min(params.get('timeMin'), settings.timezone)
    except (ValueError, OverflowError) as e:
        logger.warning(f"Rejected invalid timeMin {params.get('timeMin')!r}: {e}")
        return _response(400, {'error': 'Invalid timeMin', 'details': str(e)})

    language = params.get('lang') or settings.language
    view = params.get('view') or 'events'
    if view not in VIEWS:
        return _response(400, {'error': 'Invalid view', 'details': f"Expected one of {', '.join(VIEWS)}"})

    try:
        raw_events = source.fetch_events(time_min)
    except CalendarUnavailableError as e:
        logger.error(
            f"Failed to fetch calendar events: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {'error': 'Failed to fetch events', 'details': str(e)})

    processor = EventProcessor(policy=settings.policy(), language=language)
    records = processor.process_events(raw_events, time_min)

    duration = time.time() - start_time
    logger.info(
        f"Served {len(records)} records from {len(raw_events)} raw events "
        f"in {round(duration, 2)}s"
    )
    if view == 'overview':
        first_day = civil_date(time_min, processor.tzone)
        return _response(200, {'surgeryCounts': processor.surgery_counts(records, first_day)})
    return _response(200, records)


_source: Optional[CachedCalendarSource] = None


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for the public calendar endpoint.

    The calendar source, and with it the event cache, is built once per
    container and reused by warm invocations.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    global _source

    settings = load_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    try:
        if _source is None:
            _source = build_source(settings)
        return handle_request(event, _source, settings)

    except Exception as e:
        logger.error(
            f"Calendar request failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'error': 'Failed to fetch events',
            'details': str(e),
            'error_type': type(e).__name__,
        })
