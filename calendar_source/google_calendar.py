"""Google Calendar source for the clinic's appointment calendar."""
import logging
import time
from datetime import datetime, time as clock
from typing import List, Optional, Tuple
from urllib.parse import quote

import requests
from dateutil import parser as date_parser
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from processor.civil_time import civil_instant, zone
from processor.models import RawEvent

logger = logging.getLogger(__name__)


class GoogleCalendarSource:
    """Read-only client for a single Google Calendar's events."""

    BASE_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"
    TOKEN_URI = "https://oauth2.googleapis.com/token"
    SCOPES = ['https://www.googleapis.com/auth/calendar.readonly']

    def __init__(
        self,
        calendar_id: str,
        credentials=None,
        api_key: Optional[str] = None,
        timeout: int = 30,
        page_size: int = 2500,
        timezone: str = 'Europe/Istanbul',
    ):
        """
        Initialize the calendar source.

        Args:
            calendar_id: Upstream calendar identifier
            credentials: google-auth credentials used for a bearer token
            api_key: API key for public calendars, used when no credentials
            timeout: HTTP request timeout in seconds (default: 30)
            page_size: Events requested per page (default: 2500)
            timezone: Zone in which all-day dates are interpreted
        """
        self.calendar_id = calendar_id
        self.credentials = credentials
        self.api_key = api_key
        self.timeout = timeout
        self.page_size = page_size
        self.tzone = zone(timezone)

    @classmethod
    def from_service_account(
        cls,
        calendar_id: str,
        client_email: str,
        private_key: str,
        **kwargs
    ) -> 'GoogleCalendarSource':
        """
        Build a source authenticated as a service account.

        Literal "\\n" sequences in the key, as found in environment
        variables, are turned into newlines.
        """
        info = {
            'type': 'service_account',
            'client_email': client_email,
            'private_key': private_key.replace('\\n', '\n'),
            'token_uri': cls.TOKEN_URI,
        }
        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=cls.SCOPES
        )
        return cls(calendar_id, credentials=credentials, **kwargs)

    def fetch_events(self, time_min: datetime) -> List[RawEvent]:
        """
        Fetch all events ending after ``time_min``, draining every page.

        Args:
            time_min: Lower time bound, aware datetime

        Returns:
            List of RawEvent objects in upstream (start time) order

        Raises:
            requests.RequestException: If a page fails after all retries
        """
        logger.info(f"Fetching events from {time_min.isoformat()}")

        items = []
        page_token = None
        pages = 0
        while True:
            payload = self._fetch_page(time_min, page_token)
            items.extend(payload.get('items', []))
            pages += 1
            page_token = payload.get('nextPageToken')
            if not page_token:
                break

        events = []
        for item in items:
            event = self.parse_item(item)
            if event:
                events.append(event)

        logger.info(f"Successfully fetched {len(events)} events in {pages} page(s)")
        return events

    def _fetch_page(self, time_min: datetime, page_token: Optional[str]) -> dict:
        """
        Fetch one page of events with retry logic.

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        url = self.BASE_URL.format(calendar_id=quote(self.calendar_id, safe=''))
        params = {
            'timeMin': time_min.isoformat(),
            'singleEvents': 'true',
            'orderBy': 'startTime',
            'maxResults': self.page_size,
        }
        if page_token:
            params['pageToken'] = page_token
        if self.api_key and not self.credentials:
            params['key'] = self.api_key

        max_retries = 3
        base_delay = 1  # seconds

        for attempt in range(max_retries):
            try:
                logger.info(f"Fetching events page (attempt {attempt + 1}/{max_retries})")
                response = requests.get(
                    url,
                    params=params,
                    headers=self._auth_headers(),
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response.json()

            except requests.RequestException as e:
                if attempt < max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _auth_headers(self) -> dict:
        if not self.credentials:
            return {}
        if not self.credentials.valid:
            self.credentials.refresh(Request())
        return {'Authorization': f"Bearer {self.credentials.token}"}

    def parse_item(self, item: dict) -> Optional[RawEvent]:
        """
        Parse one upstream event resource.

        Args:
            item: Event resource as returned by the API

        Returns:
            RawEvent, or None for cancelled items
        """
        if item.get('status') == 'cancelled':
            return None

        start, all_day = self._parse_time(item.get('start'))
        end, _ = self._parse_time(item.get('end'))

        return RawEvent(
            event_id=item.get('id') or '',
            title=item.get('summary') or '',
            start=start,
            end=end,
            color_tag=item.get('colorId'),
            location=item.get('location') or '',
            description=item.get('description') or '',
            all_day=all_day,
        )

    def _parse_time(self, value: Optional[dict]) -> Tuple[Optional[datetime], bool]:
        """
        Parse a start/end object.

        Returns:
            Tuple of (aware datetime or None, is_all_day)
        """
        if not value:
            return None, False

        try:
            if value.get('dateTime'):
                parsed = date_parser.isoparse(value['dateTime'])
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=self.tzone)
                return parsed, False

            if value.get('date'):
                day = date_parser.isoparse(value['date']).date()
                return civil_instant(day, clock(0, 0), self.tzone), True
        except ValueError as e:
            logger.warning(f"Unparseable event time {value!r}: {e}")

        return None, False
