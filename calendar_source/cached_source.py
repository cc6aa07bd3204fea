"""Caching and fallback layer around the upstream calendar source."""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import requests
from botocore.exceptions import ClientError
from google.auth.exceptions import GoogleAuthError

from processor.models import RawEvent

logger = logging.getLogger(__name__)


class CalendarUnavailableError(Exception):
    """Upstream failed and neither the cache nor a snapshot could stand in."""


@dataclass
class CacheEntry:
    time_min: datetime
    events: List[RawEvent]
    fetched_at: float


def _ending_after(events: List[RawEvent], time_min: datetime) -> List[RawEvent]:
    return [event for event in events if event.end is None or event.end > time_min]


class EventCache:
    """
    In-memory cache of the last fetched batch.

    One entry only; concurrent refreshes are last-write-wins.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.time):
        """
        Args:
            ttl_seconds: Time-to-live of a fetched batch (default: 5 minutes)
            clock: Source of the current time in seconds
        """
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.entry: Optional[CacheEntry] = None

    def put(self, time_min: datetime, events: List[RawEvent]) -> None:
        self.entry = CacheEntry(time_min=time_min, events=list(events), fetched_at=self.clock())

    def get_fresh(self, time_min: datetime) -> Optional[List[RawEvent]]:
        """
        Return cached events if the entry is within TTL and covers ``time_min``.
        """
        if self.entry is None:
            return None
        if self.clock() - self.entry.fetched_at >= self.ttl_seconds:
            return None
        if time_min < self.entry.time_min:
            return None
        return _ending_after(self.entry.events, time_min)

    def get_any(self, time_min: datetime) -> Optional[List[RawEvent]]:
        """Return cached events regardless of age."""
        if self.entry is None:
            return None
        return _ending_after(self.entry.events, time_min)


class CachedCalendarSource:
    """Calendar source with fresh cache, stale cache and snapshot fallbacks."""

    def __init__(self, upstream, cache: Optional[EventCache] = None, snapshot_store=None):
        """
        Initialize the cached source.

        Args:
            upstream: Object with ``fetch_events(time_min)``, e.g. GoogleCalendarSource
            cache: EventCache instance (default: 5 minute TTL)
            snapshot_store: Store with ``save(events)`` and ``load()``, optional
        """
        self.upstream = upstream
        self.cache = cache or EventCache()
        self.snapshot_store = snapshot_store

    def fetch_events(self, time_min: datetime) -> List[RawEvent]:
        """
        Fetch events, falling back through cache tiers on upstream failure.

        Args:
            time_min: Lower time bound, aware datetime

        Returns:
            List of RawEvent objects ending after ``time_min``

        Raises:
            CalendarUnavailableError: If upstream fails and no fallback exists
        """
        cached = self.cache.get_fresh(time_min)
        if cached is not None:
            logger.info(f"Serving {len(cached)} events from in-memory cache")
            return cached

        try:
            events = self.upstream.fetch_events(time_min)
        except (requests.RequestException, GoogleAuthError) as e:
            logger.error(f"Upstream calendar fetch failed: {e}")
            return self._fallback(time_min, e)

        self.cache.put(time_min, events)
        self._save_snapshot(events)
        return events

    def _fallback(self, time_min: datetime, error: Exception) -> List[RawEvent]:
        stale = self.cache.get_any(time_min)
        if stale is not None:
            logger.warning(f"Returning {len(stale)} events from stale in-memory cache")
            return stale

        snapshot = self._load_snapshot()
        if snapshot is not None:
            events = _ending_after(snapshot, time_min)
            logger.warning(f"Returning {len(events)} events from on-disk snapshot")
            return events

        raise CalendarUnavailableError(
            "Calendar unavailable and no cached data to fall back on"
        ) from error

    def _save_snapshot(self, events: List[RawEvent]) -> None:
        if self.snapshot_store is None:
            return
        try:
            self.snapshot_store.save(events)
        except (OSError, ClientError) as e:
            logger.error(f"Failed to save snapshot: {e}")

    def _load_snapshot(self) -> Optional[List[RawEvent]]:
        if self.snapshot_store is None:
            return None
        try:
            return self.snapshot_store.load()
        except (OSError, ValueError, ClientError) as e:
            logger.error(f"Failed to load snapshot: {e}")
            return None
