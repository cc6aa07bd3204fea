"""Conversions between absolute instants and civil time in a named zone."""
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterator

from dateutil import tz

from processor.models import Interval


def zone(name: str) -> tzinfo:
    """
    Look up a timezone by IANA name.

    Raises:
        ValueError: If the zone is unknown
    """
    tzone = tz.gettz(name)
    if tzone is None:
        raise ValueError(f"Unknown timezone: {name}")
    return tzone


def to_civil(instant: datetime, tzone: tzinfo) -> datetime:
    """Express an aware instant as wall-clock time in ``tzone``."""
    if instant.tzinfo is None:
        raise ValueError("Naive datetimes are not instants")
    return instant.astimezone(tzone)


def civil_date(instant: datetime, tzone: tzinfo) -> date:
    return to_civil(instant, tzone).date()


def civil_instant(day: date, clock: time, tzone: tzinfo) -> datetime:
    """
    Build the instant at which the wall clock in ``tzone`` reads ``day clock``.

    The result is normalized to UTC so that interval arithmetic stays exact
    across offset changes.
    """
    return datetime.combine(day, clock, tzinfo=tzone).astimezone(tz.UTC)


def day_bounds(day: date, tzone: tzinfo) -> Interval:
    """Interval covering the whole civil day."""
    return Interval(
        civil_instant(day, time(0, 0), tzone),
        civil_instant(day + timedelta(days=1), time(0, 0), tzone),
    )


def iter_days(first: date, count: int) -> Iterator[date]:
    for offset in range(count):
        yield first + timedelta(days=offset)
