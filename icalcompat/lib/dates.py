"""
Helpers for the date values found in iCalendar data.

A date value is either a ``datetime.date`` (a calendar day, VALUE=DATE)
or a ``datetime.datetime``.  A datetime is one of three kinds:

* UTC - it carries a UTC tzinfo (written with a ``Z`` suffix)
* zoned - it carries any other tzinfo, identified by its TZID
* floating - it is naive, and should be interpreted in whatever zone
  the consumer is currently in
"""
from datetime import date
from datetime import datetime
from datetime import timezone
from datetime import tzinfo
from enum import Enum
from typing import Optional
from typing import Union

DateValue = Union[date, datetime]

UTC_IDS = frozenset(
    (
        "UTC",
        "Etc/UTC",
        "Etc/UCT",
        "Etc/Universal",
        "Etc/Zulu",
        "UCT",
        "Universal",
        "Zulu",
        "Z",
        "GMT",
        "Etc/GMT",
        "Etc/GMT0",
        "Etc/GMT+0",
        "Etc/GMT-0",
        "GMT0",
        "GMT+0",
        "GMT-0",
        "Greenwich",
        "Etc/Greenwich",
    )
)


class TimeKind(Enum):
    UTC = "utc"
    ZONED = "zoned"
    FLOATING = "floating"


def is_date(value) -> bool:
    """True for a DATE value (and False for DATE-TIME values or None)"""
    return isinstance(value, date) and not isinstance(value, datetime)


def is_datetime(value) -> bool:
    return isinstance(value, datetime)


def tzid_of_tzinfo(tz: Optional[tzinfo]) -> Optional[str]:
    if tz is None:
        return None
    if tz is timezone.utc:
        return "UTC"
    ## zoneinfo, pytz and timezones built by dateutil from a VTIMEZONE
    for attr in ("key", "zone", "_tzid"):
        tzid = getattr(tz, attr, None)
        if isinstance(tzid, str) and tzid:
            return tzid
    if type(tz).__name__ == "tzutc":
        return "UTC"
    return None


def tzid_of(value) -> Optional[str]:
    """
    The TZID of a date-time value, "UTC" for UTC values, None for dates
    and floating date-times.
    """
    if not is_datetime(value):
        return None
    return tzid_of_tzinfo(value.tzinfo)


def is_utc(value) -> bool:
    if not is_datetime(value) or value.tzinfo is None:
        return False
    tzid = tzid_of(value)
    if tzid is not None:
        return tzid in UTC_IDS
    return value.tzinfo == timezone.utc


def time_kind(value) -> Optional[TimeKind]:
    """TimeKind of a date-time value; None for a date"""
    if is_date(value):
        return None
    if not is_datetime(value):
        raise TypeError(f"Not a date value: {value!r}")
    if value.tzinfo is None:
        return TimeKind.FLOATING
    if is_utc(value):
        return TimeKind.UTC
    return TimeKind.ZONED


def to_instant(value: DateValue, default_zone: tzinfo = timezone.utc) -> datetime:
    """
    Returns an aware datetime which can be compared to any other
    instant.  Dates are taken as midnight UTC, floating date-times are
    interpreted in ``default_zone``.
    """
    if is_date(value):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=default_zone)
    return value


def calendar_day(value: DateValue) -> date:
    """The calendar day of a value as it is written, without any timezone conversion"""
    if is_datetime(value):
        return value.date()
    return value


def format_datetime(value: datetime) -> str:
    """``yyyymmddThhmmss``, followed by ``Z`` for UTC values"""
    ret = (
        f"{value.year:04}{value.month:02}{value.day:02}"
        f"T{value.hour:02}{value.minute:02}{value.second:02}"
    )
    if is_utc(value):
        ret += "Z"
    return ret


def property_dt(prop):
    """
    The value of a parsed date property, or None if the property
    couldn't be parsed (icalendar keeps those as broken text values).
    """
    try:
        return prop.dt
    except (AttributeError, ValueError):
        return None


def property_dts(prop) -> list:
    """The entries of a parsed RDATE/EXDATE property; empty if it is broken"""
    try:
        return list(prop.dts)
    except (AttributeError, ValueError):
        return []
