"""
Tolerant parsing of iCalendar durations.

Durations as found in the wild are often not valid according to RFC
5545: the "P" or the "T" are missing, units are given in any order,
weeks are mixed with other units and so on.  :func:`parse_duration`
accepts all of that.
"""
import re
from datetime import timedelta
from typing import Union

import icalendar
from dateutil.relativedelta import relativedelta

## sign, weeks, days, hours, minutes, seconds.  "T" may appear anywhere.
DURATION_REGEXP = re.compile(
    r"([+-]?)P?(?:T|(?P<weeks>\d+)W|(?P<days>\d+)D|(?P<hours>\d+)H|(?P<minutes>\d+)M|(?P<seconds>\d+)S)*",
    re.IGNORECASE,
)

DurationValue = Union[timedelta, relativedelta]


def parse_duration(text: str) -> DurationValue:
    """
    Parses a duration like "PT3600S", but also "3600S", "P1S2M3H" or
    "-P1W3D".

    A duration that consists of whole days only is returned as a
    ``relativedelta(days=...)``, so that it keeps being one calendar
    day over daylight saving time transitions.  Anything else is
    returned as a ``timedelta``.

    :raises ValueError: if the text can't be parsed at all
    """
    stripped = text.strip()
    match = DURATION_REGEXP.fullmatch(stripped) if stripped else None
    if match is None:
        ## not even the tolerant pattern fits, let the strict parser complain
        return icalendar.vDuration.from_ical(stripped)

    def _value(name):
        value = match.group(name)
        return int(value) if value else 0

    sign = -1 if match.group(1) == "-" else 1
    days = _value("weeks") * 7 + _value("days")
    hours = _value("hours")
    minutes = _value("minutes")
    seconds = _value("seconds")

    if days and not (hours or minutes or seconds):
        return relativedelta(days=sign * days)
    return timedelta(
        seconds=sign * (days * 86400 + hours * 3600 + minutes * 60 + seconds)
    )


def duration_to_timedelta(value: DurationValue) -> timedelta:
    """Flattens a calendar-day period into a timedelta"""
    if isinstance(value, relativedelta):
        return timedelta(
            days=value.days,
            hours=value.hours,
            minutes=value.minutes,
            seconds=value.seconds,
        )
    return value
