"""
Conversion of recurrence sets (RDATE/EXDATE) and recurrence rules
(RRULE/EXRULE) between iCalendar properties and the flat strings
calendar and task stores keep them in.

The calendar store format of a recurrence set is::

    [TZID;]yyyymmddThhmmss[Z],yyyymmddThhmmss[Z],...

A missing TZID means UTC.  All-day values are stored as
``yyyymmddT000000Z``.
"""
import logging
import re
from datetime import date
from datetime import datetime
from datetime import timezone
from datetime import tzinfo
from typing import Iterable
from typing import List
from typing import Optional

import icalendar

from .lib.dates import DateValue
from .lib.dates import TimeKind
from .lib.dates import calendar_day
from .lib.dates import format_datetime
from .lib.dates import is_date
from .lib.dates import time_kind
from .lib.dates import to_instant
from .lib.dates import tzid_of
from .lib.dates import tzid_of_tzinfo
from .lib.python_utilities import to_normal_str
from .timezones import TimezoneCatalog

log = logging.getLogger("icalcompat")

TZID_SEPARATOR = ";"
VALUE_SEPARATOR = ","

## Used to separate multiple RRULEs/EXRULEs in one storage field
RECURRENCE_RULE_SEPARATOR = "\n"

TOKEN_REGEXP = re.compile(r"(\d{4})(\d\d)(\d\d)(?:T(\d\d)(\d\d)(\d\d)(Z)?)?", re.IGNORECASE)


class RecurrenceDateList(list):
    """
    A list of RDATE/EXDATE values, tagged with the timezone id the
    values are given in (None for UTC or dates).
    """

    def __init__(self, values: Iterable = (), tzid: Optional[str] = None) -> None:
        super().__init__(values)
        self.tzid = tzid

    def __repr__(self) -> str:
        return f"RecurrenceDateList({list.__repr__(self)}, tzid={self.tzid!r})"


def date_list_values(date_list) -> list:
    """
    The values of a RDATE/EXDATE list, which may be an icalendar
    ``vDDDLists`` property or any iterable of date values.
    """
    if hasattr(date_list, "dts"):
        return [x.dt for x in date_list.dts]
    return list(date_list)


def _is_period(value) -> bool:
    return isinstance(value, tuple)


def _representative_zone(lists: List[list]) -> Optional[tzinfo]:
    ## The timezone of the first value is used for all values.  This
    ## is lossy, but the storage format can only hold one timezone.
    for date_list in lists:
        for value in date_list:
            if _is_period(value):
                continue
            if time_kind(value) != TimeKind.ZONED:
                return None
            if tzid_of(value) is None:
                log.warning(f"Can't find TZID of {value!r}, using UTC")
                return None
            return value.tzinfo
    return None


def recurrence_sets_to_storage_string(
    lists, all_day: bool, default_zone: tzinfo = timezone.utc
) -> str:
    """
    Concatenates one or more RDATE or EXDATE lists into the format of
    the calendar store, ``[TZID;]date1,date2,date3``.

    The timezone of the first value is used for the whole result, all
    other values are converted to it.  For all-day events, only the
    calendar days are kept (as ``yyyymmddT000000Z``).  PERIOD values are
    not supported and ignored.

    :param lists: RDATE/EXDATE lists (``vDDDLists`` or lists of dates)
    :param all_day: whether the event is an all-day event
    :param default_zone: timezone to interpret floating times in
    """
    lists = [date_list_values(x) for x in lists]
    zone = None if all_day else _representative_zone(lists)
    tokens = []
    for date_list in lists:
        for value in date_list:
            if _is_period(value):
                log.warning("RDATE PERIOD not supported, ignoring")
                continue
            if all_day:
                day = calendar_day(value)
                tokens.append(f"{day.year:04}{day.month:02}{day.day:02}T000000Z")
                continue
            if is_date(value):
                value = datetime(
                    value.year, value.month, value.day, tzinfo=zone or timezone.utc
                )
            else:
                value = to_instant(value, default_zone).astimezone(zone or timezone.utc)
            tokens.append(format_datetime(value))
    if not tokens:
        return ""
    ret = VALUE_SEPARATOR.join(tokens)
    if zone is not None:
        ret = tzid_of_tzinfo(zone) + TZID_SEPARATOR + ret
    return ret


def _parse_token(token: str, all_day: bool, zone: tzinfo) -> DateValue:
    match = TOKEN_REGEXP.fullmatch(token)
    if match is None:
        raise ValueError(f"Invalid date in recurrence set: {token}")
    year, month, day, hour, minute, second, utc = match.groups()
    if all_day:
        return date(int(year), int(month), int(day))
    value = datetime(
        int(year), int(month), int(day), int(hour or 0), int(minute or 0), int(second or 0)
    )
    if utc:
        return value.replace(tzinfo=timezone.utc).astimezone(zone)
    return value.replace(tzinfo=zone)


def storage_string_to_recurrence_set(
    text: str,
    all_day: bool,
    exclude: Optional[DateValue] = None,
    catalog: Optional[TimezoneCatalog] = None,
) -> RecurrenceDateList:
    """
    Takes a recurrence set as stored by the calendar store (``[TZID;]
    date1,date2,...``) and returns the list of values.

    :param all_day: True gives dates, False gives date-times in the
      timezone of the set (or UTC)
    :param exclude: this value won't be in the result (the store adds
      the start time to the set sometimes)
    :param catalog: used to resolve the TZID.  A catalog of the host
      timezones is created if none is given.
    :raises ValueError: if a value can't be parsed
    """
    text = to_normal_str(text).strip()
    tzid, separator, values = text.partition(TZID_SEPARATOR)
    if not separator:
        tzid, values = None, tzid

    zone = timezone.utc
    if tzid:
        if catalog is None:
            catalog = TimezoneCatalog()
        tzid = catalog.find_platform_id(tzid)
        zone = catalog.zone(tzid)
        if zone is timezone.utc:
            tzid = None

    if exclude is not None:
        exclude = to_instant(exclude)

    ret = RecurrenceDateList(tzid=None if all_day else tzid)
    for token in values.split(VALUE_SEPARATOR):
        token = token.strip()
        if not token:
            continue
        value = _parse_token(token, all_day, zone)
        if exclude is not None and to_instant(value) == exclude:
            continue
        ret.append(value)
    return ret


def recurrence_sets_to_opentasks_string(lists, tz: Optional[tzinfo]) -> str:
    """
    Concatenates one or more RDATE or EXDATE lists into the format of
    the OpenTasks store: RFC 5545 DATE (``yyyymmdd``) or DATE-TIME
    (``yyyymmddThhmmss[Z]``) values, separated by commas.  The timezone
    is kept in a separate field.

    :param tz: timezone of the task, None for all-day tasks
    """
    all_day = tz is None
    tokens = []
    for date_list in lists:
        for value in date_list_values(date_list):
            if _is_period(value):
                log.warning("RDATE/EXDATE PERIOD not supported, ignoring")
                continue
            if all_day:
                day = calendar_day(value)
                tokens.append(f"{day.year:04}{day.month:02}{day.day:02}")
                continue
            if is_date(value):
                value = datetime(value.year, value.month, value.day, tzinfo=tz)
            elif value.tzinfo is None:
                value = value.replace(tzinfo=tz)
            else:
                value = value.astimezone(tz)
            tokens.append(format_datetime(value))
    return VALUE_SEPARATOR.join(tokens)


def recurrence_rules_to_storage_string(rules) -> str:
    """Multiple RRULE/EXRULE values in one storage field"""
    return RECURRENCE_RULE_SEPARATOR.join(
        to_normal_str(icalendar.vRecur(rule).to_ical()) for rule in rules
    )


def storage_string_to_recurrence_rules(text: Optional[str]) -> List[icalendar.vRecur]:
    if not text:
        return []
    return [
        icalendar.vRecur.from_ical(line.strip())
        for line in to_normal_str(text).split(RECURRENCE_RULE_SEPARATOR)
        if line.strip()
    ]


def storage_tzid(value: DateValue, catalog: TimezoneCatalog) -> str:
    """
    The timezone id to store together with a start or end value:

    - UTC for dates and UTC date-times,
    - the timezone id for date-times with timezone, and
    - the host default timezone for floating date-times.

    Whether the platform knows the timezone id is not checked.
    """
    kind = time_kind(value)
    if kind is None or kind == TimeKind.UTC:
        return "UTC"
    if kind == TimeKind.FLOATING:
        return catalog.default_tzid
    return tzid_of(value)
