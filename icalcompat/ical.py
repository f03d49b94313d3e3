"""
Reading iCalendar resources: text preprocessing, parsing and
property-level repair, plus some helpers shared by all component
types.
"""
import logging
from typing import Dict
from typing import List
from typing import Optional

import icalendar

from .lib.error import InvalidCalendarError
from .lib.python_utilities import to_normal_str
from .preprocessor import ICalPreprocessor
from .timezones import TimezoneCatalog

log = logging.getLogger("icalcompat")

## known iCalendar properties
CALENDAR_NAME = "X-WR-CALNAME"
CALENDAR_COLOR = "X-APPLE-CALENDAR-COLOR"
COLOR = "COLOR"

## Default PRODID used when generating iCalendars
PRODID = "-//python-icalcompat//icalcompat//EN"


def prodid(user_agents: Optional[List[str]] = None, base: str = PRODID) -> str:
    """
    The PRODID to use, with the user agents which have edited the
    resource appended.
    """
    if not user_agents:
        return base
    return f"{base} ({','.join(user_agents)})"


def from_ical(
    data, catalog: TimezoneCatalog, properties: Optional[Dict[str, str]] = None
) -> icalendar.Calendar:
    """
    Parses an iCalendar resource and applies the preprocessors to
    increase compatibility.

    :param data: str, bytes or a file-like object
    :param catalog: resolves the timezones
    :param properties: known calendar properties (like
      :data:`CALENDAR_NAME`) will be put into this dict
    :raises InvalidCalendarError: if the data can't be parsed
    """
    log.debug("Parsing iCalendar stream")
    preprocessor = ICalPreprocessor(catalog)

    ## work around some problems that can't be fixed after parsing
    preprocessed = preprocessor.preprocess_stream(data)
    if not isinstance(preprocessed, str):
        preprocessed = to_normal_str(preprocessed.read())

    try:
        calendar = icalendar.Calendar.from_ical(preprocessed)
    except (ValueError, IndexError) as e:
        raise InvalidCalendarError(f"Couldn't parse iCalendar: {e}") from e
    if calendar.name != "VCALENDAR":
        raise InvalidCalendarError(f"Expected VCALENDAR, got {calendar.name}")

    try:
        preprocessor.preprocess_calendar(calendar)
    except Exception:
        log.warning("Couldn't pre-process iCalendar", exc_info=True)

    if properties is not None:
        for name in (CALENDAR_NAME, COLOR, CALENDAR_COLOR):
            value = calendar.get(name)
            if value is not None:
                properties[name] = str(value)

    return calendar
