"""
Validates events and tries to repair broken events, since sometimes
stores or servers respond with invalid event definitions.  The
validator tries to make assumptions as to whatever seems to have been
the original intention.

The validator is applied

- once to every event after completely reading an iCalendar, and
- to every event when writing an iCalendar.
"""
import logging
from datetime import date
from datetime import datetime
from datetime import timezone
from typing import List
from typing import Optional

import icalendar

from .lib.dates import DateValue
from .lib.dates import TimeKind
from .lib.dates import is_date
from .lib.dates import is_datetime
from .lib.dates import time_kind
from .lib.dates import to_instant
from .lib.error import InvalidStartError
from .lib.error import MissingStartError
from .lib.python_utilities import to_normal_str
from .timezones import TimezoneCatalog

log = logging.getLogger("icalcompat")


def _until(rule: icalendar.vRecur) -> Optional[DateValue]:
    until = rule.get("UNTIL")
    if isinstance(until, list):
        until = until[0] if until else None
    return until


def _rule_str(rule: icalendar.vRecur) -> str:
    return to_normal_str(rule.to_ical())


class EventValidator:
    """
    Searches for some invalid conditions in an event and fixes them.
    All passes are idempotent.

    :param catalog: gives the timezone floating times are interpreted in
    """

    def __init__(self, catalog: Optional[TimezoneCatalog] = None) -> None:
        if catalog is None:
            catalog = TimezoneCatalog()
        self.catalog = catalog

    def repair(self, event) -> None:
        """
        Repairs an event (including its exceptions) in place.

        :raises MissingStartError: if the event has no start time
        :raises InvalidStartError: if the start is neither a date nor a date-time
        """
        dtstart = self.correct_start_and_end_time(event)
        self.same_type_for_dtstart_and_rrule_until(dtstart, event.rrules)
        self.remove_rrules_with_until_before_dtstart(dtstart, event.rrules)
        self.remove_rrules_of_exceptions(event.exceptions)

    def _instant(self, value: DateValue) -> datetime:
        return to_instant(value, self.catalog.default_zone)

    def correct_start_and_end_time(self, event) -> DateValue:
        """
        Makes sure that the event has a start time and that it's not
        after the end time.  If it is, the end time is removed.
        """
        dtstart = event.dtstart
        if dtstart is None:
            raise MissingStartError()
        if not isinstance(dtstart, date):
            raise InvalidStartError()
        dtend = event.dtend
        if dtend is not None and self._instant(dtstart) > self._instant(dtend):
            log.warning("DTSTART after DTEND; removing DTEND")
            event.dtend = None
        return dtstart

    def same_type_for_dtstart_and_rrule_until(
        self, dtstart: DateValue, rrules: List[icalendar.vRecur]
    ) -> None:
        """
        Tries to make the value type of UNTIL and DTSTART the same (both
        DATE or DATE-TIME).  Rules are replaced in place.
        """
        if is_date(dtstart):
            for i, rule in enumerate(rrules):
                until = _until(rule)
                if not is_datetime(until):
                    continue
                log.warning(
                    "DTSTART has DATE, but UNTIL has DATETIME; making UNTIL have DATE only"
                )
                ## the calendar day as written, no timezone conversion
                rrules[i] = self._with_until(rule, until.date())

        elif is_datetime(dtstart):
            for i, rule in enumerate(rrules):
                until = _until(rule)
                if not is_date(until):
                    continue
                log.warning(
                    "DTSTART has DATETIME, but UNTIL has DATE; copying time from DTSTART to UNTIL"
                )
                kind = time_kind(dtstart)
                if kind == TimeKind.FLOATING:
                    zone = self.catalog.default_zone
                elif kind == TimeKind.UTC:
                    zone = timezone.utc
                else:
                    zone = dtstart.tzinfo
                new_until = datetime.combine(until, dtstart.time(), tzinfo=zone)
                ## UNTIL has to be in UTC when DTSTART has a date-time
                rrules[i] = self._with_until(rule, new_until.astimezone(timezone.utc))

        else:
            raise InvalidStartError()

    @staticmethod
    def _with_until(rule: icalendar.vRecur, until: DateValue) -> icalendar.vRecur:
        new_rule = icalendar.vRecur(rule)
        new_rule["UNTIL"] = [until]
        log.info(f"New RRULE:{_rule_str(new_rule)} (was RRULE:{_rule_str(rule)})")
        return new_rule

    def remove_rrules_with_until_before_dtstart(
        self, dtstart: DateValue, rrules: List[icalendar.vRecur]
    ) -> None:
        """Removes the RRULEs where UNTIL lies before DTSTART"""
        for rule in list(rrules):
            if self.has_until_before_dtstart(dtstart, rule):
                log.warning(f"Removing RRULE:{_rule_str(rule)}, UNTIL lies before DTSTART")
                rrules.remove(rule)

    def has_until_before_dtstart(self, dtstart: DateValue, rule: icalendar.vRecur) -> bool:
        until = _until(rule)
        if until is None:
            return False
        return self._instant(until) < self._instant(dtstart)

    @staticmethod
    def remove_rrules_of_exceptions(exceptions) -> None:
        """
        Removes the RRULEs of exceptions of (potentially recurring) events.
        This needs to be applied after all exceptions have been found.
        """
        for exception in exceptions:
            exception.rrules.clear()
