"""
The event data model, and conversion between iCalendar text and
:class:`Event` objects.

Reading is done by :func:`events_from_ical`, which preprocesses and
parses the text, groups recurrence exceptions with their main event
and repairs every event.  :meth:`Event.to_ical` does the reverse,
including minified VTIMEZONE components for all used timezones.
"""
import logging
import uuid
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Set
from typing import Tuple

import icalendar
from dateutil.relativedelta import relativedelta

from . import ical
from .duration import DurationValue
from .duration import duration_to_timedelta
from .duration import parse_duration
from .lib.dates import DateValue
from .lib.dates import is_date
from .lib.dates import is_datetime
from .lib.dates import is_utc
from .lib.dates import property_dt
from .lib.dates import property_dts
from .lib.dates import to_instant
from .lib.dates import tzid_of
from .lib.error import InvalidCalendarError
from .lib.error import MissingStartError
from .lib.python_utilities import to_normal_str
from .recurrence import RecurrenceDateList
from .timezones import TimezoneCatalog
from .validator import EventValidator
from .vtimezone import minify_vtimezone

log = logging.getLogger("icalcompat")

## properties which are generated when writing, and not kept when reading
IGNORED_PROPERTIES = ("PRODID", "DTSTAMP")


@dataclass
class Event:
    uid: Optional[str] = None
    sequence: Optional[int] = None
    recurrence_id: Optional[DateValue] = None

    summary: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

    dtstart: Optional[DateValue] = None
    dtend: Optional[DateValue] = None
    duration: Optional[DurationValue] = None

    rrules: List[icalendar.vRecur] = field(default_factory=list)
    exrules: List[icalendar.vRecur] = field(default_factory=list)
    rdates: List[RecurrenceDateList] = field(default_factory=list)
    exdates: List[RecurrenceDateList] = field(default_factory=list)

    exceptions: List["Event"] = field(default_factory=list)

    classification: Optional[str] = None
    status: Optional[str] = None
    opaque: bool = True

    organizer: Optional[icalendar.vCalAddress] = None
    attendees: List[icalendar.vCalAddress] = field(default_factory=list)

    alarms: List[icalendar.Alarm] = field(default_factory=list)

    last_modified: Optional[datetime] = None

    categories: List[str] = field(default_factory=list)
    ## (name, value) pairs, passed through unmodified
    unknown_properties: List[Tuple[str, Any]] = field(default_factory=list)

    ## CUAs which have edited the event since last sync
    user_agents: List[str] = field(default_factory=list)

    @property
    def organizer_email(self) -> Optional[str]:
        if self.organizer is None:
            return None
        address = str(self.organizer)
        if address.lower().startswith("mailto:"):
            return address[len("mailto:") :]
        email = self.organizer.params.get("EMAIL")
        return str(email) if email else None

    @classmethod
    def from_vevent(cls, vevent: icalendar.Event) -> "Event":
        """
        Fills an event from a parsed VEVENT.  The event is not
        repaired, see :class:`icalcompat.validator.EventValidator`.
        """
        event = cls(sequence=0)
        for name, value in vevent.items():
            values = value if isinstance(value, list) else [value]
            for value in values:
                event._set_property(name.upper(), value)
        event.alarms.extend(x for x in vevent.subcomponents if x.name == "VALARM")
        return event

    def _set_property(self, name: str, value) -> None:
        if name == "UID":
            self.uid = str(value)
        elif name == "RECURRENCE-ID":
            self.recurrence_id = _date_value(name, value)
        elif name == "SEQUENCE":
            try:
                self.sequence = int(value)
            except ValueError:
                log.warning(f"Ignoring invalid SEQUENCE {value}")
        elif name in ("SUMMARY", "LOCATION", "URL", "DESCRIPTION", "COLOR"):
            setattr(self, name.lower(), str(value))
        elif name == "CATEGORIES":
            self.categories.extend(str(x) for x in getattr(value, "cats", [value]))
        elif name == "DTSTART":
            ## kept even if broken, the validator rejects it
            dtstart = property_dt(value)
            self.dtstart = value if dtstart is None else dtstart
        elif name == "DTEND":
            self.dtend = _date_value(name, value)
        elif name == "DURATION":
            self.duration = _duration_value(value)
        elif name in ("RRULE", "EXRULE"):
            if isinstance(value, icalendar.vRecur):
                getattr(self, name.lower() + "s").append(value)
            else:
                log.warning(f"Ignoring invalid {name}:{value}")
        elif name in ("RDATE", "EXDATE"):
            dts = property_dts(value)
            if dts:
                tzid = value.params.get("TZID")
                getattr(self, name.lower() + "s").append(
                    RecurrenceDateList([x.dt for x in dts], tzid=str(tzid) if tzid else None)
                )
            else:
                log.warning(f"Ignoring invalid {name}:{value}")
        elif name == "CLASS":
            self.classification = str(value)
        elif name == "STATUS":
            self.status = str(value)
        elif name == "TRANSP":
            self.opaque = str(value).upper() == "OPAQUE"
        elif name == "ORGANIZER":
            self.organizer = value
        elif name == "ATTENDEE":
            self.attendees.append(value)
        elif name == "LAST-MODIFIED":
            self.last_modified = property_dt(value)
        elif name in IGNORED_PROPERTIES:
            pass
        else:
            self.unknown_properties.append((name, value))

    def to_ical(self, catalog: Optional[TimezoneCatalog] = None, base_prodid: str = ical.PRODID) -> str:
        """
        Generates an iCalendar with this event, its exceptions and the
        used timezones.  The event is repaired first.  UID and RECURRENCE-ID
        of the exceptions are adjusted in the output only.

        :raises MissingStartError: if the event has no start time
        """
        if self.dtstart is None:
            raise MissingStartError("Won't generate event without start time")
        if catalog is None:
            catalog = TimezoneCatalog()
        EventValidator(catalog).repair(self)
        dtstart = self.dtstart

        used_timezones: Set[str] = set()
        components = [self._to_vevent(used_timezones, self.uid, self.recurrence_id)]

        for exception in self.exceptions:
            recurrence_id = exception.recurrence_id
            if recurrence_id is None:
                log.warning("Ignoring exception without RECURRENCE-ID")
                continue

            ## RECURRENCE-ID must have the same value type as DTSTART (RFC 5545 3.8.4.4)
            if is_datetime(recurrence_id) != is_datetime(dtstart):
                log.warning(
                    f"Ignoring exception {recurrence_id} with other date type than DTSTART {dtstart}"
                )
                continue

            ## date-time exceptions are written in the time zone of DTSTART
            if is_datetime(recurrence_id) and tzid_of(recurrence_id) != tzid_of(dtstart):
                log.debug(f"Changing timezone of {recurrence_id} to the one of DTSTART {dtstart}")
                recurrence_id = _same_zone_as(recurrence_id, dtstart, catalog.default_zone)

            ## exceptions must always have the same UID as the main event
            components.append(exception._to_vevent(used_timezones, self.uid, recurrence_id))

        ## exceptions may start before the main event
        starts = [dtstart] + [
            x.dtstart for x in self.exceptions if isinstance(x.dtstart, date)
        ]
        earliest = min(to_instant(x, catalog.default_zone) for x in starts)

        calendar = icalendar.Calendar()
        calendar.add("prodid", ical.prodid(self.user_agents, base_prodid))
        calendar.add("version", "2.0")
        for tzid in sorted(used_timezones):
            definition = catalog.resolve(tzid)
            if definition is None:
                log.warning(f"No VTIMEZONE available for {tzid}")
                continue
            calendar.add_component(minify_vtimezone(definition, earliest))
        for component in components:
            calendar.add_component(component)
        return to_normal_str(calendar.to_ical())

    def _to_vevent(self, used_timezones: Set[str], uid: str, recurrence_id) -> icalendar.Event:
        vevent = icalendar.Event()
        vevent.add("uid", uid)
        vevent.add("dtstamp", datetime.now(timezone.utc))

        if recurrence_id is not None:
            _add_date(vevent, "recurrence-id", recurrence_id, used_timezones)
        if self.sequence:
            vevent.add("sequence", self.sequence)

        for name in ("summary", "location", "url", "description", "color"):
            value = getattr(self, name)
            if value is not None:
                vevent.add(name, value)

        if self.dtstart is not None:
            _add_date(vevent, "dtstart", self.dtstart, used_timezones)
        if self.dtend is not None:
            _add_date(vevent, "dtend", self.dtend, used_timezones)
        if self.duration is not None:
            vevent.add("duration", duration_to_timedelta(self.duration))

        for rule in self.rrules:
            vevent.add("rrule", rule)
        for date_list in self.rdates:
            _add_date_list(vevent, "rdate", date_list, used_timezones)
        for rule in self.exrules:
            vevent.add("exrule", rule)
        for date_list in self.exdates:
            _add_date_list(vevent, "exdate", date_list, used_timezones)

        if self.classification is not None:
            vevent.add("class", self.classification)
        if self.status is not None:
            vevent.add("status", self.status)
        if not self.opaque:
            vevent.add("transp", "TRANSPARENT")

        if self.organizer is not None:
            vevent.add("organizer", self.organizer)
        for attendee in self.attendees:
            vevent.add("attendee", attendee)

        if self.categories:
            vevent.add("categories", icalendar.vCategory(self.categories))
        for name, value in self.unknown_properties:
            vevent.add(name, value, encode=False)

        if self.last_modified is not None:
            vevent.add("last-modified", self.last_modified)

        for alarm in self.alarms:
            vevent.add_component(alarm)
        return vevent


def _date_value(name: str, value) -> Optional[DateValue]:
    ret = property_dt(value)
    if ret is None:
        log.warning(f"Ignoring invalid {name}:{value}")
    return ret


def _duration_value(value) -> Optional[DurationValue]:
    ret = property_dt(value)
    if isinstance(ret, timedelta):
        return ret
    ## not even icalendar could parse it, give the tolerant parser a try
    try:
        return parse_duration(str(value))
    except ValueError:
        log.warning(f"Ignoring invalid DURATION:{value}", exc_info=True)
        return None


def _same_zone_as(value: datetime, reference: datetime, default_zone) -> datetime:
    instant = to_instant(value, default_zone)
    if reference.tzinfo is None:
        return instant.astimezone(default_zone).replace(tzinfo=None)
    return instant.astimezone(reference.tzinfo)


def _remember_timezone(value, used_timezones: Set[str]) -> None:
    tzid = tzid_of(value)
    if tzid is not None and not is_utc(value):
        used_timezones.add(tzid)


def _add_date(vevent, name: str, value: DateValue, used_timezones: Set[str]) -> None:
    vevent.add(name, value)
    _remember_timezone(value, used_timezones)


def _add_date_list(vevent, name: str, date_list, used_timezones: Set[str]) -> None:
    ## one property per run of values of the same type and timezone
    groups: List[list] = []
    last_key = None
    for value in date_list:
        if isinstance(value, tuple):
            key = ("PERIOD", tzid_of(value[0]))
        elif is_date(value):
            key = ("DATE", None)
        else:
            key = ("DATE-TIME", tzid_of(value))
        if not groups or key != last_key:
            groups.append([])
            last_key = key
        groups[-1].append(value)
        _remember_timezone(value[0] if isinstance(value, tuple) else value, used_timezones)

    for values in groups:
        prop = icalendar.vDDDLists(values)
        first = values[0]
        if isinstance(first, tuple):
            prop.params["VALUE"] = "PERIOD"
        elif is_date(first):
            prop.params["VALUE"] = "DATE"
        vevent.add(name, prop)


def _sequence(vevent) -> int:
    try:
        return int(vevent.get("SEQUENCE", 0))
    except ValueError:
        return 0


def _recurrence_key(recurrence_id):
    value = property_dt(recurrence_id)
    if isinstance(value, date):
        return to_instant(value)
    return str(recurrence_id)


def _event_or_none(vevent, validator: EventValidator) -> Optional[Event]:
    event = Event.from_vevent(vevent)
    try:
        validator.repair(event)
    except InvalidCalendarError as e:
        log.warning(f"Skipping invalid event {event.uid}: {e}")
        return None
    return event


def events_from_ical(
    data,
    catalog: Optional[TimezoneCatalog] = None,
    properties: Optional[Dict[str, str]] = None,
) -> List[Event]:
    """
    Parses an iCalendar resource, applies the preprocessors to
    increase compatibility and extracts the VEVENTs.

    Exceptions (VEVENTs with RECURRENCE-ID) are assigned to their main
    event.  If there are multiple versions of the same event, the one
    with the highest SEQUENCE (the last one for equal SEQUENCEs) is
    used.  Invalid events are logged and skipped.

    :param data: str, bytes or a file-like object
    :param catalog: resolves timezones, a catalog of the host timezones
      is created if none is given
    :param properties: known calendar properties (like
      :data:`icalcompat.ical.CALENDAR_NAME`) will be put into this dict
    :return: list of events (may be empty)
    :raises InvalidCalendarError: if the data can't be parsed at all
    """
    if catalog is None:
        catalog = TimezoneCatalog()
    calendar = ical.from_ical(data, catalog, properties)
    validator = EventValidator(catalog)

    main_events: Dict[str, icalendar.Event] = {}
    exceptions: Dict[str, Dict[Any, icalendar.Event]] = {}
    for vevent in calendar.walk("VEVENT"):
        ## make sure every event has an UID
        if not vevent.get("UID"):
            uid = str(uuid.uuid4())
            log.warning(f"Found VEVENT without UID, using a random one: {uid}")
            vevent.add("uid", uid)
        uid = str(vevent["UID"])
        sequence = _sequence(vevent)

        recurrence_id = vevent.get("RECURRENCE-ID")
        if recurrence_id is None:
            existing = main_events.get(uid)
            if existing is None or sequence >= _sequence(existing):
                main_events[uid] = vevent
        else:
            uid_exceptions = exceptions.setdefault(uid, {})
            key = _recurrence_key(recurrence_id)
            existing = uid_exceptions.get(key)
            if existing is None or sequence >= _sequence(existing):
                uid_exceptions[key] = vevent

    log.debug("Assigning exceptions to main events")
    events = []
    for uid, vevent in main_events.items():
        event = Event.from_vevent(vevent)
        for vexception in exceptions.pop(uid, {}).values():
            exception = _event_or_none(vexception, validator)
            if exception is None:
                continue
            ## make sure that exceptions have at least a SUMMARY
            if exception.summary is None:
                exception.summary = event.summary
            event.exceptions.append(exception)
        try:
            validator.repair(event)
        except InvalidCalendarError as e:
            log.warning(f"Skipping invalid event {uid}: {e}")
            continue
        events.append(event)

    ## There may be UIDs which have only RECURRENCE-ID entries, for instance
    ## when the user has been invited to a single occurrence only.
    for uid, only_exceptions in exceptions.items():
        log.info(f"UID {uid} doesn't have a main event but only exceptions")
        vexceptions = list(only_exceptions.values())
        fake_event = _event_or_none(vexceptions[0], validator)
        if fake_event is None:
            continue
        for vexception in vexceptions:
            exception = _event_or_none(vexception, validator)
            if exception is not None:
                fake_event.exceptions.append(exception)
        events.append(fake_event)

    return events


def alarm_to_minutes(
    alarm: icalendar.Alarm, event: Event, allow_rel_end: bool
) -> Optional[Tuple[str, int]]:
    """
    Calculates the minutes before an event a given alarm occurs.

    Alarm granularity of calendar stores is minutes, so seconds are cut
    off.

    :param allow_rel_end: True if the caller accepts minutes related to
      the end; False if only minutes related to the start are accepted
    :return: ``(related, minutes)`` where related is "START" or "END"
      (always "START" if ``allow_rel_end`` is False) and minutes is the
      number of minutes before start/end (negative: after).  None if
      there's not enough information.
    """
    trigger = alarm.get("TRIGGER")
    if trigger is None:
        return None
    related = str(trigger.params.get("RELATED", "START")).upper()

    start = event.dtstart if isinstance(event.dtstart, date) else None
    end = event.dtend
    if end is None and start is not None and event.duration is not None:
        end = to_instant(start) + event.duration

    duration = None
    if start is not None and end is not None:
        duration = to_instant(end) - to_instant(start)

    trigger_value = property_dt(trigger)
    if trigger_value is None:
        try:
            trigger_value = parse_duration(str(trigger))
        except ValueError:
            trigger_value = None

    if isinstance(trigger_value, (timedelta, relativedelta)):
        ## negative TRIGGER values mean minutes before the event
        seconds_before = -duration_to_timedelta(trigger_value).total_seconds()
        if related == "END" and not allow_rel_end:
            if duration is None:
                log.warning("Event without duration; can't calculate END-related alarm")
                return None
            ## move alarm towards end
            related = "START"
            seconds_before -= duration.total_seconds()
        minutes = int(seconds_before / 60)

    elif isinstance(trigger_value, date) and start is not None:
        ## TRIGGER value is a DATE-TIME, calculate minutes from start time
        related = "START"
        minutes = int((to_instant(start) - to_instant(trigger_value)).total_seconds() / 60)

    else:
        log.warning("VALARM TRIGGER type is not DURATION or DATE-TIME, ignoring alarm")
        return None

    return related, minutes
