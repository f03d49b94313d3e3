"""
VTIMEZONE helpers: onset calculation for observances, offset lookup
and minification of timezone definitions.

A full VTIMEZONE carries the whole transition history of a zone.  For
interpreting timestamps from a given instant onwards only the current
STANDARD observance, the current DAYLIGHT observance (if daylight
saving time is still in use) and observances with onsets in the future
are needed, see :func:`minify_vtimezone`.
"""
import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Iterator
from typing import List
from typing import Optional

import icalendar
from dateutil.rrule import rrulestr

from .lib.dates import is_date
from .lib.error import InvalidTimezoneError
from .lib.error import assert_
from .lib.error import weirdness
from .lib.python_utilities import to_normal_str

log = logging.getLogger("icalcompat")

OBSERVANCES = ("STANDARD", "DAYLIGHT")

## informational properties which are not needed to interpret a zone
STRIPPED_PROPERTIES = ("TZURL",)


def _property_list(component, name) -> list:
    value = component.get(name)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _offset(observance, name) -> timedelta:
    return observance[name].td


def _naive_local(value, offset: timedelta) -> datetime:
    """Onsets are given as local time (in the offset before the onset)"""
    if is_date(value):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        return (value.astimezone(timezone.utc) + offset).replace(tzinfo=None)
    return value


def _to_utc(local: datetime, offset: timedelta) -> datetime:
    return (local - offset).replace(tzinfo=timezone.utc)


def _aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def _dtstart(observance) -> datetime:
    return _naive_local(observance["DTSTART"].dt, _offset(observance, "TZOFFSETFROM"))


def _rrules(observance) -> Iterator:
    offset_from = _offset(observance, "TZOFFSETFROM")
    dtstart = _dtstart(observance)
    for recur in _property_list(observance, "RRULE"):
        recur = icalendar.vRecur(recur)
        until = recur.get("UNTIL")
        if until:
            ## dateutil refuses to mix a naive DTSTART with an UTC UNTIL
            if isinstance(until, list):
                until = until[0]
            if is_date(until):
                until = datetime(until.year, until.month, until.day, 23, 59, 59)
            recur["UNTIL"] = [_naive_local(until, offset_from)]
        rule = to_normal_str(recur.to_ical())
        try:
            yield rrulestr(rule, dtstart=dtstart)
        except ValueError:
            log.warning(f"Ignoring unparseable observance RRULE {rule}", exc_info=True)


def _rdates(observance) -> List[datetime]:
    offset_from = _offset(observance, "TZOFFSETFROM")
    ret = []
    for rdate in _property_list(observance, "RDATE"):
        for value in rdate.dts:
            value = value.dt
            if isinstance(value, tuple):
                value = value[0]
            ret.append(_naive_local(value, offset_from))
    return ret


def latest_onset(observance, reference: datetime) -> Optional[datetime]:
    """
    The latest onset (as an UTC datetime) of an observance at or before
    ``reference``, or None if the observance begins after ``reference``.
    """
    offset_from = _offset(observance, "TZOFFSETFROM")
    local_reference = _naive_local(_aware(reference), offset_from)
    latest = _dtstart(observance)
    if latest > local_reference:
        return None
    for rule in _rrules(observance):
        onset = rule.before(local_reference, inc=True)
        if onset is not None and onset > latest:
            latest = onset
    for onset in _rdates(observance):
        if latest < onset <= local_reference:
            latest = onset
    return _to_utc(latest, offset_from)


def next_onset(observance, reference: datetime) -> Optional[datetime]:
    """The first onset (as an UTC datetime) of an observance after ``reference``"""
    offset_from = _offset(observance, "TZOFFSETFROM")
    local_reference = _naive_local(_aware(reference), offset_from)
    candidates = [_dtstart(observance)]
    for rule in _rrules(observance):
        candidates.append(rule.after(local_reference))
    candidates.extend(_rdates(observance))
    candidates = [x for x in candidates if x is not None and x > local_reference]
    if not candidates:
        return None
    return _to_utc(min(candidates), offset_from)


def offset_at(definition: icalendar.Timezone, instant: datetime) -> timedelta:
    """
    The UTC offset a timezone definition gives for ``instant``: the
    TZOFFSETTO of the observance with the latest onset at or before
    ``instant``.  For instants before the first onset, the TZOFFSETFROM
    of the earliest observance is used.
    """
    observances = [x for x in definition.subcomponents if x.name in OBSERVANCES]
    if not observances:
        raise InvalidTimezoneError("VTIMEZONE without observances")
    best = None
    for observance in observances:
        onset = latest_onset(observance, instant)
        if onset is not None and (best is None or onset > best[0]):
            best = (onset, observance)
    if best is not None:
        return _offset(best[1], "TZOFFSETTO")
    earliest = min(observances, key=lambda x: _to_utc(_dtstart(x), _offset(x, "TZOFFSETFROM")))
    return _offset(earliest, "TZOFFSETFROM")


def validate_vtimezone(definition) -> None:
    """
    Checks the structural rules every VTIMEZONE has to follow.

    :raises InvalidTimezoneError: if the definition is invalid
    """
    if definition.name != "VTIMEZONE":
        raise InvalidTimezoneError(f"{definition.name} is not a VTIMEZONE")
    if not definition.get("TZID"):
        raise InvalidTimezoneError("VTIMEZONE without TZID")
    observances = [x for x in definition.subcomponents if x.name in OBSERVANCES]
    if not observances:
        raise InvalidTimezoneError("VTIMEZONE without STANDARD or DAYLIGHT observance")
    for observance in observances:
        for required in ("DTSTART", "TZOFFSETFROM", "TZOFFSETTO"):
            if observance.get(required) is None:
                raise InvalidTimezoneError(
                    f"{observance.name} observance without {required}"
                )


def _daylight_in_use(daylight, daylight_onset, standard_onset, reference) -> bool:
    ## reference is currently in DST
    if standard_onset is None or daylight_onset > standard_onset:
        return True
    ## there will be a DST onset in the future
    reference_local = _naive_local(reference, _offset(daylight, "TZOFFSETFROM"))
    for rule in _rrules(daylight):
        if rule.after(reference_local) is not None:
            return True
    return any(x >= reference_local for x in _rdates(daylight))


def _trimmed(observance, latest: Optional[datetime]):
    """
    A copy of an observance without the RDATEs before ``latest``, its
    latest onset at the reference.  An observance without RRULE is
    moved to start at ``latest``.  ``observance`` is not modified.
    """
    rdates = _property_list(observance, "RDATE")
    if latest is None or not rdates:
        return observance
    offset_from = _offset(observance, "TZOFFSETFROM")
    local_latest = _naive_local(latest, offset_from)
    movable = not _property_list(observance, "RRULE")

    kept = []
    for rdate in rdates:
        for item in rdate.dts:
            value = item.dt
            onset = _naive_local(value[0] if isinstance(value, tuple) else value, offset_from)
            if onset > local_latest or (onset == local_latest and not movable):
                kept.append(item)

    ret = type(observance)()
    for key, value in observance.items():
        if key == "RDATE":
            continue
        if key == "DTSTART" and movable:
            ret.add("DTSTART", local_latest)
        else:
            ret[key] = value
    if kept:
        ret.add("RDATE", icalendar.vDDDLists(kept), encode=False)
    return ret


def minify_vtimezone(
    definition: icalendar.Timezone, reference: Optional[datetime]
) -> icalendar.Timezone:
    """
    Minifies a VTIMEZONE so that only these observances are kept:

    - the last STANDARD observance matching ``reference``,
    - the last DAYLIGHT observance matching ``reference``, if daylight
      saving time is still in use (``reference`` is in DST, or there is
      a DST onset after ``reference``), and
    - observances with onsets after ``reference``.

    RDATEs before the latest onset of a kept observance are dropped.
    If ``reference`` is None, all observances are kept as they are.
    TZURL and X- properties are removed in any case.

    The given definition is not modified; a new component is returned
    (observances are shared with ``definition`` unless they had to be
    trimmed).  If the minified definition turns out to be invalid,
    ``definition`` is returned.
    """
    observances = [x for x in definition.subcomponents if x.name in OBSERVANCES]
    keep = set()
    onsets = {}

    if reference is not None:
        reference = _aware(reference)
        latest_standard = None
        latest_daylight = None
        for observance in observances:
            latest = latest_onset(observance, reference)
            if latest is None:
                ## observance begins after reference, keep in any case
                keep.add(id(observance))
                continue
            onsets[id(observance)] = latest
            if next_onset(observance, reference) is not None:
                ## still describes the future
                keep.add(id(observance))
            if observance.name == "STANDARD":
                if latest_standard is None or latest > latest_standard[0]:
                    latest_standard = (latest, observance)
            elif latest_daylight is None or latest > latest_daylight[0]:
                latest_daylight = (latest, observance)

        if latest_standard is not None:
            keep.add(id(latest_standard[1]))

        if latest_daylight is not None:
            if _daylight_in_use(
                latest_daylight[1],
                latest_daylight[0],
                latest_standard[0] if latest_standard else None,
                reference,
            ):
                keep.add(id(latest_daylight[1]))
            else:
                log.debug(
                    f"Dropping DAYLIGHT observance of {definition.get('TZID')}, DST not in use anymore"
                )
    else:
        keep.update(id(x) for x in observances)
    assert_(keep or not observances)

    minified = icalendar.Timezone()
    for key, value in definition.items():
        if key in STRIPPED_PROPERTIES or key.startswith("X-"):
            continue
        minified[key] = value
    minified.subcomponents = [
        _trimmed(x, onsets.get(id(x))) if x.name in OBSERVANCES else x
        for x in definition.subcomponents
        if x.name not in OBSERVANCES or id(x) in keep
    ]

    try:
        validate_vtimezone(minified)
    except InvalidTimezoneError as e:
        weirdness("minified timezone is invalid, using original one", e)
        return definition
    return minified


def timezone_def_to_tzid(timezone_def) -> Optional[str]:
    """
    Takes a string with a timezone definition (VCALENDAR with VTIMEZONE
    component) and returns the TZID, or None if there is no VTIMEZONE
    with a TZID.
    """
    try:
        calendar = icalendar.Calendar.from_ical(to_normal_str(timezone_def))
    except ValueError:
        log.error("Can't understand time zone definition", exc_info=True)
        return None
    for vtimezone in calendar.walk("VTIMEZONE"):
        tzid = vtimezone.get("TZID")
        if tzid:
            return str(tzid)
    return None
