"""
Repairs iCalendar data before and after it has been parsed.

Text-level fixes are done by the stream preprocessors in
:mod:`icalcompat.lib.vcal`.  After parsing, :meth:`ICalPreprocessor.preprocess_calendar`
rewrites date properties so that

- date-times with a timezone use a timezone id known to the platform, and
- properties which must be in UTC are in UTC.
"""
import enum
import logging
from datetime import datetime
from datetime import timezone
from typing import Optional
from typing import Sequence

import icalendar

from .lib import vcal
from .lib.dates import is_datetime
from .lib.dates import is_utc
from .lib.dates import property_dt
from .lib.dates import property_dts
from .lib.dates import tzid_of
from .timezones import TimezoneCatalog

log = logging.getLogger("icalcompat")


class PropertyKind(enum.Enum):
    DATE = "date"
    DATE_LIST = "date-list"
    UTC_DATE = "utc-date"
    OTHER = "other"

    @classmethod
    def of(cls, name: str) -> "PropertyKind":
        return PROPERTY_KINDS.get(name.upper(), cls.OTHER)


PROPERTY_KINDS = {
    "DTSTART": PropertyKind.DATE,
    "DTEND": PropertyKind.DATE,
    "DUE": PropertyKind.DATE,
    "RECURRENCE-ID": PropertyKind.DATE,
    "RDATE": PropertyKind.DATE_LIST,
    "EXDATE": PropertyKind.DATE_LIST,
    "CREATED": PropertyKind.UTC_DATE,
    "DTSTAMP": PropertyKind.UTC_DATE,
    "LAST-MODIFIED": PropertyKind.UTC_DATE,
    "COMPLETED": PropertyKind.UTC_DATE,
}


class ICalPreprocessor:
    """
    Applies all known repairs to iCalendar data.

    :param catalog: resolves timezone ids
    :param stream_preprocessors: text-level rules, defaults to
      :data:`icalcompat.lib.vcal.PREPROCESSORS`
    """

    def __init__(
        self,
        catalog: TimezoneCatalog,
        stream_preprocessors: Optional[Sequence[vcal.StreamPreprocessor]] = None,
    ) -> None:
        self.catalog = catalog
        if stream_preprocessors is None:
            stream_preprocessors = vcal.PREPROCESSORS
        self.stream_preprocessors = stream_preprocessors

    def preprocess_stream(self, stream):
        """Runs the text-level rules, see :func:`icalcompat.lib.vcal.preprocess`"""
        return vcal.preprocess(stream, self.stream_preprocessors)

    def preprocess_calendar(self, calendar: icalendar.Calendar) -> None:
        """Applies the property rules to all components except VTIMEZONEs"""
        for component in calendar.walk():
            if component.name in ("VTIMEZONE", "STANDARD", "DAYLIGHT"):
                continue
            self.preprocess_component(component)

    def preprocess_component(self, component: icalendar.cal.Component) -> None:
        for name in list(component.keys()):
            kind = PropertyKind.of(name)
            if kind == PropertyKind.OTHER:
                continue
            values = component[name]
            if not isinstance(values, list):
                values = [values]
            for prop in values:
                if kind == PropertyKind.DATE:
                    self._fix_date(name, prop)
                elif kind == PropertyKind.DATE_LIST:
                    self._fix_date_list(name, prop)
                elif kind == PropertyKind.UTC_DATE:
                    self._fix_utc_date(name, prop)
                else:
                    raise AssertionError(f"unhandled property kind {kind}")

    def _platform_value(self, value, params):
        """
        Moves a date-time to the platform timezone matching its TZID.
        Returns (value, tzid); tzid is None for UTC.

        If icalendar could resolve the timezone (a known id or an
        embedded VTIMEZONE), the instant is kept.  Otherwise the value
        is naive and only the wall-clock time is known.
        """
        tzid = params.get("TZID") or tzid_of(value)
        platform_id = self.catalog.find_platform_id(str(tzid) if tzid else None)
        zone = self.catalog.zone(platform_id)
        if value.tzinfo is None:
            value = value.replace(tzinfo=zone)
        else:
            value = value.astimezone(zone)
        if zone is timezone.utc:
            return value, None
        return value, platform_id

    def _needs_platform_zone(self, value, params) -> bool:
        if not is_datetime(value):
            return False
        if "TZID" in params:
            return True
        return value.tzinfo is not None and not is_utc(value)

    def _fix_date(self, name, prop) -> None:
        value = property_dt(prop)
        if not self._needs_platform_zone(value, prop.params):
            return
        new_value, platform_id = self._platform_value(value, prop.params)
        if new_value != value or prop.params.get("TZID") != platform_id:
            log.debug(f"{name}: {value} re-anchored to {platform_id or 'UTC'}")
        prop.dt = new_value
        self._set_tzid(prop.params, platform_id)

    def _fix_date_list(self, name, prop) -> None:
        dts = property_dts(prop)
        if not dts:
            return
        platform_id = None
        changed = False
        for entry in dts:
            value = property_dt(entry)
            params = entry.params.copy()
            params.update(prop.params)
            if not self._needs_platform_zone(value, params):
                continue
            entry.dt, platform_id = self._platform_value(value, params)
            self._set_tzid(entry.params, platform_id)
            changed = True
        if changed:
            log.debug(f"{name} re-anchored to {platform_id or 'UTC'}")
            self._set_tzid(prop.params, platform_id)

    def _fix_utc_date(self, name, prop) -> None:
        value = property_dt(prop)
        if not isinstance(value, datetime) or is_utc(value):
            return
        if value.tzinfo is None:
            value = value.replace(tzinfo=self.catalog.default_zone)
        log.info(f"{name} has to be in UTC, converting {prop.dt}")
        prop.dt = value.astimezone(timezone.utc)
        prop.params.pop("TZID", None)

    @staticmethod
    def _set_tzid(params, tzid: Optional[str]) -> None:
        if tzid is None:
            params.pop("TZID", None)
        else:
            params["TZID"] = tzid
