"""
The timezone catalog maps timezone identifiers found in iCalendar data
to the identifiers known by the host platform, and hands out VTIMEZONE
definitions for them.

The catalog is constructed explicitly and is immutable after
construction; the only mutable state is a cache of generated VTIMEZONE
components which is filled under a lock, one entry per platform id.
Definitions handed out by the catalog are shared and must not be
modified - make a copy (as :func:`icalcompat.vtimezone.minify_vtimezone`
does) before changing anything.
"""
import logging
import threading
import zoneinfo
from datetime import timezone
from datetime import tzinfo
from typing import ClassVar
from typing import Dict
from typing import Iterable
from typing import Optional

import icalendar
import tzlocal

from .lib.dates import UTC_IDS

log = logging.getLogger("icalcompat")


class TimezoneCatalog:
    """
    Resolves timezone IDs to platform timezone IDs and VTIMEZONE definitions.

    :param known_ids: the timezone IDs the host platform knows.  Defaults to
      ``zoneinfo.available_timezones()``.
    :param default_tzid: the host default timezone, used for floating times
      and as the last resort when an ID can't be matched.  Defaults to the
      local timezone as reported by tzlocal.
    """

    ## Windows timezone names, as sent by Outlook and Exchange
    WINDOWS_TZ_MAP: ClassVar[Dict[str, str]] = {
        "Dateline Standard Time": "Etc/GMT+12",
        "Hawaiian Standard Time": "Pacific/Honolulu",
        "Alaskan Standard Time": "America/Anchorage",
        "Pacific Standard Time": "America/Los_Angeles",
        "US Mountain Standard Time": "America/Phoenix",
        "Mountain Standard Time": "America/Denver",
        "Central Standard Time": "America/Chicago",
        "Eastern Standard Time": "America/New_York",
        "Atlantic Standard Time": "America/Halifax",
        "E. South America Standard Time": "America/Sao_Paulo",
        "Greenwich Standard Time": "Atlantic/Reykjavik",
        "GMT Standard Time": "Europe/London",
        "W. Europe Standard Time": "Europe/Berlin",
        "Romance Standard Time": "Europe/Paris",
        "Central Europe Standard Time": "Europe/Budapest",
        "Central European Standard Time": "Europe/Warsaw",
        "E. Europe Standard Time": "Europe/Chisinau",
        "FLE Standard Time": "Europe/Kiev",
        "GTB Standard Time": "Europe/Bucharest",
        "Russian Standard Time": "Europe/Moscow",
        "Israel Standard Time": "Asia/Jerusalem",
        "Arabian Standard Time": "Asia/Dubai",
        "India Standard Time": "Asia/Kolkata",
        "China Standard Time": "Asia/Shanghai",
        "Singapore Standard Time": "Asia/Singapore",
        "Tokyo Standard Time": "Asia/Tokyo",
        "Korea Standard Time": "Asia/Seoul",
        "AUS Eastern Standard Time": "Australia/Sydney",
        "New Zealand Standard Time": "Pacific/Auckland",
        "UTC": "Etc/UTC",
    }

    def __init__(
        self,
        known_ids: Optional[Iterable[str]] = None,
        default_tzid: Optional[str] = None,
    ) -> None:
        if known_ids is None:
            known_ids = zoneinfo.available_timezones()
        ## lexical order makes the substring search deterministic
        self._known_ids = tuple(sorted(set(known_ids)))
        self._known_id_set = frozenset(self._known_ids)
        self._known_ids_lower = {tzid.lower(): tzid for tzid in self._known_ids}
        if default_tzid is None:
            default_tzid = self._host_default_tzid()
        self._default_tzid = default_tzid
        self._definitions: Dict[str, Optional[icalendar.Timezone]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "TimezoneCatalog":
        """
        Builds a catalog from a configuration section (see
        :func:`icalcompat.config.read_config`).  Recognized keys are
        ``default_timezone`` and ``known_timezones``.
        """
        config = config or {}
        return cls(
            known_ids=config.get("known_timezones"),
            default_tzid=config.get("default_timezone"),
        )

    @staticmethod
    def _host_default_tzid() -> str:
        try:
            tzid = tzlocal.get_localzone_name()
        except (KeyError, ValueError) as e:
            log.warning(f"Couldn't determine the local timezone ({e}), using UTC")
            return "UTC"
        if not tzid:
            log.warning("Couldn't determine the local timezone, using UTC")
            return "UTC"
        return tzid

    @property
    def known_ids(self) -> tuple:
        return self._known_ids

    @property
    def default_tzid(self) -> str:
        return self._default_tzid

    @property
    def default_zone(self) -> tzinfo:
        """The host default timezone, used to interpret floating times"""
        return self.zone(self._default_tzid)

    @staticmethod
    def is_utc_id(tzid: Optional[str]) -> bool:
        return tzid is not None and tzid in UTC_IDS

    def find_platform_id(self, tzid: Optional[str]) -> str:
        """
        Finds the best matching platform timezone ID for an arbitrary ID:

        1. A case-insensitive match ("EUROPE/VIENNA" gives "Europe/Vienna").
        2. A Windows timezone name ("W. Europe Standard Time" gives
           "Europe/Berlin"), if the mapped ID is known to the platform.
        3. A partial match in either direction, so both "Vienna" and
           "MyClient: Europe/Vienna" give "Europe/Vienna".  This is case
           sensitive, as otherwise "Westeuropäische Sommerzeit" would
           give "EST".  The first known ID in lexical order wins.
        4. The default timezone.
        """
        if tzid:
            result = self._known_ids_lower.get(tzid.lower())
            if result is not None:
                return result

            mapped = self.WINDOWS_TZ_MAP.get(tzid)
            if mapped is not None and mapped in self._known_id_set:
                return mapped

            for known in self._known_ids:
                if known in tzid or tzid in known:
                    log.warning(
                        f'Couldn\'t find system timezone "{tzid}", assuming {known}'
                    )
                    return known

            log.warning(
                f'Couldn\'t find system timezone "{tzid}", using default {self._default_tzid}'
            )
        return self._default_tzid

    def zone(self, tzid: Optional[str]) -> tzinfo:
        """
        The tzinfo for the platform ID matching ``tzid``.  UTC IDs give
        ``datetime.timezone.utc``.
        """
        platform_id = self.find_platform_id(tzid)
        if self.is_utc_id(platform_id):
            return timezone.utc
        try:
            return zoneinfo.ZoneInfo(platform_id)
        except (KeyError, ValueError):
            ## the platform id set given to the catalog may be more than
            ## what the local tz database has
            log.warning(f"No timezone data for {platform_id}, using UTC")
            return timezone.utc

    def resolve(self, tzid: Optional[str]) -> Optional[icalendar.Timezone]:
        """
        Returns the VTIMEZONE definition for the platform ID matching
        ``tzid``, or None if no definition can be generated.  The
        returned component is shared - don't modify it.
        """
        platform_id = self.find_platform_id(tzid)
        with self._lock:
            if platform_id not in self._definitions:
                self._definitions[platform_id] = self._generate(platform_id)
            definition = self._definitions[platform_id]
        if definition is None:
            return None
        return self.canonicalize(definition, platform_id)

    @staticmethod
    def _generate(platform_id: str) -> Optional[icalendar.Timezone]:
        try:
            return icalendar.Timezone.from_tzid(platform_id)
        except (KeyError, ValueError) as e:
            log.warning(f"Couldn't generate VTIMEZONE for {platform_id}: {e}")
            return None

    @staticmethod
    def canonicalize(
        definition: icalendar.Timezone, platform_id: str
    ) -> icalendar.Timezone:
        """
        If the TZID of ``definition`` differs from the platform name of
        the same zone (like "Europe/Kyiv" in the timezone database and
        "Europe/Kiev" on the platform), returns a copy of the definition
        with the platform name as TZID.  Otherwise, ``definition`` is
        returned as it is.  The observances are shared with the original.
        """
        tzid = str(definition.get("TZID", ""))
        if tzid == platform_id:
            return definition
        log.warning(f"Using platform TZID {platform_id} instead of {tzid}")
        ret = icalendar.Timezone()
        for key, value in definition.items():
            if key != "TZID":
                ret[key] = value
        ret.add("TZID", platform_id)
        ret.subcomponents = list(definition.subcomponents)
        return ret
