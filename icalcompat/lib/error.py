#!/usr/bin/env python
import logging
import os
from typing import Optional

from icalcompat import __version__

## Environmental variables prepended with "PYTHON_ICALCOMPAT" are used for debug purposes
## one of DEBUG_PDB, DEBUG, DEVELOPMENT, PRODUCTION
debugmode = os.environ.get("PYTHON_ICALCOMPAT_DEBUGMODE")
if not debugmode:
    if "dev" in __version__ or __version__ == "(unknown)":
        debugmode = "DEVELOPMENT"
    else:
        debugmode = "PRODUCTION"

log = logging.getLogger("icalcompat")
if debugmode.startswith("DEBUG"):
    log.setLevel(logging.DEBUG)
else:
    log.setLevel(logging.WARNING)


def weirdness(*reasons):
    reason = " : ".join([str(x) for x in reasons])
    log.warning(f"Deviation from expectations found: {reason}")
    if debugmode == "DEBUG_PDB":
        log.error(f"Dropping into debugger due to {reason}")
        import pdb

        pdb.set_trace()


def assert_(condition: object) -> None:
    try:
        assert condition
    except AssertionError:
        if debugmode == "PRODUCTION":
            log.error(
                "Deviation from expectations found.  %s" % ERR_FRAGMENT, exc_info=True
            )
        elif debugmode == "DEBUG_PDB":
            log.error("Deviation from expectations found.  Dropping into debugger")
            import pdb

            pdb.set_trace()
        else:
            raise


ERR_FRAGMENT: str = "Please consider raising an issue, include this error, the traceback (if any) and the offending iCalendar data"


class ICalCompatError(Exception):
    reason: str = "no reason"

    def __init__(self, reason: Optional[str] = None) -> None:
        if reason:
            self.reason = reason
        super().__init__(self.reason)

    def __str__(self) -> str:
        return "%s: %s" % (self.__class__.__name__, self.reason)


class InvalidCalendarError(ICalCompatError):
    """
    The iCalendar data can't be parsed, or it contains a component
    that can't be repaired.  The error is scoped to the object that
    was being processed; callers importing many events should skip
    the offending one and continue.
    """

    pass


class MissingStartError(InvalidCalendarError):
    reason = "Event without start time"


class InvalidStartError(InvalidCalendarError):
    reason = "Event with invalid DTSTART value"


class InvalidTimezoneError(InvalidCalendarError):
    reason = "Invalid VTIMEZONE definition"
