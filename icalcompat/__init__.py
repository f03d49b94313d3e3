#!/usr/bin/env python
import logging

__version__ = "0.1.0"

from .event import Event
from .event import events_from_ical
from .timezones import TimezoneCatalog
from .validator import EventValidator

## Silence notification of no default logging handler
log = logging.getLogger("icalcompat")


class NullHandler(logging.Handler):
    def emit(self, record) -> None:
        pass


log.addHandler(NullHandler())

__all__ = [
    "__version__",
    "Event",
    "EventValidator",
    "TimezoneCatalog",
    "events_from_ical",
]
