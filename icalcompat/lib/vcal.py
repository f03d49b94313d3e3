#!/usr/bin/env python
import difflib
import io
import logging
import re
from typing import Iterable
from typing import Iterator
from typing import Optional
from typing import Pattern
from typing import Sequence

from icalcompat.lib.python_utilities import to_normal_str

log = logging.getLogger("icalcompat")

## Global counter.  We don't want to be too verbose on the users.
fixup_error_loggings = 0

## Fixups to the icalendar text to work around compatibility issues.
## They are applied before the data is given to the icalendar parser,
## as some of the breakages would make the parser fail or silently
## drop the property.


class StreamPreprocessor:
    """
    A rule that rewrites a known breakage in raw iCalendar text.

    Subclasses give a pattern through :meth:`regexp_for_problem` which is
    used as a cheap probe, and do the actual rewrite in :meth:`fix`.  A
    rule without a pattern is always applied.
    """

    def regexp_for_problem(self) -> Optional[Pattern]:
        return None

    def matches_lines(self, lines: Iterable[str]) -> bool:
        regexp = self.regexp_for_problem()
        if regexp is None:
            return True
        return any(regexp.search(line) for line in lines)

    def matches(self, text: str) -> bool:
        return self.matches_lines(to_normal_str(text).split("\n"))

    def fix(self, text: str) -> str:
        raise NotImplementedError()

    def preprocess(self, stream):
        """
        Applies the rule to a str, bytes or a file-like object.  Text
        is returned as a str.  If the stream is seekable and the probe
        finds nothing, the stream is rewound and returned as it is.
        Otherwise the whole stream is read and a new ``io.StringIO``
        with the fixed text is returned.
        """
        if isinstance(stream, (str, bytes)):
            text = to_normal_str(stream)
            if self.matches(text):
                return self.fix(text)
            return text
        if stream.seekable():
            start = stream.tell()
            found = self.matches_lines(_read_lines(stream))
            stream.seek(start)
            if not found:
                return stream
        return io.StringIO(self.fix(to_normal_str(stream.read())))


def _read_lines(stream) -> Iterator[str]:
    line = stream.readline()
    while line:
        yield to_normal_str(line)
        line = stream.readline()


class FixInvalidUtcOffsetPreprocessor(StreamPreprocessor):
    """
    Some servers (Synology WebDAV) turn UTC offsets like "+005730"
    into "+5730".  An hour value of 00 is inserted into such TZOFFSETFROM
    and TZOFFSETTO values.
    """

    TZOFFSET_REGEXP = re.compile(
        r"^(TZOFFSET(?:FROM|TO):[+\-]?)((?:18|19|[2-6]\d)\d\d)$",
        re.MULTILINE | re.IGNORECASE,
    )

    def regexp_for_problem(self) -> Pattern:
        return self.TZOFFSET_REGEXP

    def fix(self, text: str) -> str:
        return self.TZOFFSET_REGEXP.sub(r"\g<1>00\g<2>", text)


class FixInvalidDayOffsetPreprocessor(StreamPreprocessor):
    """
    Durations with the day offset after the time separator, like
    "-PT2D" or "-P2DT", are rewritten to "-P2D".
    """

    DAY_OFFSET_REGEXP = re.compile(
        r"^((?:DURATION|TRIGGER|REFRESH-INTERVAL)(?:;[^:\n]*)?:|RELATED-TO;VALUE=DURATION:)"
        r"(-?P(?:T-?\d+D|-?\d+DT))$",
        re.MULTILINE | re.IGNORECASE,
    )

    def regexp_for_problem(self) -> Pattern:
        return self.DAY_OFFSET_REGEXP

    def fix(self, text: str) -> str:
        def _fix_duration(match):
            duration = re.sub("PT", "P", match.group(2), flags=re.IGNORECASE)
            duration = re.sub("DT", "D", duration, flags=re.IGNORECASE)
            return match.group(1) + duration

        return self.DAY_OFFSET_REGEXP.sub(_fix_duration, text)


class FixMissingTPrefixPreprocessor(StreamPreprocessor):
    """
    Some providers don't add the mandatory "T" before the hours,
    minutes and seconds of a duration ("-P5S" instead of "-PT5S").
    """

    MISSING_T_REGEXP = re.compile(
        r"^((?:DURATION|TRIGGER|REFRESH-INTERVAL)(?:;[^:\n]*)?:[+\-]?P(?:\d+[WD])*)"
        r"(\d+[HMS](?:\d+[HMS])*)$",
        re.MULTILINE | re.IGNORECASE,
    )

    def regexp_for_problem(self) -> Pattern:
        return self.MISSING_T_REGEXP

    def fix(self, text: str) -> str:
        return self.MISSING_T_REGEXP.sub(r"\g<1>T\g<2>", text)


class FixDateOnlyCompletedPreprocessor(StreamPreprocessor):
    """
    COMPLETED MUST be a datetime in UTC according to the RFC, but
    sometimes a date is given (SOGo).  An arbitrary time is added.
    """

    COMPLETED_REGEXP = re.compile(
        r"^COMPLETED(?:;VALUE=DATE)?:(\d{8})$", re.MULTILINE | re.IGNORECASE
    )

    def regexp_for_problem(self) -> Pattern:
        return self.COMPLETED_REGEXP

    def fix(self, text: str) -> str:
        return self.COMPLETED_REGEXP.sub(r"COMPLETED:\g<1>T120000Z", text)


class FixCreatedBeforeEpochPreprocessor(StreamPreprocessor):
    """
    CREATED timestamps centuries before RFC2445 was published don't
    make sense, and some consumers can't handle timestamps prior to
    1970.  Google Calendar gives year 0001, which is moved to epoch.
    """

    CREATED_REGEXP = re.compile(
        r"^CREATED:00001231T000000Z$", re.MULTILINE | re.IGNORECASE
    )

    def regexp_for_problem(self) -> Pattern:
        return self.CREATED_REGEXP

    def fix(self, text: str) -> str:
        return self.CREATED_REGEXP.sub("CREATED:19700101T000000Z", text)


class DiscardDuplicatesPreprocessor(StreamPreprocessor):
    """
    iCloud duplicates the DTSTAMP property sometimes, and Zimbra can
    create events with DTSTART, DTEND and DURATION set, which is
    forbidden.  Only the first DTSTAMP and the first of DTEND, DUE and
    DURATION of each component are kept.
    """

    def matches_lines(self, lines: Iterable[str]) -> bool:
        line_filter = LineFilterDiscardingDuplicates()
        return not all(line_filter(line.rstrip("\n")) for line in lines)

    def fix(self, text: str) -> str:
        return "\n".join(filter(LineFilterDiscardingDuplicates(), text.split("\n")))


class LineFilterDiscardingDuplicates:
    """Needs to be a class because it keeps track of whether a certain
    group of date line was already encountered within a component.
    This must be called line by line in order on the complete text, at
    least comprising the complete component.
    """

    def __init__(self) -> None:
        ## one [stamped, ended] pair per open component
        self.stack = [[0, 0]]

    def __call__(self, line: str) -> bool:
        upper = line.upper()
        if upper.startswith("BEGIN:"):
            self.stack.append([0, 0])

        elif upper.startswith("END:"):
            if len(self.stack) > 1:
                self.stack.pop()

        elif re.match("(DURATION|DTEND|DUE)[:;]", upper):
            if self.stack[-1][1]:
                return False
            self.stack[-1][1] += 1

        elif re.match("DTSTAMP[:;]", upper):
            if self.stack[-1][0]:
                return False
            self.stack[-1][0] += 1

        return True


PREPROCESSORS: Sequence[StreamPreprocessor] = (
    FixInvalidUtcOffsetPreprocessor(),
    FixInvalidDayOffsetPreprocessor(),
    FixMissingTPrefixPreprocessor(),
    FixDateOnlyCompletedPreprocessor(),
    FixCreatedBeforeEpochPreprocessor(),
    DiscardDuplicatesPreprocessor(),
)


def fix(data, preprocessors: Optional[Sequence[StreamPreprocessor]] = None) -> str:
    """This function receives some ical text, checks for known
    breakages with the standard, and fixes them by applying every
    preprocessor in order.  The text is returned with unix line
    endings.

    If anything was changed, a diff is logged.  The logging is rate
    limited, as the same sender tends to send the same breakage over
    and over again.
    """
    if preprocessors is None:
        preprocessors = PREPROCESSORS
    original = to_normal_str(data)
    fixed = original
    for preprocessor in preprocessors:
        if preprocessor.matches(fixed):
            fixed = preprocessor.fix(fixed)

    if fixed != original:
        ## This obscure code will ensure efficient rate-limiting of the error
        ## logging.  is_power_of_two will be true for 1, 2, 4, 8, 16, etc.
        global fixup_error_loggings
        fixup_error_loggings += 1
        is_power_of_two = lambda n: not (n & (n - 1))
        if is_power_of_two(fixup_error_loggings):
            loglevel = logging.WARNING
        else:
            loglevel = logging.DEBUG

        log_message = [
            "Ical data was modified to avoid compatibility issues",
            "(The sender breaks the icalendar standard)",
            f"(error count: {fixup_error_loggings} - this error is ratelimited)",
        ]
        diff = list(
            difflib.unified_diff(original.split("\n"), fixed.split("\n"), lineterm="")
        )
        log.log(loglevel, "\n".join(log_message + diff))

    return fixed


def preprocess(stream, preprocessors: Optional[Sequence[StreamPreprocessor]] = None):
    """
    Runs the preprocessor chain on a str, bytes or a file-like object.

    For seekable streams, the stream is probed line by line first and
    returned untouched (rewound) if no preprocessor finds anything to
    fix.  Otherwise the whole content is read once and an
    ``io.StringIO`` with the fixed text is returned.  str and bytes
    input gives a str.
    """
    if preprocessors is None:
        preprocessors = PREPROCESSORS
    if isinstance(stream, (str, bytes)):
        return fix(stream, preprocessors)
    if stream.seekable():
        start = stream.tell()
        found = False
        for preprocessor in preprocessors:
            found = preprocessor.matches_lines(_read_lines(stream))
            stream.seek(start)
            if found:
                break
        if not found:
            return stream
    return io.StringIO(fix(stream.read(), preprocessors))
