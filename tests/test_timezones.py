import threading
from datetime import timezone
from zoneinfo import ZoneInfo

import icalendar
import pytest

from icalcompat.timezones import TimezoneCatalog

KNOWN_IDS = [
    "America/Toronto",
    "EST",
    "Europe/Berlin",
    "Europe/Kiev",
    "Europe/Vienna",
    "UTC",
]


@pytest.fixture
def catalog():
    return TimezoneCatalog(known_ids=KNOWN_IDS, default_tzid="Europe/Vienna")


class TestFindPlatformId:
    def test_exact_match(self, catalog):
        assert catalog.find_platform_id("Europe/Vienna") == "Europe/Vienna"

    def test_case_insensitive_match(self, catalog):
        assert catalog.find_platform_id("EUROPE/VIENNA") == "Europe/Vienna"
        assert catalog.find_platform_id("europe/berlin") == "Europe/Berlin"

    def test_windows_name(self, catalog):
        assert catalog.find_platform_id("W. Europe Standard Time") == "Europe/Berlin"

    def test_windows_name_unknown_to_platform(self):
        catalog = TimezoneCatalog(known_ids=["Europe/Vienna"], default_tzid="Europe/Vienna")
        assert catalog.find_platform_id("Tokyo Standard Time") == "Europe/Vienna"

    def test_substring_match(self, catalog):
        assert catalog.find_platform_id("Vienna") == "Europe/Vienna"
        assert catalog.find_platform_id("MyClient: Europe/Vienna") == "Europe/Vienna"
        assert catalog.find_platform_id("/freeassociation.sourceforge.net/America/Toronto") == "America/Toronto"

    def test_substring_match_is_case_sensitive(self, catalog):
        ## would give "EST" if case-insensitive
        assert catalog.find_platform_id("Westeuropäische Sommerzeit") == "Europe/Vienna"

    def test_substring_match_order_is_lexical(self):
        catalog = TimezoneCatalog(
            known_ids=["Europe/Vienna", "America/Vienna"], default_tzid="UTC"
        )
        assert catalog.find_platform_id("Vienna") == "America/Vienna"

    def test_default(self, catalog):
        assert catalog.find_platform_id("Nowhere/Special") == "Europe/Vienna"
        assert catalog.find_platform_id(None) == "Europe/Vienna"
        assert catalog.find_platform_id("") == "Europe/Vienna"


class TestZones:
    def test_zone(self, catalog):
        assert catalog.zone("Europe/Vienna") == ZoneInfo("Europe/Vienna")
        assert catalog.zone("UTC") is timezone.utc
        assert catalog.zone(None) == ZoneInfo("Europe/Vienna")
        assert catalog.default_zone == ZoneInfo("Europe/Vienna")

    def test_is_utc_id(self):
        assert TimezoneCatalog.is_utc_id("UTC")
        assert TimezoneCatalog.is_utc_id("Etc/UTC")
        assert not TimezoneCatalog.is_utc_id("Europe/London")
        assert not TimezoneCatalog.is_utc_id(None)

    def test_known_ids_are_sorted(self):
        catalog = TimezoneCatalog(known_ids=["UTC", "Europe/Vienna", "America/Toronto"], default_tzid="UTC")
        assert catalog.known_ids == ("America/Toronto", "Europe/Vienna", "UTC")

    def test_platform_defaults(self):
        catalog = TimezoneCatalog()
        assert "Europe/Vienna" in catalog.known_ids
        assert catalog.default_tzid

    def test_from_config(self):
        catalog = TimezoneCatalog.from_config(
            {"default_timezone": "America/Toronto", "known_timezones": KNOWN_IDS}
        )
        assert catalog.default_tzid == "America/Toronto"
        assert catalog.known_ids == tuple(sorted(KNOWN_IDS))
        assert TimezoneCatalog.from_config(None).known_ids


class TestResolve:
    def test_resolve(self, catalog):
        definition = catalog.resolve("EUROPE/VIENNA")
        assert definition.name == "VTIMEZONE"
        assert str(definition["TZID"]) == "Europe/Vienna"
        assert {x.name for x in definition.subcomponents} <= {"STANDARD", "DAYLIGHT"}

    def test_resolve_is_cached(self, catalog):
        assert catalog.resolve("Europe/Vienna") is catalog.resolve("Vienna")

    def test_resolve_concurrently(self, catalog):
        results = []

        def resolve():
            results.append(catalog.resolve("Europe/Berlin"))

        threads = [threading.Thread(target=resolve) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(results) == 8
        assert all(x is results[0] for x in results)

    def test_resolve_unknown_to_tz_database(self):
        catalog = TimezoneCatalog(known_ids=["Mars/Olympus_Mons"], default_tzid="Mars/Olympus_Mons")
        assert catalog.resolve("Mars/Olympus_Mons") is None
        assert catalog.zone("Mars/Olympus_Mons") is timezone.utc


class TestCanonicalize:
    def test_same_id_is_returned_as_it_is(self):
        definition = icalendar.Timezone()
        definition.add("TZID", "Europe/Vienna")
        assert TimezoneCatalog.canonicalize(definition, "Europe/Vienna") is definition

    def test_other_id_gives_copy(self):
        definition = icalendar.Timezone()
        definition.add("TZID", "Europe/Kyiv")
        definition.add("TZURL", "http://tzurl.org/zoneinfo/Europe/Kyiv")
        standard = icalendar.TimezoneStandard()
        definition.add_component(standard)

        ret = TimezoneCatalog.canonicalize(definition, "Europe/Kiev")
        assert ret is not definition
        assert str(ret["TZID"]) == "Europe/Kiev"
        assert str(ret["TZURL"]) == "http://tzurl.org/zoneinfo/Europe/Kyiv"
        assert ret.subcomponents[0] is standard
        ## original is untouched
        assert str(definition["TZID"]) == "Europe/Kyiv"
