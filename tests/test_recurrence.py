from datetime import date
from datetime import datetime
from datetime import timezone
from unittest import TestCase
from zoneinfo import ZoneInfo

import icalendar
import pytest

from icalcompat.recurrence import RecurrenceDateList
from icalcompat.recurrence import recurrence_rules_to_storage_string
from icalcompat.recurrence import recurrence_sets_to_opentasks_string
from icalcompat.recurrence import recurrence_sets_to_storage_string
from icalcompat.recurrence import storage_string_to_recurrence_rules
from icalcompat.recurrence import storage_string_to_recurrence_set
from icalcompat.recurrence import storage_tzid
from icalcompat.timezones import TimezoneCatalog

toronto = ZoneInfo("America/Toronto")
berlin = ZoneInfo("Europe/Berlin")
utc = timezone.utc


@pytest.fixture
def catalog():
    return TimezoneCatalog(default_tzid="Europe/Vienna")


def rdate(*values):
    return icalendar.vDDDLists(list(values))


class TestStorageString(TestCase):
    def test_utc_times(self):
        lists = [rdate(datetime(2015, 1, 1, 10, 30, 10, tzinfo=utc), datetime(2015, 1, 2, 10, 30, 20, tzinfo=utc))]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False),
            "20150101T103010Z,20150102T103020Z",
        )

    def test_two_times_with_same_timezone(self):
        lists = [
            rdate(datetime(2015, 1, 3, 11, 30, 30, tzinfo=toronto)),
            rdate(datetime(2015, 7, 4, 11, 30, 40, tzinfo=toronto)),
        ]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False),
            "America/Toronto;20150103T113030,20150704T113040",
        )

    def test_two_times_with_different_timezone(self):
        ## 2015/07/04 11:30:40 Berlin [+2] = 09:30:40 UTC = 05:30:40 Toronto [-4]
        lists = [
            rdate(datetime(2015, 1, 3, 11, 30, 30, tzinfo=toronto)),
            rdate(datetime(2015, 7, 4, 11, 30, 40, tzinfo=berlin)),
        ]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False),
            "America/Toronto;20150103T113030,20150704T053040",
        )

    def test_two_times_with_one_utc(self):
        lists = [
            rdate(datetime(2015, 1, 3, 11, 30, 30, tzinfo=utc)),
            rdate(datetime(2015, 7, 4, 11, 30, 40, tzinfo=berlin)),
        ]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False),
            "20150103T113030Z,20150704T093040Z",
        )

    def test_dates(self):
        ## DATEs have to be converted to <date>T000000Z
        lists = [rdate(date(2015, 1, 1), date(2015, 7, 2))]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, True),
            "20150101T000000Z,20150702T000000Z",
        )

    def test_times_although_all_day(self):
        lists = [[datetime(2015, 1, 1, 0, 0), datetime(2015, 7, 2, 0, 0, tzinfo=utc)]]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, True),
            "20150101T000000Z,20150702T000000Z",
        )

    def test_time_of_day_is_dropped_for_all_day(self):
        lists = [[datetime(2015, 1, 1, 23, 59, tzinfo=toronto)]]
        self.assertEqual(recurrence_sets_to_storage_string(lists, True), "20150101T000000Z")

    def test_floating_times(self):
        lists = [[datetime(2015, 1, 1, 10, 0)]]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False, default_zone=berlin),
            "20150101T090000Z",
        )

    def test_dates_in_zoned_list(self):
        lists = [[datetime(2015, 1, 1, 10, 0, tzinfo=toronto), date(2015, 1, 2)]]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False),
            "America/Toronto;20150101T100000,20150102T000000",
        )

    def test_periods_are_dropped(self):
        period = (datetime(2015, 1, 1, 10, 0, tzinfo=utc), datetime(2015, 1, 1, 11, 0, tzinfo=utc))
        lists = [[period, datetime(2015, 1, 2, 10, 0, tzinfo=toronto)]]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False),
            "America/Toronto;20150102T100000",
        )

    def test_empty(self):
        self.assertEqual(recurrence_sets_to_storage_string([], False), "")
        self.assertEqual(recurrence_sets_to_storage_string([[]], True), "")

    def test_first_list_empty(self):
        lists = [[], [datetime(2015, 1, 3, 11, 30, 30, tzinfo=toronto)]]
        self.assertEqual(
            recurrence_sets_to_storage_string(lists, False),
            "America/Toronto;20150103T113030",
        )


class TestStorageStringDecoding:
    def test_utc_times(self, catalog):
        ret = storage_string_to_recurrence_set(
            "20150101T103010Z,20150702T103020Z", False, catalog=catalog
        )
        assert ret.tzid is None
        assert ret == [
            datetime(2015, 1, 1, 10, 30, 10, tzinfo=utc),
            datetime(2015, 7, 2, 10, 30, 20, tzinfo=utc),
        ]
        assert ret[0].timestamp() == 1420108210

    def test_zoned_times(self, catalog):
        ret = storage_string_to_recurrence_set(
            "America/Toronto;20150103T113030,20150704T113040", False, catalog=catalog
        )
        assert ret.tzid == "America/Toronto"
        assert [x.timestamp() for x in ret] == [1420302630, 1436023840]
        assert ret[0].tzinfo == toronto

    def test_utc_tzid_is_untagged(self, catalog):
        ret = storage_string_to_recurrence_set("UTC;20150103T113030", False, catalog=catalog)
        assert ret.tzid is None
        assert ret == [datetime(2015, 1, 3, 11, 30, 30, tzinfo=utc)]

    def test_dates(self, catalog):
        ret = storage_string_to_recurrence_set(
            "20150101T103010Z,20150702T103020Z", True, catalog=catalog
        )
        assert ret == [date(2015, 1, 1), date(2015, 7, 2)]
        assert ret.tzid is None

    def test_exclude(self, catalog):
        exclude = datetime.fromtimestamp(1420302630, utc)
        ret = storage_string_to_recurrence_set(
            "America/Toronto;20150103T113030", False, exclude=exclude, catalog=catalog
        )
        assert ret == []

    def test_exclude_date(self, catalog):
        ret = storage_string_to_recurrence_set(
            "20150101T000000Z,20150702T000000Z", True, exclude=date(2015, 1, 1), catalog=catalog
        )
        assert ret == [date(2015, 7, 2)]

    def test_invalid_token(self, catalog):
        with pytest.raises(ValueError):
            storage_string_to_recurrence_set("2015-01-01", False, catalog=catalog)

    def test_round_trip(self, catalog):
        values = [
            datetime(2015, 1, 3, 11, 30, 30, tzinfo=toronto),
            datetime(2015, 7, 4, 11, 30, 40, tzinfo=toronto),
            datetime(2016, 3, 13, 3, 0, 0, tzinfo=toronto),
        ]
        encoded = recurrence_sets_to_storage_string([values], False)
        decoded = storage_string_to_recurrence_set(encoded, False, catalog=catalog)
        assert [x.timestamp() for x in decoded] == [x.timestamp() for x in values]
        assert recurrence_sets_to_storage_string([decoded], False) == encoded

    def test_round_trip_utc_and_dates(self, catalog):
        values = [datetime(2015, 1, 1, 10, 0, tzinfo=utc), datetime(2015, 2, 1, 10, 0, tzinfo=utc)]
        encoded = recurrence_sets_to_storage_string([values], False)
        assert storage_string_to_recurrence_set(encoded, False, catalog=catalog) == values

        days = [date(2015, 1, 1), date(2015, 2, 1)]
        encoded = recurrence_sets_to_storage_string([days], True)
        assert storage_string_to_recurrence_set(encoded, True, catalog=catalog) == days


class TestOpenTasksString(TestCase):
    def test_utc_times(self):
        lists = [rdate(datetime(2015, 1, 1, 6, 0, tzinfo=utc), datetime(2015, 7, 2, 6, 0, tzinfo=utc))]
        self.assertEqual(
            recurrence_sets_to_opentasks_string(lists, berlin),
            "20150101T070000,20150702T080000",
        )

    def test_zoned_times(self):
        lists = [[datetime(2015, 1, 1, 6, 0, tzinfo=toronto), datetime(2015, 7, 2, 6, 0, tzinfo=toronto)]]
        self.assertEqual(
            recurrence_sets_to_opentasks_string(lists, berlin),
            "20150101T120000,20150702T120000",
        )

    def test_mixed_times(self):
        lists = [[datetime(2015, 1, 1, 6, 0, tzinfo=utc), datetime(2015, 7, 2, 6, 0, tzinfo=toronto)]]
        self.assertEqual(
            recurrence_sets_to_opentasks_string(lists, berlin),
            "20150101T070000,20150702T120000",
        )

    def test_times_although_all_day(self):
        lists = [[datetime(2015, 1, 1, 6, 0, tzinfo=toronto), datetime(2015, 7, 2, 6, 0, tzinfo=toronto)]]
        self.assertEqual(recurrence_sets_to_opentasks_string(lists, None), "20150101,20150702")

    def test_dates(self):
        lists = [rdate(date(2015, 1, 1), date(2015, 7, 2))]
        self.assertEqual(recurrence_sets_to_opentasks_string(lists, None), "20150101,20150702")

    def test_dates_although_timezone(self):
        lists = [rdate(date(2015, 1, 1), date(2015, 7, 2))]
        self.assertEqual(
            recurrence_sets_to_opentasks_string(lists, berlin),
            "20150101T000000,20150702T000000",
        )

    def test_utc_task(self):
        lists = [[datetime(2015, 1, 1, 6, 0, tzinfo=berlin)]]
        self.assertEqual(recurrence_sets_to_opentasks_string(lists, utc), "20150101T050000Z")


class TestRecurrenceRules:
    def test_to_storage(self):
        rules = [
            icalendar.vRecur.from_ical("FREQ=DAILY;COUNT=10"),
            icalendar.vRecur.from_ical("FREQ=WEEKLY;BYDAY=MO,TU"),
        ]
        assert recurrence_rules_to_storage_string(rules) == "FREQ=DAILY;COUNT=10\nFREQ=WEEKLY;BYDAY=MO,TU"
        assert recurrence_rules_to_storage_string([]) == ""

    def test_from_storage(self):
        rules = storage_string_to_recurrence_rules("FREQ=DAILY;COUNT=10\nFREQ=WEEKLY;BYDAY=MO,TU\n")
        assert len(rules) == 2
        assert rules[0]["FREQ"] == ["DAILY"]
        assert rules[0]["COUNT"] == [10]
        assert rules[1]["BYDAY"] == ["MO", "TU"]
        assert storage_string_to_recurrence_rules(None) == []
        assert storage_string_to_recurrence_rules("") == []

    def test_invalid_rule(self):
        with pytest.raises(ValueError):
            storage_string_to_recurrence_rules("FREQ=SOMETIMES")


class TestStorageTzid:
    def test_date(self, catalog):
        assert storage_tzid(date(2015, 1, 1), catalog) == "UTC"

    def test_floating_time(self, catalog):
        assert storage_tzid(datetime(2015, 1, 1), catalog) == "Europe/Vienna"

    def test_utc(self, catalog):
        assert storage_tzid(datetime(2015, 1, 1, tzinfo=utc), catalog) == "UTC"

    def test_zoned_time(self, catalog):
        assert storage_tzid(datetime(2015, 1, 1, tzinfo=toronto), catalog) == "America/Toronto"


def test_recurrence_date_list():
    values = RecurrenceDateList([date(2015, 1, 1)], tzid="Europe/Vienna")
    assert values == [date(2015, 1, 1)]
    assert values.tzid == "Europe/Vienna"
    assert "Europe/Vienna" in repr(values)
    assert RecurrenceDateList().tzid is None
