"""
Tests for slot id lookup (courtbot/common/schedule.py)
"""
from datetime import timedelta

import pytest

from conftest import MONDAY
from courtbot.common.errors import SlotResolutionError
from courtbot.common.models import DAY_NAMES
from courtbot.common.schedule import DEFAULT_SCHEDULE, WINDOWS, ScheduleTable, window_start


class TestDefaultSchedule:

    @pytest.mark.parametrize("resource,offset,window,slot_id", [
        ("5", 0, "06:00 AM - 07:00 AM", "239"),
        ("5", 2, "06:00 AM - 07:00 AM", "241"),
        ("5", 5, "06:00 AM - 07:00 AM", "244"),
        ("5", 6, "06:00 AM - 07:00 AM", "245"),
        ("5", 0, "07:00 AM - 08:00 AM", "246"),
        ("5", 0, "06:00 PM - 07:00 PM", "323"),
        ("7", 0, "07:00 AM - 08:00 AM", "344"),
        ("7", 1, "07:00 AM - 08:00 AM", "345"),
        ("7", 0, "04:00 PM - 05:00 PM", "407"),
        ("7", 0, "05:00 PM - 06:00 PM", "1141"),
        ("7", 1, "05:00 PM - 06:00 PM", "1142"),
        ("7", 0, "06:00 PM - 07:00 PM", "414"),
    ])
    def test_known_ids(self, resource, offset, window, slot_id):
        target = MONDAY + timedelta(days=offset)
        assert DEFAULT_SCHEDULE.resolve(resource, target, window) == slot_id

    def test_same_window_differs_by_day(self):
        monday = DEFAULT_SCHEDULE.resolve("5", MONDAY, WINDOWS[0])
        tuesday = DEFAULT_SCHEDULE.resolve("5", MONDAY + timedelta(days=1), WINDOWS[0])
        assert monday != tuesday

    def test_every_entry_resolves_to_itself(self):
        for resource in DEFAULT_SCHEDULE.resources:
            for offset, day in enumerate(DAY_NAMES):
                target = MONDAY + timedelta(days=offset)
                for window in DEFAULT_SCHEDULE.windows_for(resource, day):
                    slot_id = DEFAULT_SCHEDULE.resolve(resource, target, window)
                    assert slot_id.isdigit()

    def test_ids_are_unique_per_resource(self):
        for resource in DEFAULT_SCHEDULE.resources:
            ids = [
                DEFAULT_SCHEDULE.resolve(resource, MONDAY + timedelta(days=offset), window)
                for offset, day in enumerate(DAY_NAMES)
                for window in DEFAULT_SCHEDULE.windows_for(resource, day)
            ]
            assert len(ids) == len(set(ids)) == 7 * len(WINDOWS)


class TestResolveErrors:

    def test_unknown_window_lists_valid_ones(self):
        with pytest.raises(SlotResolutionError) as exc:
            DEFAULT_SCHEDULE.resolve("5", MONDAY, "11:00 PM - 12:00 AM")
        assert exc.value.day == "Monday"
        assert "06:00 AM - 07:00 AM" in exc.value.valid_windows
        assert "Valid time windows for Monday" in str(exc.value)

    def test_unknown_resource(self):
        with pytest.raises(SlotResolutionError) as exc:
            DEFAULT_SCHEDULE.resolve("99", MONDAY, WINDOWS[0])
        assert exc.value.valid_windows == []
        assert "none" in str(exc.value)


class TestScheduleTable:

    def test_later_changes_to_source_do_not_leak(self):
        source = {"1": {"Monday": {"06:00 AM - 07:00 AM": "10"}}}
        table = ScheduleTable(source)
        source["1"]["Monday"]["06:00 AM - 07:00 AM"] = "99"
        assert table.resolve("1", MONDAY, "06:00 AM - 07:00 AM") == "10"

    def test_cannot_be_mutated(self):
        table = ScheduleTable({"1": {"Monday": {"06:00 AM - 07:00 AM": "10"}}})
        with pytest.raises(TypeError):
            table._table["1"] = {}

    def test_has_slot_and_contains(self):
        assert "5" in DEFAULT_SCHEDULE
        assert "6" not in DEFAULT_SCHEDULE
        assert DEFAULT_SCHEDULE.has_slot("7", "Friday", "06:00 PM - 07:00 PM")
        assert not DEFAULT_SCHEDULE.has_slot("7", "Friday", "07:00 PM - 08:00 PM")


@pytest.mark.parametrize("window,start", [
    ("06:00 AM - 07:00 AM", "06:00 AM"),
    ("  12:00 PM-01:00 PM", "12:00 PM"),
    ("06:00 AM", "06:00 AM"),
])
def test_window_start(window, start):
    assert window_start(window) == start
