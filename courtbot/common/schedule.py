"""
Slot id lookup

The portal's reservation form wants an opaque schedule id instead of the
visible time range. Ids differ per court AND per day of week, so the same
"06:00 AM - 07:00 AM" maps to a different id on a Monday than on a Tuesday.
"""
import re
from datetime import date
from types import MappingProxyType
from typing import Dict, List, Mapping

from .errors import SlotResolutionError
from .models import DAY_NAMES, day_name

WINDOWS = [
    "06:00 AM - 07:00 AM",
    "07:00 AM - 08:00 AM",
    "08:00 AM - 09:00 AM",
    "09:00 AM - 10:00 AM",
    "10:00 AM - 11:00 AM",
    "11:00 AM - 12:00 PM",
    "12:00 PM - 01:00 PM",
    "01:00 PM - 02:00 PM",
    "02:00 PM - 03:00 PM",
    "03:00 PM - 04:00 PM",
    "04:00 PM - 05:00 PM",
    "05:00 PM - 06:00 PM",
    "06:00 PM - 07:00 PM",
]


class ScheduleTable:
    """
    Read-only resource -> day -> time window -> slot id mapping.

    Built once at startup; every level is a MappingProxyType so nothing can
    mutate it afterwards.
    """

    def __init__(self, mapping: Mapping[str, Mapping[str, Mapping[str, str]]]):
        self._table = MappingProxyType({
            str(resource): MappingProxyType({
                day: MappingProxyType(dict(windows))
                for day, windows in days.items()
            })
            for resource, days in mapping.items()
        })

    @property
    def resources(self) -> List[str]:
        return list(self._table)

    def windows_for(self, resource_id: str, day: str) -> List[str]:
        """Time windows recorded for a resource on a day name"""
        return list(self._table.get(resource_id, {}).get(day, {}))

    def has_slot(self, resource_id: str, day: str, time_window: str) -> bool:
        return time_window in self._table.get(resource_id, {}).get(day, {})

    def resolve(self, resource_id: str, target_date: date, time_window: str) -> str:
        """Slot id for a resource on a date; raises SlotResolutionError on a miss"""
        day = day_name(target_date)
        slot_id = self._table.get(resource_id, {}).get(day, {}).get(time_window)
        if slot_id is None:
            raise SlotResolutionError(
                resource_id, day, time_window, self.windows_for(resource_id, day)
            )
        return slot_id

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._table


def window_start(time_window: str) -> str:
    """Start of a window as shown in the form, e.g. "06:00 AM" """
    return re.split(r"\s*-\s*", time_window.strip(), maxsplit=1)[0]


def _sequential_ids(first_ids: List[int], step: int = 7, overrides: Dict[int, List[int]] = None) -> Dict[str, Dict[str, str]]:
    """
    Ids on the portal are assigned day-major within each window: window i on
    day d has id first_ids[d] + i * step. `overrides` replaces the ids of a
    window index for all seven days.
    """
    overrides = overrides or {}
    table: Dict[str, Dict[str, str]] = {}
    for d, day in enumerate(DAY_NAMES):
        table[day] = {}
        for i, window in enumerate(WINDOWS):
            if i in overrides:
                slot = overrides[i][d]
            else:
                # windows after an override continue one step earlier
                shift = sum(1 for o in overrides if o < i)
                slot = first_ids[d] + (i - shift) * step
            table[day][window] = str(slot)
    return table


# Court 1 (area 5): Monday 06:00 = 239, Tuesday 06:00 = 240, ... Sunday = 245
COURT1_SCHEDULE_IDS = _sequential_ids([239, 240, 241, 242, 243, 244, 245])

# Court 2 (area 7): the 05:00 PM window was added later and got ids 1141-1147
COURT2_SCHEDULE_IDS = _sequential_ids(
    [337, 338, 339, 340, 341, 342, 343],
    overrides={11: [1141, 1142, 1143, 1144, 1145, 1146, 1147]},
)

DEFAULT_SCHEDULE = ScheduleTable({
    "5": COURT1_SCHEDULE_IDS,
    "7": COURT2_SCHEDULE_IDS,
})
