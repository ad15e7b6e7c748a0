"""Shift windows and daily target helpers.

Times are expressed as minutes since local midnight (0-1439) in the business
time zone. Each shift has two windows: the *display* window, which decides the
shift announced as currently running, and the wider *editable* window, which
decides whether that shift's count may still be submitted. The editable
windows stay open a little longer so late corrections can be keyed in.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

MINUTES_PER_DAY = 24 * 60

CLOSED = "closed"


class ShiftName(str, Enum):
    morning = "morning"
    evening = "evening"
    late_night = "late_night"

    @property
    def field_name(self) -> str:
        return f"{self.value}_count"


SHIFT_ORDER: Tuple[ShiftName, ...] = (ShiftName.morning, ShiftName.evening, ShiftName.late_night)
SHIFT_FIELDS: Tuple[str, ...] = tuple(shift.field_name for shift in SHIFT_ORDER)


@dataclass(frozen=True)
class ShiftWindow:
    """Union of half-open ``[start, end)`` minute ranges."""

    ranges: Tuple[Tuple[int, int], ...]

    def contains(self, minute: int) -> bool:
        return any(start <= minute < end for start, end in self.ranges)


DISPLAY_WINDOWS: Dict[ShiftName, ShiftWindow] = {
    ShiftName.morning: ShiftWindow(((420, 900),)),
    ShiftName.evening: ShiftWindow(((900, 1380),)),
    ShiftName.late_night: ShiftWindow(((1380, MINUTES_PER_DAY), (0, 180))),
}

EDITABLE_WINDOWS: Dict[ShiftName, ShiftWindow] = {
    ShiftName.morning: ShiftWindow(((420, 930),)),
    ShiftName.evening: ShiftWindow(((900, 1410),)),
    ShiftName.late_night: ShiftWindow(((1380, MINUTES_PER_DAY), (0, 200))),
}

SHIFT_LABELS: Dict[str, str] = {
    ShiftName.morning.value: "Morning Shift (07:00 AM - 03:00 PM)",
    ShiftName.evening.value: "Evening Shift (03:00 PM - 11:00 PM)",
    ShiftName.late_night.value: "Late Night Shift (11:00 PM - 03:00 AM)",
    CLOSED: "Entry closed (03:00 AM - 07:00 AM)",
}


def minutes_since_midnight(moment) -> int:
    """Return the minute of day for a ``datetime``, ``time`` or int minute."""

    if isinstance(moment, (datetime, time)):
        return moment.hour * 60 + moment.minute
    if isinstance(moment, bool) or not isinstance(moment, int):
        raise TypeError("moment must be a datetime, time or minute of day")
    if not 0 <= moment < MINUTES_PER_DAY:
        raise ValueError("minute of day must be between 0 and 1439")
    return moment


def current_shift(moment) -> str:
    """Return the shift shown as running at ``moment`` or ``"closed"``."""

    minute = minutes_since_midnight(moment)
    for shift in SHIFT_ORDER:
        if DISPLAY_WINDOWS[shift].contains(minute):
            return shift.value
    return CLOSED


def is_shift_editable(shift, moment) -> bool:
    shift = ShiftName(shift)
    return EDITABLE_WINDOWS[shift].contains(minutes_since_midnight(moment))


def editable_shifts(moment) -> List[ShiftName]:
    minute = minutes_since_midnight(moment)
    return [shift for shift in SHIFT_ORDER if EDITABLE_WINDOWS[shift].contains(minute)]


def editable_fields(moment) -> List[str]:
    return [shift.field_name for shift in editable_shifts(moment)]


def filter_editable_counts(counts: Mapping[str, Optional[int]], moment) -> Dict[str, int]:
    """Build a submission containing only the fields editable at ``moment``.

    Fields whose window is closed are left out entirely rather than sent as
    zero, so the ledger keeps whatever was stored for them earlier.
    """

    allowed = editable_fields(moment)
    return {field: int(counts.get(field) or 0) for field in allowed}


def closed_fields(fields: Iterable[str], moment) -> List[str]:
    allowed = set(editable_fields(moment))
    return [field for field in fields if field not in allowed]


def shift_status(moment) -> dict:
    shift = current_shift(moment)
    return {
        "shift": shift,
        "label": SHIFT_LABELS[shift],
        "active": shift != CLOSED,
        "minute_of_day": minutes_since_midnight(moment),
        "editable_fields": editable_fields(moment),
    }


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def calculate_daily_target(remaining_stock, start_date, end_date, today) -> int:
    """Return the suggested quantity per day for the product's period.

    With both dates the stock is spread over the whole inclusive period; with
    no end date it is spread over the days left in ``today``'s month. The
    division rounds up so the stock runs out on or before the last day.
    """

    stock = max(0, int(remaining_stock or 0))
    today = _as_date(today)
    start = _as_date(start_date)
    end = _as_date(end_date)

    if end is None:
        last_day = calendar.monthrange(today.year, today.month)[1]
        days = last_day - today.day + 1
    elif start is None:
        days = (end - today).days + 1
    else:
        days = (end - start).days + 1

    if days <= 0:
        return 0
    return (stock + days - 1) // days
