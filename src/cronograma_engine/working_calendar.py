from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta

from .errors import InvalidFieldError

DEFAULT_CALENDAR_ID = "default"
DEFAULT_HOURS_PER_DAY = 8.0
DEFAULT_WORKING_WEEKDAYS = frozenset({1, 2, 3, 4, 5})  # ISO weekdays, Monday=1

ONE_DAY = timedelta(days=1)
ISO_WEEKDAYS = range(1, 8)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingCalendar:
    """Working weekdays, daily capacity and holiday exceptions."""

    id: str = DEFAULT_CALENDAR_ID
    working_weekdays: frozenset[int] = DEFAULT_WORKING_WEEKDAYS
    hours_per_day: float = DEFAULT_HOURS_PER_DAY
    holidays: tuple[date, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        invalid = sorted((day for day in self.working_weekdays if day not in ISO_WEEKDAYS), key=str)
        if invalid:
            raise InvalidFieldError(
                f"Calendar '{self.id}': working weekdays must be ISO numbers 1-7 (Monday=1), got {invalid}"
            )

    def is_working_day(self, day: date) -> bool:
        return day.isoweekday() in self.working_weekdays and day not in self.holidays


def default_calendar() -> WorkingCalendar:
    """Monday to Friday, 8 hours per day, no holidays."""
    return WorkingCalendar()


def _resolve(calendar: WorkingCalendar | None) -> WorkingCalendar:
    if calendar is None:
        return default_calendar()
    return calendar


def workdays_needed(hours: float, calendar: WorkingCalendar | None = None) -> int:
    """Whole working days needed to cover `hours`; zero for non-positive hours."""
    if hours <= 0:
        return 0
    cal = _resolve(calendar)
    hours_per_day = cal.hours_per_day if cal.hours_per_day > 0 else DEFAULT_HOURS_PER_DAY
    return math.ceil(hours / hours_per_day)


def compute_end_date(start: date, hours: float, calendar: WorkingCalendar | None = None) -> date:
    """
    Return the end date of a task that starts on `start` and needs `hours`.

    Counting begins the day after `start`; only working weekdays that are not
    holidays count. The last counted day is the end. Non-positive hours mean
    "no duration" and return `start` unchanged.
    """

    if hours <= 0:
        return start

    cal = _resolve(calendar)
    needed = workdays_needed(hours, cal)
    if not cal.working_weekdays:
        return start + ONE_DAY

    current = start
    counted = 0
    while counted < needed:
        current += ONE_DAY
        if cal.is_working_day(current):
            counted += 1

    if current <= start:
        return start + ONE_DAY
    return current


def next_working_day(day: date, calendar: WorkingCalendar | None = None) -> date:
    """Return `day` if it is a working day, otherwise the first working day after it."""
    cal = _resolve(calendar)
    if not cal.working_weekdays:
        return day
    current = day
    while not cal.is_working_day(current):
        current += ONE_DAY
    return current


def working_days_between(first: date, last: date, calendar: WorkingCalendar | None = None) -> int:
    """Count working days in the half-open range (first, last]; negative when last < first."""
    cal = _resolve(calendar)
    if last < first:
        return -working_days_between(last, first, cal)
    count = 0
    current = first
    while current < last:
        current += ONE_DAY
        if cal.is_working_day(current):
            count += 1
    return count


def earliest_start_for_end(end: date, hours: float, calendar: WorkingCalendar | None = None) -> date:
    """
    Return the earliest start whose computed end is on or after `end`.

    Used to turn finish constraints (FF, SF) into start constraints. Walks back
    from the day before `end` until `workdays_needed` working days are counted.
    """

    cal = _resolve(calendar)
    needed = workdays_needed(hours, cal)
    if needed == 0 or not cal.working_weekdays:
        return end

    current = end
    counted = 0
    while counted < needed:
        current -= ONE_DAY
        if cal.is_working_day(current):
            counted += 1
    return current


class CalendarStore:
    """
    Calendar configuration store keyed by id.

    Unknown or missing ids resolve to the store's default calendar instead of
    failing.
    """

    def __init__(self, calendars: list[WorkingCalendar] | None = None, default_id: str = DEFAULT_CALENDAR_ID):
        self.calendars: dict[str, WorkingCalendar] = {cal.id: cal for cal in calendars or []}
        self.default_id = default_id

    def __contains__(self, calendar_id: object) -> bool:
        return calendar_id in self.calendars

    def default(self) -> WorkingCalendar:
        return self.calendars.get(self.default_id) or default_calendar()

    def get(self, calendar_id: str | None) -> WorkingCalendar:
        if calendar_id is None:
            return self.default()
        calendar = self.calendars.get(calendar_id)
        if calendar is None:
            logger.warning("Calendar '%s' not found; falling back to '%s'", calendar_id, self.default_id)
            return self.default()
        return calendar
