"""Calendar helpers: weekday convention, week boundaries, federal holidays.

Day of week follows the 0=Sunday .. 6=Saturday convention used throughout
availability rules and template entries.
"""

import calendar as _cal
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

SUNDAY, MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY = range(7)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# Services that still run on holidays.
INPATIENT_SERVICES = ("Consults", "Burgundy")


def day_of_week(day: date) -> int:
    """Return 0 for Sunday through 6 for Saturday."""
    return (day.weekday() + 1) % 7


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    return day - timedelta(days=day_of_week(day))


def is_weekend(day: date) -> bool:
    return day_of_week(day) in (SUNDAY, SATURDAY)


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    # weekday uses Python's Monday=0 numbering
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + 7 * (n - 1))


def _last_weekday(year: int, month: int, weekday: int) -> date:
    last = date(year, month, _cal.monthrange(year, month)[1])
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def _observed(day: date) -> date:
    """Saturday holidays are observed Friday, Sunday holidays Monday."""
    if day.weekday() == 5:
        return day - timedelta(days=1)
    if day.weekday() == 6:
        return day + timedelta(days=1)
    return day


@dataclass(frozen=True)
class Holiday:
    date: date
    name: str


def federal_holidays(year: int) -> list[Holiday]:
    """Observed US federal holidays for ``year``."""
    return [
        Holiday(_observed(date(year, 1, 1)), "New Year's Day"),
        Holiday(_nth_weekday(year, 1, 0, 3), "Martin Luther King Jr. Day"),
        Holiday(_nth_weekday(year, 2, 0, 3), "Presidents' Day"),
        Holiday(_last_weekday(year, 5, 0), "Memorial Day"),
        Holiday(_observed(date(year, 6, 19)), "Juneteenth"),
        Holiday(_observed(date(year, 7, 4)), "Independence Day"),
        Holiday(_nth_weekday(year, 9, 0, 1), "Labor Day"),
        Holiday(_nth_weekday(year, 11, 3, 4), "Thanksgiving Day"),
        Holiday(_observed(date(year, 12, 25)), "Christmas Day"),
    ]


class HolidayCalendar:
    """Computed federal holidays plus organisation-specific extra dates."""

    def __init__(
        self,
        extra: Iterable[Holiday] = (),
        inpatient_services: Iterable[str] = INPATIENT_SERVICES,
    ) -> None:
        self._extra = {h.date: h for h in extra}
        self._years: dict[int, dict[date, Holiday]] = {}
        self.inpatient_services = tuple(inpatient_services)

    def _for_year(self, year: int) -> dict[date, Holiday]:
        if year not in self._years:
            self._years[year] = {h.date: h for h in federal_holidays(year)}
        return self._years[year]

    def holiday_on(self, day: date) -> Optional[Holiday]:
        if day in self._extra:
            return self._extra[day]
        return self._for_year(day.year).get(day)

    def is_holiday(self, day: date) -> bool:
        return self.holiday_on(day) is not None

    def holidays_in_range(self, start: date, end: date) -> list[Holiday]:
        return [h for d in date_range(start, end) if (h := self.holiday_on(d))]

    def is_inpatient(self, service_name: str) -> bool:
        return service_name in self.inpatient_services

    def blocks_service(self, day: date, service_name: str) -> Optional[Holiday]:
        """Return the holiday if ``service_name`` does not run on ``day``."""
        holiday = self.holiday_on(day)
        if holiday is None or self.is_inpatient(service_name):
            return None
        return holiday
