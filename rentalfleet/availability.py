"""
Per-rental availability.

Each calendar year of a rental gets one ``AvailabilityCalendar`` holding a
free/booked flag for every day, packed into the bits of an int (bit 0 is
1 January). Every day starts booked. Toggling a range flips each day in it,
so making a period available and booking it are the same operation applied
to different states, and toggling the same range twice is a no-op.

``Availability`` maps years to calendars for one rental and splits ranges
that cross a year boundary. Neither class locks; the worker's rental store
serialises access.
"""
from datetime import date
from typing import Dict, List


def check_range(start: date, end: date):
    if start > end:
        raise ValueError(f"range starts after it ends: {start} > {end}")


class AvailabilityCalendar:

    def __init__(self, year: int):
        self.year = year
        self._free = 0

    @property
    def first_day(self) -> date:
        return date(self.year, 1, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, 12, 31)

    def _mask(self, start: date, end: date) -> int:
        """Bits for the days of [start, end] that fall inside this year."""
        first = max(start, self.first_day)
        last = min(end, self.last_day)
        if first > last:
            return 0
        lo = first.timetuple().tm_yday - 1
        hi = last.timetuple().tm_yday - 1
        return ((1 << (hi - lo + 1)) - 1) << lo

    def toggle_range(self, start: date, end: date):
        check_range(start, end)
        self._free ^= self._mask(start, end)

    def query(self, start: date, end: date) -> bool:
        """True if every day of [start, end] within this year is free."""
        check_range(start, end)
        mask = self._mask(start, end)
        return self._free & mask == mask

    def is_free(self, day: date) -> bool:
        return self.query(day, day)

    def free_days(self) -> int:
        return bin(self._free).count("1")


class Availability:
    """Year -> AvailabilityCalendar for one rental, created lazily."""

    def __init__(self):
        self._years: Dict[int, AvailabilityCalendar] = {}

    def calendar(self, year: int) -> AvailabilityCalendar:
        if year not in self._years:
            self._years[year] = AvailabilityCalendar(year)
        return self._years[year]

    def years(self) -> List[int]:
        return sorted(self._years)

    def toggle_range(self, start: date, end: date):
        check_range(start, end)
        for year in range(start.year, end.year + 1):
            self.calendar(year).toggle_range(start, end)

    def query(self, start: date, end: date) -> bool:
        check_range(start, end)
        for year in range(start.year, end.year + 1):
            calendar = self._years.get(year)
            # A year that was never toggled is fully booked.
            if calendar is None or not calendar.query(start, end):
                return False
        return True
