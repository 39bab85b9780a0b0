"""
Working calendar — maps working-day offsets to calendar dates.

The scheduler reasons in integer working days from project start; this is
the one place that knows which calendar days crews actually work.
"""

from datetime import date, timedelta


class WorkCalendar:
    """Mon–Fri by default; every day when ``work_weekends`` is set."""

    def __init__(self, anchor: date, work_weekends: bool = False):
        self.work_weekends = work_weekends
        self.requested_start = anchor
        self.start = self.next_working_day(anchor)

    @property
    def start_was_moved(self) -> bool:
        return self.start != self.requested_start

    def is_working_day(self, day: date) -> bool:
        return self.work_weekends or day.weekday() < 5

    def next_working_day(self, day: date) -> date:
        while not self.is_working_day(day):
            day += timedelta(days=1)
        return day

    def date_at(self, offset: int) -> date:
        """The ``offset``-th working day after the (snapped) project start."""
        if offset < 0:
            raise ValueError("Working-day offsets cannot be negative")
        if self.work_weekends:
            return self.start + timedelta(days=offset)

        weeks, remainder = divmod(offset, 5)
        day = self.start + timedelta(weeks=weeks)
        for _ in range(remainder):
            day = self.next_working_day(day + timedelta(days=1))
        return day
