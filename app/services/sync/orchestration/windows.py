"""
Backfill windows
Splits an inclusive date range into calendar-month sub-ranges

Examples:
    >>> [w.key for w in split_into_months(date(2024, 1, 1), date(2024, 3, 15))]
    ['2024-01-01..2024-01-31', '2024-02-01..2024-02-29', '2024-03-01..2024-03-15']
"""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List


@dataclass(frozen=True)
class DateWindow:
    start: date
    end: date

    @property
    def key(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def split_into_months(start: date, end: date) -> List[DateWindow]:
    """
    Inclusive calendar-month windows covering [start, end].

    The first window starts at `start`, the last ends at `end`; every window
    in between is a whole month.

    Raises:
        ValueError: start is after end
    """
    if start > end:
        raise ValueError(f"Backfill start {start} is after end {end}")

    windows = []
    cursor = start
    while cursor <= end:
        window_end = min(month_end(cursor), end)
        windows.append(DateWindow(cursor, window_end))
        cursor = window_end + timedelta(days=1)

    return windows
