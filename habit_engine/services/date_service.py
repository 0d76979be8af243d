"""
Date calculation service.
Every "today" and month boundary goes through an injected clock
so streak and reset logic stays deterministic under test.
"""
from datetime import datetime, timedelta, date
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]
DateLike = Union[date, datetime]


class DateService:
    """Service for date-related operations"""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or datetime.now

    def now(self) -> datetime:
        """Current local time from the injected clock"""
        return self._clock()

    def today(self) -> datetime:
        """Midnight of the current day"""
        return self.normalize_to_midnight(self.now())

    @staticmethod
    def normalize_to_midnight(value: DateLike) -> datetime:
        """
        Normalize a date or datetime to midnight (remove time component).

        Args:
            value: Date or datetime to normalize

        Returns:
            Datetime set to midnight
        """
        if isinstance(value, datetime):
            value = value.date()
        return datetime.combine(value, datetime.min.time())

    @staticmethod
    def get_day_range(target: DateLike) -> tuple[datetime, datetime]:
        """
        Get datetime range for a full day (midnight to midnight).

        Args:
            target: Day to get range for

        Returns:
            Tuple of (day_start, day_end) datetimes, end exclusive
        """
        day_start = DateService.normalize_to_midnight(target)
        day_end = day_start + timedelta(days=1)
        return day_start, day_end

    @staticmethod
    def first_of_next_month(value: DateLike) -> datetime:
        """Midnight on the first day of the month after `value`"""
        if value.month == 12:
            return datetime(value.year + 1, 1, 1)
        return datetime(value.year, value.month + 1, 1)
