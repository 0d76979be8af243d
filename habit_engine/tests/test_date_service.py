"""
Tests for DateService.
"""
from datetime import date, datetime

from habit_engine.services.date_service import DateService
from habit_engine.tests.conftest import NOW


class TestDateService:
    """Tests for clock-driven date helpers"""

    def test_today_follows_clock(self, date_service, clock):
        assert date_service.now() == NOW
        assert date_service.today() == datetime(2026, 3, 18)

        clock.advance(hours=5)

        assert date_service.today() == datetime(2026, 3, 19)

    def test_normalize_accepts_date(self):
        assert DateService.normalize_to_midnight(date(2026, 3, 18)) == datetime(2026, 3, 18)
        assert DateService.normalize_to_midnight(datetime(2026, 3, 18, 23, 59)) == datetime(2026, 3, 18)

    def test_day_range(self):
        start, end = DateService.get_day_range(datetime(2026, 3, 18, 12, 30))

        assert start == datetime(2026, 3, 18)
        assert end == datetime(2026, 3, 19)

    def test_first_of_next_month(self):
        assert DateService.first_of_next_month(datetime(2026, 3, 18)) == datetime(2026, 4, 1)
        assert DateService.first_of_next_month(datetime(2026, 12, 31)) == datetime(2027, 1, 1)

    def test_default_clock(self):
        service = DateService()

        assert abs((service.now() - datetime.now()).total_seconds()) < 5
