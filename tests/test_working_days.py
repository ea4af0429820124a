"""Weekend/holiday calendar and its cache."""
from datetime import datetime, timedelta

import pytest

from extensions import db
from models import Holiday
from services.working_days import WorkingDaysService
from workflow.errors import ValidationError

from .conftest import MONDAY

FRIDAY = MONDAY + timedelta(days=4)
SATURDAY = MONDAY + timedelta(days=5)


def _holiday(day, active=True):
    db.session.add(Holiday(date=day, name="Public holiday", is_active=active))
    db.session.commit()


class FakeClock:
    def __init__(self):
        self.now = datetime(2027, 1, 1, 8, 0)

    def __call__(self):
        return self.now


@pytest.fixture
def wd(app):
    return WorkingDaysService()


class TestCounting:

    def test_full_week_has_five_working_days(self, wd):
        assert wd.calculate_working_days(MONDAY, MONDAY + timedelta(days=6)) == 5

    def test_reversed_range_is_swapped(self, wd):
        assert wd.calculate_working_days(FRIDAY, MONDAY) == 5

    def test_exclusive_end(self, wd):
        assert wd.calculate_working_days(MONDAY, FRIDAY, include_end=False) == 4

    def test_weekend(self, wd):
        assert not wd.is_working_day(SATURDAY)
        assert wd.is_working_day(datetime(2027, 3, 1, 15, 30))

    def test_active_holidays_only(self, wd):
        _holiday(MONDAY + timedelta(days=1))
        _holiday(MONDAY + timedelta(days=2), active=False)

        assert wd.calculate_working_days(MONDAY, FRIDAY) == 4


class TestLeaveDays:

    def test_half_day(self, wd):
        assert wd.calculate_leave_days(MONDAY, MONDAY, half_day=True) == 0.5

    def test_half_day_on_weekend_counts_nothing(self, wd):
        assert wd.calculate_leave_days(SATURDAY, SATURDAY, half_day=True) == 0

    def test_half_day_must_be_single_day(self, wd):
        with pytest.raises(ValidationError):
            wd.calculate_leave_days(MONDAY, FRIDAY, half_day=True)


class TestDateArithmetic:

    def test_business_days_before(self, wd):
        moment = datetime(2027, 3, 8, 9, 0)  # Monday
        assert wd.business_days_before(moment, 1) == datetime(2027, 3, 5, 9, 0)

    def test_business_days_before_skips_holidays(self, wd):
        _holiday(MONDAY + timedelta(days=4))
        moment = datetime(2027, 3, 8, 9, 0)
        assert wd.business_days_before(moment, 1) == datetime(2027, 3, 4, 9, 0)


class TestCache:

    def test_holidays_cached_until_ttl(self, app):
        clock = FakeClock()
        wd = WorkingDaysService(ttl_seconds=60, clock=clock)
        tuesday = MONDAY + timedelta(days=1)

        assert wd.is_working_day(tuesday)
        _holiday(tuesday)
        assert wd.is_working_day(tuesday)

        clock.now += timedelta(seconds=61)
        assert not wd.is_working_day(tuesday)

    def test_clear_cache(self, app):
        wd = WorkingDaysService(ttl_seconds=3600, clock=FakeClock())
        tuesday = MONDAY + timedelta(days=1)

        assert wd.is_working_day(tuesday)
        _holiday(tuesday)
        wd.clear_cache()
        assert not wd.is_working_day(tuesday)
