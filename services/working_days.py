from datetime import datetime, timedelta

from models import Holiday
from workflow.errors import ValidationError

# Saturday / Sunday
WEEKEND = (5, 6)


class WorkingDaysService:
    """Weekend + public-holiday calendar with a per-year holiday cache.

    Built once by the app factory and handed to whoever needs it; the cache
    lives on the instance and expires after ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds=3600, clock=datetime.utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._cache = {}

    # =========================
    # Holiday cache
    # =========================
    def _holidays_for_year(self, year):
        entry = self._cache.get(year)
        if entry and self.clock() - entry["ts"] <= self.ttl:
            return entry["data"]

        rows = (
            Holiday.query
            .filter(
                Holiday.is_active.is_(True),
                Holiday.date >= datetime(year, 1, 1).date(),
                Holiday.date <= datetime(year, 12, 31).date(),
            )
            .all()
        )
        data = frozenset(h.date for h in rows)
        self._cache[year] = {"data": data, "ts": self.clock()}
        return data

    def clear_cache(self):
        self._cache.clear()

    # =========================
    # Queries
    # =========================
    def is_working_day(self, day) -> bool:
        if isinstance(day, datetime):
            day = day.date()
        if day.weekday() in WEEKEND:
            return False
        return day not in self._holidays_for_year(day.year)

    def calculate_working_days(self, start, end, include_end=True) -> int:
        if start > end:
            start, end = end, start
        if not include_end:
            end = end - timedelta(days=1)

        count = 0
        day = start
        while day <= end:
            if self.is_working_day(day):
                count += 1
            day += timedelta(days=1)
        return count

    def calculate_leave_days(self, start, end, half_day=False) -> float:
        if half_day:
            if start != end:
                raise ValidationError("Half day leave can only be for a single day")
            return 0.5 if self.is_working_day(start) else 0
        return float(self.calculate_working_days(start, end, include_end=True))

    def business_days_before(self, moment, days):
        """``moment`` moved back by ``days`` working days (time of day kept)."""
        current = moment
        remaining = days
        while remaining > 0:
            current -= timedelta(days=1)
            if self.is_working_day(current.date() if isinstance(current, datetime) else current):
                remaining -= 1
        return current
