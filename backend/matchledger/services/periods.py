"""Map timestamps to the daily and weekly buckets stats are rolled up into."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import NamedTuple

from ..time_utils import parse_timestamp, utcnow


class PeriodIds(NamedTuple):
    daily: str
    weekly: str

    def for_type(self, period_type: str) -> str:
        if period_type == "daily":
            return self.daily
        if period_type == "weekly":
            return self.weekly
        raise ValueError(f"unknown period type: {period_type!r}")


def iso_week(day: date) -> tuple[int, int]:
    """Return ``(iso_year, iso_week)`` using the nearest-Thursday rule.

    The date is shifted to the Thursday of its Monday-Sunday week; that
    Thursday's year is the ISO year and its day-of-year gives the week.
    """

    thursday = day + timedelta(days=3 - day.weekday())
    year_start = date(thursday.year, 1, 1)
    week = ((thursday - year_start).days + 1 + 6) // 7
    return thursday.year, week


def resolve_periods(timestamp: str | datetime | None = None) -> PeriodIds:
    """Return the UTC daily (``YYYY-MM-DD``) and ISO weekly (``YYYY-Www``) ids."""

    moment = utcnow() if timestamp is None else parse_timestamp(timestamp)
    day = moment.date()
    year, week = iso_week(day)
    return PeriodIds(daily=day.strftime("%Y-%m-%d"), weekly=f"{year}-W{week:02d}")


def period_id(timestamp: str | datetime | None, period_type: str) -> str:
    return resolve_periods(timestamp).for_type(period_type)


def current_periods(now: datetime | None = None) -> PeriodIds:
    return resolve_periods(now or utcnow())
