from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from app.config import settings


APP_TIMEZONE = settings.app_timezone or 'Asia/Bangkok'
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def naive_now(self) -> datetime:
        """Wall-clock time in the school's timezone, comparable with naive session datetimes."""
        return self.now().replace(tzinfo=None)


def age_on(date_of_birth: date | None, on_date: date) -> int | None:
    if date_of_birth is None:
        return None
    years = on_date.year - date_of_birth.year
    if (on_date.month, on_date.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


default_time_provider = TimeProvider()
