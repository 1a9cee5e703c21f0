"""Best-effort public holiday lookup backed by the Thai holiday feed.

The feed is keyed by Buddhist-era year and returns rows shaped like
``{"Date": "2568-04-13", "Title": "..."}``. Results are cached per BE year for
``settings.holiday_cache_ttl_hours``. Any failure for a year (timeout, HTTP
error, malformed payload) is logged and that year is skipped: holiday data must
never stop session generation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable

import httpx

from app.config import settings
from app.core.time_provider import default_time_provider
from app.metrics import record_event


logger = logging.getLogger(__name__)

BUDDHIST_ERA_OFFSET = 543

HolidayFetcher = Callable[[int], Any]
Clock = Callable[[], datetime]


@dataclass(frozen=True)
class Holiday:
    date: str
    name: str

    @property
    def day(self) -> date:
        return date.fromisoformat(self.date)

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


def to_buddhist_year(value: date | int) -> int:
    year = value if isinstance(value, int) else value.year
    return year + BUDDHIST_ERA_OFFSET


def to_gregorian_year(year_be: int) -> int:
    return year_be - BUDDHIST_ERA_OFFSET


def buddhist_years_between(start: date, end: date) -> list[int]:
    return list(range(to_buddhist_year(start), to_buddhist_year(end) + 1))


def fetch_holiday_feed(year_be: int) -> Any:
    response = httpx.get(
        settings.holiday_feed_url.format(year=year_be),
        timeout=settings.holiday_fetch_timeout_seconds,
    )
    response.raise_for_status()
    return response.json()


def parse_feed_rows(payload: Any) -> list[Holiday]:
    if not isinstance(payload, list):
        raise ValueError('holiday feed payload must be a list')

    rows: list[Holiday] = []
    seen: set[tuple[str, str]] = set()
    for item in payload:
        if not isinstance(item, dict):
            continue
        raw_date = str(item.get('Date') or '').strip()
        title = str(item.get('Title') or '').strip()
        try:
            year_be, month, day = (int(part) for part in raw_date.split('-'))
            holiday_day = date(to_gregorian_year(year_be), month, day)
        except ValueError:
            logger.debug('holiday_row_skipped raw_date=%s', raw_date)
            continue
        key = (holiday_day.isoformat(), title)
        if key in seen:
            continue
        seen.add(key)
        rows.append(Holiday(date=holiday_day.isoformat(), name=title or 'Public holiday'))
    rows.sort(key=lambda row: (row.date, row.name))
    return rows


class HolidayCalendar:
    def __init__(
        self,
        fetcher: HolidayFetcher = fetch_holiday_feed,
        clock: Clock = default_time_provider.now,
        ttl: timedelta | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._clock = clock
        self._ttl = ttl if ttl is not None else timedelta(hours=settings.holiday_cache_ttl_hours)
        self._lock = threading.Lock()
        self._entries: dict[int, tuple[datetime, list[Holiday]]] = {}

    def _cached(self, year_be: int) -> list[Holiday] | None:
        with self._lock:
            entry = self._entries.get(year_be)
            if entry is None:
                return None
            fetched_at, rows = entry
            if self._clock() - fetched_at >= self._ttl:
                self._entries.pop(year_be, None)
                return None
            return rows

    def _load(self, year_be: int) -> list[Holiday] | None:
        try:
            rows = parse_feed_rows(self._fetcher(year_be))
        except httpx.TimeoutException:
            record_event('holiday_fetch_failed')
            logger.warning('holiday_fetch_timeout year_be=%s', year_be)
            return None
        except Exception as exc:
            record_event('holiday_fetch_failed')
            logger.warning('holiday_fetch_failed year_be=%s error=%s', year_be, exc)
            return None
        with self._lock:
            self._entries[year_be] = (self._clock(), rows)
        logger.info('holiday_fetch_ok year_be=%s rows=%s', year_be, len(rows))
        return rows

    def get_holidays(self, years: Iterable[int]) -> list[Holiday]:
        holidays: list[Holiday] = []
        for year_be in sorted({int(year) for year in years}):
            rows = self._cached(year_be)
            if rows is not None:
                record_event('holiday_cache_hit')
            else:
                record_event('holiday_cache_miss')
                rows = self._load(year_be)
            if rows:
                holidays.extend(rows)
        return holidays

    def holiday_map(self, years: Iterable[int]) -> dict[date, str]:
        mapped: dict[date, str] = {}
        for row in self.get_holidays(years):
            mapped.setdefault(row.day, row.name)
        return mapped

    def holidays_between(self, start: date, end: date) -> list[Holiday]:
        if end < start:
            return []
        return [
            row
            for row in self.get_holidays(buddhist_years_between(start, end))
            if start.isoformat() <= row.date <= end.isoformat()
        ]

    def invalidate(self, year_be: int | None = None) -> None:
        with self._lock:
            if year_be is None:
                self._entries.clear()
            else:
                self._entries.pop(int(year_be), None)


class HolidayLookup:
    """Per-run memo over a HolidayCalendar so a failing year is only tried once per generation."""

    def __init__(self, calendar: HolidayCalendar) -> None:
        self._calendar = calendar
        self._by_year: dict[int, dict[date, str]] = {}

    def name_for(self, day: date) -> str | None:
        year_be = to_buddhist_year(day)
        if year_be not in self._by_year:
            self._by_year[year_be] = self._calendar.holiday_map([year_be])
        return self._by_year[year_be].get(day)


def build_holiday_calendar() -> HolidayCalendar:
    return HolidayCalendar(fetcher=fetch_holiday_feed, clock=default_time_provider.now)
