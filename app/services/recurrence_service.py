from __future__ import annotations

import calendar
from datetime import date, timedelta

from app.config import settings
from app.core.weekday import Weekday
from app.schemas import RepeatSpec


MAX_OCCURRENCES = 500


class RecurrenceError(ValueError):
    pass


def add_months(value: date, months: int) -> date:
    """Shift ``value`` by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))


def monday_of(value: date) -> date:
    return value - timedelta(days=value.weekday())


def _validate(base_date: date, repeat: RepeatSpec) -> None:
    if repeat.interval < 1:
        raise RecurrenceError('repeat.interval must be at least 1')
    end = repeat.end
    if end.type == 'after':
        if not (end.count and end.count >= 1):
            raise RecurrenceError('repeat.end.count is required when end type is "after"')
        if end.count > MAX_OCCURRENCES:
            raise RecurrenceError(f'repeat.end.count must not exceed {MAX_OCCURRENCES}')
    if end.type == 'on':
        if end.until is None:
            raise RecurrenceError('repeat.end.date is required when end type is "on"')
        if end.until < base_date:
            raise RecurrenceError('repeat.end.date must not be before the first session date')


def _boundary(base_date: date, repeat: RepeatSpec) -> date | None:
    if repeat.end.type == 'on':
        return repeat.end.until
    if repeat.end.type == 'after':
        # Every frequency emits at least one date per step, so the count alone ends it.
        return None
    return base_date + timedelta(days=settings.recurrence_never_horizon_days)


def _limit(repeat: RepeatSpec) -> int:
    if repeat.end.type == 'after':
        return int(repeat.end.count)
    return MAX_OCCURRENCES


def _past(candidate: date, boundary: date | None) -> bool:
    return boundary is not None and candidate > boundary


def _daily(base_date: date, repeat: RepeatSpec, boundary: date | None, limit: int) -> list[date]:
    results: list[date] = []
    current = base_date
    while not _past(current, boundary) and len(results) < limit:
        results.append(current)
        current += timedelta(days=repeat.interval)
    return results


def _weekly(base_date: date, repeat: RepeatSpec, boundary: date | None, limit: int) -> list[date]:
    weekdays = sorted({Weekday.parse(day) for day in repeat.days_of_week}, key=lambda day: day.number)
    if not weekdays:
        weekdays = [Weekday.of(base_date)]

    results: list[date] = []
    week_start = monday_of(base_date)
    while not _past(week_start, boundary) and len(results) < limit:
        for weekday in weekdays:
            candidate = week_start + timedelta(days=weekday.number)
            if candidate < base_date:
                continue
            if _past(candidate, boundary) or len(results) >= limit:
                break
            results.append(candidate)
        week_start += timedelta(weeks=repeat.interval)
    return results


def _monthly(base_date: date, repeat: RepeatSpec, boundary: date | None, limit: int) -> list[date]:
    results: list[date] = []
    step = 0
    while len(results) < limit:
        candidate = add_months(base_date, step * repeat.interval)
        if _past(candidate, boundary):
            break
        results.append(candidate)
        step += 1
    return results


_EXPANDERS = {
    'daily': _daily,
    'weekly': _weekly,
    'monthly': _monthly,
}


def expand_recurrence(base_date: date, repeat: RepeatSpec | None) -> list[date]:
    """Turn a repeat rule into the ordered, de-duplicated dates it covers.

    A disabled (or missing) repeat yields just ``base_date``. ``end.type='never'``
    is capped at ``settings.recurrence_never_horizon_days``; ``'on'`` keeps the
    boundary date itself; ``'after'`` stops at ``end.count`` occurrences.
    """
    if repeat is None or not repeat.enabled:
        return [base_date]

    _validate(base_date, repeat)
    expander = _EXPANDERS.get(repeat.frequency)
    if expander is None:
        raise RecurrenceError(f'unsupported repeat frequency: {repeat.frequency}')

    dates = expander(base_date, repeat, _boundary(base_date, repeat), _limit(repeat))
    return sorted(set(dates))
