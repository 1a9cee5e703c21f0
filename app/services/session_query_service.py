from __future__ import annotations

import calendar
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.cache import cache, cache_key
from app.config import settings
from app.core.weekday import Weekday
from app.metrics import timed_service
from app.models import (
    Course,
    EnrollmentStatus,
    Room,
    Schedule,
    ScheduleEnrollment,
    ScheduleException,
    ScheduleSession,
    ScheduleTimeSlot,
    SessionComment,
    SessionStatus,
    Teacher,
)
from app.services.holiday_calendar import HolidayCalendar
from app.services.recurrence_service import monday_of
from app.services.schedule_exception_service import serialize_exception
from app.services.schedule_lookup import get_schedule, serialize_schedule, serialize_session


VALID_VIEWS = ('day', 'week', 'month')


@dataclass
class SessionFilters:
    schedule_id: int | None = None
    status: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    teacher_id: int | None = None
    room_id: int | None = None
    week_number: int | None = None
    has_comments: bool | None = None
    include_cancelled: bool = True


def _session_rows(db: Session):
    comment_counts = (
        db.query(
            SessionComment.session_id.label('session_id'),
            func.count(SessionComment.id).label('comment_count'),
        )
        .group_by(SessionComment.session_id)
        .subquery()
    )
    query = (
        db.query(ScheduleSession, Schedule, Course, Teacher, Room, comment_counts.c.comment_count)
        .join(Schedule, Schedule.id == ScheduleSession.schedule_id)
        .outerjoin(Course, Course.id == Schedule.course_id)
        .outerjoin(Teacher, Teacher.id == Schedule.teacher_id)
        .outerjoin(Room, Room.id == Schedule.room_id)
        .outerjoin(comment_counts, comment_counts.c.session_id == ScheduleSession.id)
    )
    return query, comment_counts


def _apply_filters(query, comment_counts, filters: SessionFilters):
    if filters.schedule_id:
        query = query.filter(ScheduleSession.schedule_id == filters.schedule_id)
    if filters.status:
        query = query.filter(ScheduleSession.status == filters.status)
    elif not filters.include_cancelled:
        query = query.filter(ScheduleSession.status != SessionStatus.CANCELLED.value)
    if filters.start_date:
        query = query.filter(ScheduleSession.session_date >= filters.start_date)
    if filters.end_date:
        query = query.filter(ScheduleSession.session_date <= filters.end_date)
    if filters.teacher_id:
        query = query.filter(Schedule.teacher_id == filters.teacher_id)
    if filters.room_id:
        query = query.filter(Schedule.room_id == filters.room_id)
    if filters.week_number:
        query = query.filter(ScheduleSession.week_number == filters.week_number)
    if filters.has_comments is True:
        query = query.filter(comment_counts.c.comment_count > 0)
    elif filters.has_comments is False:
        query = query.filter(comment_counts.c.comment_count.is_(None))
    return query


def _display_row(row) -> dict[str, Any]:
    session, schedule, course, teacher, room, comment_count = row
    item = serialize_session(session)
    item.update(
        {
            'schedule_name': schedule.schedule_name,
            'course_name': course.name if course else None,
            'teacher_id': schedule.teacher_id,
            'teacher_name': teacher.display_name if teacher else None,
            'room_id': schedule.room_id,
            'room_name': room.room_name if room else None,
            'comment_count': int(comment_count or 0),
        }
    )
    return item


def _ordered(query):
    return query.order_by(
        ScheduleSession.session_date.asc(),
        ScheduleSession.start_time.asc(),
        ScheduleSession.id.asc(),
    )


def _pagination(page: int, per_page: int, total: int) -> dict[str, int]:
    return {
        'current_page': page,
        'per_page': per_page,
        'total': total,
        'total_pages': math.ceil(total / per_page) if total else 0,
    }


def query_sessions(
    db: Session,
    filters: SessionFilters | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict[str, Any]:
    filters = filters or SessionFilters()
    if filters.start_date and filters.end_date and filters.end_date < filters.start_date:
        raise ValueError('end_date must be greater than or equal to start_date')
    per_page = min(max(1, int(per_page or settings.default_page_size)), settings.max_page_size)
    page = max(1, int(page or 1))

    query, comment_counts = _session_rows(db)
    query = _apply_filters(query, comment_counts, filters)
    total = query.count()
    rows = _ordered(query).offset((page - 1) * per_page).limit(per_page).all()
    return {
        'items': [_display_row(row) for row in rows],
        'pagination': _pagination(page, per_page, total),
    }


@dataclass
class ScheduleFilters:
    course_id: int | None = None
    teacher_id: int | None = None
    room_id: int | None = None
    day_of_week: Weekday | None = None
    status: str | None = None


def list_schedules(
    db: Session,
    filters: ScheduleFilters | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict[str, Any]:
    """Page through schedules with their display names and seat usage.

    ``day_of_week`` matches schedules holding a regular (non ad-hoc) slot on that day.
    """
    filters = filters or ScheduleFilters()
    per_page = min(max(1, int(per_page or settings.default_page_size)), settings.max_page_size)
    page = max(1, int(page or 1))

    query = db.query(Schedule)
    if filters.course_id:
        query = query.filter(Schedule.course_id == filters.course_id)
    if filters.teacher_id:
        query = query.filter(Schedule.teacher_id == filters.teacher_id)
    if filters.room_id:
        query = query.filter(Schedule.room_id == filters.room_id)
    if filters.status:
        query = query.filter(Schedule.status == filters.status)
    if filters.day_of_week:
        query = query.filter(
            Schedule.time_slots.any(
                (ScheduleTimeSlot.day_of_week == filters.day_of_week) & ScheduleTimeSlot.is_adhoc.is_(False)
            )
        )

    total = query.count()
    rows = (
        query.order_by(Schedule.start_date.asc(), Schedule.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    counts: dict[int, int] = {}
    if rows:
        counts = dict(
            db.query(ScheduleEnrollment.schedule_id, func.count(ScheduleEnrollment.id))
            .filter(
                ScheduleEnrollment.schedule_id.in_([row.id for row in rows]),
                ScheduleEnrollment.status == EnrollmentStatus.ACTIVE.value,
            )
            .group_by(ScheduleEnrollment.schedule_id)
            .all()
        )

    items = []
    for row in rows:
        item = serialize_schedule(row)
        current = int(counts.get(row.id, 0))
        item.update(
            {
                'course_name': row.course.name if row.course else None,
                'course_code': row.course.code if row.course else None,
                'teacher_name': row.teacher.display_name if row.teacher else None,
                'room_name': row.room.room_name if row.room else None,
                'current_students': current,
                'available_spots': max(0, row.max_students - current),
            }
        )
        items.append(item)
    return {'items': items, 'pagination': _pagination(page, per_page, total)}


def calendar_window(view: str, anchor_date: date) -> tuple[date, date]:
    if view == 'day':
        return anchor_date, anchor_date
    if view == 'week':
        start = monday_of(anchor_date)
        return start, start + timedelta(days=6)
    if view == 'month':
        last_day = calendar.monthrange(anchor_date.year, anchor_date.month)[1]
        return anchor_date.replace(day=1), anchor_date.replace(day=last_day)
    raise ValueError('view must be one of: day, week, month')


def _status_summary(items: list[dict[str, Any]]) -> dict[str, int]:
    return {
        'total_sessions': len(items),
        'scheduled': sum(1 for item in items if item['status'] == SessionStatus.SCHEDULED.value),
        'completed': sum(1 for item in items if item['status'] == SessionStatus.COMPLETED.value),
        'cancelled': sum(1 for item in items if item['status'] == SessionStatus.CANCELLED.value),
        'makeup': sum(1 for item in items if item['is_makeup_session']),
    }


@timed_service('calendar_view')
def get_calendar_view(
    db: Session,
    view: str,
    anchor_date: date,
    *,
    holiday_calendar: HolidayCalendar,
    teacher_id: int | None = None,
    room_id: int | None = None,
    schedule_id: int | None = None,
    include_cancelled: bool = True,
    bypass_cache: bool = False,
) -> dict[str, Any]:
    clean_view = (view or '').strip().lower()
    start, end = calendar_window(clean_view, anchor_date)
    token = cache_key(
        'calendar_view',
        f'{clean_view}:{start.isoformat()}:{end.isoformat()}:t{teacher_id or 0}:r{room_id or 0}'
        f':s{schedule_id or 0}:c{int(include_cancelled)}',
    )
    if not bypass_cache:
        cached = cache.get_cached(token)
        if cached is not None:
            return cached

    filters = SessionFilters(
        schedule_id=schedule_id,
        start_date=start,
        end_date=end,
        teacher_id=teacher_id,
        room_id=room_id,
        include_cancelled=include_cancelled,
    )
    query, comment_counts = _session_rows(db)
    items = [_display_row(row) for row in _ordered(_apply_filters(query, comment_counts, filters)).all()]

    exception_query = (
        db.query(ScheduleException)
        .join(Schedule, Schedule.id == ScheduleException.schedule_id)
        .filter(ScheduleException.exception_date >= start, ScheduleException.exception_date <= end)
    )
    if schedule_id:
        exception_query = exception_query.filter(ScheduleException.schedule_id == schedule_id)
    if teacher_id:
        exception_query = exception_query.filter(Schedule.teacher_id == teacher_id)
    if room_id:
        exception_query = exception_query.filter(Schedule.room_id == room_id)
    exceptions = [serialize_exception(row) for row in exception_query.order_by(ScheduleException.exception_date.asc()).all()]
    holidays = holiday_calendar.holidays_between(start, end)

    by_day: dict[str, dict[str, list]] = defaultdict(lambda: {'sessions': [], 'holidays': [], 'exceptions': []})
    for item in items:
        by_day[item['session_date']]['sessions'].append(item)
    for holiday in holidays:
        by_day[holiday.date]['holidays'].append(holiday.as_dict())
    for exception in exceptions:
        by_day[exception['exception_date']]['exceptions'].append(exception)

    days = []
    current = start
    while current <= end:
        bucket = by_day.get(current.isoformat(), {'sessions': [], 'holidays': [], 'exceptions': []})
        days.append({'date': current.isoformat(), 'weekday': current.strftime('%A').lower(), **bucket})
        current += timedelta(days=1)

    summary = _status_summary(items)
    summary.update({'holidays': len(holidays), 'exceptions': len(exceptions)})
    payload = {
        'view': clean_view,
        'start': start.isoformat(),
        'end': end.isoformat(),
        'days': days,
        'summary': summary,
    }
    cache.set_cached(token, payload, ttl=settings.calendar_cache_ttl)
    return payload


def _duration_hours(item: dict[str, Any]) -> float:
    start = datetime.strptime(item['start_time'], '%H:%M')
    end = datetime.strptime(item['end_time'], '%H:%M')
    return max(0.0, (end - start).total_seconds() / 3600.0)


@timed_service('teacher_dashboard')
def get_teacher_dashboard(
    db: Session,
    start_date: date,
    end_date: date,
    *,
    teacher_id: int | None = None,
    bypass_cache: bool = False,
) -> dict[str, Any]:
    if end_date < start_date:
        raise ValueError('end_date must be greater than or equal to start_date')
    token = cache_key('teacher_dashboard', f'{start_date.isoformat()}:{end_date.isoformat()}:t{teacher_id or 0}')
    if not bypass_cache:
        cached = cache.get_cached(token)
        if cached is not None:
            return cached

    filters = SessionFilters(start_date=start_date, end_date=end_date, teacher_id=teacher_id)
    query, comment_counts = _session_rows(db)
    items = [_display_row(row) for row in _ordered(_apply_filters(query, comment_counts, filters)).all()]

    grouped: dict[int | None, list[dict[str, Any]]] = defaultdict(list)
    for item in items:
        grouped[item['teacher_id']].append(item)

    teachers = []
    for key in sorted(grouped, key=lambda value: (value is None, value or 0)):
        sessions = grouped[key]
        totals = _status_summary(sessions)
        totals['teaching_hours'] = round(
            sum(_duration_hours(item) for item in sessions if item['status'] != SessionStatus.CANCELLED.value),
            2,
        )
        teachers.append(
            {
                'teacher_id': key,
                'teacher_name': sessions[0]['teacher_name'] or 'Unassigned',
                'totals': totals,
                'sessions': sessions,
            }
        )

    payload = {
        'start_date': start_date.isoformat(),
        'end_date': end_date.isoformat(),
        'teachers': teachers,
        'totals': {
            'teachers': len([row for row in teachers if row['teacher_id'] is not None]),
            'sessions': len(items),
            'teaching_hours': round(sum(row['totals']['teaching_hours'] for row in teachers), 2),
        },
    }
    cache.set_cached(token, payload, ttl=settings.calendar_cache_ttl)
    return payload


def get_schedule_sessions(
    db: Session,
    schedule_id: int,
    *,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    include_cancelled: bool = False,
) -> dict[str, Any]:
    schedule = get_schedule(db, schedule_id)
    filters = SessionFilters(
        schedule_id=schedule.id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        include_cancelled=include_cancelled,
    )
    query, comment_counts = _session_rows(db)
    items = [_display_row(row) for row in _ordered(_apply_filters(query, comment_counts, filters)).all()]
    exceptions = [
        serialize_exception(row)
        for row in db.query(ScheduleException)
        .filter(ScheduleException.schedule_id == schedule.id)
        .order_by(ScheduleException.exception_date.asc())
        .all()
    ]
    summary = _status_summary(items)
    summary['total_exceptions'] = len(exceptions)
    return {
        'schedule': {
            'id': schedule.id,
            'schedule_name': schedule.schedule_name,
            'course_name': schedule.course.name if schedule.course else None,
            'status': schedule.status,
        },
        'sessions': items,
        'exceptions': exceptions,
        'summary': summary,
    }
