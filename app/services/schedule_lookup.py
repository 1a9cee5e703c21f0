from __future__ import annotations

from datetime import date, time

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.weekday import Weekday
from app.models import Schedule, ScheduleSession, ScheduleTimeSlot
from app.services.recurrence_service import monday_of


class ScheduleNotFoundError(LookupError):
    pass


class SessionNotFoundError(LookupError):
    pass


def get_schedule(db: Session, schedule_id: int) -> Schedule:
    row = db.query(Schedule).filter(Schedule.id == schedule_id).first()
    if not row:
        raise ScheduleNotFoundError('Schedule not found')
    return row


def get_schedule_session(db: Session, schedule_id: int, session_id: int) -> ScheduleSession:
    row = (
        db.query(ScheduleSession)
        .filter(ScheduleSession.id == session_id, ScheduleSession.schedule_id == schedule_id)
        .first()
    )
    if not row:
        raise SessionNotFoundError('Session not found')
    return row


def compute_week_number(start_date: date, session_date: date) -> int:
    weeks = (monday_of(session_date) - monday_of(start_date)).days // 7
    return max(1, weeks + 1)


def next_session_number(db: Session, schedule_id: int) -> int:
    current = (
        db.query(func.max(ScheduleSession.session_number))
        .filter(
            ScheduleSession.schedule_id == schedule_id,
            ScheduleSession.is_makeup_session.is_(False),
        )
        .scalar()
    )
    return int(current or 0) + 1


def session_key_exists(
    db: Session,
    schedule_id: int,
    session_date: date,
    start_time: time,
    end_time: time,
    *,
    exclude_session_id: int | None = None,
) -> bool:
    query = db.query(ScheduleSession.id).filter(
        ScheduleSession.schedule_id == schedule_id,
        ScheduleSession.session_date == session_date,
        ScheduleSession.start_time == start_time,
        ScheduleSession.end_time == end_time,
    )
    if exclude_session_id:
        query = query.filter(ScheduleSession.id != exclude_session_id)
    return query.first() is not None


def resolve_time_slot(
    db: Session,
    schedule: Schedule,
    session_date: date,
    start_time: time,
    end_time: time,
) -> ScheduleTimeSlot:
    weekday = Weekday.of(session_date)
    slot = (
        db.query(ScheduleTimeSlot)
        .filter(
            ScheduleTimeSlot.schedule_id == schedule.id,
            ScheduleTimeSlot.day_of_week == weekday,
            ScheduleTimeSlot.start_time == start_time,
            ScheduleTimeSlot.end_time == end_time,
        )
        .first()
    )
    if slot:
        return slot

    last_order = (
        db.query(func.max(ScheduleTimeSlot.slot_order))
        .filter(ScheduleTimeSlot.schedule_id == schedule.id)
        .scalar()
    )
    slot = ScheduleTimeSlot(
        schedule_id=schedule.id,
        day_of_week=weekday,
        start_time=start_time,
        end_time=end_time,
        slot_order=int(last_order or 0) + 1,
        is_adhoc=True,
    )
    db.add(slot)
    db.flush()
    return slot


def _hhmm(value: time | None) -> str | None:
    return value.strftime('%H:%M') if value else None


def serialize_session(row: ScheduleSession) -> dict:
    return {
        'id': row.id,
        'schedule_id': row.schedule_id,
        'time_slot_id': row.time_slot_id,
        'session_date': row.session_date.isoformat(),
        'day_of_week': Weekday.of(row.session_date).value,
        'session_number': row.session_number,
        'week_number': row.week_number,
        'start_time': _hhmm(row.start_time),
        'end_time': _hhmm(row.end_time),
        'status': row.status,
        'is_makeup_session': bool(row.is_makeup_session),
        'makeup_for_session_id': row.makeup_for_session_id,
        'cancellation_reason': row.cancellation_reason,
        'notes': row.notes,
    }


def serialize_schedule(row: Schedule) -> dict:
    return {
        'id': row.id,
        'course_id': row.course_id,
        'teacher_id': row.teacher_id,
        'room_id': row.room_id,
        'schedule_name': row.schedule_name,
        'total_hours': row.total_hours,
        'hours_per_session': row.hours_per_session,
        'max_students': row.max_students,
        'start_date': row.start_date.isoformat(),
        'estimated_end_date': row.estimated_end_date.isoformat() if row.estimated_end_date else None,
        'status': row.status,
        'auto_reschedule_holidays': bool(row.auto_reschedule_holidays),
        'notes': row.notes,
        'time_slots': [
            {
                'id': slot.id,
                'day_of_week': slot.day_of_week.value,
                'start_time': _hhmm(slot.start_time),
                'end_time': _hhmm(slot.end_time),
                'slot_order': slot.slot_order,
                'is_adhoc': bool(slot.is_adhoc),
            }
            for slot in row.time_slots
        ],
    }
