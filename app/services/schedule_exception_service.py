from __future__ import annotations

import logging
from datetime import date, time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.cache import clear_session_views
from app.core.time_provider import TimeProvider, default_time_provider
from app.models import (
    CourseDrop,
    EnrollmentStatus,
    ExceptionType,
    MakeupEligibility,
    Schedule,
    ScheduleEnrollment,
    ScheduleException,
    ScheduleReservation,
    ScheduleSession,
    ScheduleTimeSlot,
    SessionAttendance,
    SessionComment,
    SessionStatus,
)
from app.schemas import ExceptionCreateRequest, ScheduleUpdateRequest
from app.services.conflict_service import SchedulingConflictError, detect_conflicts
from app.services.notification_dispatcher import ScheduleEventType, notify_schedule_change
from app.services.schedule_lookup import (
    compute_week_number,
    get_schedule,
    get_schedule_session,
    session_key_exists,
)


logger = logging.getLogger(__name__)

SCHEDULE_LEVEL_TYPES = {ExceptionType.TEACHER_CHANGE.value, ExceptionType.ROOM_CHANGE.value}


class DuplicateExceptionError(ValueError):
    pass


class ExceptionNotApplicableError(ValueError):
    pass


def _validate_exception(payload: ExceptionCreateRequest) -> None:
    exception_type = payload.exception_type
    if exception_type in SCHEDULE_LEVEL_TYPES:
        field_name = 'teacher_id' if exception_type == ExceptionType.TEACHER_CHANGE.value else 'room_id'
        raise ExceptionNotApplicableError(
            f'{exception_type} applies to the whole schedule; update the schedule {field_name} instead'
        )
    if exception_type == ExceptionType.RESCHEDULE.value:
        if not payload.new_date:
            raise ValueError('new_date is required for reschedule')
        if (
            payload.new_date == payload.exception_date
            and not payload.new_start_time
            and not payload.new_end_time
        ):
            raise ValueError('reschedule must change the date or the time')
    if exception_type == ExceptionType.TIME_CHANGE.value and not (payload.new_start_time or payload.new_end_time):
        raise ValueError('new_start_time or new_end_time is required for time_change')


def _target_slot(row: ScheduleSession, exception: ScheduleException) -> tuple[date, time, time]:
    new_date = row.session_date
    if exception.exception_type == ExceptionType.RESCHEDULE.value:
        new_date = exception.new_date
    start_time = exception.new_start_time or row.start_time
    end_time = exception.new_end_time or row.end_time
    if start_time >= end_time:
        raise ValueError('New start time must be before new end time')
    return new_date, start_time, end_time


def apply_exception_to_date(
    db: Session,
    schedule: Schedule,
    exception: ScheduleException,
    *,
    session_id: int | None = None,
) -> int:
    """Apply ``exception`` to the schedule's sessions on its date and return how many rows changed.

    Rows already in the target state are not touched. Moves are validated as a
    whole before any row is written.
    """
    query = db.query(ScheduleSession).filter(
        ScheduleSession.schedule_id == schedule.id,
        ScheduleSession.session_date == exception.exception_date,
    )
    if session_id:
        query = query.filter(ScheduleSession.id == session_id)
    rows = query.order_by(ScheduleSession.start_time.asc(), ScheduleSession.id.asc()).all()

    if exception.exception_type == ExceptionType.CANCELLATION.value:
        affected = 0
        for row in rows:
            if row.status == SessionStatus.CANCELLED.value:
                continue
            row.status = SessionStatus.CANCELLED.value
            row.cancellation_reason = exception.reason
            row.notes = f'Cancelled: {exception.reason}'
            affected += 1
        return affected

    if exception.exception_type not in (ExceptionType.RESCHEDULE.value, ExceptionType.TIME_CHANGE.value):
        return 0

    moves: list[tuple[ScheduleSession, tuple[date, time, time]]] = []
    claimed: set[tuple[date, time, time]] = set()
    for row in rows:
        if row.status == SessionStatus.CANCELLED.value:
            continue
        target = _target_slot(row, exception)
        if target == (row.session_date, row.start_time, row.end_time):
            continue
        if target in claimed or session_key_exists(db, schedule.id, *target, exclude_session_id=row.id):
            raise SchedulingConflictError(
                'Target slot already has a session for this schedule',
                [
                    {
                        'type': 'duplicate',
                        'message': 'A session already exists at the target date and time.',
                        'conflicts': [
                            {
                                'session_id': row.id,
                                'session_date': target[0].isoformat(),
                                'start_time': target[1].strftime('%H:%M'),
                                'end_time': target[2].strftime('%H:%M'),
                            }
                        ],
                    }
                ],
            )
        report = detect_conflicts(
            db,
            teacher_id=schedule.teacher_id,
            room_id=schedule.room_id,
            session_date=target[0],
            start_time=target[1],
            end_time=target[2],
            exclude_session_id=row.id,
        )
        if report.has_conflicts:
            raise SchedulingConflictError('Schedule conflicts detected', report.as_list())
        claimed.add(target)
        moves.append((row, target))

    for row, (new_date, start_time, end_time) in moves:
        if exception.exception_type == ExceptionType.RESCHEDULE.value:
            row.notes = f'Rescheduled from {row.session_date.isoformat()}: {exception.reason}'
            row.session_date = new_date
            row.week_number = compute_week_number(schedule.start_date, new_date)
        else:
            row.notes = f'Time changed: {exception.reason}'
        row.start_time = start_time
        row.end_time = end_time
    return len(moves)


def create_exception(
    db: Session,
    schedule_id: int,
    payload: ExceptionCreateRequest,
    *,
    actor_id: int | None = None,
    session_id: int | None = None,
) -> tuple[ScheduleException, int]:
    schedule = get_schedule(db, schedule_id)
    _validate_exception(payload)
    if session_id:
        target = get_schedule_session(db, schedule.id, session_id)
        if target.session_date != payload.exception_date:
            raise ValueError('exception_date must match the session date')

    existing = (
        db.query(ScheduleException.id)
        .filter(
            ScheduleException.schedule_id == schedule.id,
            ScheduleException.exception_date == payload.exception_date,
        )
        .first()
    )
    if existing:
        raise DuplicateExceptionError('Exception already exists for this date')

    try:
        exception = ScheduleException(
            schedule_id=schedule.id,
            exception_date=payload.exception_date,
            exception_type=payload.exception_type,
            new_date=payload.new_date,
            new_start_time=payload.new_start_time,
            new_end_time=payload.new_end_time,
            new_teacher_id=payload.new_teacher_id,
            new_room_id=payload.new_room_id,
            target_session_id=session_id,
            reason=payload.reason.strip(),
            notes=payload.notes,
            status='approved',
            created_by=actor_id,
        )
        db.add(exception)
        db.flush()
        affected = apply_exception_to_date(db, schedule, exception, session_id=session_id)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateExceptionError('Exception already exists for this date') from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(exception)
    clear_session_views()
    logger.info(
        'schedule_exception_applied schedule_id=%s date=%s type=%s affected=%s',
        schedule.id,
        exception.exception_date,
        exception.exception_type,
        affected,
    )
    notify_schedule_change(
        ScheduleEventType.EXCEPTION_APPLIED,
        schedule_id=schedule.id,
        entity_type='schedule_exception',
        entity_id=exception.id,
        actor_id=actor_id,
        description=(
            f'{exception.exception_type} on {exception.exception_date.isoformat()} '
            f'affected {affected} session(s): {exception.reason}'
        ),
        payload={'affected_sessions': affected},
    )
    return exception, affected


def create_exception_for_session(
    db: Session,
    schedule_id: int,
    session_id: int,
    payload: ExceptionCreateRequest,
    *,
    actor_id: int | None = None,
) -> tuple[ScheduleException, int]:
    return create_exception(db, schedule_id, payload, actor_id=actor_id, session_id=session_id)


def apply_existing_exceptions(db: Session, schedule_id: int, *, commit: bool = True) -> list[dict]:
    schedule = get_schedule(db, schedule_id)
    rows = (
        db.query(ScheduleException)
        .filter(ScheduleException.schedule_id == schedule.id, ScheduleException.status == 'approved')
        .order_by(ScheduleException.exception_date.asc(), ScheduleException.id.asc())
        .all()
    )
    results = []
    try:
        for exception in rows:
            if exception.exception_type in SCHEDULE_LEVEL_TYPES:
                continue
            affected = apply_exception_to_date(db, schedule, exception, session_id=exception.target_session_id)
            results.append(
                {
                    'exception_id': exception.id,
                    'exception_date': exception.exception_date.isoformat(),
                    'exception_type': exception.exception_type,
                    'affected': affected,
                }
            )
        if commit:
            db.commit()
    except Exception:
        if commit:
            db.rollback()
        raise
    if commit:
        clear_session_views()
    return results


def list_exceptions(db: Session, schedule_id: int) -> list[ScheduleException]:
    schedule = get_schedule(db, schedule_id)
    return (
        db.query(ScheduleException)
        .filter(ScheduleException.schedule_id == schedule.id)
        .order_by(ScheduleException.exception_date.asc())
        .all()
    )


def serialize_exception(row: ScheduleException) -> dict:
    return {
        'id': row.id,
        'schedule_id': row.schedule_id,
        'exception_date': row.exception_date.isoformat(),
        'exception_type': row.exception_type,
        'new_date': row.new_date.isoformat() if row.new_date else None,
        'new_start_time': row.new_start_time.strftime('%H:%M') if row.new_start_time else None,
        'new_end_time': row.new_end_time.strftime('%H:%M') if row.new_end_time else None,
        'target_session_id': row.target_session_id,
        'reason': row.reason,
        'notes': row.notes,
        'status': row.status,
    }


def update_schedule(
    db: Session,
    schedule_id: int,
    payload: ScheduleUpdateRequest,
    *,
    actor_id: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> Schedule:
    schedule = get_schedule(db, schedule_id)
    changes = payload.model_dump(exclude_unset=True)
    if 'schedule_name' in changes and changes['schedule_name'] is None:
        changes.pop('schedule_name')

    teacher_changed = 'teacher_id' in changes and changes['teacher_id'] != schedule.teacher_id
    room_changed = 'room_id' in changes and changes['room_id'] != schedule.room_id
    if teacher_changed or room_changed:
        upcoming = (
            db.query(ScheduleSession)
            .filter(
                ScheduleSession.schedule_id == schedule.id,
                ScheduleSession.session_date >= time_provider.today(),
                ScheduleSession.status != SessionStatus.CANCELLED.value,
            )
            .order_by(ScheduleSession.session_date.asc(), ScheduleSession.start_time.asc())
            .all()
        )
        collisions = []
        for row in upcoming:
            report = detect_conflicts(
                db,
                teacher_id=changes['teacher_id'] if teacher_changed else None,
                room_id=changes['room_id'] if room_changed else None,
                session_date=row.session_date,
                start_time=row.start_time,
                end_time=row.end_time,
            )
            if report.has_conflicts:
                collisions.append(
                    {
                        'session_id': row.id,
                        'session_date': row.session_date.isoformat(),
                        'conflicts': report.as_list(),
                    }
                )
        if collisions:
            raise SchedulingConflictError('Schedule update conflicts with existing sessions', collisions)

    for key, value in changes.items():
        setattr(schedule, key, value)
    db.commit()
    db.refresh(schedule)
    clear_session_views()
    notify_schedule_change(
        ScheduleEventType.SCHEDULE_UPDATED,
        schedule_id=schedule.id,
        entity_type='schedule',
        entity_id=schedule.id,
        actor_id=actor_id,
        description=f'Schedule "{schedule.schedule_name}" updated: {", ".join(sorted(changes)) or "no changes"}',
        payload={'fields': sorted(changes)},
    )
    return schedule


def delete_schedule(db: Session, schedule_id: int) -> None:
    schedule = get_schedule(db, schedule_id)
    active = (
        db.query(ScheduleEnrollment.id)
        .filter(
            ScheduleEnrollment.schedule_id == schedule.id,
            ScheduleEnrollment.status == EnrollmentStatus.ACTIVE.value,
        )
        .count()
    )
    if active:
        raise ValueError(f'Cannot delete schedule with {active} active enrollment(s)')

    session_ids = [row.id for row in db.query(ScheduleSession.id).filter(ScheduleSession.schedule_id == schedule.id)]
    try:
        if session_ids:
            db.query(SessionAttendance).filter(SessionAttendance.session_id.in_(session_ids)).delete(synchronize_session=False)
            db.query(SessionComment).filter(SessionComment.session_id.in_(session_ids)).delete(synchronize_session=False)
        for model in (MakeupEligibility, ScheduleReservation, CourseDrop, ScheduleException):
            db.query(model).filter(model.schedule_id == schedule.id).delete(synchronize_session=False)
        db.query(ScheduleSession).filter(ScheduleSession.schedule_id == schedule.id).delete(synchronize_session=False)
        db.query(ScheduleTimeSlot).filter(ScheduleTimeSlot.schedule_id == schedule.id).delete(synchronize_session=False)
        db.query(ScheduleEnrollment).filter(ScheduleEnrollment.schedule_id == schedule.id).delete(synchronize_session=False)
        db.query(Schedule).filter(Schedule.id == schedule.id).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    clear_session_views()
    logger.info('schedule_deleted schedule_id=%s sessions=%s', schedule_id, len(session_ids))
