from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.cache import clear_session_views
from app.models import ScheduleSession, SessionComment, SessionStatus
from app.schemas import SessionCommentRequest, SessionEditRequest
from app.services.conflict_service import SchedulingConflictError, detect_conflicts
from app.services.notification_dispatcher import ScheduleEventType, notify_schedule_change
from app.services.schedule_lookup import (
    compute_week_number,
    get_schedule,
    get_schedule_session,
    session_key_exists,
)


logger = logging.getLogger(__name__)


def _duplicate_error() -> SchedulingConflictError:
    return SchedulingConflictError(
        'A session already exists at this date and time',
        [{'type': 'duplicate', 'message': 'A session already exists at this date and time.', 'conflicts': []}],
    )


def edit_session(
    db: Session,
    schedule_id: int,
    session_id: int,
    payload: SessionEditRequest,
    *,
    actor_id: int | None = None,
) -> ScheduleSession:
    schedule = get_schedule(db, schedule_id)
    row = get_schedule_session(db, schedule.id, session_id)
    changes = payload.model_dump(exclude_unset=True)

    new_date = changes.get('session_date') or row.session_date
    new_start = changes.get('start_time') or row.start_time
    new_end = changes.get('end_time') or row.end_time
    new_status = changes.get('status') or row.status
    if new_start >= new_end:
        raise ValueError('start_time must be before end_time')

    moved = (new_date, new_start, new_end) != (row.session_date, row.start_time, row.end_time)
    if moved and session_key_exists(db, schedule.id, new_date, new_start, new_end, exclude_session_id=row.id):
        raise _duplicate_error()

    reopening = row.status == SessionStatus.CANCELLED.value and new_status != SessionStatus.CANCELLED.value
    if reopening:
        makeup = db.query(ScheduleSession.id).filter(ScheduleSession.makeup_for_session_id == row.id).first()
        if makeup:
            raise ValueError('Session already has a makeup; cancel the makeup session first')

    if new_status != SessionStatus.CANCELLED.value and (moved or reopening):
        report = detect_conflicts(
            db,
            teacher_id=schedule.teacher_id,
            room_id=schedule.room_id,
            session_date=new_date,
            start_time=new_start,
            end_time=new_end,
            exclude_session_id=row.id,
        )
        if report.has_conflicts:
            raise SchedulingConflictError('Schedule conflicts detected', report.as_list())

    row.session_date = new_date
    row.start_time = new_start
    row.end_time = new_end
    if moved:
        row.week_number = compute_week_number(schedule.start_date, new_date)
    row.status = new_status
    if new_status == SessionStatus.CANCELLED.value:
        row.cancellation_reason = changes.get('cancellation_reason') or row.cancellation_reason or 'Cancelled'
    elif reopening:
        row.cancellation_reason = None
    if 'notes' in changes:
        row.notes = changes['notes']

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise _duplicate_error() from exc
    db.refresh(row)
    clear_session_views()
    notify_schedule_change(
        ScheduleEventType.SESSION_UPDATED,
        schedule_id=schedule.id,
        entity_type='schedule_session',
        entity_id=row.id,
        actor_id=actor_id,
        description=f'Session {row.session_number} now {row.status} on {row.session_date.isoformat()}',
        payload={'fields': sorted(changes)},
    )
    return row


def add_comment(
    db: Session,
    schedule_id: int,
    session_id: int,
    payload: SessionCommentRequest,
    *,
    author_id: int | None = None,
) -> SessionComment:
    row = get_schedule_session(db, schedule_id, session_id)
    comment = SessionComment(session_id=row.id, author_id=author_id, body=payload.body.strip())
    db.add(comment)
    db.commit()
    db.refresh(comment)
    clear_session_views()
    return comment


def list_comments(db: Session, schedule_id: int, session_id: int) -> list[SessionComment]:
    row = get_schedule_session(db, schedule_id, session_id)
    return (
        db.query(SessionComment)
        .filter(SessionComment.session_id == row.id)
        .order_by(SessionComment.created_at.asc(), SessionComment.id.asc())
        .all()
    )


def _get_comment(db: Session, schedule_id: int, session_id: int, comment_id: int) -> SessionComment:
    row = get_schedule_session(db, schedule_id, session_id)
    comment = (
        db.query(SessionComment)
        .filter(SessionComment.id == comment_id, SessionComment.session_id == row.id)
        .first()
    )
    if not comment:
        raise LookupError('Comment not found')
    return comment


def update_comment(
    db: Session,
    schedule_id: int,
    session_id: int,
    comment_id: int,
    payload: SessionCommentRequest,
) -> SessionComment:
    comment = _get_comment(db, schedule_id, session_id, comment_id)
    comment.body = payload.body.strip()
    db.commit()
    db.refresh(comment)
    clear_session_views()
    return comment


def delete_comment(db: Session, schedule_id: int, session_id: int, comment_id: int) -> None:
    comment = _get_comment(db, schedule_id, session_id, comment_id)
    db.delete(comment)
    db.commit()
    clear_session_views()


def serialize_comment(row: SessionComment) -> dict:
    return {
        'id': row.id,
        'session_id': row.session_id,
        'author_id': row.author_id,
        'body': row.body,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }
