from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from app.cache import clear_session_views
from app.models import MakeupEligibility, ScheduleSession, SessionStatus
from app.schemas import MakeupCreateRequest
from app.services.conflict_service import SchedulingConflictError, detect_conflicts
from app.services.notification_dispatcher import ScheduleEventType, notify_schedule_change
from app.services.schedule_lookup import (
    SessionNotFoundError,
    get_schedule,
    serialize_session,
    session_key_exists,
)


logger = logging.getLogger(__name__)

MAKEUP_SORT_FIELDS = ('session_date', 'original_date', 'session_number', 'status')


class MakeupAlreadyExistsError(ValueError):
    pass


def create_makeup_session(
    db: Session,
    schedule_id: int,
    payload: MakeupCreateRequest,
    *,
    actor_id: int | None = None,
) -> ScheduleSession:
    schedule = get_schedule(db, schedule_id)
    original = db.query(ScheduleSession).filter(ScheduleSession.id == payload.original_session_id).first()
    if not original or original.schedule_id != schedule.id:
        raise SessionNotFoundError('Original session not found in this schedule')
    if original.status != SessionStatus.CANCELLED.value:
        raise ValueError('Can only create makeup sessions for cancelled sessions')

    existing = (
        db.query(ScheduleSession.id)
        .filter(ScheduleSession.makeup_for_session_id == original.id)
        .first()
    )
    if existing:
        raise MakeupAlreadyExistsError('Makeup session already exists for this cancelled session')

    if session_key_exists(db, schedule.id, payload.makeup_date, payload.makeup_start_time, payload.makeup_end_time):
        raise SchedulingConflictError(
            'A session already exists at the makeup date and time',
            [
                {
                    'type': 'duplicate',
                    'message': 'A session already exists at the makeup date and time.',
                    'conflicts': [],
                }
            ],
        )
    report = detect_conflicts(
        db,
        teacher_id=schedule.teacher_id,
        room_id=schedule.room_id,
        session_date=payload.makeup_date,
        start_time=payload.makeup_start_time,
        end_time=payload.makeup_end_time,
    )
    if report.has_conflicts:
        raise SchedulingConflictError('Schedule conflicts detected', report.as_list())

    reason = payload.reason or 'Session cancelled'
    try:
        makeup = ScheduleSession(
            schedule_id=schedule.id,
            time_slot_id=original.time_slot_id,
            session_date=payload.makeup_date,
            session_number=original.session_number,
            week_number=original.week_number,
            start_time=payload.makeup_start_time,
            end_time=payload.makeup_end_time,
            status=SessionStatus.SCHEDULED.value,
            is_makeup_session=True,
            makeup_for_session_id=original.id,
            notes=payload.notes or f'Makeup session for {original.session_date.isoformat()} - {reason}',
        )
        db.add(makeup)
        db.flush()
        (
            db.query(MakeupEligibility)
            .filter(
                MakeupEligibility.original_session_id == original.id,
                MakeupEligibility.status == 'pending',
            )
            .update({MakeupEligibility.status: 'scheduled'}, synchronize_session=False)
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise MakeupAlreadyExistsError('Makeup session already exists for this cancelled session') from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(makeup)
    clear_session_views()
    logger.info(
        'makeup_created schedule_id=%s original_id=%s makeup_id=%s date=%s',
        schedule.id,
        original.id,
        makeup.id,
        makeup.session_date,
    )
    notify_schedule_change(
        ScheduleEventType.MAKEUP_CREATED,
        schedule_id=schedule.id,
        entity_type='schedule_session',
        entity_id=makeup.id,
        actor_id=actor_id,
        description=(
            f'Makeup for {original.session_date.isoformat()} scheduled on '
            f'{makeup.session_date.isoformat()} {makeup.start_time.strftime("%H:%M")}'
        ),
        payload={'original_session_id': original.id},
    )
    return makeup


def list_makeup_sessions(
    db: Session,
    schedule_id: int,
    *,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    sort: str = 'session_date',
    order: str = 'asc',
) -> list[dict]:
    schedule = get_schedule(db, schedule_id)
    if sort not in MAKEUP_SORT_FIELDS:
        raise ValueError(f'sort must be one of: {", ".join(MAKEUP_SORT_FIELDS)}')
    if order not in ('asc', 'desc'):
        raise ValueError('order must be asc or desc')

    original = aliased(ScheduleSession)
    query = (
        db.query(ScheduleSession, original)
        .join(original, ScheduleSession.makeup_for_session_id == original.id)
        .filter(
            ScheduleSession.schedule_id == schedule.id,
            ScheduleSession.is_makeup_session.is_(True),
        )
    )
    if status:
        query = query.filter(ScheduleSession.status == status)
    if start_date:
        query = query.filter(ScheduleSession.session_date >= start_date)
    if end_date:
        query = query.filter(ScheduleSession.session_date <= end_date)

    sort_column = {
        'session_date': ScheduleSession.session_date,
        'original_date': original.session_date,
        'session_number': ScheduleSession.session_number,
        'status': ScheduleSession.status,
    }[sort]
    direction = sort_column.desc() if order == 'desc' else sort_column.asc()
    query = query.order_by(direction, ScheduleSession.start_time.asc(), ScheduleSession.id.asc())

    items = []
    for makeup, source in query.all():
        item = serialize_session(makeup)
        item.update(
            {
                'original_date': source.session_date.isoformat(),
                'original_start_time': source.start_time.strftime('%H:%M'),
                'original_end_time': source.end_time.strftime('%H:%M'),
                'cancellation_reason': source.cancellation_reason,
                'makeup_notes': makeup.notes,
            }
        )
        items.append(item)
    return items
