from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.router_guard import get_holiday_calendar, require_admin, require_staff, translate_service_errors
from app.core.weekday import Weekday
from app.db import get_db
from app.request_context import EndpointNameRoute
from app.schemas import (
    DropRequest,
    EnrollmentRequest,
    ExceptionCreateRequest,
    LeaveRequest,
    MakeupCreateRequest,
    ScheduleCreateRequest,
    ScheduleUpdateRequest,
    SessionCommentRequest,
    SessionCreateRequest,
    SessionEditRequest,
)
from app.services.enrollment_service import enroll_student, list_enrollments, remove_student
from app.services.holiday_calendar import HolidayCalendar
from app.services.leave_policy_service import get_leave_summary, submit_drop, submit_leave
from app.services.makeup_session_service import create_makeup_session, list_makeup_sessions
from app.services.schedule_exception_service import (
    apply_existing_exceptions,
    create_exception,
    create_exception_for_session,
    delete_schedule,
    list_exceptions,
    serialize_exception,
    update_schedule,
)
from app.services.schedule_lookup import get_schedule, serialize_schedule, serialize_session
from app.services.session_generation_service import add_sessions, create_schedule, regenerate_schedule_sessions
from app.services.session_query_service import ScheduleFilters, get_schedule_sessions, list_schedules
from app.services.session_service import (
    add_comment,
    delete_comment,
    edit_session,
    list_comments,
    serialize_comment,
    update_comment,
)


router = APIRouter(prefix='/api/schedules', tags=['Schedules'], route_class=EndpointNameRoute)


@router.post('', status_code=201)
def create_schedule_route(
    payload: ScheduleCreateRequest,
    user: dict = Depends(require_admin),
    holiday_calendar: HolidayCalendar = Depends(get_holiday_calendar),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        schedule, result = create_schedule(db, payload, holiday_calendar=holiday_calendar, actor_id=user['user_id'])
    return {'schedule': serialize_schedule(schedule), 'generation': result.as_dict()}


@router.get('')
def list_schedules_route(
    course_id: int | None = Query(default=None),
    teacher_id: int | None = Query(default=None),
    room_id: int | None = Query(default=None),
    day_of_week: str | None = Query(default=None),
    status: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int | None = Query(default=None, ge=1),
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        filters = ScheduleFilters(
            course_id=course_id,
            teacher_id=teacher_id,
            room_id=room_id,
            day_of_week=Weekday.parse(day_of_week) if day_of_week else None,
            status=status,
        )
        return list_schedules(db, filters, page=page, per_page=per_page)


@router.get('/{schedule_id}')
def get_schedule_route(schedule_id: int, _: dict = Depends(require_staff), db: Session = Depends(get_db)):
    with translate_service_errors():
        schedule = get_schedule(db, schedule_id)
    return serialize_schedule(schedule)


@router.patch('/{schedule_id}')
def update_schedule_route(
    schedule_id: int,
    payload: ScheduleUpdateRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        schedule = update_schedule(db, schedule_id, payload, actor_id=user['user_id'])
    return serialize_schedule(schedule)


@router.delete('/{schedule_id}')
def delete_schedule_route(schedule_id: int, _: dict = Depends(require_admin), db: Session = Depends(get_db)):
    with translate_service_errors():
        delete_schedule(db, schedule_id)
    return {'ok': True}


@router.post('/{schedule_id}/regenerate')
def regenerate_schedule_route(
    schedule_id: int,
    _: dict = Depends(require_admin),
    holiday_calendar: HolidayCalendar = Depends(get_holiday_calendar),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        result, replayed = regenerate_schedule_sessions(db, schedule_id, holiday_calendar=holiday_calendar)
    return {'generation': result.as_dict(), 'exceptions': replayed}


@router.get('/{schedule_id}/sessions')
def list_schedule_sessions_route(
    schedule_id: int,
    status: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return get_schedule_sessions(
            db,
            schedule_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            include_cancelled=include_cancelled,
        )


@router.post('/{schedule_id}/sessions')
def add_sessions_route(
    schedule_id: int,
    payload: SessionCreateRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return add_sessions(db, schedule_id, payload, actor_id=user['user_id'])


@router.patch('/{schedule_id}/sessions/{session_id}')
def edit_session_route(
    schedule_id: int,
    session_id: int,
    payload: SessionEditRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        row = edit_session(db, schedule_id, session_id, payload, actor_id=user['user_id'])
    return serialize_session(row)


@router.get('/{schedule_id}/sessions/{session_id}/comments')
def list_comments_route(
    schedule_id: int,
    session_id: int,
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        rows = list_comments(db, schedule_id, session_id)
    return {'items': [serialize_comment(row) for row in rows]}


@router.post('/{schedule_id}/sessions/{session_id}/comments', status_code=201)
def add_comment_route(
    schedule_id: int,
    session_id: int,
    payload: SessionCommentRequest,
    user: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        row = add_comment(db, schedule_id, session_id, payload, author_id=user['user_id'])
    return serialize_comment(row)


@router.patch('/{schedule_id}/sessions/{session_id}/comments/{comment_id}')
def update_comment_route(
    schedule_id: int,
    session_id: int,
    comment_id: int,
    payload: SessionCommentRequest,
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        row = update_comment(db, schedule_id, session_id, comment_id, payload)
    return serialize_comment(row)


@router.delete('/{schedule_id}/sessions/{session_id}/comments/{comment_id}')
def delete_comment_route(
    schedule_id: int,
    session_id: int,
    comment_id: int,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        delete_comment(db, schedule_id, session_id, comment_id)
    return {'ok': True}


@router.post('/{schedule_id}/sessions/{session_id}/exceptions', status_code=201)
def create_session_exception_route(
    schedule_id: int,
    session_id: int,
    payload: ExceptionCreateRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        exception, affected = create_exception_for_session(
            db, schedule_id, session_id, payload, actor_id=user['user_id']
        )
    return {'exception': serialize_exception(exception), 'affected_sessions': affected}


@router.get('/{schedule_id}/exceptions')
def list_exceptions_route(schedule_id: int, _: dict = Depends(require_staff), db: Session = Depends(get_db)):
    with translate_service_errors():
        rows = list_exceptions(db, schedule_id)
    return {'items': [serialize_exception(row) for row in rows]}


@router.post('/{schedule_id}/exceptions', status_code=201)
def create_exception_route(
    schedule_id: int,
    payload: ExceptionCreateRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        exception, affected = create_exception(db, schedule_id, payload, actor_id=user['user_id'])
    return {'exception': serialize_exception(exception), 'affected_sessions': affected}


@router.post('/{schedule_id}/exceptions/replay')
def replay_exceptions_route(schedule_id: int, _: dict = Depends(require_admin), db: Session = Depends(get_db)):
    with translate_service_errors():
        return {'items': apply_existing_exceptions(db, schedule_id)}


@router.post('/{schedule_id}/makeup', status_code=201)
def create_makeup_route(
    schedule_id: int,
    payload: MakeupCreateRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        row = create_makeup_session(db, schedule_id, payload, actor_id=user['user_id'])
    return serialize_session(row)


@router.get('/{schedule_id}/makeup')
def list_makeup_route(
    schedule_id: int,
    status: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    sort: str = Query(default='session_date'),
    order: str = Query(default='asc'),
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        items = list_makeup_sessions(
            db,
            schedule_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            sort=sort,
            order=order,
        )
    return {'items': items}


@router.post('/{schedule_id}/leave', status_code=201)
def submit_leave_route(
    schedule_id: int,
    payload: LeaveRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return submit_leave(db, schedule_id, payload, actor_id=user['user_id'])


@router.post('/{schedule_id}/drop', status_code=201)
def submit_drop_route(
    schedule_id: int,
    payload: DropRequest,
    user: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return submit_drop(db, schedule_id, payload, actor_id=user['user_id'])


@router.get('/{schedule_id}/students')
def list_students_route(
    schedule_id: int,
    status: str | None = Query(default='active'),
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return {'items': list_enrollments(db, schedule_id, status=status)}


@router.post('/{schedule_id}/students', status_code=201)
def enroll_student_route(
    schedule_id: int,
    payload: EnrollmentRequest,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        row = enroll_student(db, schedule_id, payload)
    return {'id': row.id, 'schedule_id': row.schedule_id, 'student_id': row.student_id, 'status': row.status}


@router.delete('/{schedule_id}/students/{student_id}')
def remove_student_route(
    schedule_id: int,
    student_id: int,
    reason: str | None = Query(default=None),
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        row = remove_student(db, schedule_id, student_id, reason=reason)
    return {'id': row.id, 'status': row.status}


@router.get('/{schedule_id}/students/{student_id}/leave-summary')
def leave_summary_route(
    schedule_id: int,
    student_id: int,
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return get_leave_summary(db, schedule_id, student_id)
