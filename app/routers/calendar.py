from __future__ import annotations

from datetime import date, time

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.router_guard import get_holiday_calendar, require_staff, translate_service_errors
from app.db import get_db
from app.request_context import EndpointNameRoute
from app.services.conflict_service import detect_conflicts
from app.services.holiday_calendar import HolidayCalendar, buddhist_years_between
from app.services.session_query_service import SessionFilters, get_calendar_view, get_teacher_dashboard, query_sessions


router = APIRouter(prefix='/api/calendar', tags=['Calendar'], route_class=EndpointNameRoute)


class ConflictCheckPayload(BaseModel):
    teacher_id: int | None = None
    room_id: int | None = None
    session_date: date
    start_time: time
    end_time: time
    exclude_session_id: int | None = None


@router.get('')
def calendar_view_route(
    view: str = Query(default='week'),
    anchor_date: date = Query(..., alias='date'),
    teacher_id: int | None = Query(default=None),
    room_id: int | None = Query(default=None),
    schedule_id: int | None = Query(default=None),
    include_cancelled: bool = Query(default=True),
    bypass_cache: bool = Query(default=False),
    _: dict = Depends(require_staff),
    holiday_calendar: HolidayCalendar = Depends(get_holiday_calendar),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return get_calendar_view(
            db,
            view,
            anchor_date,
            holiday_calendar=holiday_calendar,
            teacher_id=teacher_id,
            room_id=room_id,
            schedule_id=schedule_id,
            include_cancelled=include_cancelled,
            bypass_cache=bypass_cache,
        )


@router.get('/sessions')
def query_sessions_route(
    schedule_id: int | None = Query(default=None),
    status: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    teacher_id: int | None = Query(default=None),
    room_id: int | None = Query(default=None),
    week_number: int | None = Query(default=None, ge=1),
    has_comments: bool | None = Query(default=None),
    include_cancelled: bool = Query(default=True),
    page: int = Query(default=1, ge=1),
    per_page: int | None = Query(default=None, ge=1),
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    filters = SessionFilters(
        schedule_id=schedule_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        teacher_id=teacher_id,
        room_id=room_id,
        week_number=week_number,
        has_comments=has_comments,
        include_cancelled=include_cancelled,
    )
    with translate_service_errors():
        return query_sessions(db, filters, page=page, per_page=per_page)


@router.get('/teacher-dashboard')
def teacher_dashboard_route(
    start: date = Query(...),
    end: date = Query(...),
    teacher_id: int | None = Query(default=None),
    bypass_cache: bool = Query(default=False),
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        return get_teacher_dashboard(db, start, end, teacher_id=teacher_id, bypass_cache=bypass_cache)


@router.get('/holidays')
def holidays_route(
    start: date = Query(...),
    end: date = Query(...),
    _: dict = Depends(require_staff),
    holiday_calendar: HolidayCalendar = Depends(get_holiday_calendar),
):
    rows = holiday_calendar.holidays_between(start, end)
    return {'years_be': buddhist_years_between(start, end), 'items': [row.as_dict() for row in rows]}


@router.post('/conflicts/check')
def check_conflicts_route(
    payload: ConflictCheckPayload,
    _: dict = Depends(require_staff),
    db: Session = Depends(get_db),
):
    with translate_service_errors():
        report = detect_conflicts(
            db,
            teacher_id=payload.teacher_id,
            room_id=payload.room_id,
            session_date=payload.session_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            exclude_session_id=payload.exclude_session_id,
        )
    return {'has_conflicts': report.has_conflicts, 'conflicts': report.as_list()}
