from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable

from fastapi import HTTPException, Request

from app.models import Role
from app.services.auth_service import validate_session_token
from app.services.conflict_service import SchedulingConflictError
from app.services.holiday_calendar import HolidayCalendar, build_holiday_calendar


STAFF_ROLES = {Role.OWNER.value, Role.ADMIN.value, Role.TEACHER.value}
ADMIN_ROLES = {Role.OWNER.value, Role.ADMIN.value}


def _resolve_token(request: Request) -> str | None:
    token = request.cookies.get('auth_session')
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def require_auth_user(request: Request) -> dict:
    token = _resolve_token(request)
    session = validate_session_token(token)
    if not session:
        raise HTTPException(status_code=401, detail='Unauthorized')
    user_id = int(session.get('user_id') or 0)
    if user_id <= 0:
        raise HTTPException(status_code=401, detail='Unauthorized')
    return {
        'user_id': user_id,
        'role': str(session.get('role') or '').strip().lower(),
    }


def require_role(user: dict, allowed_roles: set[str] | Iterable[str]) -> None:
    normalized = {str(role).strip().lower() for role in allowed_roles}
    if str(user.get('role') or '').strip().lower() not in normalized:
        raise HTTPException(status_code=403, detail='Forbidden')


def require_staff(request: Request) -> dict:
    user = require_auth_user(request)
    require_role(user, STAFF_ROLES)
    return user


def require_admin(request: Request) -> dict:
    user = require_auth_user(request)
    require_role(user, ADMIN_ROLES)
    return user


def get_holiday_calendar(request: Request) -> HolidayCalendar:
    holiday_calendar = getattr(request.app.state, 'holiday_calendar', None)
    if holiday_calendar is None:
        holiday_calendar = build_holiday_calendar()
        request.app.state.holiday_calendar = holiday_calendar
    return holiday_calendar


@contextmanager
def translate_service_errors():
    try:
        yield
    except SchedulingConflictError as exc:
        raise HTTPException(status_code=409, detail={'message': str(exc), 'conflicts': exc.conflicts}) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
