"""Leave and course-drop rules for schedule enrollments.

A schedule with exactly one active enrollment is a private class. Private
students get a small leave quota (recorded as ``approved_leave``) and must give
advance notice; group students are never refused on quota and every absence
yields a pending makeup eligibility instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.cache import clear_session_views
from app.config import settings
from app.core.time_provider import TimeProvider, age_on, default_time_provider
from app.models import (
    AttendanceStatus,
    CourseDrop,
    DropType,
    EnrollmentStatus,
    MakeupEligibility,
    ScheduleReservation,
    ScheduleSession,
    SessionAttendance,
    SessionStatus,
)
from app.schemas import DropRequest, LeaveRequest
from app.services.enrollment_service import active_enrollment_count, get_enrollment
from app.services.notification_dispatcher import ScheduleEventType, notify_schedule_change
from app.services.schedule_lookup import get_schedule


logger = logging.getLogger(__name__)

# (is_private, total_hours) -> (allowed_leaves, allowed_makeups)
_ENTITLEMENTS = {
    (True, 40): (1, 1),
    (True, 50): (1, 1),
    (True, 60): (3, 2),
    (False, 40): (0, 1),
    (False, 50): (0, 1),
    (False, 60): (0, 2),
}
YOUNG_LEARNER_AGE = 10
YOUNG_LEARNER_LEAVES = 3


class LeavePolicyError(ValueError):
    pass


class DropLimitError(ValueError):
    pass


@dataclass(frozen=True)
class Entitlement:
    allowed_leaves: int
    allowed_makeups: int


def compute_entitlement(is_private: bool, total_hours: float, student_age: int | None = None) -> Entitlement:
    hours = float(total_hours)
    key = (bool(is_private), int(hours)) if hours.is_integer() else None
    leaves, makeups = _ENTITLEMENTS.get(key, (0, 0))
    if is_private and student_age is not None and student_age < YOUNG_LEARNER_AGE and hours < 60:
        leaves = YOUNG_LEARNER_LEAVES
    return Entitlement(allowed_leaves=leaves, allowed_makeups=makeups)


def is_private_class(db: Session, schedule_id: int) -> bool:
    return active_enrollment_count(db, schedule_id) == 1


def used_leave_count(db: Session, schedule_id: int, student_id: int) -> int:
    return (
        db.query(SessionAttendance.id)
        .join(ScheduleSession, ScheduleSession.id == SessionAttendance.session_id)
        .filter(
            ScheduleSession.schedule_id == schedule_id,
            SessionAttendance.student_id == student_id,
            SessionAttendance.status == AttendanceStatus.APPROVED_LEAVE.value,
        )
        .count()
    )


def _session_on(db: Session, schedule_id: int, leave_date) -> ScheduleSession:
    rows = (
        db.query(ScheduleSession)
        .filter(ScheduleSession.schedule_id == schedule_id, ScheduleSession.session_date == leave_date)
        .order_by(ScheduleSession.start_time.asc(), ScheduleSession.id.asc())
        .all()
    )
    for row in rows:
        if row.status != SessionStatus.CANCELLED.value:
            return row
    raise LeavePolicyError('No session found on the specified leave date')


def _notice_hours(session: ScheduleSession, time_provider: TimeProvider) -> float:
    starts_at = datetime.combine(session.session_date, session.start_time)
    hours = (starts_at - time_provider.naive_now()).total_seconds() / 3600.0
    return round(max(0.0, hours), 2)


def submit_leave(
    db: Session,
    schedule_id: int,
    payload: LeaveRequest,
    *,
    actor_id: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    schedule = get_schedule(db, schedule_id)
    enrollment = get_enrollment(db, schedule.id, payload.student_id, statuses=(EnrollmentStatus.ACTIVE.value,))
    private = is_private_class(db, schedule.id)
    age = age_on(enrollment.student.date_of_birth, time_provider.today())
    entitlement = compute_entitlement(private, schedule.total_hours, age)
    used = used_leave_count(db, schedule.id, payload.student_id)
    session = _session_on(db, schedule.id, payload.leave_date)

    notice = payload.advance_notice_hours
    if notice is None:
        notice = _notice_hours(session, time_provider)

    if private:
        if used >= entitlement.allowed_leaves:
            raise LeavePolicyError(
                f'Student has exhausted leave rights. Used: {used}/{entitlement.allowed_leaves}'
            )
        if notice < settings.private_leave_notice_hours:
            raise LeavePolicyError(
                f'Private classes require at least {settings.private_leave_notice_hours} hours advance notice for leave'
            )

    attendance = (
        db.query(SessionAttendance)
        .filter(SessionAttendance.session_id == session.id, SessionAttendance.student_id == payload.student_id)
        .first()
    )
    if attendance and attendance.status in (AttendanceStatus.APPROVED_LEAVE.value, AttendanceStatus.EXCUSED_ABSENCE.value):
        raise LeavePolicyError('Leave already recorded for this session')

    status = AttendanceStatus.APPROVED_LEAVE.value if private else AttendanceStatus.EXCUSED_ABSENCE.value
    eligibility = None
    try:
        if attendance is None:
            attendance = SessionAttendance(session_id=session.id, student_id=payload.student_id)
            db.add(attendance)
        attendance.status = status
        attendance.leave_type = payload.leave_type
        attendance.reason = payload.reason
        attendance.advance_notice_hours = notice
        attendance.notes = payload.notes
        attendance.approved_by = actor_id
        attendance.approved_at = time_provider.naive_now()

        if not private:
            eligibility = MakeupEligibility(
                schedule_id=schedule.id,
                student_id=payload.student_id,
                original_session_id=session.id,
                reason='Group class absence - makeup eligible',
                status='pending',
                created_by=actor_id,
            )
            db.add(eligibility)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(attendance)
    if eligibility is not None:
        db.refresh(eligibility)
    logger.info(
        'leave_recorded schedule_id=%s student_id=%s session_id=%s status=%s notice_hours=%s',
        schedule.id,
        payload.student_id,
        session.id,
        status,
        notice,
    )
    notify_schedule_change(
        ScheduleEventType.LEAVE_APPROVED,
        schedule_id=schedule.id,
        entity_type='session_attendance',
        entity_id=attendance.id,
        actor_id=actor_id,
        description=f'{payload.leave_type} recorded for student {payload.student_id} on {payload.leave_date.isoformat()}',
        payload={'status': status},
    )

    current = used + 1 if private else used
    return {
        'leave_approved': True,
        'attendance_id': attendance.id,
        'session_id': session.id,
        'status': status,
        'is_private_class': private,
        'advance_notice_hours': notice,
        'remaining_leaves': entitlement.allowed_leaves - current if private else 0,
        'makeup_eligible': (not private) or entitlement.allowed_makeups > 0,
        'makeup_eligibility_id': eligibility.id if eligibility is not None else None,
        'leave_policy': {
            'total_allowed_leaves': entitlement.allowed_leaves,
            'total_allowed_makeups': entitlement.allowed_makeups,
            'current_leave_count': current,
        },
    }


def get_leave_summary(
    db: Session,
    schedule_id: int,
    student_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    schedule = get_schedule(db, schedule_id)
    enrollment = get_enrollment(db, schedule.id, student_id)
    private = is_private_class(db, schedule.id)
    age = age_on(enrollment.student.date_of_birth, time_provider.today())
    entitlement = compute_entitlement(private, schedule.total_hours, age)
    used = used_leave_count(db, schedule.id, student_id)
    pending_makeups = (
        db.query(MakeupEligibility.id)
        .filter(
            MakeupEligibility.schedule_id == schedule.id,
            MakeupEligibility.student_id == student_id,
            MakeupEligibility.status == 'pending',
        )
        .count()
    )
    drops = _drop_count(db, schedule.id, student_id)
    return {
        'schedule_id': schedule.id,
        'student_id': student_id,
        'enrollment_status': enrollment.status,
        'is_private_class': private,
        'student_age': age,
        'allowed_leaves': entitlement.allowed_leaves,
        'allowed_makeups': entitlement.allowed_makeups,
        'used_leaves': used,
        'remaining_leaves': max(0, entitlement.allowed_leaves - used),
        'pending_makeups': pending_makeups,
        'drops_used': drops,
        'remaining_drops': max(0, settings.max_course_drops - drops),
    }


def _drop_count(db: Session, schedule_id: int, student_id: int) -> int:
    return (
        db.query(CourseDrop.id)
        .filter(CourseDrop.schedule_id == schedule_id, CourseDrop.student_id == student_id)
        .count()
    )


def submit_drop(
    db: Session,
    schedule_id: int,
    payload: DropRequest,
    *,
    actor_id: int | None = None,
) -> dict:
    schedule = get_schedule(db, schedule_id)
    temporary = payload.drop_type == DropType.TEMPORARY.value
    if temporary:
        if payload.expected_return_date is None:
            raise ValueError('expected_return_date is required for a temporary drop')
        if payload.expected_return_date < payload.drop_date:
            raise ValueError('expected_return_date must not be before drop_date')

    enrollment = get_enrollment(
        db,
        schedule.id,
        payload.student_id,
        statuses=(EnrollmentStatus.ACTIVE.value, EnrollmentStatus.PAUSED.value),
    )
    previous = _drop_count(db, schedule.id, payload.student_id)
    if previous >= settings.max_course_drops:
        raise DropLimitError(f'Student has reached maximum allowed drops ({settings.max_course_drops})')

    reservation = None
    try:
        drop = CourseDrop(
            schedule_id=schedule.id,
            student_id=payload.student_id,
            drop_type=payload.drop_type,
            drop_date=payload.drop_date,
            expected_return_date=payload.expected_return_date if temporary else None,
            preserve_schedule=payload.preserve_schedule,
            reason=payload.reason,
            notes=payload.notes,
            status='active',
            created_by=actor_id,
        )
        db.add(drop)
        db.flush()

        enrollment.status = EnrollmentStatus.PAUSED.value
        enrollment.notes = f'Course dropped: {payload.reason}'

        upcoming = (
            db.query(ScheduleSession)
            .filter(
                ScheduleSession.schedule_id == schedule.id,
                ScheduleSession.session_date >= payload.drop_date,
                ScheduleSession.status == SessionStatus.SCHEDULED.value,
            )
            .all()
        )
        session_ids = [row.id for row in upcoming]
        existing = {}
        if session_ids:
            existing = {
                row.session_id: row
                for row in db.query(SessionAttendance).filter(
                    SessionAttendance.student_id == payload.student_id,
                    SessionAttendance.session_id.in_(session_ids),
                )
            }
        note = f'Course dropped on {payload.drop_date.isoformat()}: {payload.reason}'
        for session_id in session_ids:
            attendance = existing.get(session_id)
            if attendance is None:
                attendance = SessionAttendance(session_id=session_id, student_id=payload.student_id)
                db.add(attendance)
            attendance.status = AttendanceStatus.COURSE_DROPPED.value
            attendance.reason = note

        if temporary and payload.expected_return_date and payload.preserve_schedule:
            reservation = ScheduleReservation(
                schedule_id=schedule.id,
                student_id=payload.student_id,
                course_drop_id=drop.id,
                reserved_from=payload.drop_date,
                reserved_until=payload.expected_return_date,
                status='reserved',
                created_by=actor_id,
            )
            db.add(reservation)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(drop)
    clear_session_views()
    logger.info(
        'course_dropped schedule_id=%s student_id=%s type=%s sessions=%s',
        schedule.id,
        payload.student_id,
        payload.drop_type,
        len(session_ids),
    )
    notify_schedule_change(
        ScheduleEventType.COURSE_DROPPED,
        schedule_id=schedule.id,
        entity_type='course_drop',
        entity_id=drop.id,
        actor_id=actor_id,
        description=f'{payload.drop_type} drop for student {payload.student_id} from {payload.drop_date.isoformat()}',
        payload={'affected_sessions': len(session_ids)},
    )
    return {
        'drop_id': drop.id,
        'drop_type': drop.drop_type,
        'drop_date': drop.drop_date.isoformat(),
        'expected_return_date': drop.expected_return_date.isoformat() if drop.expected_return_date else None,
        'schedule_preserved': bool(payload.preserve_schedule),
        'reservation_id': reservation.id if reservation is not None else None,
        'affected_sessions': len(session_ids),
        'previous_drops': previous,
        'remaining_drops': settings.max_course_drops - previous - 1,
    }
