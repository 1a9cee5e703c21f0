from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from app.models import Schedule, ScheduleSession, SessionStatus


class SchedulingConflictError(ValueError):
    def __init__(self, message: str, conflicts: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.conflicts = conflicts or []


@dataclass(frozen=True)
class Conflict:
    kind: str
    session_id: int
    schedule_id: int
    schedule_name: str
    session_date: date
    start_time: time
    end_time: time

    def as_dict(self) -> dict[str, Any]:
        return {
            'session_id': self.session_id,
            'schedule_id': self.schedule_id,
            'schedule_name': self.schedule_name,
            'session_date': self.session_date.isoformat(),
            'start_time': self.start_time.strftime('%H:%M'),
            'end_time': self.end_time.strftime('%H:%M'),
        }


@dataclass
class ConflictReport:
    teacher: list[Conflict] = field(default_factory=list)
    room: list[Conflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.teacher or self.room)

    def as_list(self) -> list[dict[str, Any]]:
        payload: list[dict[str, Any]] = []
        if self.teacher:
            payload.append(
                {
                    'type': 'teacher',
                    'message': 'Teacher already has a session in this time window.',
                    'conflicts': [row.as_dict() for row in self.teacher],
                }
            )
        if self.room:
            payload.append(
                {
                    'type': 'room',
                    'message': 'Room is already booked in this time window.',
                    'conflicts': [row.as_dict() for row in self.room],
                }
            )
        return payload


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    # Half-open: [09:00, 10:00) and [10:00, 11:00) only touch.
    return start_a < end_b and start_b < end_a


def detect_conflicts(
    db: Session,
    *,
    teacher_id: int | None,
    room_id: int | None,
    session_date: date,
    start_time: time,
    end_time: time,
    exclude_session_id: int | None = None,
) -> ConflictReport:
    if start_time >= end_time:
        raise ValueError('start_time must be before end_time')

    report = ConflictReport()
    if not teacher_id and not room_id:
        return report

    owner_filters = []
    if teacher_id:
        owner_filters.append(Schedule.teacher_id == teacher_id)
    if room_id:
        owner_filters.append(Schedule.room_id == room_id)

    query = (
        db.query(ScheduleSession)
        .join(Schedule, Schedule.id == ScheduleSession.schedule_id)
        .options(joinedload(ScheduleSession.schedule))
        .filter(
            ScheduleSession.session_date == session_date,
            ScheduleSession.status != SessionStatus.CANCELLED.value,
            or_(*owner_filters),
        )
    )
    if exclude_session_id:
        query = query.filter(ScheduleSession.id != exclude_session_id)

    for row in query.order_by(ScheduleSession.start_time.asc(), ScheduleSession.id.asc()).all():
        if not intervals_overlap(start_time, end_time, row.start_time, row.end_time):
            continue
        schedule = row.schedule
        if teacher_id and schedule.teacher_id == teacher_id:
            report.teacher.append(_to_conflict('teacher', row))
        if room_id and schedule.room_id == room_id:
            report.room.append(_to_conflict('room', row))
    return report


def ensure_no_conflicts(db: Session, **kwargs: Any) -> None:
    report = detect_conflicts(db, **kwargs)
    if report.has_conflicts:
        raise SchedulingConflictError('Schedule conflicts detected', report.as_list())


def _to_conflict(kind: str, row: ScheduleSession) -> Conflict:
    return Conflict(
        kind=kind,
        session_id=row.id,
        schedule_id=row.schedule_id,
        schedule_name=row.schedule.schedule_name,
        session_date=row.session_date,
        start_time=row.start_time,
        end_time=row.end_time,
    )
