from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.cache import clear_session_views
from app.config import settings
from app.metrics import record_event, timed_service
from app.models import (
    Course,
    ExceptionType,
    Schedule,
    ScheduleException,
    ScheduleSession,
    ScheduleStatus,
    ScheduleTimeSlot,
    SessionStatus,
)
from app.schemas import ScheduleCreateRequest, SessionCreateRequest
from app.services.conflict_service import detect_conflicts
from app.services.holiday_calendar import HolidayCalendar, HolidayLookup
from app.services.notification_dispatcher import ScheduleEventType, notify_schedule_change
from app.services.recurrence_service import expand_recurrence
from app.services.schedule_exception_service import apply_existing_exceptions
from app.services.schedule_lookup import (
    compute_week_number,
    get_schedule,
    next_session_number,
    resolve_time_slot,
    serialize_session,
    session_key_exists,
)


logger = logging.getLogger(__name__)

SessionKey = tuple[date, time, time]


@dataclass
class PlannedOccurrence:
    session_number: int
    session_date: date
    week_number: int
    slot: ScheduleTimeSlot

    @property
    def key(self) -> SessionKey:
        return (self.session_date, self.slot.start_time, self.slot.end_time)


@dataclass
class GenerationResult:
    target_sessions: int
    sessions_per_week: int
    created: list[ScheduleSession] = field(default_factory=list)
    skipped_existing: int = 0
    cancelled_for_holiday: int = 0
    makeups_created: int = 0
    manual_makeup_dates: list[date] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def estimated_weeks(self) -> int:
        if self.sessions_per_week <= 0:
            return 0
        return math.ceil(self.target_sessions / self.sessions_per_week)

    def as_dict(self) -> dict:
        return {
            'target_sessions': self.target_sessions,
            'sessions_per_week': self.sessions_per_week,
            'estimated_weeks': self.estimated_weeks,
            'created_count': self.created_count,
            'skipped_existing': self.skipped_existing,
            'cancelled_for_holiday': self.cancelled_for_holiday,
            'makeups_created': self.makeups_created,
            'manual_makeup_dates': [value.isoformat() for value in self.manual_makeup_dates],
        }


def recurring_slots(schedule: Schedule) -> list[ScheduleTimeSlot]:
    # Slots created for one-off sessions never drive bulk generation.
    return [slot for slot in schedule.time_slots if not slot.is_adhoc]


def target_session_count(total_hours: float, hours_per_session: float) -> int:
    if hours_per_session <= 0:
        raise ValueError('hours_per_session must be positive')
    return math.ceil(float(total_hours) / float(hours_per_session))


def plan_occurrences(schedule: Schedule) -> list[PlannedOccurrence]:
    """Walk forward from the start date and assign session numbers to slot occurrences."""
    slots = recurring_slots(schedule)
    if not slots:
        raise ValueError('Schedule has no time slots')

    by_weekday: dict[int, list[ScheduleTimeSlot]] = defaultdict(list)
    for slot in slots:
        by_weekday[slot.day_of_week.number].append(slot)
    for day_slots in by_weekday.values():
        day_slots.sort(key=lambda row: (row.start_time, row.slot_order))

    target = target_session_count(schedule.total_hours, schedule.hours_per_session)
    # Every week holds at least one slot, so target weeks always suffice.
    last_day = schedule.start_date + timedelta(weeks=target + 1)

    planned: list[PlannedOccurrence] = []
    current = schedule.start_date
    while len(planned) < target and current <= last_day:
        for slot in by_weekday.get(current.weekday(), []):
            if len(planned) >= target:
                break
            planned.append(
                PlannedOccurrence(
                    session_number=len(planned) + 1,
                    session_date=current,
                    week_number=compute_week_number(schedule.start_date, current),
                    slot=slot,
                )
            )
        current += timedelta(days=1)
    return planned


def _shifted_key(exception: ScheduleException, key: SessionKey) -> SessionKey | None:
    session_date, start_time, end_time = key
    if exception.exception_type == ExceptionType.RESCHEDULE.value and exception.new_date:
        return (exception.new_date, exception.new_start_time or start_time, exception.new_end_time or end_time)
    if exception.exception_type == ExceptionType.TIME_CHANGE.value:
        return (session_date, exception.new_start_time or start_time, exception.new_end_time or end_time)
    return None


def _probe_makeup_date(
    db: Session,
    schedule: Schedule,
    cancelled_date: date,
    start_time: time,
    end_time: time,
    *,
    lookup: HolidayLookup,
    occupied: set[SessionKey],
) -> date | None:
    for step in range(1, settings.makeup_probe_max_weeks + 1):
        candidate = cancelled_date + timedelta(weeks=step)
        if (candidate, start_time, end_time) in occupied:
            continue
        if lookup.name_for(candidate):
            continue
        report = detect_conflicts(
            db,
            teacher_id=schedule.teacher_id,
            room_id=schedule.room_id,
            session_date=candidate,
            start_time=start_time,
            end_time=end_time,
        )
        if report.has_conflicts:
            continue
        return candidate
    return None


@timed_service('session_generation')
def generate_schedule_sessions(
    db: Session,
    schedule: Schedule,
    *,
    holiday_calendar: HolidayCalendar,
) -> GenerationResult:
    """Insert the schedule's missing sessions. Does not commit.

    Occurrences already stored under the same (date, start, end) key, or under
    the key an approved exception moved them to, are left alone, so running
    this again over unchanged inputs inserts nothing.
    """
    planned = plan_occurrences(schedule)
    result = GenerationResult(
        target_sessions=len(planned),
        sessions_per_week=len(recurring_slots(schedule)),
    )

    existing = db.query(ScheduleSession).filter(ScheduleSession.schedule_id == schedule.id).all()
    occupied: set[SessionKey] = {(row.session_date, row.start_time, row.end_time) for row in existing}
    occupied.update(occurrence.key for occurrence in planned)
    exceptions = {
        row.exception_date: row
        for row in db.query(ScheduleException)
        .filter(ScheduleException.schedule_id == schedule.id, ScheduleException.status == 'approved')
        .all()
    }
    stored_keys = {(row.session_date, row.start_time, row.end_time) for row in existing}

    lookup = HolidayLookup(holiday_calendar)
    for occurrence in planned:
        key = occurrence.key
        exception = exceptions.get(occurrence.session_date)
        shifted = _shifted_key(exception, key) if exception else None
        if key in stored_keys or (shifted and shifted in stored_keys):
            result.skipped_existing += 1
            continue

        holiday_name = lookup.name_for(occurrence.session_date)
        if holiday_name is None:
            row = _new_session(schedule, occurrence)
            db.add(row)
            stored_keys.add(key)
            result.created.append(row)
            continue

        result.cancelled_for_holiday += 1
        if not schedule.auto_reschedule_holidays:
            row = _new_session(
                schedule,
                occurrence,
                status=SessionStatus.CANCELLED.value,
                cancellation_reason=f'Cancelled due to {holiday_name}',
            )
            db.add(row)
            stored_keys.add(key)
            result.created.append(row)
            continue

        cancelled = _new_session(
            schedule,
            occurrence,
            status=SessionStatus.CANCELLED.value,
            cancellation_reason=f'Originally scheduled on {holiday_name} - to be rescheduled',
        )
        db.add(cancelled)
        db.flush()
        stored_keys.add(key)
        result.created.append(cancelled)

        makeup_date = _probe_makeup_date(
            db,
            schedule,
            occurrence.session_date,
            occurrence.slot.start_time,
            occurrence.slot.end_time,
            lookup=lookup,
            occupied=occupied,
        )
        if makeup_date is None:
            cancelled.notes = (
                f'No makeup date found within {settings.makeup_probe_max_weeks} weeks; assign manually'
            )
            result.manual_makeup_dates.append(occurrence.session_date)
            logger.warning(
                'makeup_probe_exhausted schedule_id=%s session_date=%s weeks=%s',
                schedule.id,
                occurrence.session_date,
                settings.makeup_probe_max_weeks,
            )
            continue

        makeup = ScheduleSession(
            schedule_id=schedule.id,
            time_slot_id=occurrence.slot.id,
            session_date=makeup_date,
            session_number=cancelled.session_number,
            week_number=cancelled.week_number,
            start_time=occurrence.slot.start_time,
            end_time=occurrence.slot.end_time,
            status=SessionStatus.SCHEDULED.value,
            is_makeup_session=True,
            makeup_for_session_id=cancelled.id,
            notes=f'Makeup for {holiday_name} on {occurrence.session_date.isoformat()}',
        )
        db.add(makeup)
        db.flush()
        makeup_key = (makeup_date, makeup.start_time, makeup.end_time)
        occupied.add(makeup_key)
        stored_keys.add(makeup_key)
        result.created.append(makeup)
        result.makeups_created += 1

    db.flush()
    record_event('session_created', result.created_count)
    logger.info(
        'sessions_generated schedule_id=%s created=%s skipped=%s holidays=%s makeups=%s',
        schedule.id,
        result.created_count,
        result.skipped_existing,
        result.cancelled_for_holiday,
        result.makeups_created,
    )
    return result


def _new_session(
    schedule: Schedule,
    occurrence: PlannedOccurrence,
    *,
    status: str = SessionStatus.SCHEDULED.value,
    cancellation_reason: str | None = None,
) -> ScheduleSession:
    return ScheduleSession(
        schedule_id=schedule.id,
        time_slot_id=occurrence.slot.id,
        session_date=occurrence.session_date,
        session_number=occurrence.session_number,
        week_number=occurrence.week_number,
        start_time=occurrence.slot.start_time,
        end_time=occurrence.slot.end_time,
        status=status,
        is_makeup_session=False,
        cancellation_reason=cancellation_reason,
    )


def _ensure_unique_slots(payload: ScheduleCreateRequest) -> None:
    seen: set[tuple] = set()
    for slot in payload.time_slots:
        key = (slot.day_of_week, slot.start_time, slot.end_time)
        if key in seen:
            raise ValueError(f'Duplicate time slot: {slot.day_of_week.value} {slot.start_time}-{slot.end_time}')
        seen.add(key)


def create_schedule(
    db: Session,
    payload: ScheduleCreateRequest,
    *,
    holiday_calendar: HolidayCalendar,
    actor_id: int | None = None,
) -> tuple[Schedule, GenerationResult]:
    if not db.query(Course.id).filter(Course.id == payload.course_id).first():
        raise LookupError('Course not found')
    _ensure_unique_slots(payload)

    try:
        schedule = Schedule(
            course_id=payload.course_id,
            teacher_id=payload.teacher_id,
            room_id=payload.room_id,
            schedule_name=payload.schedule_name.strip(),
            total_hours=payload.total_hours,
            hours_per_session=payload.hours_per_session,
            max_students=payload.max_students,
            start_date=payload.start_date,
            status=ScheduleStatus.ACTIVE.value,
            auto_reschedule_holidays=payload.auto_reschedule_holidays,
            notes=payload.notes,
            created_by=actor_id,
        )
        for index, slot in enumerate(payload.time_slots, start=1):
            schedule.time_slots.append(
                ScheduleTimeSlot(
                    day_of_week=slot.day_of_week,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    slot_order=index,
                )
            )
        db.add(schedule)
        db.flush()

        result = generate_schedule_sessions(db, schedule, holiday_calendar=holiday_calendar)
        schedule.estimated_end_date = payload.start_date + timedelta(weeks=result.estimated_weeks)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(schedule)
    clear_session_views()
    notify_schedule_change(
        ScheduleEventType.SCHEDULE_CREATED,
        schedule_id=schedule.id,
        entity_type='schedule',
        entity_id=schedule.id,
        actor_id=actor_id,
        description=f'Schedule "{schedule.schedule_name}" created with {result.target_sessions} sessions',
        payload=result.as_dict(),
    )
    return schedule, result


def regenerate_schedule_sessions(
    db: Session,
    schedule_id: int,
    *,
    holiday_calendar: HolidayCalendar,
) -> tuple[GenerationResult, list[dict]]:
    schedule = get_schedule(db, schedule_id)
    try:
        result = generate_schedule_sessions(db, schedule, holiday_calendar=holiday_calendar)
        replayed = apply_existing_exceptions(db, schedule.id, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    clear_session_views()
    return result, replayed


def add_sessions(
    db: Session,
    schedule_id: int,
    payload: SessionCreateRequest,
    *,
    actor_id: int | None = None,
) -> dict:
    """Add one or many ad-hoc sessions; every date is created or skipped on its own."""
    schedule = get_schedule(db, schedule_id)
    dates = expand_recurrence(payload.session_date, payload.repeat)

    created: list[dict] = []
    skipped: list[dict] = []
    for session_date in dates:
        if session_key_exists(db, schedule.id, session_date, payload.start_time, payload.end_time):
            skipped.append({'date': session_date.isoformat(), 'reason': 'duplicate'})
            continue

        report = detect_conflicts(
            db,
            teacher_id=schedule.teacher_id,
            room_id=schedule.room_id,
            session_date=session_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
        )
        if report.has_conflicts:
            skipped.append({'date': session_date.isoformat(), 'reason': 'conflict', 'conflicts': report.as_list()})
            continue

        try:
            slot = resolve_time_slot(db, schedule, session_date, payload.start_time, payload.end_time)
            row = ScheduleSession(
                schedule_id=schedule.id,
                time_slot_id=slot.id,
                session_date=session_date,
                session_number=next_session_number(db, schedule.id),
                week_number=compute_week_number(schedule.start_date, session_date),
                start_time=payload.start_time,
                end_time=payload.end_time,
                status=SessionStatus.SCHEDULED.value,
                is_makeup_session=False,
                notes=payload.notes,
            )
            db.add(row)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info('session_insert_race schedule_id=%s session_date=%s', schedule.id, session_date)
            skipped.append({'date': session_date.isoformat(), 'reason': 'duplicate'})
            continue
        db.refresh(row)
        created.append(serialize_session(row))

    record_event('session_created', len(created))
    record_event('session_skipped', len(skipped))
    if created:
        clear_session_views()
        notify_schedule_change(
            ScheduleEventType.SESSIONS_ADDED,
            schedule_id=schedule.id,
            entity_type='schedule',
            entity_id=schedule.id,
            actor_id=actor_id,
            description=f'{len(created)} session(s) added to "{schedule.schedule_name}"',
            payload={'dates': [item['session_date'] for item in created]},
        )
    return {
        'created': created,
        'skipped': skipped,
        'created_count': len(created),
        'skipped_count': len(skipped),
    }
