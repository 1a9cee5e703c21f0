import tempfile
import unittest
from datetime import date, time
from pathlib import Path

from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.cache import clear_session_views
from app.db import Base
from app.models import (
    Course,
    Room,
    Schedule,
    ScheduleEnrollment,
    ScheduleException,
    ScheduleSession,
    ScheduleTimeSlot,
    Student,
    Teacher,
)
from app.schemas import ExceptionCreateRequest, ScheduleCreateRequest, ScheduleUpdateRequest
from app.services.conflict_service import SchedulingConflictError
from app.services.holiday_calendar import HolidayCalendar
from app.services.schedule_exception_service import (
    DuplicateExceptionError,
    ExceptionNotApplicableError,
    apply_existing_exceptions,
    create_exception,
    create_exception_for_session,
    delete_schedule,
    update_schedule,
)
from app.services.schedule_lookup import ScheduleNotFoundError
from app.services.session_generation_service import create_schedule, regenerate_schedule_sessions


def no_holidays(year_be: int):
    return []


class ScheduleExceptionTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_schedule_exceptions.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        cls.calendar = HolidayCalendar(fetcher=no_holidays)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_session_views()
        db = self._session_factory()
        try:
            for table in (
                ScheduleEnrollment,
                ScheduleException,
                ScheduleSession,
                ScheduleTimeSlot,
                Schedule,
                Student,
                Room,
                Teacher,
                Course,
            ):
                db.query(table).delete()
            db.commit()
            course = Course(name='Business English')
            teacher = Teacher(first_name='Mali')
            other_teacher = Teacher(first_name='Tawan')
            room = Room(room_name='Studio')
            db.add_all([course, teacher, other_teacher, room])
            db.commit()
            self.course_id = course.id
            self.teacher_id = teacher.id
            self.other_teacher_id = other_teacher.id
            self.room_id = room.id

            schedule, _ = create_schedule(db, self._payload(), holiday_calendar=self.calendar)
            self.schedule_id = schedule.id
        finally:
            db.close()

    def _payload(self, **overrides):
        data = {
            'course_id': self.course_id,
            'teacher_id': self.teacher_id,
            'room_id': self.room_id,
            'schedule_name': 'Business Mon/Wed',
            'total_hours': 12,
            'hours_per_session': 3,
            'start_date': date(2025, 1, 6),
            'time_slots': [
                {'day_of_week': 'monday', 'start_time': '16:00', 'end_time': '19:00'},
                {'day_of_week': 'wednesday', 'start_time': '16:00', 'end_time': '19:00'},
            ],
        }
        data.update(overrides)
        return ScheduleCreateRequest(**data)

    def _session_on(self, db, day):
        return (
            db.query(ScheduleSession)
            .filter(ScheduleSession.schedule_id == self.schedule_id, ScheduleSession.session_date == day)
            .one()
        )

    def test_cancellation_marks_sessions_and_replay_is_idempotent(self):
        db = self._session_factory()
        try:
            exception, affected = create_exception(
                db,
                self.schedule_id,
                ExceptionCreateRequest(
                    exception_date=date(2025, 1, 8),
                    exception_type='cancellation',
                    reason='Teacher training',
                ),
                actor_id=3,
            )
            self.assertEqual(affected, 1)
            self.assertEqual(exception.status, 'approved')
            row = self._session_on(db, date(2025, 1, 8))
            self.assertEqual(row.status, 'cancelled')
            self.assertEqual(row.cancellation_reason, 'Teacher training')
            self.assertEqual(row.notes, 'Cancelled: Teacher training')

            replayed = apply_existing_exceptions(db, self.schedule_id)
            self.assertEqual(replayed[0]['affected'], 0)
        finally:
            db.close()

    def test_exception_on_free_date_affects_nothing(self):
        db = self._session_factory()
        try:
            _, affected = create_exception(
                db,
                self.schedule_id,
                ExceptionCreateRequest(exception_date=date(2025, 1, 7), exception_type='cancellation', reason='Closed'),
            )
            self.assertEqual(affected, 0)
        finally:
            db.close()

    def test_second_exception_for_same_date_rejected(self):
        db = self._session_factory()
        try:
            payload = ExceptionCreateRequest(exception_date=date(2025, 1, 8), exception_type='cancellation', reason='Flood')
            create_exception(db, self.schedule_id, payload)
            with self.assertRaises(DuplicateExceptionError):
                create_exception(db, self.schedule_id, payload)
        finally:
            db.close()

    def test_teacher_change_is_not_a_per_date_exception(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ExceptionNotApplicableError):
                create_exception(
                    db,
                    self.schedule_id,
                    ExceptionCreateRequest(
                        exception_date=date(2025, 1, 8),
                        exception_type='teacher_change',
                        reason='Cover',
                        new_teacher_id=self.other_teacher_id,
                    ),
                )
        finally:
            db.close()

    def test_reschedule_requires_new_date(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ValueError):
                create_exception(
                    db,
                    self.schedule_id,
                    ExceptionCreateRequest(exception_date=date(2025, 1, 8), exception_type='reschedule', reason='Move'),
                )
        finally:
            db.close()

    def test_reschedule_moves_session_and_survives_regeneration(self):
        db = self._session_factory()
        try:
            _, affected = create_exception(
                db,
                self.schedule_id,
                ExceptionCreateRequest(
                    exception_date=date(2025, 1, 13),
                    exception_type='reschedule',
                    new_date=date(2025, 1, 14),
                    reason='Exam day',
                ),
            )
            self.assertEqual(affected, 1)
            moved = self._session_on(db, date(2025, 1, 14))
            self.assertEqual(moved.session_number, 3)
            self.assertEqual(moved.week_number, 2)
            self.assertEqual(moved.notes, 'Rescheduled from 2025-01-13: Exam day')

            result, replayed = regenerate_schedule_sessions(db, self.schedule_id, holiday_calendar=self.calendar)
            self.assertEqual(result.created_count, 0)
            self.assertEqual(replayed[0]['affected'], 0)
            self.assertEqual(db.query(ScheduleSession).filter(ScheduleSession.schedule_id == self.schedule_id).count(), 4)
        finally:
            db.close()

    def test_reschedule_onto_existing_session_is_rejected(self):
        db = self._session_factory()
        try:
            with self.assertRaises(SchedulingConflictError) as ctx:
                create_exception(
                    db,
                    self.schedule_id,
                    ExceptionCreateRequest(
                        exception_date=date(2025, 1, 6),
                        exception_type='reschedule',
                        new_date=date(2025, 1, 8),
                        reason='Swap',
                    ),
                )
            self.assertEqual(ctx.exception.conflicts[0]['type'], 'duplicate')
            self.assertEqual(db.query(ScheduleException).count(), 0)
            self.assertEqual(self._session_on(db, date(2025, 1, 6)).status, 'scheduled')
        finally:
            db.close()

    def test_reschedule_into_teacher_conflict_is_rejected(self):
        db = self._session_factory()
        try:
            create_schedule(
                db,
                self._payload(
                    schedule_name='Tuesday evening',
                    room_id=None,
                    total_hours=3,
                    start_date=date(2025, 1, 7),
                    time_slots=[{'day_of_week': 'tuesday', 'start_time': '17:00', 'end_time': '18:00'}],
                ),
                holiday_calendar=self.calendar,
            )
            with self.assertRaises(SchedulingConflictError) as ctx:
                create_exception(
                    db,
                    self.schedule_id,
                    ExceptionCreateRequest(
                        exception_date=date(2025, 1, 6),
                        exception_type='reschedule',
                        new_date=date(2025, 1, 7),
                        reason='Public event',
                    ),
                )
            self.assertEqual(ctx.exception.conflicts[0]['type'], 'teacher')
        finally:
            db.close()

    def test_time_change_keeps_date(self):
        db = self._session_factory()
        try:
            _, affected = create_exception(
                db,
                self.schedule_id,
                ExceptionCreateRequest(
                    exception_date=date(2025, 1, 6),
                    exception_type='time_change',
                    new_start_time=time(17, 0),
                    new_end_time=time(20, 0),
                    reason='Room maintenance',
                ),
            )
            self.assertEqual(affected, 1)
            row = self._session_on(db, date(2025, 1, 6))
            self.assertEqual((row.start_time, row.end_time), (time(17, 0), time(20, 0)))
            self.assertEqual(row.notes, 'Time changed: Room maintenance')
        finally:
            db.close()

    def test_session_exception_must_match_session_date(self):
        db = self._session_factory()
        try:
            row = self._session_on(db, date(2025, 1, 6))
            with self.assertRaises(ValueError):
                create_exception_for_session(
                    db,
                    self.schedule_id,
                    row.id,
                    ExceptionCreateRequest(exception_date=date(2025, 1, 8), exception_type='cancellation', reason='Sick'),
                )
            _, affected = create_exception_for_session(
                db,
                self.schedule_id,
                row.id,
                ExceptionCreateRequest(exception_date=date(2025, 1, 6), exception_type='cancellation', reason='Sick'),
            )
            self.assertEqual(affected, 1)
        finally:
            db.close()

    def test_unknown_schedule(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ScheduleNotFoundError):
                create_exception(
                    db,
                    9999,
                    ExceptionCreateRequest(exception_date=date(2025, 1, 6), exception_type='cancellation', reason='x'),
                )
        finally:
            db.close()

    @freeze_time('2025-01-01 09:00:00')
    def test_teacher_update_checks_future_sessions(self):
        db = self._session_factory()
        try:
            create_schedule(
                db,
                self._payload(
                    schedule_name='Other teacher Monday',
                    teacher_id=self.other_teacher_id,
                    room_id=None,
                    total_hours=3,
                    time_slots=[{'day_of_week': 'monday', 'start_time': '18:00', 'end_time': '19:30'}],
                ),
                holiday_calendar=self.calendar,
            )
            with self.assertRaises(SchedulingConflictError) as ctx:
                update_schedule(db, self.schedule_id, ScheduleUpdateRequest(teacher_id=self.other_teacher_id))
            self.assertEqual(ctx.exception.conflicts[0]['session_date'], '2025-01-06')

            updated = update_schedule(db, self.schedule_id, ScheduleUpdateRequest(schedule_name='Renamed'))
            self.assertEqual(updated.schedule_name, 'Renamed')
            self.assertEqual(updated.teacher_id, self.teacher_id)
        finally:
            db.close()

    def test_delete_refused_with_active_enrollment(self):
        db = self._session_factory()
        try:
            student = Student(first_name='Fah')
            db.add(student)
            db.commit()
            db.add(ScheduleEnrollment(schedule_id=self.schedule_id, student_id=student.id, status='active'))
            db.commit()
            with self.assertRaises(ValueError):
                delete_schedule(db, self.schedule_id)

            db.query(ScheduleEnrollment).update({ScheduleEnrollment.status: 'cancelled'})
            db.commit()
            delete_schedule(db, self.schedule_id)
            self.assertEqual(db.query(Schedule).filter(Schedule.id == self.schedule_id).count(), 0)
            self.assertEqual(db.query(ScheduleSession).filter(ScheduleSession.schedule_id == self.schedule_id).count(), 0)
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
