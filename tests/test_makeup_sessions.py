import tempfile
import unittest
from datetime import date, time
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.cache import clear_session_views
from app.db import Base
from app.models import (
    Course,
    MakeupEligibility,
    Room,
    Schedule,
    ScheduleException,
    ScheduleSession,
    ScheduleTimeSlot,
    Student,
    Teacher,
)
from app.schemas import ExceptionCreateRequest, MakeupCreateRequest, ScheduleCreateRequest, SessionEditRequest
from app.services.conflict_service import SchedulingConflictError
from app.services.holiday_calendar import HolidayCalendar
from app.services.makeup_session_service import MakeupAlreadyExistsError, create_makeup_session, list_makeup_sessions
from app.services.schedule_exception_service import create_exception
from app.services.schedule_lookup import SessionNotFoundError
from app.services.session_generation_service import create_schedule
from app.services.session_service import edit_session


class MakeupSessionTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_makeup_sessions.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_session_views()
        db = self._session_factory()
        try:
            for table in (
                MakeupEligibility,
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
            course = Course(name='Grammar Clinic')
            teacher = Teacher(first_name='Nok')
            room = Room(room_name='Room 5')
            db.add_all([course, teacher, room])
            db.commit()
            schedule, _ = create_schedule(
                db,
                ScheduleCreateRequest(
                    course_id=course.id,
                    teacher_id=teacher.id,
                    room_id=room.id,
                    schedule_name='Grammar Mon/Wed',
                    total_hours=12,
                    hours_per_session=3,
                    start_date=date(2025, 1, 6),
                    time_slots=[
                        {'day_of_week': 'monday', 'start_time': '16:00', 'end_time': '19:00'},
                        {'day_of_week': 'wednesday', 'start_time': '16:00', 'end_time': '19:00'},
                    ],
                ),
                holiday_calendar=HolidayCalendar(fetcher=lambda year_be: []),
            )
            create_exception(
                db,
                schedule.id,
                ExceptionCreateRequest(exception_date=date(2025, 1, 8), exception_type='cancellation', reason='Storm'),
            )
            self.schedule_id = schedule.id
            self.cancelled_id = (
                db.query(ScheduleSession.id)
                .filter(ScheduleSession.schedule_id == schedule.id, ScheduleSession.session_date == date(2025, 1, 8))
                .scalar()
            )
            self.scheduled_id = (
                db.query(ScheduleSession.id)
                .filter(ScheduleSession.schedule_id == schedule.id, ScheduleSession.session_date == date(2025, 1, 6))
                .scalar()
            )
        finally:
            db.close()

    def _request(self, original_id, makeup_date=date(2025, 1, 9), start=time(16, 0), end=time(19, 0)):
        return MakeupCreateRequest(
            original_session_id=original_id,
            makeup_date=makeup_date,
            makeup_start_time=start,
            makeup_end_time=end,
            reason='Storm closure',
        )

    def test_makeup_links_to_cancelled_original(self):
        db = self._session_factory()
        try:
            makeup = create_makeup_session(db, self.schedule_id, self._request(self.cancelled_id), actor_id=4)
            original = db.get(ScheduleSession, self.cancelled_id)
            self.assertTrue(makeup.is_makeup_session)
            self.assertEqual(makeup.makeup_for_session_id, self.cancelled_id)
            self.assertEqual(makeup.session_number, original.session_number)
            self.assertEqual(makeup.status, 'scheduled')
            self.assertEqual(makeup.notes, 'Makeup session for 2025-01-08 - Storm closure')
        finally:
            db.close()

    def test_second_makeup_for_same_original_rejected(self):
        db = self._session_factory()
        try:
            create_makeup_session(db, self.schedule_id, self._request(self.cancelled_id))
            with self.assertRaises(MakeupAlreadyExistsError) as ctx:
                create_makeup_session(
                    db,
                    self.schedule_id,
                    self._request(self.cancelled_id, makeup_date=date(2025, 1, 10)),
                )
            self.assertIn('Makeup session already exists', str(ctx.exception))
        finally:
            db.close()

    def test_makeup_requires_cancelled_original(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ValueError):
                create_makeup_session(db, self.schedule_id, self._request(self.scheduled_id))
        finally:
            db.close()

    def test_makeup_for_unknown_original(self):
        db = self._session_factory()
        try:
            with self.assertRaises(SessionNotFoundError):
                create_makeup_session(db, self.schedule_id, self._request(99999))
        finally:
            db.close()

    def test_makeup_on_occupied_slot_is_conflict(self):
        db = self._session_factory()
        try:
            with self.assertRaises(SchedulingConflictError) as ctx:
                create_makeup_session(db, self.schedule_id, self._request(self.cancelled_id, makeup_date=date(2025, 1, 13)))
            self.assertEqual(ctx.exception.conflicts[0]['type'], 'duplicate')

            with self.assertRaises(SchedulingConflictError) as ctx:
                create_makeup_session(
                    db,
                    self.schedule_id,
                    self._request(self.cancelled_id, makeup_date=date(2025, 1, 13), start=time(18, 0), end=time(20, 0)),
                )
            self.assertEqual({item['type'] for item in ctx.exception.conflicts}, {'teacher', 'room'})
        finally:
            db.close()

    def test_makeup_marks_pending_eligibility_scheduled(self):
        db = self._session_factory()
        try:
            student = Student(first_name='Mew')
            db.add(student)
            db.commit()
            db.add(
                MakeupEligibility(
                    schedule_id=self.schedule_id,
                    student_id=student.id,
                    original_session_id=self.cancelled_id,
                    status='pending',
                )
            )
            db.commit()
            create_makeup_session(db, self.schedule_id, self._request(self.cancelled_id))
            self.assertEqual(db.query(MakeupEligibility.status).scalar(), 'scheduled')
        finally:
            db.close()

    def test_list_makeups_includes_original_details(self):
        db = self._session_factory()
        try:
            create_makeup_session(db, self.schedule_id, self._request(self.cancelled_id))
            items = list_makeup_sessions(db, self.schedule_id, sort='original_date', order='desc')
            self.assertEqual(len(items), 1)
            self.assertEqual(items[0]['original_date'], '2025-01-08')
            self.assertEqual(items[0]['session_date'], '2025-01-09')
            self.assertEqual(items[0]['cancellation_reason'], 'Storm')
            with self.assertRaises(ValueError):
                list_makeup_sessions(db, self.schedule_id, sort='teacher')
        finally:
            db.close()

    def test_cancelled_original_with_makeup_cannot_be_reopened(self):
        db = self._session_factory()
        try:
            create_makeup_session(db, self.schedule_id, self._request(self.cancelled_id))
            with self.assertRaises(ValueError):
                edit_session(db, self.schedule_id, self.cancelled_id, SessionEditRequest(status='scheduled'))
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
