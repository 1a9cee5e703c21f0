import tempfile
import unittest
from datetime import date, time
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.cache import cache, cache_key, clear_session_views
from app.core.weekday import Weekday
from app.db import Base
from app.models import (
    Course,
    Room,
    Schedule,
    ScheduleEnrollment,
    ScheduleException,
    ScheduleSession,
    ScheduleTimeSlot,
    SessionComment,
    Student,
    Teacher,
)
from app.schemas import ExceptionCreateRequest, ScheduleCreateRequest, SessionCommentRequest, SessionEditRequest
from app.services.conflict_service import SchedulingConflictError
from app.services.holiday_calendar import HolidayCalendar
from app.services.schedule_exception_service import create_exception
from app.services.session_generation_service import create_schedule
from app.services.session_query_service import (
    ScheduleFilters,
    SessionFilters,
    calendar_window,
    get_calendar_view,
    get_schedule_sessions,
    get_teacher_dashboard,
    list_schedules,
    query_sessions,
)
from app.services.session_service import add_comment, delete_comment, edit_session, list_comments, update_comment


def feed_with_new_year(year_be: int):
    if year_be == 2568:
        return [{'Date': '2568-01-10', 'Title': 'Children Day'}]
    return []


class CalendarWindowTests(unittest.TestCase):
    def test_windows(self):
        self.assertEqual(calendar_window('day', date(2025, 1, 8)), (date(2025, 1, 8), date(2025, 1, 8)))
        self.assertEqual(calendar_window('week', date(2025, 1, 8)), (date(2025, 1, 6), date(2025, 1, 12)))
        self.assertEqual(calendar_window('month', date(2024, 2, 14)), (date(2024, 2, 1), date(2024, 2, 29)))
        with self.assertRaises(ValueError):
            calendar_window('year', date(2025, 1, 8))


class SessionQueryTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_session_queries.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        cls.calendar = HolidayCalendar(fetcher=feed_with_new_year)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_session_views()
        db = self._session_factory()
        try:
            for table in (
                SessionComment,
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
            course = Course(name='Phonics')
            teacher = Teacher(first_name='Jane', last_name='Doe')
            other_teacher = Teacher(first_name='Chai')
            room = Room(room_name='Blue Room')
            db.add_all([course, teacher, other_teacher, room])
            db.commit()
            self.teacher_id = teacher.id
            self.other_teacher_id = other_teacher.id
            self.room_id = room.id

            schedule, _ = create_schedule(
                db,
                ScheduleCreateRequest(
                    course_id=course.id,
                    teacher_id=teacher.id,
                    room_id=room.id,
                    schedule_name='Phonics Mon/Wed',
                    total_hours=12,
                    hours_per_session=3,
                    start_date=date(2025, 1, 6),
                    time_slots=[
                        {'day_of_week': 'monday', 'start_time': '16:00', 'end_time': '19:00'},
                        {'day_of_week': 'wednesday', 'start_time': '16:00', 'end_time': '19:00'},
                    ],
                ),
                holiday_calendar=self.calendar,
            )
            other, _ = create_schedule(
                db,
                ScheduleCreateRequest(
                    course_id=course.id,
                    teacher_id=other_teacher.id,
                    schedule_name='Phonics Tuesday',
                    total_hours=2,
                    hours_per_session=2,
                    start_date=date(2025, 1, 6),
                    time_slots=[{'day_of_week': 'tuesday', 'start_time': '09:00', 'end_time': '11:00'}],
                ),
                holiday_calendar=self.calendar,
            )
            self.schedule_id = schedule.id
            self.other_schedule_id = other.id
            self.first_session_id = (
                db.query(ScheduleSession.id)
                .filter(ScheduleSession.schedule_id == schedule.id, ScheduleSession.session_number == 1)
                .scalar()
            )
        finally:
            db.close()

    def test_pagination(self):
        db = self._session_factory()
        try:
            page = query_sessions(db, SessionFilters(schedule_id=self.schedule_id), page=2, per_page=3)
            self.assertEqual(page['pagination'], {'current_page': 2, 'per_page': 3, 'total': 4, 'total_pages': 2})
            self.assertEqual([item['session_date'] for item in page['items']], ['2025-01-15'])
            self.assertEqual(page['items'][0]['teacher_name'], 'Jane Doe')
            self.assertEqual(page['items'][0]['course_name'], 'Phonics')
        finally:
            db.close()

    def test_filters(self):
        db = self._session_factory()
        try:
            by_teacher = query_sessions(db, SessionFilters(teacher_id=self.other_teacher_id))
            self.assertEqual(by_teacher['pagination']['total'], 1)

            by_week = query_sessions(db, SessionFilters(schedule_id=self.schedule_id, week_number=2))
            self.assertEqual([item['session_number'] for item in by_week['items']], [3, 4])

            with self.assertRaises(ValueError):
                query_sessions(db, SessionFilters(start_date=date(2025, 2, 1), end_date=date(2025, 1, 1)))
        finally:
            db.close()

    def test_has_comments_filter(self):
        db = self._session_factory()
        try:
            add_comment(db, self.schedule_id, self.first_session_id, SessionCommentRequest(body='Bring workbook'), author_id=9)
            with_comments = query_sessions(db, SessionFilters(has_comments=True))
            self.assertEqual([item['id'] for item in with_comments['items']], [self.first_session_id])
            self.assertEqual(with_comments['items'][0]['comment_count'], 1)

            without = query_sessions(db, SessionFilters(has_comments=False))
            self.assertEqual(without['pagination']['total'], 4)
        finally:
            db.close()

    def test_comments_roundtrip(self):
        db = self._session_factory()
        try:
            comment = add_comment(db, self.schedule_id, self.first_session_id, SessionCommentRequest(body='  Quiz  '))
            self.assertEqual(comment.body, 'Quiz')
            self.assertEqual(len(list_comments(db, self.schedule_id, self.first_session_id)), 1)
            delete_comment(db, self.schedule_id, self.first_session_id, comment.id)
            self.assertEqual(list_comments(db, self.schedule_id, self.first_session_id), [])
            with self.assertRaises(LookupError):
                delete_comment(db, self.schedule_id, self.first_session_id, comment.id)
            with self.assertRaises(LookupError):
                list_comments(db, self.other_schedule_id, self.first_session_id)
        finally:
            db.close()

    def test_update_comment(self):
        db = self._session_factory()
        try:
            comment = add_comment(db, self.schedule_id, self.first_session_id, SessionCommentRequest(body='Quiz'))
            updated = update_comment(
                db,
                self.schedule_id,
                self.first_session_id,
                comment.id,
                SessionCommentRequest(body='  Quiz moved to week 2 '),
            )
            self.assertEqual(updated.id, comment.id)
            self.assertEqual(updated.body, 'Quiz moved to week 2')
            self.assertEqual(
                [row.body for row in list_comments(db, self.schedule_id, self.first_session_id)],
                ['Quiz moved to week 2'],
            )
            with self.assertRaises(LookupError):
                update_comment(db, self.schedule_id, self.first_session_id, comment.id + 100, SessionCommentRequest(body='x'))
        finally:
            db.close()

    def test_list_schedules_filters_and_seat_counts(self):
        db = self._session_factory()
        try:
            mint = Student(first_name='Mint')
            ploy = Student(first_name='Ploy')
            db.add_all([mint, ploy])
            db.commit()
            db.add_all(
                [
                    ScheduleEnrollment(schedule_id=self.schedule_id, student_id=mint.id, status='active'),
                    ScheduleEnrollment(schedule_id=self.schedule_id, student_id=ploy.id, status='paused'),
                ]
            )
            db.commit()

            everything = list_schedules(db)
            self.assertEqual(everything['pagination']['total'], 2)
            self.assertEqual([item['id'] for item in everything['items']], [self.schedule_id, self.other_schedule_id])
            first = everything['items'][0]
            self.assertEqual(first['course_name'], 'Phonics')
            self.assertEqual(first['teacher_name'], 'Jane Doe')
            self.assertEqual(first['room_name'], 'Blue Room')
            self.assertEqual(first['current_students'], 1)
            self.assertEqual(first['available_spots'], first['max_students'] - 1)
            self.assertEqual(everything['items'][1]['current_students'], 0)

            tuesday = list_schedules(db, ScheduleFilters(day_of_week=Weekday.TUESDAY))
            self.assertEqual([item['id'] for item in tuesday['items']], [self.other_schedule_id])

            by_room = list_schedules(db, ScheduleFilters(room_id=self.room_id))
            self.assertEqual([item['id'] for item in by_room['items']], [self.schedule_id])

            by_teacher = list_schedules(db, ScheduleFilters(teacher_id=self.other_teacher_id, status='active'))
            self.assertEqual([item['id'] for item in by_teacher['items']], [self.other_schedule_id])
            self.assertEqual(list_schedules(db, ScheduleFilters(status='completed'))['pagination']['total'], 0)

            second_page = list_schedules(db, page=2, per_page=1)
            self.assertEqual(second_page['pagination'], {'current_page': 2, 'per_page': 1, 'total': 2, 'total_pages': 2})
            self.assertEqual([item['id'] for item in second_page['items']], [self.other_schedule_id])
        finally:
            db.close()

    def test_week_calendar_groups_sessions_holidays_and_exceptions(self):
        db = self._session_factory()
        try:
            create_exception(
                db,
                self.schedule_id,
                ExceptionCreateRequest(exception_date=date(2025, 1, 8), exception_type='cancellation', reason='Fair'),
            )
            payload = get_calendar_view(db, 'week', date(2025, 1, 9), holiday_calendar=self.calendar)
            self.assertEqual((payload['start'], payload['end']), ('2025-01-06', '2025-01-12'))
            self.assertEqual(len(payload['days']), 7)
            days = {day['date']: day for day in payload['days']}
            self.assertEqual(len(days['2025-01-06']['sessions']), 1)
            self.assertEqual(len(days['2025-01-07']['sessions']), 1)
            self.assertEqual(days['2025-01-08']['sessions'][0]['status'], 'cancelled')
            self.assertEqual(days['2025-01-08']['exceptions'][0]['exception_type'], 'cancellation')
            self.assertEqual(days['2025-01-10']['holidays'], [{'date': '2025-01-10', 'name': 'Children Day'}])
            self.assertEqual(payload['summary']['cancelled'], 1)
            self.assertEqual(payload['summary']['total_sessions'], 3)

            filtered = get_calendar_view(
                db,
                'week',
                date(2025, 1, 9),
                holiday_calendar=self.calendar,
                teacher_id=self.teacher_id,
                include_cancelled=False,
            )
            self.assertEqual(filtered['summary']['total_sessions'], 1)
        finally:
            db.close()

    def test_calendar_is_cached_until_sessions_change(self):
        db = self._session_factory()
        try:
            first = get_calendar_view(db, 'day', date(2025, 1, 6), holiday_calendar=self.calendar)
            key = cache_key('calendar_view', 'day:2025-01-06:2025-01-06:t0:r0:s0:c1')
            self.assertEqual(cache.get_cached(key), first)

            edit_session(db, self.schedule_id, self.first_session_id, SessionEditRequest(status='cancelled'))
            self.assertIsNone(cache.get_cached(key))
            refreshed = get_calendar_view(db, 'day', date(2025, 1, 6), holiday_calendar=self.calendar)
            self.assertEqual(refreshed['summary']['cancelled'], 1)
        finally:
            db.close()

    def test_teacher_dashboard_totals(self):
        db = self._session_factory()
        try:
            payload = get_teacher_dashboard(db, date(2025, 1, 6), date(2025, 1, 19))
            by_teacher = {row['teacher_id']: row for row in payload['teachers']}
            self.assertEqual(by_teacher[self.teacher_id]['totals']['teaching_hours'], 12.0)
            self.assertEqual(by_teacher[self.other_teacher_id]['totals']['teaching_hours'], 2.0)
            self.assertEqual(payload['totals']['sessions'], 5)
            self.assertEqual(payload['totals']['teachers'], 2)
            with self.assertRaises(ValueError):
                get_teacher_dashboard(db, date(2025, 1, 19), date(2025, 1, 6))
        finally:
            db.close()

    def test_schedule_sessions_hide_cancelled_by_default(self):
        db = self._session_factory()
        try:
            edit_session(
                db,
                self.schedule_id,
                self.first_session_id,
                SessionEditRequest(status='cancelled', cancellation_reason='Teacher ill'),
            )
            payload = get_schedule_sessions(db, self.schedule_id)
            self.assertEqual(payload['summary']['total_sessions'], 3)
            everything = get_schedule_sessions(db, self.schedule_id, include_cancelled=True)
            self.assertEqual(everything['summary']['cancelled'], 1)
        finally:
            db.close()

    def test_edit_session_move_checks_duplicates_and_conflicts(self):
        db = self._session_factory()
        try:
            with self.assertRaises(SchedulingConflictError):
                edit_session(db, self.schedule_id, self.first_session_id, SessionEditRequest(session_date=date(2025, 1, 8)))
            with self.assertRaises(SchedulingConflictError):
                edit_session(
                    db,
                    self.schedule_id,
                    self.first_session_id,
                    SessionEditRequest(session_date=date(2025, 1, 8), start_time=time(18, 0), end_time=time(20, 0)),
                )
            moved = edit_session(
                db,
                self.schedule_id,
                self.first_session_id,
                SessionEditRequest(session_date=date(2025, 1, 21), notes='Moved'),
            )
            self.assertEqual(moved.week_number, 3)
            self.assertEqual(moved.notes, 'Moved')
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
