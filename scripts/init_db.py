from datetime import date, time, timedelta
from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import Base, SessionLocal, engine
from app.models import Course, Room, Schedule, Student, Teacher
from app.schemas import EnrollmentRequest, ScheduleCreateRequest
from app.services.enrollment_service import enroll_student
from app.services.holiday_calendar import build_holiday_calendar
from app.services.session_generation_service import create_schedule


Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    if not db.query(Schedule).first():
        course = Course(name='General English', code='ENG-101')
        teacher = Teacher(first_name='Somchai', last_name='Prasert')
        room = Room(room_name='Room 1', capacity=8)
        students = [
            Student(first_name='Nida', last_name='K.', date_of_birth=date(2012, 5, 1)),
            Student(first_name='Arthit', last_name='W.', date_of_birth=date(2001, 9, 17)),
        ]
        db.add_all([course, teacher, room, *students])
        db.commit()

        payload = ScheduleCreateRequest(
            course_id=course.id,
            teacher_id=teacher.id,
            room_id=room.id,
            schedule_name='English Mon/Wed',
            total_hours=30,
            hours_per_session=3,
            max_students=6,
            start_date=date.today() + timedelta(days=1),
            time_slots=[
                {'day_of_week': 'monday', 'start_time': time(16, 0), 'end_time': time(19, 0)},
                {'day_of_week': 'wednesday', 'start_time': time(16, 0), 'end_time': time(19, 0)},
            ],
        )
        schedule, result = create_schedule(db, payload, holiday_calendar=build_holiday_calendar())
        for student in students:
            enroll_student(db, schedule.id, EnrollmentRequest(student_id=student.id))
        print(f'Created schedule {schedule.id} with {result.created_count} sessions.')
finally:
    db.close()

print('DB initialized with sample data.')
