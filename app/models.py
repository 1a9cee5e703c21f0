from datetime import date, datetime, time
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, Float, ForeignKey, Index, Integer, String, Text, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.weekday import Weekday
from app.db import Base


class Role(str, Enum):
    OWNER = 'owner'
    ADMIN = 'admin'
    TEACHER = 'teacher'


class ScheduleStatus(str, Enum):
    ACTIVE = 'active'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class SessionStatus(str, Enum):
    SCHEDULED = 'scheduled'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class ExceptionType(str, Enum):
    CANCELLATION = 'cancellation'
    RESCHEDULE = 'reschedule'
    TEACHER_CHANGE = 'teacher_change'
    ROOM_CHANGE = 'room_change'
    TIME_CHANGE = 'time_change'


class EnrollmentStatus(str, Enum):
    ACTIVE = 'active'
    PAUSED = 'paused'
    CANCELLED = 'cancelled'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    ABSENT = 'absent'
    EXCUSED_ABSENCE = 'excused_absence'
    APPROVED_LEAVE = 'approved_leave'
    COURSE_DROPPED = 'course_dropped'


class DropType(str, Enum):
    TEMPORARY = 'temporary'
    PERMANENT = 'permanent'


def _weekday_column():
    return SAEnum(
        Weekday,
        name='weekday',
        native_enum=False,
        length=10,
        values_callable=lambda members: [member.value for member in members],
    )


class Course(Base):
    __tablename__ = 'courses'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(180))
    code: Mapped[str] = mapped_column(String(40), default='')


class Teacher(Base):
    __tablename__ = 'teachers'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    first_name: Mapped[str] = mapped_column(String(80))
    last_name: Mapped[str] = mapped_column(String(80), default='')

    @property
    def display_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()


class Room(Base):
    __tablename__ = 'rooms'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    room_name: Mapped[str] = mapped_column(String(120))
    capacity: Mapped[int] = mapped_column(Integer, default=0)


class Student(Base):
    __tablename__ = 'students'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    first_name: Mapped[str] = mapped_column(String(80))
    last_name: Mapped[str] = mapped_column(String(80), default='')
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)


class Schedule(Base):
    __tablename__ = 'schedules'
    __table_args__ = (
        Index('ix_schedules_teacher_status', 'teacher_id', 'status'),
        Index('ix_schedules_room_status', 'room_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    teacher_id: Mapped[int | None] = mapped_column(ForeignKey('teachers.id'), nullable=True)
    room_id: Mapped[int | None] = mapped_column(ForeignKey('rooms.id'), nullable=True)
    schedule_name: Mapped[str] = mapped_column(String(180))
    total_hours: Mapped[float] = mapped_column(Float)
    hours_per_session: Mapped[float] = mapped_column(Float, default=3.0)
    max_students: Mapped[int] = mapped_column(Integer, default=6)
    start_date: Mapped[date] = mapped_column(Date, index=True)
    estimated_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=ScheduleStatus.ACTIVE.value, index=True)
    auto_reschedule_holidays: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    course: Mapped['Course'] = relationship('Course')
    teacher: Mapped['Teacher | None'] = relationship('Teacher')
    room: Mapped['Room | None'] = relationship('Room')
    time_slots: Mapped[list['ScheduleTimeSlot']] = relationship(
        'ScheduleTimeSlot',
        back_populates='schedule',
        order_by='ScheduleTimeSlot.slot_order',
        cascade='all, delete-orphan',
    )
    sessions: Mapped[list['ScheduleSession']] = relationship('ScheduleSession', back_populates='schedule')
    exceptions: Mapped[list['ScheduleException']] = relationship('ScheduleException', back_populates='schedule')
    enrollments: Mapped[list['ScheduleEnrollment']] = relationship('ScheduleEnrollment', back_populates='schedule')


class ScheduleTimeSlot(Base):
    __tablename__ = 'schedule_time_slots'
    __table_args__ = (
        UniqueConstraint('schedule_id', 'day_of_week', 'start_time', 'end_time', name='uq_schedule_time_slots_day_time'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('schedules.id'), index=True)
    day_of_week: Mapped[Weekday] = mapped_column(_weekday_column())
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    slot_order: Mapped[int] = mapped_column(Integer, default=1)
    is_adhoc: Mapped[bool] = mapped_column(Boolean, default=False)

    schedule: Mapped['Schedule'] = relationship('Schedule', back_populates='time_slots')


class ScheduleSession(Base):
    __tablename__ = 'schedule_sessions'
    __table_args__ = (
        UniqueConstraint('schedule_id', 'session_date', 'start_time', 'end_time', name='uq_schedule_sessions_slot'),
        UniqueConstraint('makeup_for_session_id', name='uq_schedule_sessions_makeup_for'),
        Index('ix_schedule_sessions_schedule_date', 'schedule_id', 'session_date'),
        Index('ix_schedule_sessions_date_status', 'session_date', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('schedules.id'), index=True)
    time_slot_id: Mapped[int | None] = mapped_column(ForeignKey('schedule_time_slots.id'), nullable=True)
    session_date: Mapped[date] = mapped_column(Date, index=True)
    session_number: Mapped[int] = mapped_column(Integer)
    week_number: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.SCHEDULED.value, index=True)
    is_makeup_session: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    makeup_for_session_id: Mapped[int | None] = mapped_column(ForeignKey('schedule_sessions.id'), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    schedule: Mapped['Schedule'] = relationship('Schedule', back_populates='sessions')
    time_slot: Mapped['ScheduleTimeSlot | None'] = relationship('ScheduleTimeSlot')
    original_session: Mapped['ScheduleSession | None'] = relationship('ScheduleSession', remote_side=[id])
    comments: Mapped[list['SessionComment']] = relationship('SessionComment', back_populates='session')


class ScheduleException(Base):
    __tablename__ = 'schedule_exceptions'
    __table_args__ = (
        UniqueConstraint('schedule_id', 'exception_date', name='uq_schedule_exceptions_schedule_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('schedules.id'), index=True)
    exception_date: Mapped[date] = mapped_column(Date, index=True)
    exception_type: Mapped[str] = mapped_column(String(20))
    new_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    new_start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    new_end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    new_teacher_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_room_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_session_id: Mapped[int | None] = mapped_column(ForeignKey('schedule_sessions.id'), nullable=True)
    reason: Mapped[str] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default='approved', index=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    schedule: Mapped['Schedule'] = relationship('Schedule', back_populates='exceptions')


class ScheduleEnrollment(Base):
    __tablename__ = 'schedule_enrollments'
    __table_args__ = (
        UniqueConstraint('schedule_id', 'student_id', name='uq_schedule_enrollments_schedule_student'),
        Index('ix_schedule_enrollments_schedule_status', 'schedule_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('schedules.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    status: Mapped[str] = mapped_column(String(20), default=EnrollmentStatus.ACTIVE.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    schedule: Mapped['Schedule'] = relationship('Schedule', back_populates='enrollments')
    student: Mapped['Student'] = relationship('Student')


class SessionAttendance(Base):
    __tablename__ = 'session_attendances'
    __table_args__ = (
        UniqueConstraint('session_id', 'student_id', name='uq_session_attendances_session_student'),
        Index('ix_session_attendances_student_status', 'student_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    session_id: Mapped[int] = mapped_column(ForeignKey('schedule_sessions.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    status: Mapped[str] = mapped_column(String(20))
    leave_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    advance_notice_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    session: Mapped['ScheduleSession'] = relationship('ScheduleSession')


class MakeupEligibility(Base):
    __tablename__ = 'makeup_eligibilities'
    __table_args__ = (
        Index('ix_makeup_eligibilities_schedule_student', 'schedule_id', 'student_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('schedules.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    original_session_id: Mapped[int] = mapped_column(ForeignKey('schedule_sessions.id'), index=True)
    reason: Mapped[str] = mapped_column(Text, default='')
    status: Mapped[str] = mapped_column(String(20), default='pending', index=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CourseDrop(Base):
    __tablename__ = 'course_drops'
    __table_args__ = (
        Index('ix_course_drops_schedule_student', 'schedule_id', 'student_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('schedules.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    drop_type: Mapped[str] = mapped_column(String(20))
    drop_date: Mapped[date] = mapped_column(Date)
    expected_return_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    preserve_schedule: Mapped[bool] = mapped_column(Boolean, default=True)
    reason: Mapped[str] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default='active')
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ScheduleReservation(Base):
    __tablename__ = 'schedule_reservations'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('schedules.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    course_drop_id: Mapped[int | None] = mapped_column(ForeignKey('course_drops.id'), nullable=True)
    reserved_from: Mapped[date] = mapped_column(Date)
    reserved_until: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default='reserved')
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class SessionComment(Base):
    __tablename__ = 'session_comments'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    session_id: Mapped[int] = mapped_column(ForeignKey('schedule_sessions.id'), index=True)
    author_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    body: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    session: Mapped['ScheduleSession'] = relationship('ScheduleSession', back_populates='comments')
