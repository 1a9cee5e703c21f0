from datetime import date, time
from typing import Annotated, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from app.core.weekday import Weekday


WeekdayName = Annotated[Weekday, BeforeValidator(Weekday.parse)]


class TimeSlotRequest(BaseModel):
    day_of_week: WeekdayName
    start_time: time
    end_time: time

    @model_validator(mode='after')
    def _check_order(self):
        if self.end_time <= self.start_time:
            raise ValueError('end_time must be after start_time')
        return self


class ScheduleCreateRequest(BaseModel):
    course_id: int
    schedule_name: str = Field(min_length=1, max_length=180)
    teacher_id: int | None = None
    room_id: int | None = None
    total_hours: float = Field(gt=0)
    hours_per_session: float = Field(default=3.0, gt=0)
    max_students: int = Field(default=6, ge=1)
    start_date: date
    time_slots: list[TimeSlotRequest] = Field(min_length=1)
    auto_reschedule_holidays: bool = True
    notes: str | None = None


class ScheduleUpdateRequest(BaseModel):
    schedule_name: str | None = Field(default=None, min_length=1, max_length=180)
    teacher_id: int | None = None
    room_id: int | None = None
    max_students: int | None = Field(default=None, ge=1)
    status: Literal['active', 'paused', 'completed', 'cancelled'] | None = None
    notes: str | None = None


class RepeatEnd(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal['never', 'after', 'on'] = 'never'
    count: int | None = Field(default=None, ge=1)
    until: date | None = Field(default=None, alias='date')


class RepeatSpec(BaseModel):
    enabled: bool = False
    frequency: Literal['daily', 'weekly', 'monthly'] = 'weekly'
    interval: int = Field(default=1, ge=1)
    days_of_week: list[WeekdayName] = Field(default_factory=list)
    end: RepeatEnd = Field(default_factory=RepeatEnd)


class SessionCreateRequest(BaseModel):
    session_date: date
    start_time: time
    end_time: time
    repeat: RepeatSpec = Field(default_factory=RepeatSpec)
    notes: str | None = None

    @model_validator(mode='after')
    def _check_order(self):
        if self.end_time <= self.start_time:
            raise ValueError('end_time must be after start_time')
        return self


class SessionEditRequest(BaseModel):
    session_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    status: Literal['scheduled', 'completed', 'cancelled'] | None = None
    cancellation_reason: str | None = None
    notes: str | None = None


class ExceptionCreateRequest(BaseModel):
    exception_date: date
    exception_type: Literal['cancellation', 'reschedule', 'teacher_change', 'room_change', 'time_change']
    reason: str = Field(min_length=1)
    new_date: date | None = None
    new_start_time: time | None = None
    new_end_time: time | None = None
    new_teacher_id: int | None = None
    new_room_id: int | None = None
    notes: str | None = None


class MakeupCreateRequest(BaseModel):
    original_session_id: int
    makeup_date: date
    makeup_start_time: time
    makeup_end_time: time
    reason: str | None = None
    notes: str | None = None

    @model_validator(mode='after')
    def _check_order(self):
        if self.makeup_end_time <= self.makeup_start_time:
            raise ValueError('makeup_end_time must be after makeup_start_time')
        return self


class LeaveRequest(BaseModel):
    student_id: int
    leave_date: date
    leave_type: Literal['sick_leave', 'personal_leave', 'emergency']
    reason: str = Field(min_length=1)
    advance_notice_hours: float | None = Field(default=None, ge=0)
    notes: str | None = None


class DropRequest(BaseModel):
    student_id: int
    drop_type: Literal['temporary', 'permanent']
    drop_date: date
    expected_return_date: date | None = None
    reason: str = Field(min_length=1)
    preserve_schedule: bool = True
    notes: str | None = None


class SessionCommentRequest(BaseModel):
    body: str = Field(min_length=1, max_length=4000)


class EnrollmentRequest(BaseModel):
    student_id: int
    notes: str | None = None
