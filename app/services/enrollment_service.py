from sqlalchemy.orm import Session, joinedload

from app.models import EnrollmentStatus, ScheduleEnrollment, Student
from app.schemas import EnrollmentRequest
from app.services.schedule_lookup import get_schedule


class EnrollmentNotFoundError(LookupError):
    pass


def active_enrollment_count(db: Session, schedule_id: int) -> int:
    return (
        db.query(ScheduleEnrollment.id)
        .filter(
            ScheduleEnrollment.schedule_id == schedule_id,
            ScheduleEnrollment.status == EnrollmentStatus.ACTIVE.value,
        )
        .count()
    )


def get_enrollment(db: Session, schedule_id: int, student_id: int, *, statuses: tuple[str, ...] | None = None) -> ScheduleEnrollment:
    query = (
        db.query(ScheduleEnrollment)
        .options(joinedload(ScheduleEnrollment.student))
        .filter(ScheduleEnrollment.schedule_id == schedule_id, ScheduleEnrollment.student_id == student_id)
    )
    if statuses:
        query = query.filter(ScheduleEnrollment.status.in_(statuses))
    row = query.first()
    if not row:
        raise EnrollmentNotFoundError('Student not enrolled in this schedule')
    return row


def enroll_student(db: Session, schedule_id: int, payload: EnrollmentRequest) -> ScheduleEnrollment:
    schedule = get_schedule(db, schedule_id)
    student = db.query(Student).filter(Student.id == payload.student_id).first()
    if not student:
        raise LookupError('Student not found')
    if active_enrollment_count(db, schedule.id) >= int(schedule.max_students or 0):
        raise ValueError('Schedule is full')

    row = (
        db.query(ScheduleEnrollment)
        .filter(ScheduleEnrollment.schedule_id == schedule.id, ScheduleEnrollment.student_id == student.id)
        .first()
    )
    if row and row.status != EnrollmentStatus.CANCELLED.value:
        raise ValueError('Student is already enrolled in this schedule')
    if row:
        row.status = EnrollmentStatus.ACTIVE.value
        row.notes = payload.notes
    else:
        row = ScheduleEnrollment(
            schedule_id=schedule.id,
            student_id=student.id,
            status=EnrollmentStatus.ACTIVE.value,
            notes=payload.notes,
        )
        db.add(row)
    db.commit()
    db.refresh(row)
    return row


def remove_student(db: Session, schedule_id: int, student_id: int, *, reason: str | None = None) -> ScheduleEnrollment:
    row = get_enrollment(db, schedule_id, student_id)
    row.status = EnrollmentStatus.CANCELLED.value
    row.notes = reason or 'Student removed from schedule'
    db.commit()
    db.refresh(row)
    return row


def list_enrollments(db: Session, schedule_id: int, *, status: str | None = EnrollmentStatus.ACTIVE.value) -> list[dict]:
    schedule = get_schedule(db, schedule_id)
    query = (
        db.query(ScheduleEnrollment)
        .options(joinedload(ScheduleEnrollment.student))
        .filter(ScheduleEnrollment.schedule_id == schedule.id)
    )
    if status:
        query = query.filter(ScheduleEnrollment.status == status)
    return [
        {
            'id': row.id,
            'student_id': row.student_id,
            'student_name': f'{row.student.first_name} {row.student.last_name}'.strip(),
            'status': row.status,
            'notes': row.notes,
        }
        for row in query.order_by(ScheduleEnrollment.id.asc()).all()
    ]
