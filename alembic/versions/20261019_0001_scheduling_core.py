"""Scheduling core tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)'))


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)'))


def upgrade() -> None:
    op.create_table(
        'courses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=180), nullable=False),
        sa.Column('code', sa.String(length=40), nullable=False, server_default=''),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'teachers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=80), nullable=False),
        sa.Column('last_name', sa.String(length=80), nullable=False, server_default=''),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'rooms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_name', sa.String(length=120), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'students',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=80), nullable=False),
        sa.Column('last_name', sa.String(length=80), nullable=False, server_default=''),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('teacher_id', sa.Integer(), nullable=True),
        sa.Column('room_id', sa.Integer(), nullable=True),
        sa.Column('schedule_name', sa.String(length=180), nullable=False),
        sa.Column('total_hours', sa.Float(), nullable=False),
        sa.Column('hours_per_session', sa.Float(), nullable=False, server_default='3'),
        sa.Column('max_students', sa.Integer(), nullable=False, server_default='6'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('estimated_end_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('auto_reschedule_holidays', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id']),
        sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id']),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_schedules_course_id', 'schedules', ['course_id'])
    op.create_index('ix_schedules_start_date', 'schedules', ['start_date'])
    op.create_index('ix_schedules_status', 'schedules', ['status'])
    op.create_index('ix_schedules_teacher_status', 'schedules', ['teacher_id', 'status'])
    op.create_index('ix_schedules_room_status', 'schedules', ['room_id', 'status'])

    op.create_table(
        'schedule_time_slots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('day_of_week', sa.String(length=10), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('slot_order', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_adhoc', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('schedule_id', 'day_of_week', 'start_time', 'end_time', name='uq_schedule_time_slots_day_time'),
    )
    op.create_index('ix_schedule_time_slots_schedule_id', 'schedule_time_slots', ['schedule_id'])

    op.create_table(
        'schedule_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('time_slot_id', sa.Integer(), nullable=True),
        sa.Column('session_date', sa.Date(), nullable=False),
        sa.Column('session_number', sa.Integer(), nullable=False),
        sa.Column('week_number', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='scheduled'),
        sa.Column('is_makeup_session', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('makeup_for_session_id', sa.Integer(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id']),
        sa.ForeignKeyConstraint(['time_slot_id'], ['schedule_time_slots.id']),
        sa.ForeignKeyConstraint(['makeup_for_session_id'], ['schedule_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('schedule_id', 'session_date', 'start_time', 'end_time', name='uq_schedule_sessions_slot'),
        sa.UniqueConstraint('makeup_for_session_id', name='uq_schedule_sessions_makeup_for'),
    )
    op.create_index('ix_schedule_sessions_schedule_id', 'schedule_sessions', ['schedule_id'])
    op.create_index('ix_schedule_sessions_session_date', 'schedule_sessions', ['session_date'])
    op.create_index('ix_schedule_sessions_status', 'schedule_sessions', ['status'])
    op.create_index('ix_schedule_sessions_is_makeup_session', 'schedule_sessions', ['is_makeup_session'])
    op.create_index('ix_schedule_sessions_schedule_date', 'schedule_sessions', ['schedule_id', 'session_date'])
    op.create_index('ix_schedule_sessions_date_status', 'schedule_sessions', ['session_date', 'status'])

    op.create_table(
        'schedule_exceptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('exception_date', sa.Date(), nullable=False),
        sa.Column('exception_type', sa.String(length=20), nullable=False),
        sa.Column('new_date', sa.Date(), nullable=True),
        sa.Column('new_start_time', sa.Time(), nullable=True),
        sa.Column('new_end_time', sa.Time(), nullable=True),
        sa.Column('new_teacher_id', sa.Integer(), nullable=True),
        sa.Column('new_room_id', sa.Integer(), nullable=True),
        sa.Column('target_session_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='approved'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id']),
        sa.ForeignKeyConstraint(['target_session_id'], ['schedule_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('schedule_id', 'exception_date', name='uq_schedule_exceptions_schedule_date'),
    )
    op.create_index('ix_schedule_exceptions_schedule_id', 'schedule_exceptions', ['schedule_id'])
    op.create_index('ix_schedule_exceptions_exception_date', 'schedule_exceptions', ['exception_date'])
    op.create_index('ix_schedule_exceptions_status', 'schedule_exceptions', ['status'])

    op.create_table(
        'schedule_enrollments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('enrolled_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
        _updated_at(),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('schedule_id', 'student_id', name='uq_schedule_enrollments_schedule_student'),
    )
    op.create_index('ix_schedule_enrollments_schedule_status', 'schedule_enrollments', ['schedule_id', 'status'])

    op.create_table(
        'session_attendances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('leave_type', sa.String(length=20), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('advance_notice_hours', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['session_id'], ['schedule_sessions.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'student_id', name='uq_session_attendances_session_student'),
    )
    op.create_index('ix_session_attendances_student_status', 'session_attendances', ['student_id', 'status'])

    op.create_table(
        'makeup_eligibilities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('original_session_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['original_session_id'], ['schedule_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_makeup_eligibilities_schedule_student', 'makeup_eligibilities', ['schedule_id', 'student_id'])
    op.create_index('ix_makeup_eligibilities_status', 'makeup_eligibilities', ['status'])

    op.create_table(
        'course_drops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('drop_type', sa.String(length=20), nullable=False),
        sa.Column('drop_date', sa.Date(), nullable=False),
        sa.Column('expected_return_date', sa.Date(), nullable=True),
        sa.Column('preserve_schedule', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_course_drops_schedule_student', 'course_drops', ['schedule_id', 'student_id'])

    op.create_table(
        'schedule_reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('course_drop_id', sa.Integer(), nullable=True),
        sa.Column('reserved_from', sa.Date(), nullable=False),
        sa.Column('reserved_until', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='reserved'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['course_drop_id'], ['course_drops.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'session_comments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('author_id', sa.Integer(), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['session_id'], ['schedule_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_session_comments_session_id', 'session_comments', ['session_id'])
    op.create_index('ix_session_comments_created_at', 'session_comments', ['created_at'])


def downgrade() -> None:
    for table_name in (
        'session_comments',
        'schedule_reservations',
        'course_drops',
        'makeup_eligibilities',
        'session_attendances',
        'schedule_enrollments',
        'schedule_exceptions',
        'schedule_sessions',
        'schedule_time_slots',
        'schedules',
        'students',
        'rooms',
        'teachers',
        'courses',
    ):
        op.drop_table(table_name)
