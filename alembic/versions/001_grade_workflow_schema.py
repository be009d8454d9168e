"""Initial schema: schools, users, students, grades, overrides, settings, audit.

Revision ID: 001_grade_workflow_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001_grade_workflow_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum types are created once and shared between tables
curriculumtype = postgresql.ENUM('standard', 'cbc', 'igcse', name='curriculumtype', create_type=False)
userrole = postgresql.ENUM(
    'edufam_admin', 'school_owner', 'principal', 'teacher', 'parent', 'finance_officer',
    name='userrole', create_type=False,
)
gradestatus = postgresql.ENUM(
    'draft', 'submitted', 'under_review', 'approved', 'rejected', 'released',
    name='gradestatus', create_type=False,
)
overridestatus = postgresql.ENUM('pending', 'approved', 'rejected', name='overridestatus', create_type=False)
auditaction = postgresql.ENUM(
    'USER_LOGIN',
    'GRADE_DRAFT_SAVED', 'GRADE_SUBMITTED', 'GRADE_UPDATED', 'GRADE_REVIEW_STARTED',
    'GRADE_APPROVED', 'GRADE_REJECTED', 'GRADE_RELEASED', 'POSITIONS_CALCULATED',
    'OVERRIDE_REQUESTED', 'OVERRIDE_APPROVED', 'OVERRIDE_REJECTED',
    'MAINTENANCE_ENABLED', 'MAINTENANCE_DISABLED',
    name='auditaction', create_type=False,
)

ENUMS = (curriculumtype, userrole, gradestatus, overridestatus, auditaction)


def timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create the grade workflow schema."""
    conn = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(conn, checkfirst=True)

    op.create_table(
        'schools',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('curriculum_type', curriculumtype, nullable=False, server_default='standard'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *timestamps(),
    )
    op.create_index('ix_schools_code', 'schools', ['code'], unique=True)

    op.create_table(
        'users',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('role', userrole, nullable=False),
        sa.Column('school_id', sa.BigInteger(), sa.ForeignKey('schools.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_school_id', 'users', ['school_id'])

    op.create_table(
        'classes',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('school_id', sa.BigInteger(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('level', sa.String(50), nullable=True),
        sa.Column('stream', sa.String(50), nullable=True),
        *timestamps(),
        sa.UniqueConstraint('school_id', 'name', name='uq_class_school_name'),
    )
    op.create_index('ix_classes_school_id', 'classes', ['school_id'])

    op.create_table(
        'subjects',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('school_id', sa.BigInteger(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('code', sa.String(20), nullable=False),
        *timestamps(),
        sa.UniqueConstraint('school_id', 'code', name='uq_subject_school_code'),
    )
    op.create_index('ix_subjects_school_id', 'subjects', ['school_id'])

    op.create_table(
        'students',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('school_id', sa.BigInteger(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('admission_number', sa.String(50), nullable=False),
        sa.Column('class_id', sa.BigInteger(), sa.ForeignKey('classes.id', ondelete='SET NULL'), nullable=True),
        *timestamps(),
        sa.UniqueConstraint('school_id', 'admission_number', name='uq_student_admission'),
    )
    op.create_index('ix_students_school_id', 'students', ['school_id'])
    op.create_index('ix_students_class_id', 'students', ['class_id'])

    op.create_table(
        'parent_students',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('parent_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', sa.BigInteger(), sa.ForeignKey('students.id', ondelete='CASCADE'), nullable=False),
        sa.Column('relationship_type', sa.String(50), nullable=True),
        *timestamps(),
        sa.UniqueConstraint('parent_id', 'student_id', name='uq_parent_student'),
    )
    op.create_index('ix_parent_students_parent_id', 'parent_students', ['parent_id'])
    op.create_index('ix_parent_students_student_id', 'parent_students', ['student_id'])

    op.create_table(
        'grades',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('school_id', sa.BigInteger(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', sa.BigInteger(), sa.ForeignKey('students.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subject_id', sa.BigInteger(), sa.ForeignKey('subjects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('class_id', sa.BigInteger(), sa.ForeignKey('classes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('term', sa.String(50), nullable=False),
        sa.Column('exam_type', sa.String(50), nullable=False),
        sa.Column('score', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('max_score', sa.DECIMAL(10, 2), nullable=False, server_default='100'),
        sa.Column('percentage', sa.DECIMAL(5, 2), nullable=True),
        sa.Column('letter_grade', sa.String(5), nullable=True),
        sa.Column('cbc_performance_level', sa.String(5), nullable=True),
        sa.Column('curriculum_type', curriculumtype, nullable=False, server_default='standard'),
        sa.Column('position', sa.Integer(), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('status', gradestatus, nullable=False, server_default='draft'),
        sa.Column('submitted_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_reason', sa.Text(), nullable=True),
        sa.Column('released_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('principal_notes', sa.Text(), nullable=True),
        *timestamps(),
        sa.UniqueConstraint(
            'school_id', 'student_id', 'subject_id', 'class_id', 'term', 'exam_type',
            name='uq_grade_student_subject_term_exam',
        ),
    )
    op.create_index('ix_grades_school_id', 'grades', ['school_id'])
    op.create_index('ix_grades_student_id', 'grades', ['student_id'])
    op.create_index('ix_grades_subject_id', 'grades', ['subject_id'])
    op.create_index('ix_grades_class_id', 'grades', ['class_id'])
    op.create_index('ix_grades_status', 'grades', ['status'])

    op.create_table(
        'grade_overrides',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('school_id', sa.BigInteger(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('grade_id', sa.BigInteger(), sa.ForeignKey('grades.id', ondelete='CASCADE'), nullable=False),
        sa.Column('original_score', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('new_score', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', overridestatus, nullable=False, server_default='pending'),
        sa.Column('requested_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('approved_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_grade_overrides_school_id', 'grade_overrides', ['school_id'])
    op.create_index('ix_grade_overrides_grade_id', 'grade_overrides', ['grade_id'])
    op.create_index('ix_grade_overrides_status', 'grade_overrides', ['status'])

    op.create_table(
        'system_settings',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('setting_key', sa.String(100), nullable=False),
        sa.Column('setting_value', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *timestamps(),
    )
    op.create_index('ix_system_settings_setting_key', 'system_settings', ['setting_key'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('school_id', sa.BigInteger(), sa.ForeignKey('schools.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_role', sa.String(50), nullable=True),
        sa.Column('action', auditaction, nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('extra_data', postgresql.JSONB(), nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_logs_school_id', 'audit_logs', ['school_id'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    # Maintenance flag starts off; the row is toggled in place from then on
    op.execute(sa.text("""
        INSERT INTO system_settings (setting_key, setting_value, description)
        VALUES (
            'maintenance_mode',
            '{"enabled": false, "message": "System is under maintenance. Please try again later.", "allowed_roles": ["edufam_admin"]}',
            'System-wide maintenance mode'
        )
        ON CONFLICT (setting_key) DO NOTHING;
    """))


def downgrade() -> None:
    """Drop the grade workflow schema."""
    for table in (
        'audit_logs',
        'system_settings',
        'grade_overrides',
        'grades',
        'parent_students',
        'students',
        'subjects',
        'classes',
        'users',
        'schools',
    ):
        op.drop_table(table)

    conn = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(conn, checkfirst=True)
