"""Database models package."""

from app.models.academic import SchoolClass, Subject
from app.models.audit import AuditAction, AuditLog
from app.models.grade import Grade, GradeOverride, GradeStatus, OverrideStatus
from app.models.school import CurriculumType, School
from app.models.student import ParentStudent, Student
from app.models.system_setting import MAINTENANCE_MODE_KEY, SystemSetting
from app.models.user import User, UserRole

__all__ = [
    # School
    "School",
    "CurriculumType",
    # User
    "User",
    "UserRole",
    # Academic
    "SchoolClass",
    "Subject",
    # Student
    "Student",
    "ParentStudent",
    # Grades
    "Grade",
    "GradeStatus",
    "GradeOverride",
    "OverrideStatus",
    # Settings
    "SystemSetting",
    "MAINTENANCE_MODE_KEY",
    # Audit
    "AuditLog",
    "AuditAction",
]
