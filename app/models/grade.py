"""Grade and grade override models."""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DECIMAL,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.config import settings
from app.core.database import Base
from app.models.base import IDMixin, SchoolScopedMixin, TimestampMixin, enum_values
from app.models.school import CurriculumType


class GradeStatus(str, enum.Enum):
    """Grade workflow status."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RELEASED = "released"


class OverrideStatus(str, enum.Enum):
    """Grade override request status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Columns that make up one grade's identity
GRADE_KEY_COLUMNS = ("school_id", "student_id", "subject_id", "class_id", "term", "exam_type")


class Grade(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """One student's score for one subject/class/term/exam combination."""

    __tablename__ = "grades"

    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    term: Mapped[str] = mapped_column(String(50), nullable=False)
    exam_type: Mapped[str] = mapped_column(String(50), nullable=False)

    score: Mapped[Decimal | None] = mapped_column(DECIMAL(10, 2), nullable=True)
    max_score: Mapped[Decimal] = mapped_column(
        DECIMAL(10, 2),
        nullable=False,
        default=lambda: Decimal(settings.DEFAULT_MAX_SCORE),
    )
    percentage: Mapped[Decimal | None] = mapped_column(DECIMAL(5, 2), nullable=True)
    letter_grade: Mapped[str | None] = mapped_column(String(5), nullable=True)
    cbc_performance_level: Mapped[str | None] = mapped_column(String(5), nullable=True)
    curriculum_type: Mapped[CurriculumType] = mapped_column(
        Enum(CurriculumType, name="curriculumtype", values_callable=enum_values),
        default=CurriculumType.STANDARD,
        nullable=False,
    )
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[GradeStatus] = mapped_column(
        Enum(GradeStatus, name="gradestatus", values_callable=enum_values),
        default=GradeStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Workflow stamps
    submitted_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    released_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    principal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    student: Mapped["Student"] = relationship("Student", lazy="selectin")
    subject: Mapped["Subject"] = relationship("Subject", lazy="selectin")
    overrides: Mapped[list["GradeOverride"]] = relationship(
        "GradeOverride",
        back_populates="grade",
        lazy="selectin",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint(*GRADE_KEY_COLUMNS, name="uq_grade_student_subject_term_exam"),
    )

    @property
    def is_locked(self) -> bool:
        return self.status in (GradeStatus.APPROVED, GradeStatus.RELEASED)

    def __repr__(self) -> str:
        return f"<Grade(id={self.id}, student_id={self.student_id}, status={self.status})>"


class GradeOverride(Base, IDMixin):
    """Audited request to change a locked grade's score."""

    __tablename__ = "grade_overrides"

    school_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    grade_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("grades.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    original_score: Mapped[Decimal | None] = mapped_column(DECIMAL(10, 2), nullable=True)
    new_score: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[OverrideStatus] = mapped_column(
        Enum(OverrideStatus, name="overridestatus", values_callable=enum_values),
        default=OverrideStatus.PENDING,
        nullable=False,
        index=True,
    )
    requested_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )
    approved_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    grade: Mapped["Grade"] = relationship("Grade", back_populates="overrides")

    def __repr__(self) -> str:
        return f"<GradeOverride(id={self.id}, grade_id={self.grade_id}, status={self.status})>"


# Import to avoid circular imports
from app.models.academic import Subject  # noqa: E402
from app.models.student import Student  # noqa: E402
