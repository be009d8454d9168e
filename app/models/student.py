"""Student and parent-link models."""

from sqlalchemy import BigInteger, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin, SchoolScopedMixin, TimestampMixin


class Student(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """Student model for managing student records."""

    __tablename__ = "students"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    admission_number: Mapped[str] = mapped_column(String(50), nullable=False)
    class_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Relationships
    parent_links: Mapped[list["ParentStudent"]] = relationship(
        "ParentStudent",
        back_populates="student",
        lazy="selectin",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("school_id", "admission_number", name="uq_student_admission"),
    )

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, name={self.name}, class_id={self.class_id})>"


class ParentStudent(Base, IDMixin, TimestampMixin):
    """Links a parent account to a child. Only linked children are visible to the parent."""

    __tablename__ = "parent_students"

    parent_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    relationship_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    student: Mapped["Student"] = relationship("Student", back_populates="parent_links")

    __table_args__ = (
        UniqueConstraint("parent_id", "student_id", name="uq_parent_student"),
    )

    def __repr__(self) -> str:
        return f"<ParentStudent(parent_id={self.parent_id}, student_id={self.student_id})>"
