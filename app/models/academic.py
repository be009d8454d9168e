"""Class and subject lookup models."""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.base import IDMixin, SchoolScopedMixin, TimestampMixin


class SchoolClass(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """A class (stream) within a school, e.g. 'Grade 6 East'."""

    __tablename__ = "classes"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[str | None] = mapped_column(String(50), nullable=True)
    stream: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_class_school_name"),
    )

    def __repr__(self) -> str:
        return f"<SchoolClass(id={self.id}, name={self.name})>"


class Subject(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """Subject taught in a school."""

    __tablename__ = "subjects"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("school_id", "code", name="uq_subject_school_code"),
    )

    def __repr__(self) -> str:
        return f"<Subject(id={self.id}, code={self.code})>"
