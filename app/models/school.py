"""School (tenant) model."""

import enum

from sqlalchemy import Boolean, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin, enum_values


class CurriculumType(str, enum.Enum):
    """Curriculum a school grades against."""

    STANDARD = "standard"
    CBC = "cbc"
    IGCSE = "igcse"


class School(Base, IDMixin, TimestampMixin):
    """School model. Every grade and user row is scoped by school."""

    __tablename__ = "schools"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    curriculum_type: Mapped[CurriculumType] = mapped_column(
        Enum(CurriculumType, name="curriculumtype", values_callable=enum_values),
        default=CurriculumType.STANDARD,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<School(id={self.id}, name={self.name})>"
