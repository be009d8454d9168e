"""User model."""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin, enum_values


class UserRole(str, enum.Enum):
    """Application roles."""

    EDUFAM_ADMIN = "edufam_admin"
    SCHOOL_OWNER = "school_owner"
    PRINCIPAL = "principal"
    TEACHER = "teacher"
    PARENT = "parent"
    FINANCE_OFFICER = "finance_officer"


class User(Base, IDMixin, TimestampMixin):
    """System user. Platform admins have no school; everyone else belongs to one."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="userrole", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    school_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("schools.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_platform_admin(self) -> bool:
        return self.role == UserRole.EDUFAM_ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
