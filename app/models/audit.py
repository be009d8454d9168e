"""Audit log model."""

import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, DateTime, Enum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin


class AuditAction(str, enum.Enum):
    """Audit action types."""

    # User actions
    USER_LOGIN = "USER_LOGIN"

    # Grade workflow
    GRADE_DRAFT_SAVED = "GRADE_DRAFT_SAVED"
    GRADE_SUBMITTED = "GRADE_SUBMITTED"
    GRADE_UPDATED = "GRADE_UPDATED"
    GRADE_REVIEW_STARTED = "GRADE_REVIEW_STARTED"
    GRADE_APPROVED = "GRADE_APPROVED"
    GRADE_REJECTED = "GRADE_REJECTED"
    GRADE_RELEASED = "GRADE_RELEASED"
    POSITIONS_CALCULATED = "POSITIONS_CALCULATED"

    # Overrides
    OVERRIDE_REQUESTED = "OVERRIDE_REQUESTED"
    OVERRIDE_APPROVED = "OVERRIDE_APPROVED"
    OVERRIDE_REJECTED = "OVERRIDE_REJECTED"

    # System
    MAINTENANCE_ENABLED = "MAINTENANCE_ENABLED"
    MAINTENANCE_DISABLED = "MAINTENANCE_DISABLED"


class AuditLog(Base, IDMixin):
    """Append-only audit log model."""

    __tablename__ = "audit_logs"

    # School scope (nullable for system-level actions)
    school_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("schools.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Actor
    user_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    user_role: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Action details
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="auditaction"),
        nullable=False,
        index=True,
    )
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Old/new values and other context
    extra_data: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True,
    )

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Timestamp (append-only, no updated_at)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    # Relationships
    user: Mapped["User | None"] = relationship("User", lazy="selectin")

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action})>"


# Import to avoid circular imports
from app.models.user import User  # noqa: E402
