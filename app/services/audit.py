"""Audit logging service."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit import AuditAction, AuditLog


class AuditService:
    """Audit logging service - append-only."""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: str | None = None,
        school_id: int | None = None,
        user_id: int | None = None,
        user_role: str | None = None,
        description: str | None = None,
        extra_data: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        log = AuditLog(
            school_id=school_id,
            user_id=user_id,
            user_role=user_role,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            description=description,
            extra_data=extra_data,
            ip_address=ip_address,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def list_for_resource(
        self,
        resource_type: str,
        resource_id: str,
        school_id: int | None = None,
    ) -> list[AuditLog]:
        """Entries for one resource, newest first."""
        query = select(AuditLog).where(
            AuditLog.resource_type == resource_type,
            AuditLog.resource_id == resource_id,
        )
        if school_id is not None:
            query = query.where(AuditLog.school_id == school_id)

        result = self.db.execute(query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()))
        return list(result.scalars().all())
