"""Override requests for approved and released grades."""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.dependencies import CurrentUserContext
from app.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.audit import AuditAction
from app.models.grade import Grade, GradeOverride, OverrideStatus
from app.models.user import UserRole
from app.schemas.grade import GradeOverrideResponse
from app.services.audit import AuditService
from app.services.grade_calculation import derive_grade_fields
from app.services.grade_workflow import is_locked
from app.services.position import PositionRecalculator

logger = logging.getLogger(__name__)

REQUESTER_ROLES = (UserRole.TEACHER, UserRole.PRINCIPAL)
RESOLVER_ROLES = (UserRole.PRINCIPAL, UserRole.EDUFAM_ADMIN)


class GradeOverrideService:
    """Request, approve and reject changes to locked grades."""

    def __init__(self, db: Session):
        self.db = db

    def _override_to_response(self, override: GradeOverride) -> GradeOverrideResponse:
        return GradeOverrideResponse.model_validate(override)

    def _get_override(self, override_id: int, school_id: int) -> GradeOverride:
        result = self.db.execute(
            select(GradeOverride).where(
                GradeOverride.id == override_id,
                GradeOverride.school_id == school_id,
            )
        )
        override = result.scalar_one_or_none()
        if not override:
            raise NotFoundError("Grade override", str(override_id))
        return override

    def _ensure_role(self, context: CurrentUserContext, roles: tuple[UserRole, ...], action: str) -> None:
        if not context.has_role(*roles):
            raise PermissionDeniedError(
                f"Role '{context.role.value}' cannot {action} grade overrides",
                required_roles=[role.value for role in roles],
            )

    def request_override(
        self,
        context: CurrentUserContext,
        grade_id: int,
        new_score: Decimal,
        reason: str | None,
    ) -> GradeOverrideResponse:
        """Ask for a score change on a locked grade. The grade itself is untouched."""
        self._ensure_role(context, REQUESTER_ROLES, "request")

        result = self.db.execute(
            select(Grade).where(Grade.id == grade_id, Grade.school_id == context.school_id)
        )
        grade = result.scalar_one_or_none()
        if not grade:
            raise NotFoundError("Grade", str(grade_id))

        if not is_locked(grade.status):
            raise InvalidTransitionError(
                "Only approved or released grades need an override. Edit this grade directly.",
                details={"grade_id": grade.id, "status": grade.status.value},
            )

        if not reason or not reason.strip():
            raise ValidationError("A reason is required for a grade override", details={"field": "reason"})

        if new_score < 0 or new_score > grade.max_score:
            raise ValidationError(
                f"New score must be between 0 and {grade.max_score}",
                details={"field": "new_score"},
            )

        if grade.score is not None and Decimal(new_score) == Decimal(grade.score):
            raise ValidationError(
                "New score is the same as the current score",
                details={"field": "new_score"},
            )

        pending = self.db.execute(
            select(func.count()).select_from(GradeOverride).where(
                GradeOverride.grade_id == grade.id,
                GradeOverride.status == OverrideStatus.PENDING,
            )
        ).scalar() or 0
        if pending:
            raise InvalidTransitionError(
                "This grade already has a pending override request",
                details={"grade_id": grade.id},
            )

        override = GradeOverride(
            school_id=context.school_id,
            grade_id=grade.id,
            original_score=grade.score,
            new_score=new_score,
            reason=reason.strip(),
            status=OverrideStatus.PENDING,
            requested_by=context.user_id,
            requested_at=datetime.now(timezone.utc),
        )
        self.db.add(override)
        self.db.flush()

        AuditService(self.db).log(
            action=AuditAction.OVERRIDE_REQUESTED,
            resource_type="grade",
            resource_id=str(grade.id),
            school_id=context.school_id,
            user_id=context.user_id,
            user_role=context.role.value,
            description=f"Override requested for grade {grade.id}",
            extra_data={
                "override_id": override.id,
                "original_score": str(grade.score) if grade.score is not None else None,
                "new_score": str(new_score),
                "reason": override.reason,
            },
        )

        logger.info(f"[GRADE OVERRIDE] Requested override {override.id} for grade {grade.id}")
        return self._override_to_response(override)

    def approve_override(
        self,
        context: CurrentUserContext,
        override_id: int,
        notes: str | None = None,
        recalculator: PositionRecalculator | None = None,
    ) -> GradeOverrideResponse:
        """Apply the requested score to the grade; its status stays as it is."""
        self._ensure_role(context, RESOLVER_ROLES, "approve")
        override = self._get_pending(override_id, context.school_id)
        grade = override.grade

        old_values = {
            "score": str(grade.score) if grade.score is not None else None,
            "percentage": str(grade.percentage) if grade.percentage is not None else None,
            "letter_grade": grade.letter_grade,
            "cbc_performance_level": grade.cbc_performance_level,
        }

        derived = derive_grade_fields(override.new_score, grade.max_score, grade.curriculum_type)
        grade.score = override.new_score
        grade.percentage = derived["percentage"]
        grade.letter_grade = derived["letter_grade"]
        grade.cbc_performance_level = derived["cbc_performance_level"]

        override.status = OverrideStatus.APPROVED
        override.approved_by = context.user_id
        override.resolved_at = datetime.now(timezone.utc)
        override.resolution_notes = notes

        AuditService(self.db).log(
            action=AuditAction.OVERRIDE_APPROVED,
            resource_type="grade",
            resource_id=str(grade.id),
            school_id=context.school_id,
            user_id=context.user_id,
            user_role=context.role.value,
            description=f"Override {override.id} approved for grade {grade.id}",
            extra_data={
                "override_id": override.id,
                "old_values": old_values,
                "new_values": {
                    "score": str(grade.score),
                    "percentage": str(grade.percentage) if grade.percentage is not None else None,
                    "letter_grade": grade.letter_grade,
                    "cbc_performance_level": grade.cbc_performance_level,
                },
                "notes": notes,
            },
        )

        self.db.flush()
        logger.info(f"[GRADE OVERRIDE] Approved override {override.id} for grade {grade.id}")

        if recalculator is not None:
            try:
                recalculator.trigger_recalculation(grade.class_id, grade.term, grade.exam_type)
            except Exception as e:
                logger.exception(f"Could not trigger position recalculation: {e}")

        return self._override_to_response(override)

    def reject_override(
        self,
        context: CurrentUserContext,
        override_id: int,
        notes: str | None = None,
    ) -> GradeOverrideResponse:
        """Close the request without touching the grade."""
        self._ensure_role(context, RESOLVER_ROLES, "reject")
        override = self._get_pending(override_id, context.school_id)

        override.status = OverrideStatus.REJECTED
        override.approved_by = context.user_id
        override.resolved_at = datetime.now(timezone.utc)
        override.resolution_notes = notes

        AuditService(self.db).log(
            action=AuditAction.OVERRIDE_REJECTED,
            resource_type="grade",
            resource_id=str(override.grade_id),
            school_id=context.school_id,
            user_id=context.user_id,
            user_role=context.role.value,
            description=f"Override {override.id} rejected for grade {override.grade_id}",
            extra_data={"override_id": override.id, "notes": notes},
        )

        self.db.flush()
        logger.info(f"[GRADE OVERRIDE] Rejected override {override.id}")
        return self._override_to_response(override)

    def list_overrides(
        self,
        school_id: int,
        status: OverrideStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[GradeOverrideResponse], int]:
        """List overrides for the school, newest first."""
        query = select(GradeOverride).where(GradeOverride.school_id == school_id)
        if status:
            query = query.where(GradeOverride.status == status)

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar() or 0

        result = self.db.execute(
            query
            .order_by(GradeOverride.requested_at.desc(), GradeOverride.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return [self._override_to_response(o) for o in result.scalars().all()], total

    def _get_pending(self, override_id: int, school_id: int) -> GradeOverride:
        override = self._get_override(override_id, school_id)
        if override.status != OverrideStatus.PENDING:
            raise InvalidTransitionError(
                f"Override is already {override.status.value}",
                details={"override_id": override.id, "status": override.status.value},
            )
        return override
