"""Grade workflow state machine and transition service.

Grades move draft -> submitted -> under_review -> approved -> released.
Submitted or under-review grades may be rejected instead; a rejected grade
re-enters the flow when it is submitted again.

Approved and released grades are locked; their score can only change through
an approved override (see ``app.services.grade_override``).
"""

import enum
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.dependencies import CurrentUserContext
from app.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.audit import AuditAction
from app.models.grade import Grade, GradeStatus
from app.models.user import UserRole
from app.schemas.grade import GradeActionResult
from app.services.audit import AuditService

logger = logging.getLogger(__name__)


class GradeEvent(str, enum.Enum):
    """Events that move a grade between statuses."""

    SUBMIT = "submit"
    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    RELEASE = "release"


TRANSITIONS: dict[tuple[GradeStatus, GradeEvent], GradeStatus] = {
    (GradeStatus.DRAFT, GradeEvent.SUBMIT): GradeStatus.SUBMITTED,
    (GradeStatus.REJECTED, GradeEvent.SUBMIT): GradeStatus.SUBMITTED,
    (GradeStatus.SUBMITTED, GradeEvent.START_REVIEW): GradeStatus.UNDER_REVIEW,
    (GradeStatus.SUBMITTED, GradeEvent.APPROVE): GradeStatus.APPROVED,
    (GradeStatus.UNDER_REVIEW, GradeEvent.APPROVE): GradeStatus.APPROVED,
    (GradeStatus.SUBMITTED, GradeEvent.REJECT): GradeStatus.REJECTED,
    (GradeStatus.UNDER_REVIEW, GradeEvent.REJECT): GradeStatus.REJECTED,
    (GradeStatus.APPROVED, GradeEvent.RELEASE): GradeStatus.RELEASED,
}

EVENT_ACTORS: dict[GradeEvent, frozenset[UserRole]] = {
    GradeEvent.SUBMIT: frozenset({UserRole.TEACHER, UserRole.PRINCIPAL}),
    GradeEvent.START_REVIEW: frozenset({UserRole.PRINCIPAL}),
    GradeEvent.APPROVE: frozenset({UserRole.PRINCIPAL}),
    GradeEvent.REJECT: frozenset({UserRole.PRINCIPAL}),
    GradeEvent.RELEASE: frozenset({UserRole.PRINCIPAL, UserRole.EDUFAM_ADMIN}),
}

EVENT_AUDIT_ACTIONS: dict[GradeEvent, AuditAction] = {
    GradeEvent.SUBMIT: AuditAction.GRADE_SUBMITTED,
    GradeEvent.START_REVIEW: AuditAction.GRADE_REVIEW_STARTED,
    GradeEvent.APPROVE: AuditAction.GRADE_APPROVED,
    GradeEvent.REJECT: AuditAction.GRADE_REJECTED,
    GradeEvent.RELEASE: AuditAction.GRADE_RELEASED,
}

LOCKED_STATUSES = frozenset({GradeStatus.APPROVED, GradeStatus.RELEASED})


def next_status(current: GradeStatus, event: GradeEvent) -> GradeStatus:
    """Return the status ``event`` leads to from ``current``.

    Raises InvalidTransitionError for any pair outside the transition table.
    """
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {event.value} a grade that is {current.value}",
            details={"status": current.value, "event": event.value},
        )


def can_transition(current: GradeStatus, event: GradeEvent) -> bool:
    return (current, event) in TRANSITIONS


def is_locked(status: GradeStatus) -> bool:
    """Approved and released grades are immutable outside the override flow."""
    return status in LOCKED_STATUSES


def ensure_actor(role: UserRole, event: GradeEvent) -> None:
    allowed = EVENT_ACTORS[event]
    if role not in allowed:
        raise PermissionDeniedError(
            f"Role '{role.value}' cannot {event.value} grades",
            required_roles=sorted(r.value for r in allowed),
        )


class GradeWorkflowService:
    """Applies workflow events to batches of grades, all-or-nothing."""

    def __init__(self, db: Session):
        self.db = db

    def submit_grades(self, context: CurrentUserContext, grade_ids: list[int]) -> GradeActionResult:
        """Teacher finalizes drafts (or corrected rejections) for review."""

        def stamp(grade: Grade, now: datetime) -> None:
            grade.submitted_at = now
            grade.submitted_by = context.user_id
            grade.rejected_reason = None

        if context.is_teacher():
            grades = self._load_grades(context.school_id, grade_ids)
            foreign = [g.id for g in grades if g.submitted_by not in (None, context.user_id)]
            if foreign:
                raise PermissionDeniedError("Teachers can only submit grades they entered")

        return self._apply(context, grade_ids, GradeEvent.SUBMIT, stamp)

    def start_review(self, context: CurrentUserContext, grade_ids: list[int]) -> GradeActionResult:
        def stamp(grade: Grade, now: datetime) -> None:
            grade.reviewed_by = context.user_id
            grade.reviewed_at = now

        return self._apply(context, grade_ids, GradeEvent.START_REVIEW, stamp)

    def approve_grades(
        self,
        context: CurrentUserContext,
        grade_ids: list[int],
        notes: str | None = None,
    ) -> GradeActionResult:
        def stamp(grade: Grade, now: datetime) -> None:
            grade.approved_by = context.user_id
            grade.approved_at = now
            if notes:
                grade.principal_notes = notes

        return self._apply(context, grade_ids, GradeEvent.APPROVE, stamp, notes=notes)

    def reject_grades(
        self,
        context: CurrentUserContext,
        grade_ids: list[int],
        reason: str | None,
    ) -> GradeActionResult:
        """Send grades back to the teacher. A reason is mandatory."""
        if not reason or not reason.strip():
            raise ValidationError(
                "A rejection reason is required",
                details={"field": "reason"},
            )
        reason = reason.strip()

        def stamp(grade: Grade, now: datetime) -> None:
            grade.reviewed_by = context.user_id
            grade.reviewed_at = now
            grade.rejected_reason = reason

        return self._apply(context, grade_ids, GradeEvent.REJECT, stamp, notes=reason)

    def release_grades(self, context: CurrentUserContext, grade_ids: list[int]) -> GradeActionResult:
        """Make approved grades visible to parents."""

        def stamp(grade: Grade, now: datetime) -> None:
            grade.released_by = context.user_id
            grade.released_at = now

        return self._apply(context, grade_ids, GradeEvent.RELEASE, stamp)

    # ==========================================
    # Helper Methods
    # ==========================================

    def _load_grades(self, school_id: int, grade_ids: list[int]) -> list[Grade]:
        """Load grades by id within the school; any missing id is a 404."""
        unique_ids = list(dict.fromkeys(grade_ids))
        result = self.db.execute(
            select(Grade)
            .where(Grade.school_id == school_id, Grade.id.in_(unique_ids))
            .order_by(Grade.id)
        )
        grades = list(result.scalars().all())

        found = {g.id for g in grades}
        missing = [gid for gid in unique_ids if gid not in found]
        if missing:
            raise NotFoundError("Grade", ",".join(str(gid) for gid in missing))
        return grades

    def _apply(
        self,
        context: CurrentUserContext,
        grade_ids: list[int],
        event: GradeEvent,
        stamp: Callable[[Grade, datetime], None],
        notes: str | None = None,
    ) -> GradeActionResult:
        ensure_actor(context.role, event)
        grades = self._load_grades(context.school_id, grade_ids)

        # Validate every grade before touching any of them
        invalid = {g.id: g.status.value for g in grades if not can_transition(g.status, event)}
        if invalid:
            raise InvalidTransitionError(
                f"Cannot {event.value} {len(invalid)} grade(s) in their current status",
                details={"event": event.value, "grades": invalid},
            )

        now = datetime.now(timezone.utc)
        audit = AuditService(self.db)
        for grade in grades:
            old_status = grade.status
            grade.status = next_status(old_status, event)
            stamp(grade, now)
            audit.log(
                action=EVENT_AUDIT_ACTIONS[event],
                resource_type="grade",
                resource_id=str(grade.id),
                school_id=context.school_id,
                user_id=context.user_id,
                user_role=context.role.value,
                description=f"Grade {grade.id}: {old_status.value} -> {grade.status.value}",
                extra_data={
                    "old_values": {"status": old_status.value},
                    "new_values": {"status": grade.status.value},
                    "notes": notes,
                },
            )

        self.db.flush()
        new_status = grades[0].status
        logger.info(
            f"[GRADE WORKFLOW] {event.value}: {len(grades)} grade(s) -> {new_status.value} "
            f"by user {context.user_id} in school {context.school_id}"
        )

        return GradeActionResult(
            updated=len(grades),
            status=new_status,
            grade_ids=[g.id for g in grades],
            message=f"{len(grades)} grade(s) {new_status.value.replace('_', ' ')}",
        )
