"""Grade service for reads, direct edits and statistics."""

import asyncio
import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.dependencies import CurrentUserContext
from app.core.exceptions import (
    GradeLockedError,
    NotFoundError,
    PermissionDeniedError,
    RequestTimeoutError,
    ValidationError,
)
from app.models.academic import SchoolClass
from app.models.audit import AuditAction
from app.models.grade import Grade, GradeStatus
from app.models.student import ParentStudent, Student
from app.models.user import User, UserRole
from app.schemas.grade import (
    GradeFilter,
    GradeHistoryEntry,
    GradeResponse,
    GradeStatistics,
    GradeUpdate,
)
from app.services.audit import AuditService
from app.services.grade_calculation import derive_grade_fields
from app.services.grade_workflow import is_locked

logger = logging.getLogger(__name__)


class GradeService:
    """Grade record management service."""

    def __init__(self, db: Session):
        self.db = db

    def _grade_to_response(self, grade: Grade) -> GradeResponse:
        """Convert Grade to response schema."""
        return GradeResponse.model_validate({
            "id": grade.id,
            "school_id": grade.school_id,
            "student_id": grade.student_id,
            "student_name": grade.student.name if grade.student else None,
            "subject_id": grade.subject_id,
            "subject_name": grade.subject.name if grade.subject else None,
            "class_id": grade.class_id,
            "term": grade.term,
            "exam_type": grade.exam_type,
            "score": grade.score,
            "max_score": grade.max_score,
            "percentage": grade.percentage,
            "letter_grade": grade.letter_grade,
            "cbc_performance_level": grade.cbc_performance_level,
            "curriculum_type": grade.curriculum_type,
            "position": grade.position,
            "comments": grade.comments,
            "status": grade.status,
            "submitted_by": grade.submitted_by,
            "submitted_at": grade.submitted_at,
            "approved_by": grade.approved_by,
            "approved_at": grade.approved_at,
            "rejected_reason": grade.rejected_reason,
            "released_at": grade.released_at,
            "principal_notes": grade.principal_notes,
            "created_at": grade.created_at,
            "updated_at": grade.updated_at,
        })

    def get_grade(self, grade_id: int, school_id: int) -> Grade:
        """Get grade by ID within the school."""
        result = self.db.execute(
            select(Grade).where(
                Grade.id == grade_id,
                Grade.school_id == school_id,
            )
        )
        grade = result.scalar_one_or_none()
        if not grade:
            raise NotFoundError("Grade", str(grade_id))
        return grade

    def get_grade_response(self, grade_id: int, school_id: int) -> GradeResponse:
        return self._grade_to_response(self.get_grade(grade_id, school_id))

    def ensure_class_in_school(self, class_id: int, school_id: int) -> None:
        result = self.db.execute(
            select(SchoolClass.id).where(
                SchoolClass.id == class_id,
                SchoolClass.school_id == school_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Class", str(class_id))

    def update_grade(
        self,
        context: CurrentUserContext,
        grade_id: int,
        request: GradeUpdate,
    ) -> GradeResponse:
        """Edit the score of a grade that has not been approved yet."""
        grade = self.get_grade(grade_id, context.school_id)

        if is_locked(grade.status):
            raise GradeLockedError(grade_ids=[grade.id])

        if context.is_teacher() and grade.submitted_by not in (None, context.user_id):
            raise PermissionDeniedError("Teachers can only edit grades they entered")

        if request.score > grade.max_score:
            raise ValidationError(
                f"Score ({request.score}) exceeds max score ({grade.max_score})"
            )

        old_values = {
            "score": str(grade.score) if grade.score is not None else None,
            "letter_grade": grade.letter_grade,
        }

        derived = derive_grade_fields(request.score, grade.max_score, grade.curriculum_type)
        grade.score = request.score
        grade.percentage = derived["percentage"]
        grade.letter_grade = derived["letter_grade"]
        grade.cbc_performance_level = derived["cbc_performance_level"]
        if request.comments is not None:
            grade.comments = request.comments

        AuditService(self.db).log(
            action=AuditAction.GRADE_UPDATED,
            resource_type="grade",
            resource_id=str(grade.id),
            school_id=context.school_id,
            user_id=context.user_id,
            user_role=context.role.value,
            description=f"Grade {grade.id} score edited",
            extra_data={
                "old_values": old_values,
                "new_values": {"score": str(grade.score), "letter_grade": grade.letter_grade},
            },
        )

        self.db.flush()
        self.db.refresh(grade)
        return self._grade_to_response(grade)

    def get_grade_sheet(
        self,
        school_id: int,
        class_id: int,
        subject_id: int,
        term: str,
        exam_type: str,
    ) -> list[GradeResponse]:
        """All grades for one class/subject/term/exam sheet, by student name."""
        result = self.db.execute(
            select(Grade)
            .join(Student, Student.id == Grade.student_id)
            .where(
                Grade.school_id == school_id,
                Grade.class_id == class_id,
                Grade.subject_id == subject_id,
                Grade.term == term,
                Grade.exam_type == exam_type,
            )
            .order_by(Student.name)
        )
        return [self._grade_to_response(g) for g in result.scalars().all()]

    def list_grades(
        self,
        school_id: int,
        filters: GradeFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[GradeResponse], int]:
        """List grades with filtering."""
        query = select(Grade).where(Grade.school_id == school_id)

        if filters:
            if filters.class_id:
                query = query.where(Grade.class_id == filters.class_id)
            if filters.subject_id:
                query = query.where(Grade.subject_id == filters.subject_id)
            if filters.status:
                query = query.where(Grade.status == filters.status)
            if filters.term:
                query = query.where(Grade.term == filters.term)
            if filters.exam_type:
                query = query.where(Grade.exam_type == filters.exam_type)

        # Count total
        count_result = self.db.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar() or 0

        # Apply pagination and ordering
        query = (
            query
            .order_by(Grade.submitted_at.desc(), Grade.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        result = self.db.execute(query)
        grades = result.scalars().all()

        return [self._grade_to_response(g) for g in grades], total

    def get_grade_history(self, grade_id: int, school_id: int) -> list[GradeHistoryEntry]:
        """Audit trail of one grade, newest first."""
        grade = self.get_grade(grade_id, school_id)
        entries = AuditService(self.db).list_for_resource("grade", str(grade.id), school_id)
        return [
            GradeHistoryEntry(
                id=entry.id,
                action=entry.action.value,
                user_id=entry.user_id,
                user_role=entry.user_role,
                description=entry.description,
                extra_data=entry.extra_data,
                created_at=entry.created_at,
            )
            for entry in entries
        ]

    # ==========================================
    # Parent Access
    # ==========================================

    def list_released_for_parent(
        self,
        parent: User,
        school_id: int,
        student_id: int | None = None,
    ) -> list[GradeResponse]:
        """Released grades of the parent's own children.

        The ``released`` filter is part of the query; grades in any other
        status never leave the database for a parent.
        """
        if parent.role != UserRole.PARENT:
            raise PermissionDeniedError("Only parents can view released grades")

        children = self.db.execute(
            select(ParentStudent.student_id)
            .join(Student, Student.id == ParentStudent.student_id)
            .where(
                ParentStudent.parent_id == parent.id,
                Student.school_id == school_id,
            )
        )
        child_ids = set(children.scalars().all())

        if student_id is not None:
            if student_id not in child_ids:
                raise PermissionDeniedError("You can only view grades for your own children")
            child_ids = {student_id}

        if not child_ids:
            return []

        result = self.db.execute(
            select(Grade)
            .where(
                Grade.school_id == school_id,
                Grade.student_id.in_(child_ids),
                Grade.status == GradeStatus.RELEASED,
            )
            .order_by(Grade.created_at.desc(), Grade.id.desc())
        )
        return [self._grade_to_response(g) for g in result.scalars().all()]


# ==========================================
# Statistics
# ==========================================

def compute_grade_statistics(school_id: int, filters: GradeFilter | None = None) -> GradeStatistics:
    """Aggregate grade counts for a school in a session of its own."""
    db = SessionLocal()
    try:
        conditions = [Grade.school_id == school_id]
        if filters:
            if filters.class_id:
                conditions.append(Grade.class_id == filters.class_id)
            if filters.term:
                conditions.append(Grade.term == filters.term)
            if filters.exam_type:
                conditions.append(Grade.exam_type == filters.exam_type)

        status_rows = db.execute(
            select(Grade.status, func.count()).where(*conditions).group_by(Grade.status)
        ).all()
        by_status = {status.value: 0 for status in GradeStatus}
        for status, count in status_rows:
            by_status[status.value] = count

        average = db.execute(
            select(func.avg(Grade.score)).where(*conditions, Grade.score.is_not(None))
        ).scalar()

        curriculum_rows = db.execute(
            select(Grade.curriculum_type, func.count()).where(*conditions).group_by(Grade.curriculum_type)
        ).all()

        return GradeStatistics(
            total=sum(by_status.values()),
            by_status=by_status,
            average_score=Decimal(str(average or 0)).quantize(Decimal("0.01")),
            curriculum_distribution={curriculum.value: count for curriculum, count in curriculum_rows},
        )
    finally:
        db.close()


async def grade_statistics_with_timeout(
    school_id: int,
    filters: GradeFilter | None = None,
    timeout: float | None = None,
) -> GradeStatistics:
    """Run the aggregate off the event loop, giving up after ``timeout`` seconds.

    A timeout surfaces as a retryable 504 rather than a hard failure.
    """
    timeout = timeout if timeout is not None else settings.AGGREGATE_QUERY_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(compute_grade_statistics, school_id, filters),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Grade statistics for school {school_id} timed out after {timeout}s")
        raise RequestTimeoutError("Grade statistics took too long to load. Please try again.")
