"""Bulk grade submission from a teacher's grade sheet."""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.dependencies import CurrentUserContext
from app.core.exceptions import (
    GradeLockedError,
    GradeWriteError,
    InternalError,
    InvalidTransitionError,
    ValidationError,
)
from app.models.academic import SchoolClass, Subject
from app.models.audit import AuditAction
from app.models.grade import GRADE_KEY_COLUMNS, Grade, GradeStatus
from app.models.student import Student
from app.schemas.grade import BulkGradeSubmission, BulkGradeSubmissionResult, GradeCellInput
from app.services.audit import AuditService
from app.services.grade_calculation import derive_grade_fields
from app.services.grade_workflow import LOCKED_STATUSES, TRANSITIONS, GradeEvent
from app.services.position import PositionRecalculator

logger = logging.getLogger(__name__)

# Columns rewritten when a row for the same composite key already exists
UPSERT_UPDATE_COLUMNS = (
    "score",
    "max_score",
    "percentage",
    "letter_grade",
    "cbc_performance_level",
    "curriculum_type",
    "comments",
    "status",
    "submitted_by",
    "submitted_at",
    "rejected_reason",
    "updated_at",
)


def writable_statuses(target: GradeStatus) -> frozenset[GradeStatus]:
    """Existing statuses a sheet write may overwrite when writing ``target``.

    Submitting follows the workflow's submit transitions, and re-submitting a
    submitted grade is a no-op move. A draft save only touches drafts.
    """
    if target == GradeStatus.SUBMITTED:
        sources = {current for current, event in TRANSITIONS if event == GradeEvent.SUBMIT}
        return frozenset(sources | {GradeStatus.SUBMITTED})
    return frozenset({GradeStatus.DRAFT})


class BulkGradeSubmissionService:
    """Writes a whole grade sheet in one statement, then triggers re-ranking."""

    def __init__(self, db: Session):
        self.db = db

    def submit(
        self,
        context: CurrentUserContext,
        request: BulkGradeSubmission,
        recalculator: PositionRecalculator | None = None,
    ) -> BulkGradeSubmissionResult:
        """Upsert every scored cell of the sheet.

        Teachers submit (status ``submitted``); anyone else saves a draft.
        Validation happens before any write, and the write itself is a
        single multi-row statement, so the sheet lands completely or not at all.
        """
        missing = [
            name
            for name, value in (
                ("class_id", request.class_id),
                ("term", request.term),
                ("exam_type", request.exam_type),
            )
            if not value
        ]
        if missing:
            raise ValidationError(
                "Please select a class, term and exam type before submitting grades",
                details={"code": "MISSING_SELECTION", "missing": missing},
            )

        cells = self._collect_cells(request)
        if not cells:
            return BulkGradeSubmissionResult(
                grades_written=0,
                submitted=False,
                status=None,
                message="No grades to submit",
            )

        self._verify_ownership(context.school_id, request.class_id, cells)
        is_submission = context.is_teacher()
        status = GradeStatus.SUBMITTED if is_submission else GradeStatus.DRAFT
        self._ensure_writable(context.school_id, request, cells, status)
        now = datetime.now(timezone.utc)
        curriculum = request.curriculum_type or context.school.curriculum_type

        rows = []
        for student_id, subject_id, cell in cells:
            derived = derive_grade_fields(
                cell.score,
                cell.max_score,
                curriculum,
                percentage=cell.percentage,
                letter_grade=cell.letter_grade,
                performance_level=cell.performance_level,
            )
            rows.append({
                "school_id": context.school_id,
                "student_id": student_id,
                "subject_id": subject_id,
                "class_id": request.class_id,
                "term": request.term,
                "exam_type": request.exam_type,
                "score": cell.score,
                "max_score": cell.max_score,
                "percentage": derived["percentage"],
                "letter_grade": derived["letter_grade"],
                "cbc_performance_level": derived["cbc_performance_level"],
                "curriculum_type": curriculum,
                "comments": cell.comments,
                "status": status,
                "submitted_by": context.user_id,
                "submitted_at": now if is_submission else None,
                "rejected_reason": None,
                "created_at": now,
                "updated_at": now,
            })

        try:
            written = self._upsert(rows, status)
        except SQLAlchemyError as e:
            self.db.rollback()
            message = str(getattr(e, "orig", None) or e)
            logger.error(
                f"[GRADE SUBMISSION] Upsert failed for class={request.class_id} "
                f"term={request.term} exam={request.exam_type}: {message}"
            )
            raise GradeWriteError(message)

        if written < len(rows):
            logger.warning(
                f"[GRADE SUBMISSION] {len(rows) - written} of {len(rows)} grades changed status "
                f"during the write and were left alone (class={request.class_id} "
                f"term={request.term} exam={request.exam_type})"
            )

        audit = AuditService(self.db)
        audit.log(
            action=AuditAction.GRADE_SUBMITTED if is_submission else AuditAction.GRADE_DRAFT_SAVED,
            resource_type="grade_sheet",
            resource_id=f"{request.class_id}:{request.term}:{request.exam_type}",
            school_id=context.school_id,
            user_id=context.user_id,
            user_role=context.role.value,
            description=f"{written} grades {'submitted' if is_submission else 'saved as draft'}",
            extra_data={
                "class_id": request.class_id,
                "term": request.term,
                "exam_type": request.exam_type,
                "grades_written": written,
                "status": status.value,
            },
        )

        logger.info(
            f"[GRADE SUBMISSION] {written} grades -> {status.value} for class={request.class_id} "
            f"term={request.term} exam={request.exam_type} by user {context.user_id}"
        )

        if recalculator is not None:
            try:
                recalculator.trigger_recalculation(request.class_id, request.term, request.exam_type)
            except Exception as e:
                logger.exception(f"Could not trigger position recalculation: {e}")

        noun = "grade" if written == 1 else "grades"
        return BulkGradeSubmissionResult(
            grades_written=written,
            submitted=is_submission,
            status=status,
            message=f"{written} {noun} {'submitted' if is_submission else 'saved as draft'}",
        )

    # ==========================================
    # Helper Methods
    # ==========================================

    def _collect_cells(self, request: BulkGradeSubmission) -> list[tuple[int, int, GradeCellInput]]:
        """Scored cells only; blank cells are skipped, out-of-range scores rejected."""
        cells = []
        for student_id, subjects in request.grades.items():
            for subject_id, cell in subjects.items():
                if cell.score is None:
                    continue
                if cell.score > cell.max_score:
                    raise ValidationError(
                        f"Score ({cell.score}) exceeds max score ({cell.max_score})",
                        details={"student_id": student_id, "subject_id": subject_id},
                    )
                cells.append((student_id, subject_id, cell))
        return cells

    def _verify_ownership(
        self,
        school_id: int,
        class_id: int,
        cells: list[tuple[int, int, GradeCellInput]],
    ) -> None:
        """Class, subjects and students must all belong to the school; students to the class."""
        school_class = self.db.execute(
            select(SchoolClass.id).where(SchoolClass.id == class_id, SchoolClass.school_id == school_id)
        ).scalar_one_or_none()
        if school_class is None:
            raise ValidationError(
                f"Class {class_id} not found in this school",
                details={"class_id": class_id},
            )

        student_ids = {student_id for student_id, _, _ in cells}
        found_students = set(
            self.db.execute(
                select(Student.id).where(
                    Student.id.in_(student_ids),
                    Student.school_id == school_id,
                    Student.class_id == class_id,
                )
            ).scalars().all()
        )
        unknown_students = sorted(student_ids - found_students)
        if unknown_students:
            raise ValidationError(
                "Some students are not enrolled in the selected class",
                details={"student_ids": unknown_students},
            )

        subject_ids = {subject_id for _, subject_id, _ in cells}
        found_subjects = set(
            self.db.execute(
                select(Subject.id).where(Subject.id.in_(subject_ids), Subject.school_id == school_id)
            ).scalars().all()
        )
        unknown_subjects = sorted(subject_ids - found_subjects)
        if unknown_subjects:
            raise ValidationError(
                "Some subjects do not belong to this school",
                details={"subject_ids": unknown_subjects},
            )

    def _ensure_writable(
        self,
        school_id: int,
        request: BulkGradeSubmission,
        cells: list[tuple[int, int, GradeCellInput]],
        target: GradeStatus,
    ) -> None:
        """Refuse the sheet if any existing grade on it cannot move to ``target``.

        Locked grades raise GradeLockedError; any other status outside the
        workflow raises InvalidTransitionError.
        """
        keys = {(student_id, subject_id) for student_id, subject_id, _ in cells}
        result = self.db.execute(
            select(Grade.id, Grade.student_id, Grade.subject_id, Grade.status).where(
                Grade.school_id == school_id,
                Grade.class_id == request.class_id,
                Grade.term == request.term,
                Grade.exam_type == request.exam_type,
                Grade.student_id.in_({student_id for student_id, _ in keys}),
            )
        )
        existing = [row for row in result.all() if (row.student_id, row.subject_id) in keys]

        locked = [row.id for row in existing if row.status in LOCKED_STATUSES]
        if locked:
            raise GradeLockedError(
                "Some grades on this sheet are already approved or released. "
                "Request an override to change them.",
                grade_ids=sorted(locked),
            )

        writable = writable_statuses(target)
        blocked = sorted((row.id, row.status.value) for row in existing if row.status not in writable)
        if blocked:
            action = "submit" if target == GradeStatus.SUBMITTED else "save as draft"
            statuses = sorted({status for _, status in blocked})
            raise InvalidTransitionError(
                f"Cannot {action} grades that are {', '.join(statuses)}",
                details={"grade_ids": [grade_id for grade_id, _ in blocked], "statuses": statuses},
            )

    def _upsert(self, rows: list[dict], target: GradeStatus) -> int:
        """Single INSERT .. ON CONFLICT DO UPDATE on the grade's composite key.

        Returns the number of rows actually inserted or updated.
        """
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise InternalError(f"Grade upsert is not supported on '{dialect}'")

        table = Grade.__table__
        stmt = insert(table).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(GRADE_KEY_COLUMNS),
            set_={column: stmt.excluded[column] for column in UPSERT_UPDATE_COLUMNS},
            # Rows that moved on since the status check are left alone
            where=table.c.status.in_(sorted(writable_statuses(target), key=lambda s: s.value)),
        )
        result = self.db.execute(stmt)
        return result.rowcount
