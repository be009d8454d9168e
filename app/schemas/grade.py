"""Grade schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator

from app.core.config import settings
from app.models.grade import GradeStatus, OverrideStatus
from app.models.school import CurriculumType
from app.schemas.common import BaseSchema


def _blank_to_none(value: Any) -> Any:
    """Grade sheets send untouched cells as empty strings."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ==========================================
# Bulk Submission
# ==========================================

class GradeCellInput(BaseSchema):
    """One student/subject cell of a grade sheet."""

    score: Decimal | None = Field(None, ge=0)
    max_score: Decimal = Field(default_factory=lambda: Decimal(settings.DEFAULT_MAX_SCORE), gt=0)
    percentage: Decimal | None = Field(None, ge=0, le=100)
    letter_grade: str | None = Field(None, max_length=5)
    performance_level: str | None = Field(None, max_length=5)
    comments: str | None = None

    @field_validator("score", "percentage", "letter_grade", "performance_level", mode="before")
    @classmethod
    def blank_cells_are_empty(cls, v: Any) -> Any:
        return _blank_to_none(v)


class BulkGradeSubmission(BaseSchema):
    """A teacher's score matrix for one class/term/exam.

    ``grades`` maps student id -> subject id -> cell.
    """

    class_id: int | None = None
    term: str | None = Field(None, max_length=50)
    exam_type: str | None = Field(None, max_length=50)
    curriculum_type: CurriculumType | None = None
    grades: dict[int, dict[int, GradeCellInput]] = Field(default_factory=dict)

    @field_validator("term", "exam_type", mode="before")
    @classmethod
    def blank_selection_is_missing(cls, v: Any) -> Any:
        return _blank_to_none(v)


class BulkGradeSubmissionResult(BaseSchema):
    """Outcome of a bulk submission."""

    grades_written: int
    submitted: bool
    status: GradeStatus | None = None
    message: str


# ==========================================
# Grade Records
# ==========================================

class GradeResponse(BaseSchema):
    """Grade response schema."""

    id: int
    school_id: int
    student_id: int
    student_name: str | None = None
    subject_id: int
    subject_name: str | None = None
    class_id: int
    term: str
    exam_type: str
    score: Decimal | None
    max_score: Decimal
    percentage: Decimal | None
    letter_grade: str | None
    cbc_performance_level: str | None
    curriculum_type: CurriculumType
    position: int | None
    comments: str | None
    status: GradeStatus
    submitted_by: int | None
    submitted_at: datetime | None
    approved_by: int | None
    approved_at: datetime | None
    rejected_reason: str | None
    released_at: datetime | None
    principal_notes: str | None
    created_at: datetime
    updated_at: datetime


class GradeUpdate(BaseSchema):
    """Direct edit of a single grade that is not yet locked."""

    score: Decimal = Field(..., ge=0)
    comments: str | None = None


class GradeFilter(BaseSchema):
    """Grade filtering options."""

    class_id: int | None = None
    subject_id: int | None = None
    status: GradeStatus | None = None
    term: str | None = None
    exam_type: str | None = None


class GradeStatistics(BaseSchema):
    """Grade counts and averages for a school dashboard."""

    total: int
    by_status: dict[str, int]
    average_score: Decimal
    curriculum_distribution: dict[str, int]


# ==========================================
# Workflow Actions
# ==========================================

class GradeActionRequest(BaseSchema):
    """Workflow action over a set of grades."""

    grade_ids: list[int] = Field(..., min_length=1)
    notes: str | None = None


class GradeRejectRequest(BaseSchema):
    """Rejection of a set of grades. The reason is mandatory."""

    grade_ids: list[int] = Field(..., min_length=1)
    reason: str | None = None


class GradeActionResult(BaseSchema):
    """Outcome of a workflow action."""

    updated: int
    status: GradeStatus
    grade_ids: list[int]
    message: str


class GradeHistoryEntry(BaseSchema):
    """Audit entry for one grade."""

    id: int
    action: str
    user_id: int | None
    user_role: str | None
    description: str | None
    extra_data: dict | None
    created_at: datetime


# ==========================================
# Positions
# ==========================================

class PositionRequest(BaseSchema):
    """Class/term/exam tuple to rank."""

    class_id: int
    term: str = Field(..., min_length=1, max_length=50)
    exam_type: str = Field(..., min_length=1, max_length=50)


class PositionResult(BaseSchema):
    """Computed positions keyed by student id."""

    class_id: int
    term: str
    exam_type: str
    positions: dict[int, int]


# ==========================================
# Overrides
# ==========================================

class GradeOverrideCreate(BaseSchema):
    """Request to change a locked grade."""

    grade_id: int
    new_score: Decimal
    reason: str | None = None


class GradeOverrideResolve(BaseSchema):
    """Approval or rejection notes."""

    notes: str | None = None


class GradeOverrideResponse(BaseSchema):
    """Grade override response schema."""

    id: int
    school_id: int
    grade_id: int
    original_score: Decimal | None
    new_score: Decimal
    reason: str
    status: OverrideStatus
    requested_by: int | None
    requested_at: datetime
    approved_by: int | None
    resolved_at: datetime | None
    resolution_notes: str | None
