"""Grade entry, workflow and reporting endpoints."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUserContext, require_roles
from app.models.audit import AuditAction
from app.models.grade import GradeStatus
from app.models.user import UserRole
from app.schemas.common import PaginatedResponse
from app.schemas.grade import (
    BulkGradeSubmission,
    BulkGradeSubmissionResult,
    GradeActionRequest,
    GradeActionResult,
    GradeFilter,
    GradeHistoryEntry,
    GradeRejectRequest,
    GradeResponse,
    GradeStatistics,
    GradeUpdate,
    PositionRequest,
    PositionResult,
)
from app.services.audit import AuditService
from app.services.grade import GradeService, grade_statistics_with_timeout
from app.services.grade_submission import BulkGradeSubmissionService
from app.services.grade_workflow import GradeWorkflowService
from app.services.position import BackgroundPositionRecalculator, PositionService

router = APIRouter()


@router.post("/bulk", response_model=BulkGradeSubmissionResult)
def submit_bulk_grades(
    request: BulkGradeSubmission,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.TEACHER, UserRole.PRINCIPAL, UserRole.SCHOOL_OWNER)),
    ],
    db: Annotated[Session, Depends(get_db)],
    background_tasks: BackgroundTasks,
):
    """
    Save a whole grade sheet.
    Teachers submit for approval; principals and owners save drafts.
    Class positions are recomputed in the background afterwards.
    """
    service = BulkGradeSubmissionService(db)
    result = service.submit(
        context,
        request,
        recalculator=BackgroundPositionRecalculator(background_tasks),
    )
    # Positions are recomputed from committed rows
    db.commit()
    return result


@router.get("", response_model=PaginatedResponse[GradeResponse])
def list_grades(
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(
            UserRole.PRINCIPAL,
            UserRole.SCHOOL_OWNER,
            UserRole.EDUFAM_ADMIN,
            UserRole.TEACHER,
        )),
    ],
    db: Annotated[Session, Depends(get_db)],
    class_id: int | None = None,
    subject_id: int | None = None,
    status: GradeStatus | None = None,
    term: str | None = None,
    exam_type: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """
    List grades with filtering and pagination.
    Principals use ``status=submitted`` as their approval queue.
    """
    service = GradeService(db)
    filters = GradeFilter(
        class_id=class_id,
        subject_id=subject_id,
        status=status,
        term=term,
        exam_type=exam_type,
    )
    grades, total = service.list_grades(
        context.school_id,
        filters=filters,
        page=page,
        page_size=page_size,
    )

    return PaginatedResponse(
        items=grades,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/sheet", response_model=list[GradeResponse])
def get_grade_sheet(
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.TEACHER, UserRole.PRINCIPAL)),
    ],
    db: Annotated[Session, Depends(get_db)],
    class_id: int = Query(...),
    subject_id: int = Query(...),
    term: str = Query(..., min_length=1),
    exam_type: str = Query(..., min_length=1),
):
    """
    Get every grade on one class/subject/term/exam sheet.
    """
    service = GradeService(db)
    return service.get_grade_sheet(
        context.school_id,
        class_id=class_id,
        subject_id=subject_id,
        term=term,
        exam_type=exam_type,
    )


@router.get("/statistics", response_model=GradeStatistics)
async def get_grade_statistics(
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.PRINCIPAL, UserRole.SCHOOL_OWNER, UserRole.EDUFAM_ADMIN)),
    ],
    class_id: int | None = None,
    term: str | None = None,
    exam_type: str | None = None,
):
    """
    Grade counts by status and curriculum.
    Returns a retryable 504 when the aggregate is too slow.
    """
    filters = GradeFilter(class_id=class_id, term=term, exam_type=exam_type)
    return await grade_statistics_with_timeout(context.school_id, filters)


@router.get("/{grade_id}", response_model=GradeResponse)
def get_grade(
    grade_id: int,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(
            UserRole.PRINCIPAL,
            UserRole.SCHOOL_OWNER,
            UserRole.EDUFAM_ADMIN,
            UserRole.TEACHER,
        )),
    ],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Get one grade of the current school.
    """
    service = GradeService(db)
    return service.get_grade_response(grade_id, context.school_id)


@router.patch("/{grade_id}", response_model=GradeResponse)
def update_grade(
    grade_id: int,
    request: GradeUpdate,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.TEACHER, UserRole.PRINCIPAL)),
    ],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Edit one grade that is not yet approved.
    Approved and released grades need an override instead.
    """
    service = GradeService(db)
    return service.update_grade(context, grade_id, request)


@router.get("/{grade_id}/history", response_model=list[GradeHistoryEntry])
def get_grade_history(
    grade_id: int,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.PRINCIPAL, UserRole.SCHOOL_OWNER, UserRole.EDUFAM_ADMIN)),
    ],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Audit trail of one grade, newest first.
    """
    service = GradeService(db)
    return service.get_grade_history(grade_id, context.school_id)


# ==========================================
# Workflow
# ==========================================

@router.post("/submit", response_model=GradeActionResult)
def submit_grades(
    request: GradeActionRequest,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.TEACHER, UserRole.PRINCIPAL)),
    ],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Submit draft or rejected grades for approval.
    """
    service = GradeWorkflowService(db)
    return service.submit_grades(context, request.grade_ids)


@router.post("/review", response_model=GradeActionResult)
def start_review(
    request: GradeActionRequest,
    context: Annotated[CurrentUserContext, Depends(require_roles(UserRole.PRINCIPAL))],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Mark submitted grades as under review.
    """
    service = GradeWorkflowService(db)
    return service.start_review(context, request.grade_ids)


@router.post("/approve", response_model=GradeActionResult)
def approve_grades(
    request: GradeActionRequest,
    context: Annotated[CurrentUserContext, Depends(require_roles(UserRole.PRINCIPAL))],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Approve submitted or under-review grades. Approved grades are locked.
    """
    service = GradeWorkflowService(db)
    return service.approve_grades(context, request.grade_ids, notes=request.notes)


@router.post("/reject", response_model=GradeActionResult)
def reject_grades(
    request: GradeRejectRequest,
    context: Annotated[CurrentUserContext, Depends(require_roles(UserRole.PRINCIPAL))],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Send grades back to the teacher. A reason is required.
    """
    service = GradeWorkflowService(db)
    return service.reject_grades(context, request.grade_ids, request.reason)


@router.post("/release", response_model=GradeActionResult)
def release_grades(
    request: GradeActionRequest,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.PRINCIPAL, UserRole.EDUFAM_ADMIN)),
    ],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Release approved grades to parents.
    """
    service = GradeWorkflowService(db)
    return service.release_grades(context, request.grade_ids)


# ==========================================
# Positions
# ==========================================

@router.post("/positions", response_model=PositionResult)
def calculate_positions(
    request: PositionRequest,
    context: Annotated[CurrentUserContext, Depends(require_roles(UserRole.PRINCIPAL))],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Recompute class positions for a class/term/exam now.
    """
    service = GradeService(db)
    # Class must belong to the caller's school
    service.ensure_class_in_school(request.class_id, context.school_id)

    positions = PositionService(db).calculate_class_positions(
        request.class_id,
        request.term,
        request.exam_type,
    )

    # Audit log
    audit = AuditService(db)
    audit.log(
        action=AuditAction.POSITIONS_CALCULATED,
        resource_type="grade_sheet",
        resource_id=f"{request.class_id}:{request.term}:{request.exam_type}",
        school_id=context.school_id,
        user_id=context.user_id,
        user_role=context.role.value,
        description=f"Positions calculated for {len(positions)} students",
    )

    return PositionResult(
        class_id=request.class_id,
        term=request.term,
        exam_type=request.exam_type,
        positions=positions,
    )
