"""Grade override endpoints."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUserContext, require_roles
from app.models.grade import OverrideStatus
from app.models.user import UserRole
from app.schemas.common import PaginatedResponse
from app.schemas.grade import GradeOverrideCreate, GradeOverrideResolve, GradeOverrideResponse
from app.services.grade_override import GradeOverrideService
from app.services.position import BackgroundPositionRecalculator

router = APIRouter()


@router.post("", response_model=GradeOverrideResponse)
def request_override(
    request: GradeOverrideCreate,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.TEACHER, UserRole.PRINCIPAL)),
    ],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Request a score change on an approved or released grade.
    """
    service = GradeOverrideService(db)
    return service.request_override(context, request.grade_id, request.new_score, request.reason)


@router.get("", response_model=PaginatedResponse[GradeOverrideResponse])
def list_overrides(
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.PRINCIPAL, UserRole.EDUFAM_ADMIN)),
    ],
    db: Annotated[Session, Depends(get_db)],
    status: OverrideStatus | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """
    List override requests, optionally by status.
    """
    service = GradeOverrideService(db)
    overrides, total = service.list_overrides(
        context.school_id,
        status=status,
        page=page,
        page_size=page_size,
    )

    return PaginatedResponse(
        items=overrides,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.post("/{override_id}/approve", response_model=GradeOverrideResponse)
def approve_override(
    override_id: int,
    request: GradeOverrideResolve,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.PRINCIPAL, UserRole.EDUFAM_ADMIN)),
    ],
    db: Annotated[Session, Depends(get_db)],
    background_tasks: BackgroundTasks,
):
    """
    Apply the requested score. The grade stays approved or released.
    """
    service = GradeOverrideService(db)
    result = service.approve_override(
        context,
        override_id,
        notes=request.notes,
        recalculator=BackgroundPositionRecalculator(background_tasks),
    )
    # Positions are recomputed from committed rows
    db.commit()
    return result


@router.post("/{override_id}/reject", response_model=GradeOverrideResponse)
def reject_override(
    override_id: int,
    request: GradeOverrideResolve,
    context: Annotated[
        CurrentUserContext,
        Depends(require_roles(UserRole.PRINCIPAL, UserRole.EDUFAM_ADMIN)),
    ],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Close the request; the grade keeps its score.
    """
    service = GradeOverrideService(db)
    return service.reject_override(context, override_id, notes=request.notes)
