"""Parent portal endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUserContext, require_roles
from app.models.user import UserRole
from app.schemas.grade import GradeResponse
from app.services.grade import GradeService

router = APIRouter()


@router.get("/grades", response_model=list[GradeResponse])
def get_children_grades(
    context: Annotated[CurrentUserContext, Depends(require_roles(UserRole.PARENT))],
    db: Annotated[Session, Depends(get_db)],
    student_id: int | None = None,
):
    """
    Released grades for the parent's linked children.
    Asking for a child that is not linked to the parent is refused.
    """
    service = GradeService(db)
    return service.list_released_for_parent(context.user, context.school_id, student_id=student_id)
