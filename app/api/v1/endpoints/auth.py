"""Authentication endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUser
from app.models.audit import AuditAction
from app.schemas.auth import LoginRequest, RefreshTokenRequest, TokenResponse, UserResponse
from app.services.audit import AuditService
from app.services.auth import AuthService

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
def login(
    request: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """
    Authenticate user and return access/refresh tokens.
    """
    service = AuthService(db)
    user, response = service.login(request)

    # Audit log
    audit = AuditService(db)
    audit.log(
        action=AuditAction.USER_LOGIN,
        resource_type="user",
        resource_id=str(user.id),
        school_id=user.school_id,
        user_id=user.id,
        user_role=user.role.value,
        ip_address=http_request.client.host if http_request.client else None,
    )

    return response


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    request: RefreshTokenRequest,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Refresh access token using a valid refresh token.
    """
    service = AuthService(db)
    return service.refresh_tokens(request.refresh_token)


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Get the current authenticated user.
    """
    service = AuthService(db)
    return service.get_user_response(current_user)
