"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import (
    AuthenticationError,
    MaintenanceModeError,
    NotFoundError,
    PermissionDeniedError,
)
from app.core.security import verify_access_token
from app.models.school import School
from app.models.user import User, UserRole


class CurrentUserContext:
    """Context object containing current user and the school being acted on."""

    def __init__(self, user: User, school: School):
        self.user = user
        self.school = school

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def school_id(self) -> int:
        return self.school.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    def has_role(self, *roles: UserRole) -> bool:
        """Check if the user holds one of the given roles."""
        return self.user.role in roles

    def is_teacher(self) -> bool:
        return self.user.role == UserRole.TEACHER

    def is_platform_admin(self) -> bool:
        return self.user.role == UserRole.EDUFAM_ADMIN


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: str = Header(..., description="Bearer token"),
) -> User:
    """Extract and validate the current user from JWT token."""
    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization[7:]  # Remove "Bearer " prefix
    payload = verify_access_token(token)

    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise AuthenticationError("Invalid token payload")

    try:
        user_id = int(user_id_str)
    except ValueError:
        raise AuthenticationError("Invalid user ID in token")

    result = db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


def get_school_context(
    db: Annotated[Session, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    x_school_id: str | None = Header(None, description="School ID (platform admins only)"),
) -> CurrentUserContext:
    """Resolve the school the request acts on.

    School users are pinned to their own school; the header cannot move them
    into another tenant. Platform admins pick a school with ``X-School-Id``.
    """
    if user.is_platform_admin:
        if not x_school_id:
            raise NotFoundError("School", None)
        try:
            school_id = int(x_school_id)
        except ValueError:
            raise NotFoundError("School", x_school_id)
    else:
        if user.school_id is None:
            raise PermissionDeniedError("User is not assigned to a school")
        if x_school_id and x_school_id != str(user.school_id):
            raise PermissionDeniedError("You don't have access to this school")
        school_id = user.school_id

    result = db.execute(select(School).where(School.id == school_id))
    school = result.scalar_one_or_none()

    if not school:
        raise NotFoundError("School", str(school_id))

    return CurrentUserContext(user=user, school=school)


def require_roles(*roles: UserRole):
    """Dependency factory that requires one of the given roles."""

    def check_roles(
        context: Annotated[CurrentUserContext, Depends(get_school_context)],
    ) -> CurrentUserContext:
        if not context.has_role(*roles):
            raise PermissionDeniedError(
                "You are not allowed to perform this action",
                required_roles=[role.value for role in roles],
            )
        return context

    return check_roles


def require_platform_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Dependency that requires the platform admin role (no school needed)."""
    if not user.is_platform_admin:
        raise PermissionDeniedError(
            "Platform admin access required",
            required_roles=[UserRole.EDUFAM_ADMIN.value],
        )
    return user


def require_not_in_maintenance(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Route-level guard backed by the same gate the middleware uses."""
    from app.services.maintenance import maintenance_gate

    decision = maintenance_gate.check_access(user.role.value)
    if not decision.allowed:
        raise MaintenanceModeError(decision.reason or maintenance_gate.get_message())
    return user


# Type alias for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
