"""Authentication service."""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.core.security import (
    create_access_token,
    create_refresh_token,
    verify_password,
    verify_refresh_token,
)
from app.models.user import User
from app.schemas.auth import LoginRequest, TokenResponse, UserResponse


class AuthService:
    """Authentication service."""

    def __init__(self, db: Session):
        self.db = db

    def _issue_tokens(self, user: User) -> TokenResponse:
        access_token = create_access_token(
            user.id,
            user.username,
            role=user.role.value,
            school_id=user.school_id,
        )
        refresh_token = create_refresh_token(user.id)

        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    def login(self, request: LoginRequest) -> tuple[User, TokenResponse]:
        """Authenticate user and return tokens."""
        result = self.db.execute(
            select(User).where(User.username == request.username)
        )
        user = result.scalar_one_or_none()

        if not user:
            raise AuthenticationError("Invalid username or password")

        if not verify_password(request.password, user.password_hash):
            raise AuthenticationError("Invalid username or password")

        if not user.is_active:
            raise AuthenticationError("User account is deactivated")

        # Update last login
        user.last_login_at = datetime.now(timezone.utc)
        self.db.flush()

        return user, self._issue_tokens(user)

    def refresh_tokens(self, refresh_token: str) -> TokenResponse:
        """Refresh access token using refresh token."""
        payload = verify_refresh_token(refresh_token)

        if not payload:
            raise AuthenticationError("Invalid or expired refresh token")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token payload")

        try:
            user_pk = int(user_id)
        except ValueError:
            raise AuthenticationError("Invalid user ID in token")

        result = self.db.execute(select(User).where(User.id == user_pk))
        user = result.scalar_one_or_none()

        if not user or not user.is_active:
            raise AuthenticationError("User not found or deactivated")

        # Role or school may have changed since the last token
        return self._issue_tokens(user)

    def get_user_response(self, user: User) -> UserResponse:
        return UserResponse.model_validate(user)
