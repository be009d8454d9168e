"""Custom exception classes and error handling."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": code,
                    "message": message,
                    "details": details or {},
                },
            },
        )


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="AUTH_FAILED",
            message=message,
        )


class PermissionDeniedError(AppException):
    """Permission denied for the requested action."""

    def __init__(
        self,
        message: str = "Permission denied",
        required_roles: list[str] | None = None,
    ):
        details = {}
        if required_roles:
            details["required_roles"] = required_roles
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            code="PERMISSION_DENIED",
            message=message,
            details=details,
        )


class ValidationError(AppException):
    """Data validation failed."""

    def __init__(
        self,
        message: str = "Validation error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(
        self,
        resource: str = "Resource",
        identifier: str | None = None,
    ):
        details = {}
        if identifier:
            details["identifier"] = identifier
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            message=f"{resource} not found",
            details=details,
        )


class InvalidTransitionError(AppException):
    """Grade workflow transition is not allowed from the current status."""

    def __init__(
        self,
        message: str = "Invalid grade status transition",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            code="INVALID_TRANSITION",
            message=message,
            details=details,
        )


class GradeLockedError(AppException):
    """Grade is approved or released and can only change through an override."""

    def __init__(
        self,
        message: str = "Grade is locked. Request an override to change it.",
        grade_ids: list[int] | None = None,
    ):
        details = {}
        if grade_ids:
            details["grade_ids"] = grade_ids
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            code="GRADE_LOCKED",
            message=message,
            details=details,
        )


class GradeWriteError(AppException):
    """Database rejected a grade write."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="WRITE_FAILED",
            message=message,
        )


class MaintenanceModeError(AppException):
    """System is in maintenance mode and the caller cannot bypass it."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="MAINTENANCE_MODE",
            message=message,
        )


class RequestTimeoutError(AppException):
    """Operation exceeded its time budget; the caller may retry."""

    def __init__(self, message: str = "The request timed out. Please try again."):
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            code="TIMEOUT",
            message=message,
            details={"retryable": True},
        )


class InternalError(AppException):
    """Internal server error."""

    def __init__(
        self,
        message: str = "Internal server error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="INTERNAL_ERROR",
            message=message,
            details=details,
        )
