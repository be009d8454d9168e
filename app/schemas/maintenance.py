"""Maintenance mode schemas."""

from datetime import datetime

from pydantic import Field

from app.core.config import settings
from app.schemas.common import BaseSchema

DEFAULT_ALLOWED_ROLES = ["edufam_admin"]


class MaintenanceModeSettings(BaseSchema):
    """Value stored under the ``maintenance_mode`` system setting."""

    enabled: bool = False
    message: str = Field(default_factory=lambda: settings.MAINTENANCE_DEFAULT_MESSAGE)
    estimated_duration: str | None = None
    allowed_roles: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ROLES))
    updated_by: int | None = None
    updated_at: datetime | None = None


class MaintenanceModeUpdate(BaseSchema):
    """Admin request to toggle maintenance mode."""

    enabled: bool
    message: str | None = Field(None, max_length=1000)
    estimated_duration: str | None = Field(None, max_length=100)
    allowed_roles: list[str] | None = None


class AccessDecision(BaseSchema):
    """Outcome of a maintenance gate check for one role."""

    allowed: bool
    reason: str | None = None
    in_maintenance: bool = False
