"""Maintenance mode settings and the process-wide access gate."""

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.models.audit import AuditAction
from app.models.system_setting import MAINTENANCE_MODE_KEY, SystemSetting
from app.models.user import User, UserRole
from app.schemas.maintenance import AccessDecision, MaintenanceModeSettings, MaintenanceModeUpdate
from app.services.audit import AuditService

logger = logging.getLogger(__name__)


class MaintenanceModeService:
    """Reads and writes the ``maintenance_mode`` system setting."""

    def __init__(self, db: Session):
        self.db = db

    def _get_row(self) -> SystemSetting | None:
        result = self.db.execute(
            select(SystemSetting).where(SystemSetting.setting_key == MAINTENANCE_MODE_KEY)
        )
        return result.scalar_one_or_none()

    def get_settings(self) -> MaintenanceModeSettings:
        """Current settings; defaults when the row is missing or unreadable."""
        row = self._get_row()
        if row is None or not isinstance(row.setting_value, dict):
            return MaintenanceModeSettings()

        try:
            return MaintenanceModeSettings.model_validate(row.setting_value)
        except PydanticValidationError as e:
            logger.warning(f"[MAINTENANCE] Stored settings are invalid, using defaults: {e}")
            return MaintenanceModeSettings()

    def update_settings(self, request: MaintenanceModeUpdate, user: User) -> MaintenanceModeSettings:
        """Write new settings. The row is created on first write and never deleted."""
        current = self.get_settings()
        new_settings = MaintenanceModeSettings(
            enabled=request.enabled,
            message=request.message or current.message or settings.MAINTENANCE_DEFAULT_MESSAGE,
            estimated_duration=request.estimated_duration,
            allowed_roles=request.allowed_roles if request.allowed_roles is not None else current.allowed_roles,
            updated_by=user.id,
            updated_at=datetime.now(timezone.utc),
        )

        row = self._get_row()
        value = new_settings.model_dump(mode="json")
        if row is None:
            row = SystemSetting(
                setting_key=MAINTENANCE_MODE_KEY,
                setting_value=value,
                description="System-wide maintenance mode",
                updated_by=user.id,
            )
            self.db.add(row)
        else:
            row.setting_value = value
            row.updated_by = user.id

        AuditService(self.db).log(
            action=AuditAction.MAINTENANCE_ENABLED if new_settings.enabled else AuditAction.MAINTENANCE_DISABLED,
            resource_type="system_setting",
            resource_id=MAINTENANCE_MODE_KEY,
            user_id=user.id,
            user_role=user.role.value,
            description=f"Maintenance mode {'enabled' if new_settings.enabled else 'disabled'}",
            extra_data={
                "old_values": current.model_dump(mode="json"),
                "new_values": value,
            },
        )

        self.db.flush()
        logger.info(
            f"[MAINTENANCE] {'Enabled' if new_settings.enabled else 'Disabled'} by user {user.id}"
        )
        return new_settings

    def enable(
        self,
        user: User,
        message: str | None = None,
        estimated_duration: str | None = None,
    ) -> MaintenanceModeSettings:
        return self.update_settings(
            MaintenanceModeUpdate(enabled=True, message=message, estimated_duration=estimated_duration),
            user,
        )

    def disable(self, user: User) -> MaintenanceModeSettings:
        return self.update_settings(MaintenanceModeUpdate(enabled=False), user)


class MaintenanceGate:
    """Cached maintenance check shared by the middleware and route guards.

    The flag is re-read at most once per ``poll_interval`` seconds. A failed
    read leaves the system open: an outage of the settings store must not
    lock every user out.
    """

    def __init__(
        self,
        reader: Callable[[], MaintenanceModeSettings],
        poll_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._reader = reader
        self._poll_interval = poll_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._settings: MaintenanceModeSettings | None = None
        self._loaded_at: float | None = None

    def refresh(self) -> MaintenanceModeSettings | None:
        """Re-read the flag now. Returns None when the read failed."""
        try:
            current = self._reader()
        except Exception as e:
            logger.warning(f"[MAINTENANCE] Could not read maintenance flag, allowing access: {e}")
            current = None

        with self._lock:
            self._settings = current
            self._loaded_at = self._clock()
        return current

    def invalidate(self) -> None:
        """Drop the cached value; the next check reads the store again."""
        with self._lock:
            self._settings = None
            self._loaded_at = None

    def _current(self) -> MaintenanceModeSettings | None:
        with self._lock:
            loaded_at = self._loaded_at
            cached = self._settings
        if loaded_at is None or self._clock() - loaded_at >= self._poll_interval:
            return self.refresh()
        return cached

    def is_enabled(self) -> bool:
        current = self._current()
        return bool(current and current.enabled)

    def get_message(self) -> str:
        current = self._current()
        if current and current.message:
            return current.message
        return settings.MAINTENANCE_DEFAULT_MESSAGE

    def check_access(self, role: str | None) -> AccessDecision:
        """Decide whether a caller with ``role`` may use the system right now."""
        current = self._current()
        if current is None or not current.enabled:
            return AccessDecision(allowed=True, in_maintenance=False)

        if role == UserRole.EDUFAM_ADMIN.value or (role is not None and role in current.allowed_roles):
            return AccessDecision(allowed=True, in_maintenance=True)

        return AccessDecision(
            allowed=False,
            reason=current.message or settings.MAINTENANCE_DEFAULT_MESSAGE,
            in_maintenance=True,
        )


def read_maintenance_settings() -> MaintenanceModeSettings:
    """Load the flag in a short-lived session of its own."""
    db = SessionLocal()
    try:
        return MaintenanceModeService(db).get_settings()
    finally:
        db.close()


# Global gate instance
maintenance_gate = MaintenanceGate(
    reader=read_maintenance_settings,
    poll_interval=settings.MAINTENANCE_POLL_SECONDS,
)
