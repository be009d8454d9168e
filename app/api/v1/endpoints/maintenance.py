"""System maintenance endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.database import get_db
from app.core.dependencies import require_platform_admin
from app.core.security import claims_from_authorization
from app.models.user import User
from app.schemas.maintenance import AccessDecision, MaintenanceModeSettings, MaintenanceModeUpdate
from app.services.maintenance import MaintenanceModeService, maintenance_gate

router = APIRouter()


@router.get("/maintenance/status", response_model=AccessDecision)
async def get_maintenance_status(
    authorization: str | None = Header(None),
):
    """
    Public check of whether the caller may use the system right now.
    """
    claims = claims_from_authorization(authorization) or {}
    return await run_in_threadpool(maintenance_gate.check_access, claims.get("role"))


@router.get("/maintenance", response_model=MaintenanceModeSettings)
def get_maintenance_settings(
    admin: Annotated[User, Depends(require_platform_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Current maintenance settings. Platform admins only.
    """
    service = MaintenanceModeService(db)
    return service.get_settings()


@router.put("/maintenance", response_model=MaintenanceModeSettings)
def update_maintenance_settings(
    request: MaintenanceModeUpdate,
    admin: Annotated[User, Depends(require_platform_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Turn maintenance mode on or off. Platform admins only.
    Other processes pick up the change within one poll interval.
    """
    service = MaintenanceModeService(db)
    result = service.update_settings(request, admin)
    db.commit()

    # This process sees the change immediately
    maintenance_gate.invalidate()
    return result
