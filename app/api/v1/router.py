"""Main API router aggregating all module routers."""

from fastapi import APIRouter, Depends

from app.api.v1.endpoints import (
    auth,
    grade_overrides,
    grades,
    maintenance,
    parent,
)
from app.core.dependencies import require_not_in_maintenance

api_router = APIRouter()

# Authentication (no school context required)
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"],
)

# Grades (school-scoped)
api_router.include_router(
    grades.router,
    prefix="/grades",
    tags=["Grades"],
    dependencies=[Depends(require_not_in_maintenance)],
)

# Grade overrides (school-scoped)
api_router.include_router(
    grade_overrides.router,
    prefix="/grade-overrides",
    tags=["Grade Overrides"],
    dependencies=[Depends(require_not_in_maintenance)],
)

# Parent portal (school-scoped)
api_router.include_router(
    parent.router,
    prefix="/parent",
    tags=["Parent Portal"],
    dependencies=[Depends(require_not_in_maintenance)],
)

# System administration (platform admins)
api_router.include_router(
    maintenance.router,
    prefix="/system",
    tags=["System"],
)
