"""Maintenance mode middleware for blocking requests during maintenance."""

from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.exceptions import MaintenanceModeError
from app.core.security import claims_from_authorization
from app.services.maintenance import maintenance_gate


class MaintenanceModeMiddleware(BaseHTTPMiddleware):
    """
    Middleware that consults the maintenance gate on every request.

    The caller's role comes from the bearer token; anonymous requests have
    no role and are blocked like any other non-allowed role.
    """

    # Endpoints that stay reachable during maintenance
    EXEMPT_PATHS = {
        f"{settings.API_V1_PREFIX}/auth/login",
        f"{settings.API_V1_PREFIX}/auth/refresh",
        f"{settings.API_V1_PREFIX}/system/maintenance/status",
        f"{settings.API_V1_PREFIX}/openapi.json",
        "/docs",
        "/redoc",
        "/health",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Check if path is exempt
        path = request.url.path
        if any(path.startswith(exempt) for exempt in self.EXEMPT_PATHS):
            return await call_next(request)

        claims = claims_from_authorization(request.headers.get("authorization")) or {}

        # The gate may hit the database when its cache expires
        decision = await run_in_threadpool(maintenance_gate.check_access, claims.get("role"))
        if not decision.allowed:
            error = MaintenanceModeError(decision.reason or maintenance_gate.get_message())
            return JSONResponse(status_code=error.status_code, content=error.detail)

        return await call_next(request)
