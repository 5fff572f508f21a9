"""
Health and diagnostics routes.

Lightweight endpoints for operational monitoring that never expose secrets.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from imagefy_backend.api.deps import get_settings
from imagefy_backend.core.config import Settings
from imagefy_backend.core.errors import AppError


logger = logging.getLogger("imagefy")

router = APIRouter(tags=["health"])


@router.get("/")
def root(settings: Settings = Depends(get_settings)):
    """Service banner."""
    return {
        "status": "Imagefy Backend Running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.ENV,
    }


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check: startup finished and the store answers."""
    state = request.app.state
    if not getattr(state, "ready", False):
        return JSONResponse(status_code=503, content={"status": "error", "detail": "starting up"})

    try:
        await state.store.ping()
    except AppError as e:
        logger.error("readyz.failed", extra={"reason": e.message})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    return {"status": "ok", "billing": state.billing_provider is not None}
