from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.core.settings import settings
from engage_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except SQLAlchemyError as error:
        logger.warning("Readiness database probe failed", error=str(error))
        components["database"] = ComponentStatus(
            status="error",
            detail=f"Database unreachable ({type(error).__name__})",
            last_error_at=datetime.now(timezone.utc).isoformat(),
        )
        status = "error"

    sweeper = getattr(request.app.state, "expiry_sweep_worker", None)
    if settings.expiry_sweep_enabled and sweeper is not None:
        running = bool(getattr(sweeper, "is_running", False))
        components["expiry_sweep"] = ComponentStatus(
            status="ready" if running else "starting",
            detail=None if running else "Expiry sweep worker not running",
        )
        if not running and status == "ready":
            status = "degraded"
    else:
        components["expiry_sweep"] = ComponentStatus(
            status="disabled",
            detail="Expiry sweep disabled via settings (reads still expire lazily)",
        )

    dispatcher = getattr(request.app.state, "notification_dispatcher", None)
    if dispatcher is not None and dispatcher.service is not None:
        components["line_push"] = ComponentStatus(status="ready")
    else:
        components["line_push"] = ComponentStatus(
            status="disabled",
            detail="LINE channel access token not configured",
        )

    return ReadinessPayload(status=status, components=components)
