from __future__ import annotations

from fastapi import APIRouter, Depends

from engage_api.api.dependencies.security import require_admin_api_key
from engage_api.observability.engagement import get_engagement_store

router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/engagement", dependencies=[Depends(require_admin_api_key)])
async def engagement_snapshot() -> dict[str, object]:
    """Expose in-process counters for claims, redemptions, group buys and pushes."""

    return get_engagement_store().snapshot().as_dict()
