from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.db.session import get_session
from engage_api.schemas.engagement import Envelope, NearbyStoreResponse, ok
from engage_api.services.engagement import StoreMappingService

router = APIRouter(tags=["Stores"])


@router.get("/activities/{activity_id}/nearby-stores", response_model=Envelope[List[NearbyStoreResponse]])
async def nearby_stores(
    activity_id: UUID,
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    limit: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_session),
) -> dict:
    ranked = await StoreMappingService(db).nearby_stores(activity_id, lat=lat, lng=lng, limit=limit)
    return ok([NearbyStoreResponse.from_ranked(item) for item in ranked])
