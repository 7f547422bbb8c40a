"""Back-office routes: redemption ledger, store scoping, stats and housekeeping."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.api.dependencies.engagement import get_notification_dispatcher
from engage_api.api.dependencies.security import require_admin_api_key
from engage_api.core.clock import as_utc
from engage_api.core.settings import settings
from engage_api.db.session import get_session
from engage_api.models.coupon import RedemptionStatusEnum
from engage_api.schemas.engagement import (
    Envelope,
    GroupedCount,
    RedemptionResponse,
    RedemptionStatsResponse,
    StoreResponse,
    SweepResponse,
    ok,
)
from engage_api.services.engagement import (
    CouponLedger,
    GroupBuyCoordinator,
    RedemptionAuthority,
    RedemptionFilters,
    ReportingService,
    StoreMappingService,
)
from engage_api.services.notifications import NotificationDispatcher

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin_api_key)])


class CancelRedemptionRequest(BaseModel):
    reason: str = Field(..., description="Why the redemption is being reversed")


class ReplaceActivityStoresRequest(BaseModel):
    storeIds: List[UUID] = Field(default_factory=list)


@router.get("/redeems", response_model=Envelope[List[RedemptionResponse]])
async def list_redemptions(
    store_id: Optional[UUID] = Query(None, alias="storeId"),
    staff_id: Optional[UUID] = Query(None, alias="staffId"),
    activity_id: Optional[UUID] = Query(None, alias="activityId"),
    status: Optional[RedemptionStatusEnum] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> dict:
    filters = RedemptionFilters(
        store_id=store_id,
        staff_id=staff_id,
        activity_id=activity_id,
        status=status,
        start=as_utc(start),
        end=as_utc(end),
        limit=limit,
        offset=offset,
    )
    redemptions = await RedemptionAuthority(db).list_redemptions(filters)
    return ok([RedemptionResponse.from_redemption(item) for item in redemptions])


@router.post("/redeems/{redemption_id}/cancel", response_model=Envelope[RedemptionResponse])
async def cancel_redemption(
    redemption_id: UUID,
    payload: CancelRedemptionRequest,
    db: AsyncSession = Depends(get_session),
) -> dict:
    redemption = await RedemptionAuthority(db).cancel_redemption(redemption_id, payload.reason)
    return ok(RedemptionResponse.from_redemption(redemption), "核销记录已撤销")


@router.get("/activities/{activity_id}/stores", response_model=Envelope[List[StoreResponse]])
async def list_activity_stores(activity_id: UUID, db: AsyncSession = Depends(get_session)) -> dict:
    stores = await StoreMappingService(db).list_mapped_stores(activity_id)
    return ok([StoreResponse.from_store(store) for store in stores])


@router.put("/activities/{activity_id}/stores", response_model=Envelope[List[StoreResponse]])
async def replace_activity_stores(
    activity_id: UUID,
    payload: ReplaceActivityStoresRequest,
    db: AsyncSession = Depends(get_session),
) -> dict:
    stores = await StoreMappingService(db).replace_mapping(activity_id, payload.storeIds)
    return ok([StoreResponse.from_store(store) for store in stores])


@router.get("/stats/redemptions", response_model=Envelope[RedemptionStatsResponse])
async def redemption_stats(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    activity_id: Optional[UUID] = Query(None, alias="activityId"),
    store_id: Optional[UUID] = Query(None, alias="storeId"),
    staff_id: Optional[UUID] = Query(None, alias="staffId"),
    db: AsyncSession = Depends(get_session),
) -> dict:
    stats = await ReportingService(db).redemption_stats(
        start=as_utc(start),
        end=as_utc(end),
        activity_id=activity_id,
        store_id=store_id,
        staff_id=staff_id,
    )
    response = RedemptionStatsResponse(
        summary=stats.summary,
        byStore=[GroupedCount(**row) for row in stats.by_store],
        byActivity=[GroupedCount(**row) for row in stats.by_activity],
        byStaff=[GroupedCount(**row) for row in stats.by_staff],
    )
    return ok(response)


@router.post("/maintenance/expiry-sweep", response_model=Envelope[SweepResponse])
async def run_expiry_sweep(
    db: AsyncSession = Depends(get_session),
    notifier: NotificationDispatcher | None = Depends(get_notification_dispatcher),
) -> dict:
    batch_size = settings.expiry_sweep_batch_size
    expired = await CouponLedger(db).expire_overdue(limit=batch_size)
    failed = await GroupBuyCoordinator(db, notifier=notifier).fail_expired_instances(limit=batch_size)
    return ok(SweepResponse(expiredCoupons=expired, failedGroups=failed))
