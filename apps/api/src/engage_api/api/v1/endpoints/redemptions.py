"""Staff verification routes: QR scan link, preview and manual entry."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.api.dependencies.engagement import get_notification_dispatcher
from engage_api.db.session import get_session
from engage_api.schemas.engagement import Envelope, RedeemPreviewResponse, RedemptionResponse, ok
from engage_api.services.engagement import RedemptionAuthority
from engage_api.services.notifications import NotificationDispatcher

router = APIRouter(tags=["Redemption"])


class ManualVerifyRequest(BaseModel):
    code: str = Field(..., min_length=1)
    storeId: UUID
    lineUserId: str = Field(..., min_length=1, description="LINE user id of the verifying staff")
    staffId: Optional[UUID] = None


@router.get("/redeem/{code}", response_model=Envelope[RedemptionResponse])
async def redeem_by_scan(
    code: str,
    staff_line_id: str = Query(..., min_length=1),
    store_id: UUID = Query(...),
    db: AsyncSession = Depends(get_session),
    notifier: NotificationDispatcher | None = Depends(get_notification_dispatcher),
) -> dict:
    redemption = await RedemptionAuthority(db, notifier=notifier).redeem_by_scan(code, staff_line_id, store_id)
    return ok(RedemptionResponse.from_redemption(redemption), "扫码核销成功！")


@router.get("/redeem/{code}/preview", response_model=Envelope[RedeemPreviewResponse])
async def redeem_preview(code: str, db: AsyncSession = Depends(get_session)) -> dict:
    preview = await RedemptionAuthority(db).redeem_preview(code)
    return ok(RedeemPreviewResponse.from_preview(preview))


@router.post("/verify", response_model=Envelope[RedemptionResponse])
async def redeem_manual(
    payload: ManualVerifyRequest,
    db: AsyncSession = Depends(get_session),
    notifier: NotificationDispatcher | None = Depends(get_notification_dispatcher),
) -> dict:
    redemption = await RedemptionAuthority(db, notifier=notifier).redeem_manual(
        payload.code,
        payload.storeId,
        payload.lineUserId,
        staff_id=payload.staffId,
    )
    return ok(RedemptionResponse.from_redemption(redemption), "手动核销成功！券码已使用。")
