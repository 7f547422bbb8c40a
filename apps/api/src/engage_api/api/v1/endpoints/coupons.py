from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.api.dependencies.engagement import get_notification_dispatcher
from engage_api.db.session import get_session
from engage_api.schemas.engagement import CouponResponse, Envelope, ok
from engage_api.services.engagement import CouponLedger, IdentityService
from engage_api.services.notifications import NotificationDispatcher

router = APIRouter(tags=["Coupons"])

CLAIM_SUCCESS_MESSAGE = "您领取到的卡券已经收藏在您个人中心“我的”收藏夹里，请在规定时间内及时使用！"


class ClaimCouponRequest(BaseModel):
    activityId: UUID
    userId: str = Field(..., min_length=1, description="LINE user id of the customer")


@router.post("/coupons", response_model=Envelope[CouponResponse])
async def claim_coupon(
    payload: ClaimCouponRequest,
    db: AsyncSession = Depends(get_session),
    notifier: NotificationDispatcher | None = Depends(get_notification_dispatcher),
) -> dict:
    user = await IdentityService(db).ensure_line_user(payload.userId)
    coupon = await CouponLedger(db, notifier=notifier).claim(payload.activityId, user.id)
    return ok(CouponResponse.from_coupon(coupon), CLAIM_SUCCESS_MESSAGE)
