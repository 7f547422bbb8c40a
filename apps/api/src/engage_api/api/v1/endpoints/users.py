"""Customer-facing views of a LINE user's coupons, redemptions and reservations."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.api.dependencies.engagement import lookup_line_user
from engage_api.db.session import get_session
from engage_api.models.coupon import CouponStatusEnum
from engage_api.models.user import User
from engage_api.schemas.engagement import (
    CouponResponse,
    Envelope,
    MarkReadResponse,
    RedemptionResponse,
    ReservationResponse,
    ok,
)
from engage_api.services.engagement import (
    CouponLedger,
    PresaleReservationGuard,
    RedemptionAuthority,
    ReportingService,
)

router = APIRouter(prefix="/users/{line_user_id}", tags=["Users"])


@router.get("/coupons", response_model=Envelope[List[CouponResponse]])
async def list_user_coupons(
    status: Optional[CouponStatusEnum] = Query(None),
    user: User | None = Depends(lookup_line_user),
    db: AsyncSession = Depends(get_session),
) -> dict:
    if user is None:
        return ok([])
    coupons = await CouponLedger(db).list_user_coupons(user.id, status=status)
    return ok([CouponResponse.from_coupon(coupon) for coupon in coupons])


@router.post("/coupons/mark-read", response_model=Envelope[MarkReadResponse])
async def mark_coupons_read(
    user: User | None = Depends(lookup_line_user),
    db: AsyncSession = Depends(get_session),
) -> dict:
    if user is None:
        return ok(MarkReadResponse(updated=0))
    updated = await CouponLedger(db).mark_read(user.id)
    return ok(MarkReadResponse(updated=updated))


@router.get("/coupon-counts", response_model=Envelope[dict[str, int]])
async def coupon_counts(
    user: User | None = Depends(lookup_line_user),
    db: AsyncSession = Depends(get_session),
) -> dict:
    if user is None:
        return ok({status.value: 0 for status in CouponStatusEnum} | {"unread": 0})
    return ok(await ReportingService(db).user_coupon_counts(user.id))


@router.get("/redeems", response_model=Envelope[List[RedemptionResponse]])
async def list_user_redeems(
    user: User | None = Depends(lookup_line_user),
    db: AsyncSession = Depends(get_session),
) -> dict:
    if user is None:
        return ok([])
    redemptions = await RedemptionAuthority(db).list_user_redemptions(user.id)
    return ok([RedemptionResponse.from_redemption(item) for item in redemptions])


@router.get("/reservations", response_model=Envelope[List[ReservationResponse]])
async def list_user_reservations(
    user: User | None = Depends(lookup_line_user),
    db: AsyncSession = Depends(get_session),
) -> dict:
    if user is None:
        return ok([])
    reservations = await PresaleReservationGuard(db).list_user_reservations(user.id)
    return ok([ReservationResponse.from_reservation(item) for item in reservations])
