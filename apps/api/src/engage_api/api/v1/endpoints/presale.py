from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.db.session import get_session
from engage_api.schemas.engagement import Envelope, ReservationResponse, ok
from engage_api.services.engagement import IdentityService, PresaleReservationGuard

router = APIRouter(prefix="/presale", tags=["Presale"])


class ReservePresaleRequest(BaseModel):
    activityId: UUID
    userId: str = Field(..., min_length=1, description="LINE user id of the customer")
    qty: int = Field(1, ge=1)


@router.post("/reservations", response_model=Envelope[ReservationResponse])
async def reserve_presale(payload: ReservePresaleRequest, db: AsyncSession = Depends(get_session)) -> dict:
    user = await IdentityService(db).ensure_line_user(payload.userId)
    reservation = await PresaleReservationGuard(db).reserve(payload.activityId, user.id, payload.qty)
    return ok(ReservationResponse.from_reservation(reservation), "预约成功！")
