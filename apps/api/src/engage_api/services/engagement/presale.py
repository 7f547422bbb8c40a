"""One reservation per user per presale activity."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.core.clock import utcnow
from engage_api.domain.errors import (
    AlreadyReserved,
    EngagementError,
    InvalidRequest,
    SoldOut,
    UserNotFound,
)
from engage_api.models.activity import Activity, ActivityTypeEnum
from engage_api.models.presale import PresaleReservation, PresaleReservationStatusEnum
from engage_api.models.user import User
from engage_api.observability.engagement import get_engagement_store

from .activities import ensure_activity_open, load_activity


class PresaleReservationGuard:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def reserve(
        self,
        activity_id: UUID,
        user_id: UUID,
        qty: int = 1,
        *,
        now: datetime | None = None,
    ) -> PresaleReservation:
        now = now or utcnow()
        observability = get_engagement_store()
        try:
            reservation = await self._reserve_once(activity_id, user_id, qty, now)
        except EngagementError as exc:
            await self._db.rollback()
            observability.record_reservation(type(exc).__name__)
            logger.info(
                "Presale reservation rejected",
                activity_id=str(activity_id),
                user_id=str(user_id),
                reason=type(exc).__name__,
            )
            raise
        except Exception:
            await self._db.rollback()
            raise

        observability.record_reservation("success")
        logger.info(
            "Presale reserved",
            reservation_id=str(reservation.id),
            activity_id=str(activity_id),
            user_id=str(user_id),
            qty=qty,
        )
        return reservation

    async def _reserve_once(
        self, activity_id: UUID, user_id: UUID, qty: int, now: datetime
    ) -> PresaleReservation:
        if qty < 1:
            raise InvalidRequest("预约数量必须大于 0")
        activity = await load_activity(self._db, activity_id, expected_type=ActivityTypeEnum.PRESALE)
        ensure_activity_open(activity, now)
        if await self._db.get(User, user_id) is None:
            raise UserNotFound()
        if await self.get_reservation(activity_id, user_id) is not None:
            raise AlreadyReserved()

        consumed = await self._db.execute(
            update(Activity)
            .where(
                Activity.id == activity_id,
                or_(Activity.stock_total == 0, Activity.stock_consumed + qty <= Activity.stock_total),
            )
            .values(stock_consumed=Activity.stock_consumed + qty)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount == 0:
            raise SoldOut()

        reservation = PresaleReservation(
            activity_id=activity_id,
            user_id=user_id,
            qty=qty,
            status=PresaleReservationStatusEnum.RESERVED,
            reserved_at=now,
        )
        self._db.add(reservation)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            raise AlreadyReserved() from exc
        await self._db.commit()
        return reservation

    async def get_reservation(self, activity_id: UUID, user_id: UUID) -> PresaleReservation | None:
        result = await self._db.execute(
            select(PresaleReservation).where(
                PresaleReservation.activity_id == activity_id,
                PresaleReservation.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_user_reservations(self, user_id: UUID) -> Sequence[PresaleReservation]:
        result = await self._db.execute(
            select(PresaleReservation)
            .where(PresaleReservation.user_id == user_id)
            .order_by(PresaleReservation.reserved_at.desc())
        )
        return result.scalars().all()


__all__ = ["PresaleReservationGuard"]
