"""Coupon issuance, read tracking and expiry."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engage_api.core.clock import as_utc, utcnow
from engage_api.core.settings import Settings, get_settings
from engage_api.domain.errors import (
    CodeGenerationExhausted,
    EngagementError,
    LimitExceeded,
    SoldOut,
    UserNotFound,
)
from engage_api.models.activity import Activity, ActivityTypeEnum
from engage_api.models.coupon import Coupon, CouponStatusEnum
from engage_api.models.user import User
from engage_api.observability.engagement import get_engagement_store
from engage_api.services.notifications import (
    EngagementEvent,
    NotificationCategory,
    NotificationDispatcher,
)

from .activities import ensure_activity_open, load_activity
from .codes import allocate_code, normalize_code

_COUNTED_STATUSES = (CouponStatusEnum.ACTIVE, CouponStatusEnum.USED)


def is_coupon_overdue(coupon: Coupon, now: datetime) -> bool:
    return coupon.status == CouponStatusEnum.ACTIVE and as_utc(coupon.expires_at) < now  # type: ignore[operator]


class CouponLedger:
    """Owns the coupon lifecycle: ``active`` then ``used`` or ``expired``, never back."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._db = db_session
        self._notifier = notifier
        self._settings = settings or get_settings()

    async def claim(self, activity_id: UUID, user_id: UUID, *, now: datetime | None = None) -> Coupon:
        """Issue one coupon of a published, in-window coupon activity."""

        now = now or utcnow()
        store = get_engagement_store()
        attempts = max(1, self._settings.coupon_code_max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                coupon, activity, user = await self._claim_once(activity_id, user_id, now)
            except IntegrityError:
                await self._db.rollback()
                logger.warning(
                    "Coupon code collided on insert; retrying claim",
                    activity_id=str(activity_id),
                    attempt=attempt,
                )
                continue
            except EngagementError as exc:
                await self._db.rollback()
                store.record_claim(type(exc).__name__)
                logger.info(
                    "Coupon claim rejected",
                    activity_id=str(activity_id),
                    user_id=str(user_id),
                    reason=type(exc).__name__,
                )
                raise
            except Exception:
                await self._db.rollback()
                raise

            store.record_claim("success")
            logger.info(
                "Coupon claimed",
                coupon_id=str(coupon.id),
                activity_id=str(activity_id),
                user_id=str(user_id),
            )
            if self._notifier is not None:
                self._notifier.dispatch(
                    EngagementEvent(
                        category=NotificationCategory.COUPON_CLAIMED,
                        recipient=user.line_user_id,
                        user_id=user.id,
                        context={
                            "activity_id": activity.id,
                            "activity_title": activity.title,
                            "code": coupon.code,
                            "expires_at": coupon.expires_at,
                        },
                    )
                )
            return coupon

        store.record_claim(CodeGenerationExhausted.__name__)
        raise CodeGenerationExhausted()

    async def _claim_once(
        self, activity_id: UUID, user_id: UUID, now: datetime
    ) -> tuple[Coupon, Activity, User]:
        activity = await load_activity(self._db, activity_id, expected_type=ActivityTypeEnum.COUPON)
        ensure_activity_open(activity, now)
        user = await self._db.get(User, user_id)
        if user is None:
            raise UserNotFound()

        # Row-level guard on the activity: consumes stock and serializes claimers
        # of the same activity before the per-user count below.
        consumed = await self._db.execute(
            update(Activity)
            .where(
                Activity.id == activity_id,
                or_(Activity.stock_total == 0, Activity.stock_consumed < Activity.stock_total),
            )
            .values(stock_consumed=Activity.stock_consumed + 1)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount == 0:
            raise SoldOut()

        held = await self.count_user_coupons(activity_id, user_id)
        if held >= activity.per_user_limit:
            raise LimitExceeded()

        expires_at = as_utc(activity.coupon_valid_until or activity.end_at)
        coupon = await self.issue_coupon(
            activity=activity,
            user_id=user_id,
            expires_at=expires_at,  # type: ignore[arg-type]
            now=now,
        )
        await self._db.commit()
        return coupon, activity, user

    async def count_user_coupons(self, activity_id: UUID, user_id: UUID) -> int:
        stmt = select(func.count(Coupon.id)).where(
            Coupon.activity_id == activity_id,
            Coupon.user_id == user_id,
            Coupon.status.in_(_COUNTED_STATUSES),
        )
        result = await self._db.execute(stmt)
        return int(result.scalar_one())

    async def issue_coupon(
        self,
        *,
        activity: Activity,
        user_id: UUID,
        expires_at: datetime,
        now: datetime,
        store_id: UUID | None = None,
        group_instance_id: UUID | None = None,
    ) -> Coupon:
        """Insert an active coupon inside the caller's transaction (no commit)."""

        code = await allocate_code(
            self._db,
            length=self._settings.coupon_code_length,
            max_attempts=self._settings.coupon_code_max_attempts,
        )
        coupon = Coupon(
            activity_id=activity.id,
            user_id=user_id,
            code=code,
            status=CouponStatusEnum.ACTIVE,
            store_id=store_id,
            group_instance_id=group_instance_id,
            claimed_at=now,
            expires_at=expires_at,
            is_read=False,
        )
        coupon.activity = activity
        self._db.add(coupon)
        await self._db.flush()
        return coupon

    async def get_coupon(self, coupon_id: UUID, *, now: datetime | None = None) -> Coupon | None:
        result = await self._db.execute(
            select(Coupon).options(selectinload(Coupon.activity)).where(Coupon.id == coupon_id)
        )
        return await self._settle(result.scalar_one_or_none(), now or utcnow())

    async def get_by_code(self, code: str, *, now: datetime | None = None) -> Coupon | None:
        result = await self._db.execute(
            select(Coupon).options(selectinload(Coupon.activity)).where(Coupon.code == normalize_code(code))
        )
        return await self._settle(result.scalar_one_or_none(), now or utcnow())

    async def _settle(self, coupon: Coupon | None, now: datetime) -> Coupon | None:
        if coupon is not None and is_coupon_overdue(coupon, now):
            await self.expire(coupon.id, now=now)
            await self._db.refresh(coupon, attribute_names=["status"])
        return coupon

    async def expire(self, coupon_id: UUID, *, now: datetime | None = None) -> bool:
        """Move one overdue active coupon to ``expired``; no-op for any other state."""

        now = now or utcnow()
        try:
            result = await self._db.execute(
                update(Coupon)
                .where(
                    Coupon.id == coupon_id,
                    Coupon.status == CouponStatusEnum.ACTIVE,
                    Coupon.expires_at < now,
                )
                .values(status=CouponStatusEnum.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        moved = result.rowcount > 0
        if moved:
            logger.info("Coupon expired", coupon_id=str(coupon_id))
        return moved

    async def expire_overdue(self, *, now: datetime | None = None, limit: int = 500) -> int:
        """Housekeeping pass marking overdue active coupons as expired."""

        now = now or utcnow()
        try:
            ids_result = await self._db.execute(
                select(Coupon.id)
                .where(Coupon.status == CouponStatusEnum.ACTIVE, Coupon.expires_at < now)
                .order_by(Coupon.expires_at)
                .limit(limit)
            )
            coupon_ids = list(ids_result.scalars().all())
            if not coupon_ids:
                return 0
            result = await self._db.execute(
                update(Coupon)
                .where(
                    Coupon.id.in_(coupon_ids),
                    Coupon.status == CouponStatusEnum.ACTIVE,
                    Coupon.expires_at < now,
                )
                .values(status=CouponStatusEnum.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        if result.rowcount:
            logger.info("Expired overdue coupons", count=result.rowcount)
        return result.rowcount

    async def _expire_user_overdue(self, user_id: UUID, now: datetime) -> None:
        try:
            await self._db.execute(
                update(Coupon)
                .where(
                    Coupon.user_id == user_id,
                    Coupon.status == CouponStatusEnum.ACTIVE,
                    Coupon.expires_at < now,
                )
                .values(status=CouponStatusEnum.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

    async def list_user_coupons(
        self,
        user_id: UUID,
        *,
        status: CouponStatusEnum | None = None,
        now: datetime | None = None,
    ) -> Sequence[Coupon]:
        now = now or utcnow()
        await self._expire_user_overdue(user_id, now)

        stmt = (
            select(Coupon)
            .options(selectinload(Coupon.activity))
            .where(Coupon.user_id == user_id)
            .order_by(Coupon.claimed_at.desc())
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(Coupon.status == status)
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def mark_read(self, user_id: UUID, *, now: datetime | None = None) -> int:
        now = now or utcnow()
        try:
            result = await self._db.execute(
                update(Coupon)
                .where(Coupon.user_id == user_id)
                .values(is_read=True, last_viewed_at=now)
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        return result.rowcount


__all__ = ["CouponLedger", "is_coupon_overdue"]
