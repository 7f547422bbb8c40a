"""Staff-mediated redemption of coupons (QR scan and manual entry)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engage_api.core.clock import utcnow
from engage_api.core.settings import Settings, get_settings
from engage_api.domain.errors import (
    AlreadyRedeemed,
    CodeNotActive,
    CodeNotFound,
    EngagementError,
    InvalidRequest,
    RedemptionNotFound,
    StaffUnauthorized,
    StoreNotParticipating,
    StoreUnauthorized,
)
from engage_api.models.coupon import (
    Coupon,
    CouponStatusEnum,
    Redemption,
    RedemptionStatusEnum,
    RedemptionTypeEnum,
)
from engage_api.models.group_buy import GroupMember, GroupMemberStatusEnum
from engage_api.models.store import Store
from engage_api.models.user import User, UserRoleEnum
from engage_api.observability.engagement import get_engagement_store
from engage_api.services.notifications import (
    EngagementEvent,
    NotificationCategory,
    NotificationDispatcher,
)

from .codes import normalize_code
from .coupon_ledger import CouponLedger, is_coupon_overdue
from .identity import IdentityService
from .store_mapping import StoreMappingService


@dataclass(slots=True)
class RedemptionPreview:
    """What the staff verification screen shows before confirming."""

    coupon: Coupon
    activity_title: str
    redeemable: bool


@dataclass(slots=True)
class RedemptionFilters:
    store_id: UUID | None = None
    staff_id: UUID | None = None
    activity_id: UUID | None = None
    status: RedemptionStatusEnum | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int = 50
    offset: int = 0


class RedemptionAuthority:
    """Turns an active coupon into exactly one verified redemption.

    The ``active -> used`` step is a conditional update guarded by the coupon's
    current status and expiry; a zero row count means another request won.
    """

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
        self._identity = IdentityService(db_session)
        self._stores = StoreMappingService(db_session, settings=self._settings)
        self._ledger = CouponLedger(db_session, settings=self._settings)

    async def redeem_by_scan(
        self,
        code: str,
        staff_line_id: str,
        store_id: UUID,
        *,
        now: datetime | None = None,
    ) -> Redemption:
        staff = await self._identity.get_user_by_line_id(staff_line_id)
        return await self._redeem(
            code=code,
            staff=staff,
            store_id=store_id,
            channel=RedemptionTypeEnum.QR_SCAN,
            now=now or utcnow(),
        )

    async def redeem_manual(
        self,
        code: str,
        store_id: UUID,
        line_user_id: str,
        *,
        staff_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Redemption:
        """Fallback when the QR code cannot be scanned; staff types the code."""

        staff = await self._identity.get_user_by_line_id(line_user_id)
        if staff is not None and staff_id is not None and staff.id != staff_id:
            get_engagement_store().record_redemption(RedemptionTypeEnum.MANUAL.value, StaffUnauthorized.__name__)
            logger.warning(
                "Manual redemption staff mismatch",
                staff_id=str(staff_id),
                resolved_staff_id=str(staff.id),
            )
            raise StaffUnauthorized()
        return await self._redeem(
            code=code,
            staff=staff,
            store_id=store_id,
            channel=RedemptionTypeEnum.MANUAL,
            now=now or utcnow(),
        )

    async def _redeem(
        self,
        *,
        code: str,
        staff: User | None,
        store_id: UUID,
        channel: RedemptionTypeEnum,
        now: datetime,
    ) -> Redemption:
        observability = get_engagement_store()
        try:
            redemption, coupon = await self._redeem_once(
                code=code, staff=staff, store_id=store_id, channel=channel, now=now
            )
        except EngagementError as exc:
            await self._db.rollback()
            observability.record_redemption(channel.value, type(exc).__name__)
            log = logger.warning if exc.http_status == 403 else logger.info
            log(
                "Redemption rejected",
                code=code,
                store_id=str(store_id),
                channel=channel.value,
                reason=type(exc).__name__,
            )
            raise
        except Exception:
            await self._db.rollback()
            raise

        observability.record_redemption(channel.value, "success")
        logger.info(
            "Coupon redeemed",
            coupon_id=str(coupon.id),
            redemption_id=str(redemption.id),
            store_id=str(store_id),
            staff_id=str(redemption.staff_id),
            channel=channel.value,
        )
        try:
            await self._notify_owner(coupon, redemption)
        except Exception as exc:
            # The redemption is committed; a failed lookup only costs the push.
            logger.exception(
                "Redemption notification skipped",
                redemption_id=str(redemption.id),
                error=str(exc),
            )
        return redemption

    async def _redeem_once(
        self,
        *,
        code: str,
        staff: User | None,
        store_id: UUID,
        channel: RedemptionTypeEnum,
        now: datetime,
    ) -> tuple[Redemption, Coupon]:
        if staff is None or staff.role != UserRoleEnum.STAFF.value:
            raise StaffUnauthorized()
        if not await self._identity.is_staff_authorized(staff.id, store_id):
            raise StoreUnauthorized()

        result = await self._db.execute(
            select(Coupon).options(selectinload(Coupon.activity)).where(Coupon.code == normalize_code(code))
        )
        coupon = result.scalar_one_or_none()
        if coupon is None:
            raise CodeNotFound()
        if not await self._stores.is_store_participating(coupon.activity_id, store_id):
            raise StoreNotParticipating()
        if coupon.store_id is not None and coupon.store_id != store_id:
            raise StoreNotParticipating("该券仅限在指定门店核销")
        if coupon.status != CouponStatusEnum.ACTIVE:
            raise CodeNotActive()
        if is_coupon_overdue(coupon, now):
            await self._ledger.expire(coupon.id, now=now)
            raise CodeNotActive()

        transitioned = await self._db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                Coupon.status == CouponStatusEnum.ACTIVE,
                Coupon.expires_at >= now,
            )
            .values(status=CouponStatusEnum.USED, used_at=now)
            .execution_options(synchronize_session=False)
        )
        if transitioned.rowcount == 0:
            raise AlreadyRedeemed()

        redemption = Redemption(
            activity_id=coupon.activity_id,
            store_id=store_id,
            staff_id=staff.id,
            coupon_id=coupon.id,
            code=coupon.code,
            status=RedemptionStatusEnum.VERIFIED,
            redemption_type=channel,
            verified_at=now,
        )
        redemption.activity = coupon.activity
        redemption.store = await self._db.get(Store, store_id)
        self._db.add(redemption)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            raise AlreadyRedeemed() from exc

        if coupon.group_instance_id is not None:
            await self._db.execute(
                update(GroupMember)
                .where(
                    GroupMember.instance_id == coupon.group_instance_id,
                    GroupMember.user_id == coupon.user_id,
                )
                .values(status=GroupMemberStatusEnum.REDEEMED)
                .execution_options(synchronize_session=False)
            )

        await self._db.commit()
        await self._db.refresh(coupon, attribute_names=["status", "used_at"])
        return redemption, coupon

    async def _notify_owner(self, coupon: Coupon, redemption: Redemption) -> None:
        if self._notifier is None:
            return
        owner = await self._db.get(User, coupon.user_id)
        store = redemption.store
        if owner is None:
            return
        self._notifier.dispatch(
            EngagementEvent(
                category=NotificationCategory.REDEMPTION_SUCCEEDED,
                recipient=owner.line_user_id,
                user_id=owner.id,
                context={
                    "activity_id": coupon.activity_id,
                    "activity_title": coupon.activity.title if coupon.activity else "",
                    "code": coupon.code,
                    "store_name": store.name if store else None,
                    "verified_at": redemption.verified_at,
                },
            )
        )

    async def redeem_preview(self, code: str, *, now: datetime | None = None) -> RedemptionPreview:
        coupon = await self._ledger.get_by_code(code, now=now)
        if coupon is None:
            raise CodeNotFound()
        return RedemptionPreview(
            coupon=coupon,
            activity_title=coupon.activity.title if coupon.activity else "",
            redeemable=coupon.status == CouponStatusEnum.ACTIVE,
        )

    async def cancel_redemption(
        self,
        redemption_id: UUID,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> Redemption:
        """Annotate a verified redemption as canceled; the coupon stays ``used``."""

        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequest("撤销原因不能为空")

        result = await self._db.execute(
            select(Redemption)
            .options(selectinload(Redemption.activity), selectinload(Redemption.store))
            .where(Redemption.id == redemption_id)
        )
        redemption = result.scalar_one_or_none()
        if redemption is None:
            raise RedemptionNotFound()
        if redemption.status == RedemptionStatusEnum.CANCELED:
            return redemption

        try:
            result = await self._db.execute(
                update(Redemption)
                .where(
                    Redemption.id == redemption_id,
                    Redemption.status == RedemptionStatusEnum.VERIFIED,
                )
                .values(
                    status=RedemptionStatusEnum.CANCELED,
                    cancel_reason=reason,
                    canceled_at=now or utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        await self._db.refresh(redemption, attribute_names=["status", "cancel_reason", "canceled_at"])
        if result.rowcount:
            logger.info("Redemption canceled", redemption_id=str(redemption_id), reason=reason)
        return redemption

    async def list_redemptions(self, filters: RedemptionFilters | None = None) -> Sequence[Redemption]:
        filters = filters or RedemptionFilters()
        stmt = select(Redemption).options(
            selectinload(Redemption.activity),
            selectinload(Redemption.store),
        )
        if filters.store_id is not None:
            stmt = stmt.where(Redemption.store_id == filters.store_id)
        if filters.staff_id is not None:
            stmt = stmt.where(Redemption.staff_id == filters.staff_id)
        if filters.activity_id is not None:
            stmt = stmt.where(Redemption.activity_id == filters.activity_id)
        if filters.status is not None:
            stmt = stmt.where(Redemption.status == filters.status)
        if filters.start is not None:
            stmt = stmt.where(Redemption.verified_at >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(Redemption.verified_at < filters.end)
        stmt = stmt.order_by(Redemption.verified_at.desc()).offset(filters.offset).limit(filters.limit)
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def list_user_redemptions(self, user_id: UUID) -> Sequence[Redemption]:
        stmt = (
            select(Redemption)
            .join(Coupon, Coupon.id == Redemption.coupon_id)
            .options(selectinload(Redemption.activity), selectinload(Redemption.store))
            .where(Coupon.user_id == user_id)
            .order_by(Redemption.verified_at.desc())
        )
        result = await self._db.execute(stmt)
        return result.scalars().all()


__all__ = ["RedemptionAuthority", "RedemptionFilters", "RedemptionPreview"]
