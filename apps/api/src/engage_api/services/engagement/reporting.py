"""Simple aggregation queries over redemptions and coupons."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.models.activity import Activity
from engage_api.models.coupon import Coupon, CouponStatusEnum, Redemption, RedemptionStatusEnum
from engage_api.models.store import Store
from engage_api.models.user import User


@dataclass
class RedemptionStats:
    summary: dict[str, int]
    by_store: list[dict[str, Any]] = field(default_factory=list)
    by_activity: list[dict[str, Any]] = field(default_factory=list)
    by_staff: list[dict[str, Any]] = field(default_factory=list)


class ReportingService:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def redemption_stats(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        activity_id: UUID | None = None,
        store_id: UUID | None = None,
        staff_id: UUID | None = None,
    ) -> RedemptionStats:
        filters = []
        if start is not None:
            filters.append(Redemption.verified_at >= start)
        if end is not None:
            filters.append(Redemption.verified_at < end)
        if activity_id is not None:
            filters.append(Redemption.activity_id == activity_id)
        if store_id is not None:
            filters.append(Redemption.store_id == store_id)
        if staff_id is not None:
            filters.append(Redemption.staff_id == staff_id)
        verified = Redemption.status == RedemptionStatusEnum.VERIFIED

        summary_row = (
            await self._db.execute(
                select(
                    func.count(case((verified, Redemption.id))),
                    func.count(case((Redemption.status == RedemptionStatusEnum.CANCELED, Redemption.id))),
                    func.count(func.distinct(case((verified, Redemption.activity_id)))),
                    func.count(func.distinct(case((verified, Redemption.store_id)))),
                    func.count(func.distinct(case((verified, Redemption.staff_id)))),
                ).where(*filters)
            )
        ).one()
        summary = {
            "total": int(summary_row[0] or 0),
            "canceled": int(summary_row[1] or 0),
            "uniqueActivities": int(summary_row[2] or 0),
            "uniqueStores": int(summary_row[3] or 0),
            "uniqueStaff": int(summary_row[4] or 0),
        }

        by_store = await self._grouped(Store.id, Store.name, Redemption.store_id, filters + [verified])
        by_activity = await self._grouped(Activity.id, Activity.title, Redemption.activity_id, filters + [verified])
        by_staff = await self._grouped(User.id, User.username, Redemption.staff_id, filters + [verified])
        return RedemptionStats(summary=summary, by_store=by_store, by_activity=by_activity, by_staff=by_staff)

    async def _grouped(self, key_column, label_column, join_column, filters) -> list[dict[str, Any]]:
        count = func.count(Redemption.id).label("count")
        stmt = (
            select(key_column, label_column, count)
            .select_from(Redemption)
            .join(key_column.class_, key_column == join_column)
            .where(*filters)
            .group_by(key_column, label_column)
            .order_by(count.desc(), label_column)
        )
        result = await self._db.execute(stmt)
        return [{"id": str(row[0]), "name": row[1], "count": int(row[2])} for row in result.all()]

    async def user_coupon_counts(self, user_id: UUID) -> dict[str, int]:
        result = await self._db.execute(
            select(Coupon.status, func.count(Coupon.id)).where(Coupon.user_id == user_id).group_by(Coupon.status)
        )
        counts = {status.value: 0 for status in CouponStatusEnum}
        for status, total in result.all():
            key = status.value if isinstance(status, CouponStatusEnum) else str(status)
            counts[key] = int(total)
        unread = await self._db.execute(
            select(func.count(Coupon.id)).where(Coupon.user_id == user_id, Coupon.is_read.is_(False))
        )
        counts["unread"] = int(unread.scalar_one())
        return counts


__all__ = ["RedemptionStats", "ReportingService"]
