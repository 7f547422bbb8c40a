"""Which stores take part in an activity, and which of them are nearby."""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.core.settings import Settings, get_settings
from engage_api.domain.errors import ActivityNotFound, InvalidRequest
from engage_api.models.activity import Activity, activity_stores
from engage_api.models.store import Store, StoreStatusEnum
from engage_api.services.geo import RankedStore, rank_stores


class StoreMappingService:
    """Resolve the participating store set of an activity.

    An activity without any mapping rows is unscoped: every store participates.
    """

    def __init__(self, db_session: AsyncSession, *, settings: Settings | None = None) -> None:
        self._db = db_session
        self._settings = settings or get_settings()

    async def mapped_store_ids(self, activity_id: UUID) -> list[UUID]:
        result = await self._db.execute(
            select(activity_stores.c.store_id).where(activity_stores.c.activity_id == activity_id)
        )
        return list(result.scalars().all())

    async def list_mapped_stores(self, activity_id: UUID) -> list[Store]:
        stmt = (
            select(Store)
            .join(activity_stores, activity_stores.c.store_id == Store.id)
            .where(activity_stores.c.activity_id == activity_id)
            .order_by(Store.weight.desc(), Store.name)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def list_participating_stores(self, activity_id: UUID, *, active_only: bool = True) -> list[Store]:
        stmt = select(Store)
        if await self.mapped_store_ids(activity_id):
            stmt = stmt.join(activity_stores, activity_stores.c.store_id == Store.id).where(
                activity_stores.c.activity_id == activity_id
            )
        if active_only:
            stmt = stmt.where(Store.enabled.is_(True), Store.status == StoreStatusEnum.ACTIVE)
        stmt = stmt.order_by(Store.weight.desc(), Store.name)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def is_store_participating(self, activity_id: UUID, store_id: UUID) -> bool:
        mapped = await self.mapped_store_ids(activity_id)
        return not mapped or store_id in mapped

    async def replace_mapping(self, activity_id: UUID, store_ids: Sequence[UUID]) -> list[Store]:
        """Swap the whole mapping set for an activity in one transaction."""

        try:
            activity = await self._db.get(Activity, activity_id)
            if activity is None:
                raise ActivityNotFound()

            wanted = list(dict.fromkeys(store_ids))
            if wanted:
                result = await self._db.execute(select(Store.id).where(Store.id.in_(wanted)))
                known = set(result.scalars().all())
                unknown = [str(store_id) for store_id in wanted if store_id not in known]
                if unknown:
                    raise InvalidRequest("门店不存在", detail={"unknownStoreIds": unknown})

            await self._db.execute(delete(activity_stores).where(activity_stores.c.activity_id == activity_id))
            if wanted:
                await self._db.execute(
                    insert(activity_stores),
                    [{"activity_id": activity_id, "store_id": store_id} for store_id in wanted],
                )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        logger.info("Activity store mapping replaced", activity_id=str(activity_id), store_count=len(wanted))
        return await self.list_mapped_stores(activity_id)

    async def nearby_stores(
        self,
        activity_id: UUID,
        *,
        lat: float | None = None,
        lng: float | None = None,
        limit: int | None = None,
    ) -> list[RankedStore]:
        activity = await self._db.get(Activity, activity_id)
        if activity is None:
            raise ActivityNotFound()

        if limit is None:
            limit = self._settings.nearby_store_default_limit
        if limit < 1:
            raise InvalidRequest("limit 必须大于 0")
        limit = min(limit, self._settings.nearby_store_max_limit)

        stores = await self.list_participating_stores(activity_id, active_only=True)
        return rank_stores(stores, lat=lat, lng=lng, limit=limit)


__all__ = ["StoreMappingService"]
