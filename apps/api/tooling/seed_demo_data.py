"""Seed demo stores, staff and activities into the API database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from engage_api.core.settings import settings
from engage_api.models.activity import (
    Activity,
    ActivityStatusEnum,
    ActivityTypeEnum,
    GroupConfig,
    PresaleConfig,
    activity_stores,
)
from engage_api.models.store import Store, StoreStaffAuthorization
from engage_api.models.user import User, UserRoleEnum


class SeedStore(TypedDict):
    name: str
    address: str
    latitude: float
    longitude: float
    weight: int


class SeedActivity(TypedDict):
    title: str
    type: ActivityTypeEnum
    stock_total: int
    per_user_limit: int


DEMO_STORES: list[SeedStore] = [
    {"name": "Siam Square", "address": "Rama I Rd, Pathum Wan", "latitude": 13.7456, "longitude": 100.5347, "weight": 10},
    {"name": "Asok", "address": "Sukhumvit 21, Watthana", "latitude": 13.7370, "longitude": 100.5603, "weight": 5},
    {"name": "Chatuchak", "address": "Kamphaeng Phet 2 Rd", "latitude": 13.7999, "longitude": 100.5502, "weight": 0},
]

DEMO_ACTIVITIES: list[SeedActivity] = [
    {"title": "Songkran 50 THB Coupon", "type": ActivityTypeEnum.COUPON, "stock_total": 500, "per_user_limit": 1},
    {"title": "Mango Sticky Rice Group Buy", "type": ActivityTypeEnum.GROUP, "stock_total": 0, "per_user_limit": 1},
    {"title": "Mooncake Presale", "type": ActivityTypeEnum.PRESALE, "stock_total": 200, "per_user_limit": 2},
]

DEMO_STAFF_LINE_ID = os.getenv("DEMO_STAFF_LINE_ID", "Udemostaff0001")


async def _upsert_store(session: AsyncSession, payload: SeedStore) -> Store:
    with session.no_autoflush:
        existing = await session.execute(select(Store).where(Store.name == payload["name"]))
    record = existing.scalar_one_or_none()
    if record is None:
        record = Store(**payload)
        session.add(record)
    else:
        record.address = payload["address"]
        record.latitude = payload["latitude"]
        record.longitude = payload["longitude"]
        record.weight = payload["weight"]
    return record


async def _upsert_staff(session: AsyncSession, stores: list[Store]) -> User:
    with session.no_autoflush:
        existing = await session.execute(select(User).where(User.line_user_id == DEMO_STAFF_LINE_ID))
    staff = existing.scalar_one_or_none()
    if staff is None:
        staff = User(line_user_id=DEMO_STAFF_LINE_ID, username="demo_staff", display_name="Demo Staff")
        session.add(staff)
    staff.role = UserRoleEnum.STAFF.value
    await session.flush()

    granted = await session.execute(
        select(StoreStaffAuthorization.store_id).where(StoreStaffAuthorization.user_id == staff.id)
    )
    granted_ids = set(granted.scalars().all())
    for store in stores:
        if store.id not in granted_ids:
            session.add(StoreStaffAuthorization(store_id=store.id, user_id=staff.id, can_verify=True))
    return staff


async def _upsert_activity(session: AsyncSession, payload: SeedActivity, stores: list[Store]) -> Activity:
    now = datetime.now(timezone.utc)
    with session.no_autoflush:
        existing = await session.execute(select(Activity).where(Activity.title == payload["title"]))
    record = existing.scalar_one_or_none()
    if record is not None:
        return record

    record = Activity(
        title=payload["title"],
        type=payload["type"],
        status=ActivityStatusEnum.PUBLISHED,
        stock_total=payload["stock_total"],
        stock_consumed=0,
        per_user_limit=payload["per_user_limit"],
        start_at=now,
        end_at=now + timedelta(days=30),
    )
    session.add(record)
    await session.flush()

    await session.execute(
        activity_stores.insert(),
        [{"activity_id": record.id, "store_id": store.id} for store in stores],
    )
    if payload["type"] == ActivityTypeEnum.GROUP:
        session.add(
            GroupConfig(
                activity_id=record.id,
                n_required=3,
                time_limit_hours=24,
                use_valid_hours=72,
                allow_cross_store=True,
            )
        )
    elif payload["type"] == ActivityTypeEnum.PRESALE:
        session.add(
            PresaleConfig(
                activity_id=record.id,
                pickup_start=now + timedelta(days=20),
                pickup_end=now + timedelta(days=30),
                arrival_notice="Pick up at the counter with your reservation.",
            )
        )
    return record


async def seed_demo_data(session: AsyncSession) -> None:
    stores = [await _upsert_store(session, payload) for payload in DEMO_STORES]
    await session.flush()
    await _upsert_staff(session, stores)
    for payload in DEMO_ACTIVITIES:
        await _upsert_activity(session, payload, stores)
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_demo_data(session)
        print("Demo stores, staff and activities ready ✅")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
