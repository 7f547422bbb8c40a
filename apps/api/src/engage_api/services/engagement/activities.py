"""Shared activity lookups and window checks."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engage_api.core.clock import as_utc
from engage_api.domain.errors import ActivityNotClaimable, ActivityNotFound, ActivityTypeMismatch
from engage_api.models.activity import Activity, ActivityStatusEnum, ActivityTypeEnum


async def load_activity(
    session: AsyncSession,
    activity_id: UUID,
    *,
    expected_type: ActivityTypeEnum | None = None,
) -> Activity:
    stmt = (
        select(Activity)
        .options(selectinload(Activity.group_config), selectinload(Activity.presale_config))
        .where(Activity.id == activity_id)
    )
    result = await session.execute(stmt)
    activity = result.scalar_one_or_none()
    if activity is None:
        raise ActivityNotFound()
    if expected_type is not None and activity.type != expected_type:
        raise ActivityTypeMismatch()
    return activity


def is_activity_open(activity: Activity, now: datetime) -> bool:
    if activity.status != ActivityStatusEnum.PUBLISHED:
        return False
    return as_utc(activity.start_at) <= now <= as_utc(activity.end_at)  # type: ignore[operator]


def ensure_activity_open(activity: Activity, now: datetime) -> None:
    if not is_activity_open(activity, now):
        raise ActivityNotClaimable()
