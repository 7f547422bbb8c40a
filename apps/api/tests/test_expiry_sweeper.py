from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from engage_api.models.coupon import Coupon, CouponStatusEnum
from engage_api.models.group_buy import GroupInstance, GroupInstanceStatusEnum
from engage_api.services.engagement import GroupBuyCoordinator
from engage_api.services.notifications import InMemoryPushBackend, NotificationDispatcher, NotificationService
from engage_api.workers.expiry_sweeper import ExpirySweepWorker


@pytest.mark.asyncio
async def test_run_once_expires_coupons_and_fails_groups(session_factory, factory) -> None:
    user = await factory.user(line_user_id="U-leader-0001")
    activity = await factory.activity()
    group = await factory.group_activity(n_required=2, time_limit_hours=1)
    now = datetime.now(timezone.utc)

    async with session_factory() as session:
        session.add_all(
            [
                Coupon(
                    activity_id=activity.id,
                    user_id=user.id,
                    code="OVERDUE1",
                    status=CouponStatusEnum.ACTIVE,
                    claimed_at=now - timedelta(days=2),
                    expires_at=now - timedelta(hours=1),
                ),
                Coupon(
                    activity_id=activity.id,
                    user_id=user.id,
                    code="CURRENT1",
                    status=CouponStatusEnum.ACTIVE,
                    claimed_at=now,
                    expires_at=now + timedelta(days=1),
                ),
            ]
        )
        await session.commit()
    async with session_factory() as session:
        view = await GroupBuyCoordinator(session).create_instance(group.id, user.id, now=now - timedelta(hours=3))

    backend = InMemoryPushBackend()
    dispatcher = NotificationDispatcher(NotificationService(session_factory, backend))
    worker = ExpirySweepWorker(session_factory, notifier=dispatcher, interval_seconds=60, batch_size=10)

    summary = await worker.run_once()
    await dispatcher.drain()

    assert summary == {"expiredCoupons": 1, "failedGroups": 1}
    assert [message["recipient"] for message in backend.sent_messages] == ["U-leader-0001"]

    async with session_factory() as session:
        statuses = dict((await session.execute(select(Coupon.code, Coupon.status))).all())
        assert statuses == {"OVERDUE1": CouponStatusEnum.EXPIRED, "CURRENT1": CouponStatusEnum.ACTIVE}
        instance = await session.get(GroupInstance, view.instance.id)
        assert instance.status == GroupInstanceStatusEnum.FAILED
        assert instance.failed_at is not None

    assert await worker.run_once() == {"expiredCoupons": 0, "failedGroups": 0}


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory) -> None:
    worker = ExpirySweepWorker(session_factory, interval_seconds=3600)

    worker.start()
    assert worker.is_running is True
    await asyncio.sleep(0)
    await worker.stop()

    assert worker.is_running is False
