from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.core.clock import as_utc
from engage_api.domain.errors import (
    ActivityTypeMismatch,
    AllowCrossStoreViolation,
    AlreadyMember,
    GroupConfigMissing,
    GroupInstanceNotFound,
    InstanceExpired,
    StoreNotParticipating,
)
from engage_api.models.activity import Activity
from engage_api.models.coupon import Coupon, CouponStatusEnum
from engage_api.models.group_buy import (
    GroupInstance,
    GroupInstanceStatusEnum,
    GroupMember,
    GroupMemberStatusEnum,
)
from engage_api.observability.engagement import get_engagement_store
from engage_api.services.engagement import GroupBuyCoordinator, RedemptionAuthority, derive_status
from engage_api.services.notifications import NotificationDispatcher


def test_derive_status_terminal_states_win() -> None:
    now = datetime.now(timezone.utc)
    past = now - timedelta(hours=1)
    future = now + timedelta(hours=1)

    assert derive_status(status=GroupInstanceStatusEnum.PENDING, expire_at=future, now=now) == GroupInstanceStatusEnum.PENDING
    assert derive_status(status=GroupInstanceStatusEnum.PENDING, expire_at=past, now=now) == GroupInstanceStatusEnum.FAILED
    assert derive_status(status=GroupInstanceStatusEnum.SUCCESS, expire_at=past, now=now) == GroupInstanceStatusEnum.SUCCESS
    assert derive_status(status=GroupInstanceStatusEnum.FAILED, expire_at=future, now=now) == GroupInstanceStatusEnum.FAILED
    # Evaluating the derived value again yields the same answer.
    derived = derive_status(status=GroupInstanceStatusEnum.PENDING, expire_at=past, now=now)
    assert derive_status(status=derived, expire_at=past, now=now) == derived


@pytest.mark.asyncio
async def test_two_person_group_succeeds_and_issues_coupons(session_factory, factory) -> None:
    activity = await factory.group_activity(n_required=2, time_limit_hours=24, use_valid_hours=72)
    leader = await factory.user()
    joiner = await factory.user()
    created_at = datetime.now(timezone.utc)
    joined_at = created_at + timedelta(minutes=5)

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session)
        view = await coordinator.create_instance(activity.id, leader.id, now=created_at)
        assert view.member_count == 1
        assert view.remaining_slots == 1
        assert view.derived_status == GroupInstanceStatusEnum.PENDING
        assert view.seconds_left == 24 * 3600

        result = await coordinator.join(view.instance.id, joiner.id, now=joined_at)

    assert result.completed is True
    assert result.view.derived_status == GroupInstanceStatusEnum.SUCCESS
    assert result.view.member_count == 2
    assert result.view.remaining_slots == 0
    assert {coupon.user_id for coupon in result.coupons} == {leader.id, joiner.id}
    assert all(as_utc(coupon.expires_at) == joined_at + timedelta(hours=72) for coupon in result.coupons)

    async with session_factory() as session:
        instance = await session.get(GroupInstance, view.instance.id)
        assert instance.status == GroupInstanceStatusEnum.SUCCESS
        assert instance.succeeded_at is not None
        members = (await session.execute(select(GroupMember))).scalars().all()
        assert {member.status for member in members} == {GroupMemberStatusEnum.COUPON_ISSUED}
        coupons = (await session.execute(select(Coupon))).scalars().all()
        assert len(coupons) == 2
        assert all(coupon.group_instance_id == instance.id for coupon in coupons)

    events = get_engagement_store().snapshot().group_buys
    assert events == {"created": 1, "joined": 1, "succeeded": 1}


@pytest.mark.asyncio
async def test_coupon_validity_is_capped_by_activity_end(session_factory, factory) -> None:
    end_at = datetime.now(timezone.utc) + timedelta(hours=10)
    activity = await factory.group_activity(n_required=2, use_valid_hours=72, end_at=end_at)
    leader = await factory.user()
    joiner = await factory.user()

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session)
        view = await coordinator.create_instance(activity.id, leader.id)
        result = await coordinator.join(view.instance.id, joiner.id)

    assert all(as_utc(coupon.expires_at) == end_at for coupon in result.coupons)


@pytest.mark.asyncio
async def test_single_person_group_succeeds_on_creation(session_factory, factory) -> None:
    activity = await factory.group_activity(n_required=1)
    leader = await factory.user()

    async with session_factory() as session:
        view = await GroupBuyCoordinator(session).create_instance(activity.id, leader.id)

    assert view.derived_status == GroupInstanceStatusEnum.SUCCESS
    async with session_factory() as session:
        coupons = (await session.execute(select(Coupon).where(Coupon.user_id == leader.id))).scalars().all()
        assert len(coupons) == 1
        assert coupons[0].status == CouponStatusEnum.ACTIVE


@pytest.mark.asyncio
async def test_join_rejections(session_factory, factory) -> None:
    activity = await factory.group_activity(n_required=2)
    leader = await factory.user()
    joiner = await factory.user()
    latecomer = await factory.user()

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session)
        view = await coordinator.create_instance(activity.id, leader.id)
        instance_id = view.instance.id
        with pytest.raises(AlreadyMember):
            await coordinator.join(instance_id, leader.id)
        with pytest.raises(GroupInstanceNotFound):
            await coordinator.join(activity.id, joiner.id)

        await coordinator.join(instance_id, joiner.id)
        with pytest.raises(InstanceExpired):
            await coordinator.join(instance_id, latecomer.id)

        refreshed = await coordinator.get_instance(instance_id)
        assert refreshed.member_count == 2
        assert len(refreshed.members) == 2


@pytest.mark.asyncio
async def test_expired_instance_reads_failed_and_sweeps_once(session_factory, factory) -> None:
    activity = await factory.group_activity(n_required=3, time_limit_hours=1)
    leader = await factory.user()
    joiner = await factory.user()
    started = datetime.now(timezone.utc) - timedelta(hours=2)

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session)
        view = await coordinator.create_instance(activity.id, leader.id, now=started)
        instance_id = view.instance.id

        with pytest.raises(InstanceExpired):
            await coordinator.join(instance_id, joiner.id)

        current = await coordinator.get_instance(instance_id)
        assert current.instance.status == GroupInstanceStatusEnum.PENDING
        assert current.derived_status == GroupInstanceStatusEnum.FAILED
        assert current.seconds_left == 0

        assert await coordinator.fail_expired_instances() == 1
        assert await coordinator.fail_expired_instances() == 0

        listed = await coordinator.get_group_instances(activity.id)
        assert [item.instance.status for item in listed] == [GroupInstanceStatusEnum.FAILED]


@pytest.mark.asyncio
async def test_store_pinned_group_rejects_other_stores(session_factory, factory) -> None:
    siam = await factory.store()
    asok = await factory.store(name="Asok")
    outsider = await factory.store(name="Phuket")
    activity = await factory.group_activity(n_required=2, allow_cross_store=False, stores=(siam, asok))
    leader = await factory.user()
    joiner = await factory.user()
    staff = await factory.staff(siam, asok)

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session)
        with pytest.raises(StoreNotParticipating):
            await coordinator.create_instance(activity.id, leader.id, store_id=outsider.id)
        view = await coordinator.create_instance(activity.id, leader.id, store_id=siam.id)
        instance_id = view.instance.id
        with pytest.raises(AllowCrossStoreViolation):
            await coordinator.join(instance_id, joiner.id, store_id=asok.id)
        result = await coordinator.join(instance_id, joiner.id)

    assert result.member.store_id == siam.id
    assert all(coupon.store_id == siam.id for coupon in result.coupons)
    joiner_coupon = next(coupon for coupon in result.coupons if coupon.user_id == joiner.id)

    async with session_factory() as session:
        authority = RedemptionAuthority(session)
        with pytest.raises(StoreNotParticipating):
            await authority.redeem_by_scan(joiner_coupon.code, staff.line_user_id, asok.id)
        await authority.redeem_by_scan(joiner_coupon.code, staff.line_user_id, siam.id)

    async with session_factory() as session:
        member = (
            await session.execute(select(GroupMember).where(GroupMember.user_id == joiner.id))
        ).scalar_one()
        assert member.status == GroupMemberStatusEnum.REDEEMED


@pytest.mark.asyncio
async def test_group_config_lookup(session_factory, factory) -> None:
    group = await factory.group_activity(n_required=4, allow_cross_store=False)
    coupon_activity = await factory.activity()
    bare_group = await factory.activity(type=group.type)

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session)
        config = await coordinator.get_group_config(group.id)
        assert config.n_required == 4
        assert config.allow_cross_store is False
        with pytest.raises(ActivityTypeMismatch):
            await coordinator.get_group_config(coupon_activity.id)
        with pytest.raises(GroupConfigMissing):
            await coordinator.get_group_config(bare_group.id)


@pytest.mark.asyncio
async def test_concurrent_joins_close_quorum_once(concurrent_session_factory, concurrent_factory) -> None:
    activity = await concurrent_factory.group_activity(n_required=3)
    leader = await concurrent_factory.user()
    joiners = [await concurrent_factory.user() for _ in range(4)]

    async with concurrent_session_factory() as session:
        view = await GroupBuyCoordinator(session).create_instance(activity.id, leader.id)

    async def attempt(user):
        async with concurrent_session_factory() as session:
            try:
                result = await GroupBuyCoordinator(session).join(view.instance.id, user.id)
            except InstanceExpired:
                return "closed"
            return "completed" if result.completed else "joined"

    outcomes = await asyncio.gather(*(attempt(user) for user in joiners))

    assert outcomes.count("completed") == 1
    assert outcomes.count("joined") == 1
    assert outcomes.count("closed") == 2

    async with concurrent_session_factory() as session:
        instance = await session.get(GroupInstance, view.instance.id)
        assert instance.status == GroupInstanceStatusEnum.SUCCESS
        assert instance.member_count == 3
        coupons = (
            await session.execute(select(Coupon).where(Coupon.group_instance_id == instance.id))
        ).scalars().all()
        assert len(coupons) == 3
        assert len({coupon.user_id for coupon in coupons}) == 3


@pytest.mark.asyncio
async def test_group_window_never_outlives_activity(session_factory, factory) -> None:
    now = datetime.now(timezone.utc)
    end_at = now + timedelta(hours=1)
    activity = await factory.group_activity(n_required=2, time_limit_hours=24, end_at=end_at)
    leader = await factory.user()
    joiner = await factory.user()

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session)
        view = await coordinator.create_instance(activity.id, leader.id, now=now)
        instance_id = view.instance.id
        assert as_utc(view.instance.expire_at) == end_at
        assert view.seconds_left == 3600

        with pytest.raises(InstanceExpired):
            await coordinator.join(instance_id, joiner.id, now=now + timedelta(hours=3))

    async with session_factory() as session:
        instance = await session.get(GroupInstance, instance_id)
        assert instance.status == GroupInstanceStatusEnum.PENDING
        assert instance.member_count == 1
        coupons = (await session.execute(select(Coupon))).scalars().all()
        assert coupons == []


@pytest.mark.asyncio
async def test_join_rejected_once_activity_end_moves_earlier(session_factory, factory) -> None:
    now = datetime.now(timezone.utc)
    activity = await factory.group_activity(n_required=2, time_limit_hours=24)
    leader = await factory.user()
    joiner = await factory.user()

    async with session_factory() as session:
        view = await GroupBuyCoordinator(session).create_instance(activity.id, leader.id, now=now)
        instance_id = view.instance.id

    async with session_factory() as session:
        await session.execute(
            update(Activity).where(Activity.id == activity.id).values(end_at=now + timedelta(hours=1))
        )
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(InstanceExpired):
            await GroupBuyCoordinator(session).join(instance_id, joiner.id, now=now + timedelta(hours=2))

    async with session_factory() as session:
        assert (await session.execute(select(Coupon))).scalars().all() == []


@pytest.mark.asyncio
async def test_group_success_survives_notification_lookup_failure(session_factory, factory, monkeypatch) -> None:
    activity = await factory.group_activity(n_required=2)
    leader = await factory.user()
    joiner = await factory.user()

    async with session_factory() as session:
        view = await GroupBuyCoordinator(session).create_instance(activity.id, leader.id)
        instance_id = view.instance.id

    original_get = AsyncSession.get

    async def failing_get(self, entity, ident, **kwargs):
        if entity is Activity:
            raise OperationalError("SELECT activities", {}, Exception("connection lost"))
        return await original_get(self, entity, ident, **kwargs)

    monkeypatch.setattr(AsyncSession, "get", failing_get)

    async with session_factory() as session:
        coordinator = GroupBuyCoordinator(session, notifier=NotificationDispatcher(None))
        result = await coordinator.join(instance_id, joiner.id)

    assert result.completed is True
    assert len(result.coupons) == 2

    monkeypatch.undo()
    async with session_factory() as session:
        instance = await session.get(GroupInstance, instance_id)
        assert instance.status == GroupInstanceStatusEnum.SUCCESS
        coupons = (await session.execute(select(Coupon))).scalars().all()
        assert len(coupons) == 2
