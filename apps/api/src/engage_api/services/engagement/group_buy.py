"""Group-buy instances: creation, joins, quorum success and expiry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from engage_api.core.clock import as_utc, utcnow
from engage_api.core.settings import Settings, get_settings
from engage_api.domain.errors import (
    AllowCrossStoreViolation,
    AlreadyMember,
    CodeGenerationExhausted,
    EngagementError,
    GroupConfigMissing,
    GroupInstanceNotFound,
    InstanceExpired,
    StoreNotParticipating,
    UserNotFound,
)
from engage_api.models.activity import Activity, ActivityTypeEnum, GroupConfig
from engage_api.models.coupon import Coupon
from engage_api.models.group_buy import (
    GroupInstance,
    GroupInstanceStatusEnum,
    GroupMember,
    GroupMemberStatusEnum,
)
from engage_api.models.user import User
from engage_api.observability.engagement import get_engagement_store
from engage_api.services.notifications import (
    EngagementEvent,
    NotificationCategory,
    NotificationDispatcher,
)

from .activities import ensure_activity_open, load_activity
from .coupon_ledger import CouponLedger
from .store_mapping import StoreMappingService


def derive_status(
    *,
    status: GroupInstanceStatusEnum,
    expire_at: datetime,
    now: datetime,
) -> GroupInstanceStatusEnum:
    """Display status of an instance at ``now``.

    Terminal stored states win. A pending instance reads as failed once its
    window has closed; success is only ever committed by a join.
    """

    if status in (GroupInstanceStatusEnum.SUCCESS, GroupInstanceStatusEnum.FAILED):
        return status
    if now >= as_utc(expire_at):  # type: ignore[operator]
        return GroupInstanceStatusEnum.FAILED
    return GroupInstanceStatusEnum.PENDING


@dataclass(slots=True)
class GroupInstanceView:
    instance: GroupInstance
    n_required: int
    member_count: int
    remaining_slots: int
    seconds_left: int
    derived_status: GroupInstanceStatusEnum
    members: list[GroupMember] = field(default_factory=list)


@dataclass(slots=True)
class JoinResult:
    member: GroupMember
    view: GroupInstanceView
    completed: bool
    coupons: list[Coupon] = field(default_factory=list)


def build_view(
    instance: GroupInstance,
    config: GroupConfig,
    now: datetime,
    *,
    members: Sequence[GroupMember] = (),
) -> GroupInstanceView:
    derived = derive_status(status=instance.status, expire_at=instance.expire_at, now=now)
    seconds_left = 0
    if derived == GroupInstanceStatusEnum.PENDING:
        seconds_left = max(0, int((as_utc(instance.expire_at) - now).total_seconds()))  # type: ignore[operator]
    return GroupInstanceView(
        instance=instance,
        n_required=config.n_required,
        member_count=instance.member_count,
        remaining_slots=max(0, config.n_required - instance.member_count),
        seconds_left=seconds_left,
        derived_status=derived,
        members=list(members),
    )


class GroupBuyCoordinator:
    """Forms group-buys; the join that reaches quorum commits success exactly once.

    Membership is counted on ``group_instances.member_count`` and only moved by a
    conditional increment, so concurrent joiners queue on the instance row.
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
        self._ledger = CouponLedger(db_session, settings=self._settings)
        self._stores = StoreMappingService(db_session, settings=self._settings)

    async def get_group_config(self, activity_id: UUID) -> GroupConfig:
        activity = await load_activity(self._db, activity_id, expected_type=ActivityTypeEnum.GROUP)
        if activity.group_config is None:
            raise GroupConfigMissing()
        return activity.group_config

    async def create_instance(
        self,
        activity_id: UUID,
        leader_user_id: UUID,
        *,
        store_id: UUID | None = None,
        now: datetime | None = None,
    ) -> GroupInstanceView:
        now = now or utcnow()
        observability = get_engagement_store()
        attempts = max(1, self._settings.coupon_code_max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                view, coupons = await self._create_once(activity_id, leader_user_id, store_id, now)
            except IntegrityError:
                await self._db.rollback()
                logger.warning("Coupon code collided while forming group; retrying", attempt=attempt)
                continue
            except EngagementError as exc:
                await self._db.rollback()
                observability.record_group_event(f"create_rejected:{type(exc).__name__}")
                raise
            except Exception:
                await self._db.rollback()
                raise

            observability.record_group_event("created")
            logger.info(
                "Group instance created",
                instance_id=str(view.instance.id),
                activity_id=str(activity_id),
                leader_user_id=str(leader_user_id),
                expire_at=view.instance.expire_at.isoformat(),
            )
            if coupons:
                observability.record_group_event("succeeded")
                await self._notify_success_safely(view.instance, coupons)
            return view

        raise CodeGenerationExhausted()

    async def _create_once(
        self,
        activity_id: UUID,
        leader_user_id: UUID,
        store_id: UUID | None,
        now: datetime,
    ) -> tuple[GroupInstanceView, list[Coupon]]:
        activity = await load_activity(self._db, activity_id, expected_type=ActivityTypeEnum.GROUP)
        config = activity.group_config
        if config is None:
            raise GroupConfigMissing()
        ensure_activity_open(activity, now)
        if await self._db.get(User, leader_user_id) is None:
            raise UserNotFound()
        if store_id is not None and not await self._stores.is_store_participating(activity_id, store_id):
            raise StoreNotParticipating()

        instance = GroupInstance(
            activity_id=activity_id,
            leader_user_id=leader_user_id,
            store_id=store_id,
            member_count=1,
            status=GroupInstanceStatusEnum.PENDING,
            start_at=now,
            expire_at=min(now + timedelta(hours=config.time_limit_hours), as_utc(activity.end_at)),  # type: ignore[type-var]
        )
        self._db.add(instance)
        await self._db.flush()
        leader = GroupMember(
            instance_id=instance.id,
            user_id=leader_user_id,
            store_id=store_id,
            status=GroupMemberStatusEnum.RESERVED,
            joined_at=now,
        )
        self._db.add(leader)
        await self._db.flush()

        coupons: list[Coupon] = []
        if config.n_required <= 1:
            instance.status = GroupInstanceStatusEnum.SUCCESS
            instance.succeeded_at = now
            await self._db.flush()
            coupons = await self._issue_member_coupons(instance, activity, config, [leader], now)

        await self._db.commit()
        return build_view(instance, config, now, members=[leader]), coupons

    async def join(
        self,
        instance_id: UUID,
        user_id: UUID,
        *,
        store_id: UUID | None = None,
        now: datetime | None = None,
    ) -> JoinResult:
        now = now or utcnow()
        observability = get_engagement_store()
        attempts = max(1, self._settings.coupon_code_max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                result = await self._join_once(instance_id, user_id, store_id, now)
            except IntegrityError:
                await self._db.rollback()
                if await self._is_member(instance_id, user_id):
                    observability.record_group_event(f"join_rejected:{AlreadyMember.__name__}")
                    logger.info("Concurrent duplicate join rejected", instance_id=str(instance_id), user_id=str(user_id))
                    raise AlreadyMember()
                logger.warning("Coupon code collided while completing group; retrying", attempt=attempt)
                continue
            except EngagementError as exc:
                await self._db.rollback()
                observability.record_group_event(f"join_rejected:{type(exc).__name__}")
                logger.info(
                    "Group join rejected",
                    instance_id=str(instance_id),
                    user_id=str(user_id),
                    reason=type(exc).__name__,
                )
                raise
            except Exception:
                await self._db.rollback()
                raise

            observability.record_group_event("joined")
            logger.info(
                "Group member joined",
                instance_id=str(instance_id),
                user_id=str(user_id),
                member_count=result.view.member_count,
                completed=result.completed,
            )
            if result.completed:
                observability.record_group_event("succeeded")
                logger.info(
                    "Group instance succeeded",
                    instance_id=str(instance_id),
                    coupons_issued=len(result.coupons),
                )
                await self._notify_success_safely(result.view.instance, result.coupons)
            return result

        raise CodeGenerationExhausted()

    async def _join_once(
        self,
        instance_id: UUID,
        user_id: UUID,
        store_id: UUID | None,
        now: datetime,
    ) -> JoinResult:
        instance = await self._db.get(GroupInstance, instance_id, populate_existing=True)
        if instance is None:
            raise GroupInstanceNotFound()
        activity = await load_activity(self._db, instance.activity_id)
        config = activity.group_config
        if config is None:
            raise GroupConfigMissing()
        if await self._db.get(User, user_id) is None:
            raise UserNotFound()

        if instance.status != GroupInstanceStatusEnum.PENDING or now >= as_utc(instance.expire_at):
            raise InstanceExpired()
        # Instances created before an end_at change may outlive the activity.
        if now >= as_utc(activity.end_at):  # type: ignore[operator]
            raise InstanceExpired()
        if await self._is_member(instance_id, user_id):
            raise AlreadyMember()

        if store_id is not None:
            if not await self._stores.is_store_participating(activity.id, store_id):
                raise AllowCrossStoreViolation()
            if not config.allow_cross_store and instance.store_id is not None and store_id != instance.store_id:
                raise AllowCrossStoreViolation()

        incremented = await self._db.execute(
            update(GroupInstance)
            .where(
                GroupInstance.id == instance_id,
                GroupInstance.status == GroupInstanceStatusEnum.PENDING,
                GroupInstance.member_count < config.n_required,
                GroupInstance.expire_at > now,
            )
            .values(member_count=GroupInstance.member_count + 1)
            .execution_options(synchronize_session=False)
        )
        if incremented.rowcount == 0:
            # Quorum already closed or the window just ended.
            raise InstanceExpired()

        member = GroupMember(
            instance_id=instance_id,
            user_id=user_id,
            store_id=store_id or instance.store_id,
            status=GroupMemberStatusEnum.RESERVED,
            joined_at=now,
        )
        self._db.add(member)
        await self._db.flush()

        count_result = await self._db.execute(
            select(GroupInstance.member_count).where(GroupInstance.id == instance_id)
        )
        member_count = int(count_result.scalar_one())

        coupons: list[Coupon] = []
        completed = False
        if member_count >= config.n_required:
            succeeded = await self._db.execute(
                update(GroupInstance)
                .where(
                    GroupInstance.id == instance_id,
                    GroupInstance.status == GroupInstanceStatusEnum.PENDING,
                )
                .values(status=GroupInstanceStatusEnum.SUCCESS, succeeded_at=now)
                .execution_options(synchronize_session=False)
            )
            if succeeded.rowcount == 1:
                completed = True
                members_result = await self._db.execute(
                    select(GroupMember)
                    .where(GroupMember.instance_id == instance_id)
                    .order_by(GroupMember.joined_at)
                )
                coupons = await self._issue_member_coupons(
                    instance, activity, config, list(members_result.scalars().all()), now
                )

        await self._db.commit()
        await self._db.refresh(instance, attribute_names=["status", "member_count", "succeeded_at"])
        return JoinResult(
            member=member,
            view=build_view(instance, config, now),
            completed=completed,
            coupons=coupons,
        )

    async def _issue_member_coupons(
        self,
        instance: GroupInstance,
        activity: Activity,
        config: GroupConfig,
        members: Sequence[GroupMember],
        now: datetime,
    ) -> list[Coupon]:
        expires_at = min(now + timedelta(hours=config.use_valid_hours), as_utc(activity.end_at))  # type: ignore[type-var]
        pinned_store = None if config.allow_cross_store else instance.store_id
        coupons: list[Coupon] = []
        for member in members:
            coupon = await self._ledger.issue_coupon(
                activity=activity,
                user_id=member.user_id,
                expires_at=expires_at,
                now=now,
                store_id=pinned_store,
                group_instance_id=instance.id,
            )
            member.status = GroupMemberStatusEnum.COUPON_ISSUED
            coupons.append(coupon)
        await self._db.flush()
        return coupons

    async def _is_member(self, instance_id: UUID, user_id: UUID) -> bool:
        result = await self._db.execute(
            select(GroupMember.id).where(GroupMember.instance_id == instance_id, GroupMember.user_id == user_id)
        )
        return result.first() is not None

    async def get_instance(self, instance_id: UUID, *, now: datetime | None = None) -> GroupInstanceView:
        now = now or utcnow()
        result = await self._db.execute(
            select(GroupInstance)
            .options(selectinload(GroupInstance.members))
            .where(GroupInstance.id == instance_id)
            .execution_options(populate_existing=True)
        )
        instance = result.scalar_one_or_none()
        if instance is None:
            raise GroupInstanceNotFound()
        config = await self._db.get(GroupConfig, instance.activity_id)
        if config is None:
            raise GroupConfigMissing()
        return build_view(instance, config, now, members=instance.members)

    async def get_group_instances(self, activity_id: UUID, *, now: datetime | None = None) -> list[GroupInstanceView]:
        now = now or utcnow()
        config = await self.get_group_config(activity_id)
        result = await self._db.execute(
            select(GroupInstance)
            .where(GroupInstance.activity_id == activity_id)
            .order_by(GroupInstance.start_at.desc())
            .execution_options(populate_existing=True)
        )
        return [build_view(instance, config, now) for instance in result.scalars().all()]

    async def fail_expired_instances(self, *, now: datetime | None = None, limit: int = 500) -> int:
        """Housekeeping: persist ``failed`` for pending instances past their window."""

        now = now or utcnow()
        failed_ids: list[UUID] = []
        try:
            candidates = await self._db.execute(
                select(GroupInstance.id)
                .where(
                    GroupInstance.status == GroupInstanceStatusEnum.PENDING,
                    GroupInstance.expire_at <= now,
                )
                .order_by(GroupInstance.expire_at)
                .limit(limit)
            )
            for candidate_id in candidates.scalars().all():
                result = await self._db.execute(
                    update(GroupInstance)
                    .where(
                        GroupInstance.id == candidate_id,
                        GroupInstance.status == GroupInstanceStatusEnum.PENDING,
                        GroupInstance.expire_at <= now,
                    )
                    .values(status=GroupInstanceStatusEnum.FAILED, failed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    failed_ids.append(candidate_id)
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        if failed_ids:
            observability = get_engagement_store()
            for _ in failed_ids:
                observability.record_group_event("failed")
            logger.info("Failed expired group instances", count=len(failed_ids))
            try:
                await self._notify_failure(failed_ids)
            except Exception as exc:
                logger.exception("Group failure notifications skipped", count=len(failed_ids), error=str(exc))
        return len(failed_ids)

    async def _notify_success_safely(self, instance: GroupInstance, coupons: Sequence[Coupon]) -> None:
        # Success is already committed; lookups for the push must not fail the caller.
        try:
            await self._notify_success(instance, coupons)
        except Exception as exc:
            logger.exception(
                "Group success notifications skipped",
                instance_id=str(instance.id),
                error=str(exc),
            )

    async def _notify_success(self, instance: GroupInstance, coupons: Sequence[Coupon]) -> None:
        if self._notifier is None or not coupons:
            return
        activity = await self._db.get(Activity, instance.activity_id)
        users = await self._users_by_id([coupon.user_id for coupon in coupons])
        for coupon in coupons:
            user = users.get(coupon.user_id)
            if user is None:
                continue
            self._notifier.dispatch(
                EngagementEvent(
                    category=NotificationCategory.GROUP_SUCCEEDED,
                    recipient=user.line_user_id,
                    user_id=user.id,
                    context={
                        "activity_id": instance.activity_id,
                        "activity_title": activity.title if activity else "",
                        "instance_id": instance.id,
                        "code": coupon.code,
                        "expires_at": coupon.expires_at,
                    },
                )
            )

    async def _notify_failure(self, instance_ids: Sequence[UUID]) -> None:
        if self._notifier is None:
            return
        result = await self._db.execute(
            select(GroupMember, GroupInstance.activity_id, Activity.title, User.line_user_id)
            .join(GroupInstance, GroupInstance.id == GroupMember.instance_id)
            .join(Activity, Activity.id == GroupInstance.activity_id)
            .join(User, User.id == GroupMember.user_id)
            .where(GroupMember.instance_id.in_(instance_ids))
        )
        for member, activity_id, title, line_user_id in result.all():
            self._notifier.dispatch(
                EngagementEvent(
                    category=NotificationCategory.GROUP_FAILED,
                    recipient=line_user_id,
                    user_id=member.user_id,
                    context={
                        "activity_id": activity_id,
                        "activity_title": title,
                        "instance_id": member.instance_id,
                    },
                )
            )

    async def _users_by_id(self, user_ids: Sequence[UUID]) -> dict[UUID, User]:
        if not user_ids:
            return {}
        result = await self._db.execute(select(User).where(User.id.in_(list(user_ids))))
        return {user.id: user for user in result.scalars().all()}


__all__ = [
    "GroupBuyCoordinator",
    "GroupInstanceView",
    "JoinResult",
    "build_view",
    "derive_status",
]
