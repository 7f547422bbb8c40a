from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.api.dependencies.engagement import get_notification_dispatcher
from engage_api.db.session import get_session
from engage_api.schemas.engagement import (
    CouponResponse,
    Envelope,
    GroupConfigResponse,
    GroupInstanceResponse,
    GroupJoinResponse,
    GroupMemberResponse,
    ok,
)
from engage_api.services.engagement import GroupBuyCoordinator, IdentityService
from engage_api.services.notifications import NotificationDispatcher

router = APIRouter(tags=["Group buying"])


class CreateGroupInstanceRequest(BaseModel):
    activityId: UUID
    userId: str = Field(..., min_length=1, description="LINE user id of the leader")
    storeId: Optional[UUID] = None


class JoinGroupRequest(BaseModel):
    userId: str = Field(..., min_length=1, description="LINE user id of the joiner")
    storeId: Optional[UUID] = None


@router.get("/activities/{activity_id}/group-config", response_model=Envelope[GroupConfigResponse])
async def get_group_config(activity_id: UUID, db: AsyncSession = Depends(get_session)) -> dict:
    config = await GroupBuyCoordinator(db).get_group_config(activity_id)
    return ok(GroupConfigResponse.from_config(config))


@router.get("/activities/{activity_id}/group-instances", response_model=Envelope[List[GroupInstanceResponse]])
async def list_group_instances(activity_id: UUID, db: AsyncSession = Depends(get_session)) -> dict:
    views = await GroupBuyCoordinator(db).get_group_instances(activity_id)
    return ok([GroupInstanceResponse.from_view(view) for view in views])


@router.post("/group-buying/instances", response_model=Envelope[GroupInstanceResponse])
async def create_group_instance(
    payload: CreateGroupInstanceRequest,
    db: AsyncSession = Depends(get_session),
    notifier: NotificationDispatcher | None = Depends(get_notification_dispatcher),
) -> dict:
    leader = await IdentityService(db).ensure_line_user(payload.userId)
    view = await GroupBuyCoordinator(db, notifier=notifier).create_instance(
        payload.activityId, leader.id, store_id=payload.storeId
    )
    return ok(GroupInstanceResponse.from_view(view), "团购创建成功！")


@router.get("/group-buying/instances/{instance_id}", response_model=Envelope[GroupInstanceResponse])
async def get_group_instance(instance_id: UUID, db: AsyncSession = Depends(get_session)) -> dict:
    view = await GroupBuyCoordinator(db).get_instance(instance_id)
    return ok(GroupInstanceResponse.from_view(view))


@router.post("/group-buying/instances/{instance_id}/join", response_model=Envelope[GroupJoinResponse])
async def join_group_instance(
    instance_id: UUID,
    payload: JoinGroupRequest,
    db: AsyncSession = Depends(get_session),
    notifier: NotificationDispatcher | None = Depends(get_notification_dispatcher),
) -> dict:
    user = await IdentityService(db).ensure_line_user(payload.userId)
    result = await GroupBuyCoordinator(db, notifier=notifier).join(instance_id, user.id, store_id=payload.storeId)
    own_coupon = next((coupon for coupon in result.coupons if coupon.user_id == user.id), None)
    response = GroupJoinResponse(
        member=GroupMemberResponse.from_member(result.member),
        instance=GroupInstanceResponse.from_view(result.view),
        completed=result.completed,
        coupon=CouponResponse.from_coupon(own_coupon) if own_coupon is not None else None,
    )
    return ok(response, "拼团成功！" if result.completed else "参团成功！")
