"""Wire models for engagement endpoints (camelCase, wrapped in the envelope)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from engage_api.core.clock import as_utc
from engage_api.models.activity import GroupConfig
from engage_api.models.coupon import Coupon, Redemption
from engage_api.models.group_buy import GroupMember
from engage_api.models.presale import PresaleReservation
from engage_api.models.store import Store
from engage_api.services.engagement import GroupInstanceView, RedemptionPreview
from engage_api.services.geo import RankedStore

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    code: int = 0
    message: str = "ok"
    data: Optional[T] = None


def ok(data: Any = None, message: str = "ok") -> dict[str, Any]:
    return {"code": 0, "message": message, "data": data}


class CouponResponse(BaseModel):
    id: UUID
    activityId: UUID
    activityTitle: Optional[str]
    code: str
    status: str
    storeId: Optional[UUID]
    groupInstanceId: Optional[UUID]
    claimedAt: datetime
    usedAt: Optional[datetime]
    expiresAt: datetime
    isRead: bool
    lastViewedAt: Optional[datetime]

    @classmethod
    def from_coupon(cls, coupon: Coupon) -> "CouponResponse":
        return cls(
            id=coupon.id,
            activityId=coupon.activity_id,
            activityTitle=coupon.activity.title if coupon.activity is not None else None,
            code=coupon.code,
            status=coupon.status.value,
            storeId=coupon.store_id,
            groupInstanceId=coupon.group_instance_id,
            claimedAt=as_utc(coupon.claimed_at),
            usedAt=as_utc(coupon.used_at),
            expiresAt=as_utc(coupon.expires_at),
            isRead=bool(coupon.is_read),
            lastViewedAt=as_utc(coupon.last_viewed_at),
        )


class RedemptionResponse(BaseModel):
    id: UUID
    activityId: UUID
    activityTitle: Optional[str]
    storeId: UUID
    storeName: Optional[str]
    staffId: UUID
    couponId: UUID
    code: str
    status: str
    redemptionType: str
    verifiedAt: datetime
    canceledAt: Optional[datetime]
    cancelReason: Optional[str]

    @classmethod
    def from_redemption(cls, redemption: Redemption) -> "RedemptionResponse":
        return cls(
            id=redemption.id,
            activityId=redemption.activity_id,
            activityTitle=redemption.activity.title if redemption.activity is not None else None,
            storeId=redemption.store_id,
            storeName=redemption.store.name if redemption.store is not None else None,
            staffId=redemption.staff_id,
            couponId=redemption.coupon_id,
            code=redemption.code,
            status=redemption.status.value,
            redemptionType=redemption.redemption_type.value,
            verifiedAt=as_utc(redemption.verified_at),
            canceledAt=as_utc(redemption.canceled_at),
            cancelReason=redemption.cancel_reason,
        )


class RedeemPreviewResponse(BaseModel):
    coupon: CouponResponse
    activityTitle: str
    redeemable: bool

    @classmethod
    def from_preview(cls, preview: RedemptionPreview) -> "RedeemPreviewResponse":
        return cls(
            coupon=CouponResponse.from_coupon(preview.coupon),
            activityTitle=preview.activity_title,
            redeemable=preview.redeemable,
        )


class StoreResponse(BaseModel):
    id: UUID
    name: str
    address: Optional[str]
    cityId: Optional[int]
    cityCode: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    placeId: Optional[str]
    phone: Optional[str]
    openHours: Optional[str]
    weight: int
    enabled: bool
    status: str

    @classmethod
    def from_store(cls, store: Store) -> "StoreResponse":
        return cls(
            id=store.id,
            name=store.name,
            address=store.address,
            cityId=store.city_id,
            cityCode=store.city_code,
            latitude=store.latitude,
            longitude=store.longitude,
            placeId=store.place_id,
            phone=store.phone,
            openHours=store.open_hours,
            weight=store.weight or 0,
            enabled=bool(store.enabled),
            status=store.status.value,
        )


class NearbyStoreResponse(StoreResponse):
    distanceKm: Optional[float]
    mapsUrl: Optional[str]

    @classmethod
    def from_ranked(cls, ranked: RankedStore) -> "NearbyStoreResponse":
        base = StoreResponse.from_store(ranked.store).model_dump()
        return cls(**base, distanceKm=ranked.distance_km, mapsUrl=ranked.maps_url)


class GroupConfigResponse(BaseModel):
    activityId: UUID
    nRequired: int
    timeLimitHours: int
    useValidHours: int
    allowCrossStore: bool

    @classmethod
    def from_config(cls, config: GroupConfig) -> "GroupConfigResponse":
        return cls(
            activityId=config.activity_id,
            nRequired=config.n_required,
            timeLimitHours=config.time_limit_hours,
            useValidHours=config.use_valid_hours,
            allowCrossStore=bool(config.allow_cross_store),
        )


class GroupMemberResponse(BaseModel):
    id: UUID
    userId: UUID
    storeId: Optional[UUID]
    status: str
    joinedAt: datetime

    @classmethod
    def from_member(cls, member: GroupMember) -> "GroupMemberResponse":
        return cls(
            id=member.id,
            userId=member.user_id,
            storeId=member.store_id,
            status=member.status.value,
            joinedAt=as_utc(member.joined_at),
        )


class GroupInstanceResponse(BaseModel):
    id: UUID
    activityId: UUID
    leaderUserId: UUID
    storeId: Optional[UUID]
    status: str
    derivedStatus: str
    memberCount: int
    nRequired: int
    remainingSlots: int
    secondsLeft: int
    startAt: datetime
    expireAt: datetime
    succeededAt: Optional[datetime]
    members: List[GroupMemberResponse] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: GroupInstanceView) -> "GroupInstanceResponse":
        instance = view.instance
        return cls(
            id=instance.id,
            activityId=instance.activity_id,
            leaderUserId=instance.leader_user_id,
            storeId=instance.store_id,
            status=instance.status.value,
            derivedStatus=view.derived_status.value,
            memberCount=view.member_count,
            nRequired=view.n_required,
            remainingSlots=view.remaining_slots,
            secondsLeft=view.seconds_left,
            startAt=as_utc(instance.start_at),
            expireAt=as_utc(instance.expire_at),
            succeededAt=as_utc(instance.succeeded_at),
            members=[GroupMemberResponse.from_member(member) for member in view.members],
        )


class GroupJoinResponse(BaseModel):
    member: GroupMemberResponse
    instance: GroupInstanceResponse
    completed: bool
    coupon: Optional[CouponResponse] = None


class ReservationResponse(BaseModel):
    id: UUID
    activityId: UUID
    userId: UUID
    qty: int
    status: str
    reservedAt: datetime

    @classmethod
    def from_reservation(cls, reservation: PresaleReservation) -> "ReservationResponse":
        return cls(
            id=reservation.id,
            activityId=reservation.activity_id,
            userId=reservation.user_id,
            qty=reservation.qty,
            status=reservation.status.value,
            reservedAt=as_utc(reservation.reserved_at),
        )


class GroupedCount(BaseModel):
    id: str
    name: Optional[str]
    count: int


class RedemptionStatsResponse(BaseModel):
    summary: dict[str, int]
    byStore: List[GroupedCount]
    byActivity: List[GroupedCount]
    byStaff: List[GroupedCount]


class MarkReadResponse(BaseModel):
    updated: int


class SweepResponse(BaseModel):
    expiredCoupons: int
    failedGroups: int


__all__ = [
    "CouponResponse",
    "Envelope",
    "GroupConfigResponse",
    "GroupInstanceResponse",
    "GroupJoinResponse",
    "GroupMemberResponse",
    "GroupedCount",
    "MarkReadResponse",
    "NearbyStoreResponse",
    "RedeemPreviewResponse",
    "RedemptionResponse",
    "RedemptionStatsResponse",
    "ReservationResponse",
    "StoreResponse",
    "SweepResponse",
    "ok",
]
