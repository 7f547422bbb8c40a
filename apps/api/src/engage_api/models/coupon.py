"""Issued coupons and the redemption records that close them."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from engage_api.db.base import Base


class CouponStatusEnum(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class RedemptionStatusEnum(str, Enum):
    VERIFIED = "verified"
    CANCELED = "canceled"


class RedemptionTypeEnum(str, Enum):
    QR_SCAN = "qr_scan"
    MANUAL = "manual"


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        Index("ix_coupons_activity_user", "activity_id", "user_id"),
        Index("ix_coupons_status_expires_at", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    activity_id = Column(UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(16), nullable=False, unique=True)
    status = Column(
        SqlEnum(
            CouponStatusEnum,
            name="coupon_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=CouponStatusEnum.ACTIVE,
        server_default=CouponStatusEnum.ACTIVE.value,
    )
    # Set for group coupons pinned to the group's store
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)
    group_instance_id = Column(UUID(as_uuid=True), ForeignKey("group_instances.id", ondelete="SET NULL"), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False, server_default="false")
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)

    activity = relationship("Activity")


class Redemption(Base):
    __tablename__ = "redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    activity_id = Column(UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id"), nullable=False, index=True)
    staff_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    coupon_id = Column(UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, unique=True)
    code = Column(String(16), nullable=False)
    status = Column(
        SqlEnum(
            RedemptionStatusEnum,
            name="redemption_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RedemptionStatusEnum.VERIFIED,
        server_default=RedemptionStatusEnum.VERIFIED.value,
    )
    redemption_type = Column(
        SqlEnum(
            RedemptionTypeEnum,
            name="redemption_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RedemptionTypeEnum.MANUAL,
        server_default=RedemptionTypeEnum.MANUAL.value,
    )
    verified_at = Column(DateTime(timezone=True), nullable=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    activity = relationship("Activity")
    store = relationship("Store")
    coupon = relationship("Coupon")
