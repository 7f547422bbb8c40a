"""Marketing activities and their type-specific configuration."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from engage_api.db.base import Base


class ActivityTypeEnum(str, Enum):
    COUPON = "coupon"
    GROUP = "group"
    PRESALE = "presale"
    FRANCHISE = "franchise"


class ActivityStatusEnum(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    PAUSED = "paused"
    ARCHIVED = "archived"


activity_stores = Table(
    "activity_stores",
    Base.metadata,
    Column("activity_id", UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True),
    Column("store_id", UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True),
)


class Activity(Base):
    __tablename__ = "activities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(String(255), nullable=False)
    type = Column(
        SqlEnum(
            ActivityTypeEnum,
            name="activity_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    status = Column(
        SqlEnum(
            ActivityStatusEnum,
            name="activity_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=ActivityStatusEnum.DRAFT,
        server_default=ActivityStatusEnum.DRAFT.value,
    )
    cover_url = Column(String, nullable=True)
    rules = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    list_price = Column(Numeric(12, 2), nullable=True)
    # 0 means unlimited
    stock_total = Column(Integer, nullable=False, default=0, server_default="0")
    stock_consumed = Column(Integer, nullable=False, default=0, server_default="0")
    per_user_limit = Column(Integer, nullable=False, default=1, server_default="1")
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    coupon_valid_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    group_config = relationship("GroupConfig", uselist=False, back_populates="activity")
    presale_config = relationship("PresaleConfig", uselist=False, back_populates="activity")


class GroupConfig(Base):
    __tablename__ = "group_configs"

    activity_id = Column(UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True)
    n_required = Column(Integer, nullable=False)
    time_limit_hours = Column(Integer, nullable=False)
    use_valid_hours = Column(Integer, nullable=False)
    allow_cross_store = Column(Boolean, nullable=False, default=True, server_default="true")

    activity = relationship("Activity", back_populates="group_config")


class PresaleConfig(Base):
    __tablename__ = "presale_configs"

    activity_id = Column(UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True)
    pickup_start = Column(DateTime(timezone=True), nullable=True)
    pickup_end = Column(DateTime(timezone=True), nullable=True)
    arrival_notice = Column(Text, nullable=True)

    activity = relationship("Activity", back_populates="presale_config")
