"""Group-buy instances and their members."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from engage_api.db.base import Base


class GroupInstanceStatusEnum(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class GroupMemberStatusEnum(str, Enum):
    RESERVED = "reserved"
    COUPON_ISSUED = "coupon_issued"
    REDEEMED = "redeemed"


class GroupInstance(Base):
    __tablename__ = "group_instances"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    activity_id = Column(UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False, index=True)
    leader_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)
    member_count = Column(Integer, nullable=False, default=0, server_default="0")
    status = Column(
        SqlEnum(
            GroupInstanceStatusEnum,
            name="group_instance_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=GroupInstanceStatusEnum.PENDING,
        server_default=GroupInstanceStatusEnum.PENDING.value,
    )
    start_at = Column(DateTime(timezone=True), nullable=False)
    expire_at = Column(DateTime(timezone=True), nullable=False, index=True)
    succeeded_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    activity = relationship("Activity")
    members = relationship(
        "GroupMember",
        back_populates="instance",
        order_by="GroupMember.joined_at",
        cascade="all, delete-orphan",
    )


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("instance_id", "user_id", name="uq_group_members_instance_user"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    instance_id = Column(UUID(as_uuid=True), ForeignKey("group_instances.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)
    status = Column(
        SqlEnum(
            GroupMemberStatusEnum,
            name="group_member_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=GroupMemberStatusEnum.RESERVED,
        server_default=GroupMemberStatusEnum.RESERVED.value,
    )
    joined_at = Column(DateTime(timezone=True), nullable=False)

    instance = relationship("GroupInstance", back_populates="members")
