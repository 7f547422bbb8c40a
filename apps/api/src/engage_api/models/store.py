"""Store directory and staff verification grants."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from engage_api.db.base import Base


class StoreStatusEnum(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Store(Base):
    __tablename__ = "stores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    city_id = Column(Integer, nullable=True, index=True)
    city_code = Column(String(16), nullable=True)
    name = Column(String(128), nullable=False)
    address = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    place_id = Column(String(128), nullable=True)
    contact = Column(String(64), nullable=True)
    phone = Column(String(32), nullable=True)
    open_hours = Column(String(128), nullable=True)
    weight = Column(Integer, nullable=False, default=0, server_default="0")
    enabled = Column(Boolean, nullable=False, default=True, server_default="true")
    status = Column(
        SqlEnum(
            StoreStatusEnum,
            name="store_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=StoreStatusEnum.ACTIVE,
        server_default=StoreStatusEnum.ACTIVE.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class StoreStaffAuthorization(Base):
    """Grant allowing a staff member to verify coupons at one store."""

    __tablename__ = "store_staff"
    __table_args__ = (UniqueConstraint("store_id", "user_id", name="uq_store_staff_store_user"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    can_verify = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
