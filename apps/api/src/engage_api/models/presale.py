from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from engage_api.db.base import Base


class PresaleReservationStatusEnum(str, Enum):
    RESERVED = "reserved"
    NOTIFIED = "notified"
    REDEEMED = "redeemed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PresaleReservation(Base):
    __tablename__ = "presale_reservations"
    __table_args__ = (UniqueConstraint("activity_id", "user_id", name="uq_presale_reservations_activity_user"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    activity_id = Column(UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    qty = Column(Integer, nullable=False, default=1, server_default="1")
    status = Column(
        SqlEnum(
            PresaleReservationStatusEnum,
            name="presale_reservation_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=PresaleReservationStatusEnum.RESERVED,
        server_default=PresaleReservationStatusEnum.RESERVED.value,
    )
    reserved_at = Column(DateTime(timezone=True), nullable=False)
