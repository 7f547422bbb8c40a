from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from engage_api.db.base import Base


class NotificationStatusEnum(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(Base):
    """Delivery attempt of one outbound LINE push."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient = Column(String(64), nullable=False)
    category = Column(String(64), nullable=False)
    status = Column(
        SqlEnum(
            NotificationStatusEnum,
            name="notification_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=NotificationStatusEnum.PENDING,
        server_default=NotificationStatusEnum.PENDING.value,
    )
    subject = Column(String, nullable=True)
    body = Column(Text, nullable=True)
    provider = Column(String(32), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
