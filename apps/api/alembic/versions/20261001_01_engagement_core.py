"""Engagement core: users, stores, activities, coupons, redemptions, group buys.

Revision ID: 20261001_01
Revises:
Create Date: 2026-10-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261001_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)

store_status = sa.Enum("active", "inactive", name="store_status_enum")
activity_type = sa.Enum("coupon", "group", "presale", "franchise", name="activity_type_enum")
activity_status = sa.Enum("draft", "published", "paused", "archived", name="activity_status_enum")
coupon_status = sa.Enum("active", "used", "expired", name="coupon_status_enum")
redemption_status = sa.Enum("verified", "canceled", name="redemption_status_enum")
redemption_type = sa.Enum("qr_scan", "manual", name="redemption_type_enum")
group_instance_status = sa.Enum("pending", "success", "failed", name="group_instance_status_enum")
group_member_status = sa.Enum("reserved", "coupon_issued", "redeemed", name="group_member_status_enum")
reservation_status = sa.Enum(
    "reserved", "notified", "redeemed", "cancelled", "expired", name="presale_reservation_status_enum"
)
notification_status = sa.Enum("pending", "sent", "failed", name="notification_status_enum")

ENUMS = (
    store_status,
    activity_type,
    activity_status,
    coupon_status,
    redemption_status,
    redemption_type,
    group_instance_status,
    group_member_status,
    reservation_status,
    notification_status,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("line_user_id", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        *_timestamps(),
        sa.UniqueConstraint("line_user_id", name="uq_users_line_user_id"),
    )
    op.create_index("ix_users_line_user_id", "users", ["line_user_id"], unique=True)

    op.create_table(
        "stores",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("city_id", sa.Integer(), nullable=True),
        sa.Column("city_code", sa.String(length=16), nullable=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("place_id", sa.String(length=128), nullable=True),
        sa.Column("contact", sa.String(length=64), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("open_hours", sa.String(length=128), nullable=True),
        sa.Column("weight", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("status", store_status, nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_stores_city_id", "stores", ["city_id"])

    op.create_table(
        "store_staff",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("store_id", UUID, sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("can_verify", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("store_id", "user_id", name="uq_store_staff_store_user"),
    )
    op.create_index("ix_store_staff_store_id", "store_staff", ["store_id"])
    op.create_index("ix_store_staff_user_id", "store_staff", ["user_id"])

    op.create_table(
        "activities",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("type", activity_type, nullable=False),
        sa.Column("status", activity_status, nullable=False, server_default="draft"),
        sa.Column("cover_url", sa.String(), nullable=True),
        sa.Column("rules", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("list_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("stock_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock_consumed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("per_user_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("coupon_valid_until", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "activity_stores",
        sa.Column("activity_id", UUID, sa.ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("store_id", UUID, sa.ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "group_configs",
        sa.Column("activity_id", UUID, sa.ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("n_required", sa.Integer(), nullable=False),
        sa.Column("time_limit_hours", sa.Integer(), nullable=False),
        sa.Column("use_valid_hours", sa.Integer(), nullable=False),
        sa.Column("allow_cross_store", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "presale_configs",
        sa.Column("activity_id", UUID, sa.ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("pickup_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pickup_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrival_notice", sa.Text(), nullable=True),
    )

    op.create_table(
        "group_instances",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("activity_id", UUID, sa.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False),
        sa.Column("leader_user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("store_id", UUID, sa.ForeignKey("stores.id", ondelete="SET NULL"), nullable=True),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", group_instance_status, nullable=False, server_default="pending"),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("succeeded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_group_instances_activity_id", "group_instances", ["activity_id"])
    op.create_index("ix_group_instances_expire_at", "group_instances", ["expire_at"])

    op.create_table(
        "group_members",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("instance_id", UUID, sa.ForeignKey("group_instances.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("store_id", UUID, sa.ForeignKey("stores.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", group_member_status, nullable=False, server_default="reserved"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("instance_id", "user_id", name="uq_group_members_instance_user"),
    )
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

    op.create_table(
        "coupons",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("activity_id", UUID, sa.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("status", coupon_status, nullable=False, server_default="active"),
        sa.Column("store_id", UUID, sa.ForeignKey("stores.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "group_instance_id",
            UUID,
            sa.ForeignKey("group_instances.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("code", name="uq_coupons_code"),
    )
    op.create_index("ix_coupons_user_id", "coupons", ["user_id"])
    op.create_index("ix_coupons_activity_user", "coupons", ["activity_id", "user_id"])
    op.create_index("ix_coupons_status_expires_at", "coupons", ["status", "expires_at"])

    op.create_table(
        "redemptions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("activity_id", UUID, sa.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False),
        sa.Column("store_id", UUID, sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("staff_id", UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("coupon_id", UUID, sa.ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("status", redemption_status, nullable=False, server_default="verified"),
        sa.Column("redemption_type", redemption_type, nullable=False, server_default="manual"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("coupon_id", name="uq_redemptions_coupon_id"),
    )
    op.create_index("ix_redemptions_activity_id", "redemptions", ["activity_id"])
    op.create_index("ix_redemptions_store_id", "redemptions", ["store_id"])
    op.create_index("ix_redemptions_staff_id", "redemptions", ["staff_id"])

    op.create_table(
        "presale_reservations",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("activity_id", UUID, sa.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", reservation_status, nullable=False, server_default="reserved"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("activity_id", "user_id", name="uq_presale_reservations_activity_user"),
    )
    op.create_index("ix_presale_reservations_user_id", "presale_reservations", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("recipient", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("status", notification_status, nullable=False, server_default="pending"),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_index("ix_presale_reservations_user_id", table_name="presale_reservations")
    op.drop_table("presale_reservations")
    op.drop_index("ix_redemptions_staff_id", table_name="redemptions")
    op.drop_index("ix_redemptions_store_id", table_name="redemptions")
    op.drop_index("ix_redemptions_activity_id", table_name="redemptions")
    op.drop_table("redemptions")
    op.drop_index("ix_coupons_status_expires_at", table_name="coupons")
    op.drop_index("ix_coupons_activity_user", table_name="coupons")
    op.drop_index("ix_coupons_user_id", table_name="coupons")
    op.drop_table("coupons")
    op.drop_index("ix_group_members_user_id", table_name="group_members")
    op.drop_table("group_members")
    op.drop_index("ix_group_instances_expire_at", table_name="group_instances")
    op.drop_index("ix_group_instances_activity_id", table_name="group_instances")
    op.drop_table("group_instances")
    op.drop_table("presale_configs")
    op.drop_table("group_configs")
    op.drop_table("activity_stores")
    op.drop_table("activities")
    op.drop_index("ix_store_staff_user_id", table_name="store_staff")
    op.drop_index("ix_store_staff_store_id", table_name="store_staff")
    op.drop_table("store_staff")
    op.drop_index("ix_stores_city_id", table_name="stores")
    op.drop_table("stores")
    op.drop_index("ix_users_line_user_id", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in ENUMS:
        enum.drop(bind, checkfirst=True)
