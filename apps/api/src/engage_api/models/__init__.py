"""SQLAlchemy models package."""

from .user import User, UserRoleEnum  # noqa: F401
from .store import Store, StoreStaffAuthorization, StoreStatusEnum  # noqa: F401
from .activity import (  # noqa: F401
    Activity,
    ActivityStatusEnum,
    ActivityTypeEnum,
    GroupConfig,
    PresaleConfig,
    activity_stores,
)
from .group_buy import (  # noqa: F401
    GroupInstance,
    GroupInstanceStatusEnum,
    GroupMember,
    GroupMemberStatusEnum,
)
from .coupon import (  # noqa: F401
    Coupon,
    CouponStatusEnum,
    Redemption,
    RedemptionStatusEnum,
    RedemptionTypeEnum,
)
from .presale import PresaleReservation, PresaleReservationStatusEnum  # noqa: F401
from .notification import Notification, NotificationStatusEnum  # noqa: F401
