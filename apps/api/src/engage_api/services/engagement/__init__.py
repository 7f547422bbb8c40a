"""Activity engagement and redemption services."""

from .codes import CODE_ALPHABET, allocate_code, generate_code, normalize_code
from .coupon_ledger import CouponLedger, is_coupon_overdue
from .group_buy import GroupBuyCoordinator, GroupInstanceView, JoinResult, build_view, derive_status
from .identity import IdentityService
from .presale import PresaleReservationGuard
from .redemption import RedemptionAuthority, RedemptionFilters, RedemptionPreview
from .reporting import RedemptionStats, ReportingService
from .store_mapping import StoreMappingService

__all__ = [
    "CODE_ALPHABET",
    "CouponLedger",
    "GroupBuyCoordinator",
    "GroupInstanceView",
    "IdentityService",
    "JoinResult",
    "PresaleReservationGuard",
    "RedemptionAuthority",
    "RedemptionFilters",
    "RedemptionPreview",
    "RedemptionStats",
    "ReportingService",
    "StoreMappingService",
    "allocate_code",
    "build_view",
    "derive_status",
    "generate_code",
    "is_coupon_overdue",
    "normalize_code",
]
