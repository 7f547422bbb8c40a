"""Typed engagement failures carrying their envelope code and HTTP status."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    AUTHORIZATION = "authorization"
    CAPACITY = "capacity"
    INFRASTRUCTURE = "infrastructure"


class EngagementError(RuntimeError):
    """Base class for rejected engagement operations."""

    code: int = 1000
    kind: ErrorKind = ErrorKind.VALIDATION
    http_status: int = 400
    message: str = "请求失败"

    def __init__(self, message: str | None = None, *, detail: Any = None) -> None:
        self.message = message or type(self).message
        self.detail = detail
        super().__init__(self.message)

    def as_payload(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.detail}


class InvalidRequest(EngagementError):
    code = 1001
    message = "请求参数不正确"


class ActivityNotFound(EngagementError):
    code = 1002
    http_status = 404
    message = "活动不存在"


class ActivityNotClaimable(EngagementError):
    code = 1003
    message = "活动未开始、已结束或未发布"


class ActivityTypeMismatch(EngagementError):
    code = 1004
    message = "该活动类型不支持此操作"


class GroupConfigMissing(EngagementError):
    code = 1005
    message = "团购配置不存在"


class GroupInstanceNotFound(EngagementError):
    code = 1006
    http_status = 404
    message = "团购不存在"


class CodeNotFound(EngagementError):
    code = 1007
    http_status = 404
    message = "券码不存在或已失效"


class RedemptionNotFound(EngagementError):
    code = 1008
    http_status = 404
    message = "核销记录不存在"


class UserNotFound(EngagementError):
    code = 1009
    http_status = 404
    message = "用户不存在"


class AllowCrossStoreViolation(EngagementError):
    code = 1010
    message = "该团购不允许跨门店参与"


class _ConflictError(EngagementError):
    kind = ErrorKind.CONFLICT
    http_status = 409


class AlreadyRedeemed(_ConflictError):
    """Lost the conditional update on a coupon another request just used."""

    code = 2001
    message = "券码已使用或已过期"


class CodeNotActive(_ConflictError):
    code = 2002
    message = "券码已使用或已过期"


class AlreadyMember(_ConflictError):
    code = 2003
    message = "您已参加该团购"


class AlreadyReserved(_ConflictError):
    code = 2004
    message = "您已预约过该活动"


class InstanceExpired(_ConflictError):
    code = 2005
    message = "团购已结束或已成团"


class _AuthorizationError(EngagementError):
    kind = ErrorKind.AUTHORIZATION
    http_status = 403


class StaffUnauthorized(_AuthorizationError):
    code = 3001
    message = "您未经品牌授权，无法核销！"


class StoreUnauthorized(_AuthorizationError):
    code = 3002
    message = "您无权在此门店进行核销操作！"


class StoreNotParticipating(_AuthorizationError):
    code = 3003
    message = "该门店不参与此活动"


class _CapacityError(EngagementError):
    kind = ErrorKind.CAPACITY
    http_status = 409


class LimitExceeded(_CapacityError):
    code = 4001
    message = "已达到每人领取上限"


class SoldOut(_CapacityError):
    code = 4002
    message = "活动库存不足"


class CodeGenerationExhausted(EngagementError):
    kind = ErrorKind.INFRASTRUCTURE
    code = 5002
    http_status = 503
    message = "券码生成失败，请稍后重试"


INFRASTRUCTURE_ERROR_CODE = 5001
INFRASTRUCTURE_ERROR_MESSAGE = "服务暂时不可用"


__all__ = [
    "ActivityNotClaimable",
    "ActivityNotFound",
    "ActivityTypeMismatch",
    "AllowCrossStoreViolation",
    "AlreadyMember",
    "AlreadyRedeemed",
    "AlreadyReserved",
    "CodeGenerationExhausted",
    "CodeNotActive",
    "CodeNotFound",
    "EngagementError",
    "ErrorKind",
    "GroupConfigMissing",
    "GroupInstanceNotFound",
    "INFRASTRUCTURE_ERROR_CODE",
    "INFRASTRUCTURE_ERROR_MESSAGE",
    "InstanceExpired",
    "InvalidRequest",
    "LimitExceeded",
    "RedemptionNotFound",
    "SoldOut",
    "StaffUnauthorized",
    "StoreNotParticipating",
    "StoreUnauthorized",
    "UserNotFound",
]
