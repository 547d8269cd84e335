"""
booking_core/errors.py

类型化错误定义

所有错误都携带足够的上下文（实体ID、当前状态、尝试的操作），
调用方可以据此渲染精确的提示信息。
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """错误分类"""
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_BOOKING_STATE = "invalid_booking_state"
    ROOM_UNAVAILABLE = "room_unavailable"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    INVALID_REFUND_AMOUNT = "invalid_refund_amount"
    CONCURRENCY_CONFLICT = "concurrency_conflict"


class BookingError(Exception):
    """
    预订核心错误基类

    Attributes:
        code: 错误分类（ErrorCode）
        message: 可读的错误信息
        context: 上下文（实体ID、状态、操作等）
    """

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典，用于 JSON 序列化"""
        return {
            "error": self.code.value,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class ValidationError(BookingError):
    """输入不合法：晚数非正、人数超过容量等"""
    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(BookingError):
    """实体不存在（或已停用）"""
    code = ErrorCode.NOT_FOUND

    def __init__(self, entity_type: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{entity_type} {entity_id} 不存在",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidTransitionError(BookingError):
    """非法状态转换"""
    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, entity_type: str, entity_id: Any, current_state: str,
                 trigger: str, message: Optional[str] = None, reason: Optional[str] = None):
        context = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "current_state": current_state,
            "attempted": trigger,
        }
        if reason:
            context["reason"] = reason  # 守卫条件未满足（如付款不足）
        super().__init__(
            message or f"{entity_type} {entity_id} 当前状态为 {current_state}，不允许执行 {trigger}",
            context,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.trigger = trigger
        self.reason = reason


class InvalidBookingStateError(BookingError):
    """预订状态不允许该操作（非状态转换类操作，如分配房间）"""
    code = ErrorCode.INVALID_BOOKING_STATE

    def __init__(self, booking_id: Any, current_state: str, operation: str):
        super().__init__(
            f"预订 {booking_id} 状态为 {current_state}，无法执行 {operation}",
            {"booking_id": booking_id, "current_state": current_state, "operation": operation},
        )
        self.booking_id = booking_id
        self.current_state = current_state
        self.operation = operation


class RoomUnavailableError(BookingError):
    """房间在请求的日期范围内不可用"""
    code = ErrorCode.ROOM_UNAVAILABLE


class CapacityExceededError(BookingError):
    """分配的房间容量不足"""
    code = ErrorCode.CAPACITY_EXCEEDED


class InvalidRefundAmountError(BookingError):
    """退款金额超过可退余额"""
    code = ErrorCode.INVALID_REFUND_AMOUNT


class ConcurrencyConflictError(BookingError):
    """并发写入冲突，调用方应重试"""
    code = ErrorCode.CONCURRENCY_CONFLICT


__all__ = [
    "ErrorCode",
    "BookingError",
    "ValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "InvalidBookingStateError",
    "RoomUnavailableError",
    "CapacityExceededError",
    "InvalidRefundAmountError",
    "ConcurrencyConflictError",
]
