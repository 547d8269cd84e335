"""
领域事件定义 (Domain Events)
预订生命周期、房间绑定、支付对账过程中发布的事件
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any, List


class EventType(str, Enum):
    """事件类型枚举"""
    # 房间相关
    ROOM_STATUS_CHANGED = "room.status_changed"

    # 预订相关
    BOOKING_CREATED = "booking.created"
    BOOKING_UPDATED = "booking.updated"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_NO_SHOW = "booking.no_show"
    ROOMS_ASSIGNED = "booking.rooms_assigned"

    # 入住相关
    GUEST_CHECKED_IN = "guest.checked_in"
    GUEST_CHECKED_OUT = "guest.checked_out"

    # 支付相关
    PAYMENT_RECEIVED = "payment.received"
    PAYMENT_FAILED = "payment.failed"
    REFUND_RECORDED = "refund.recorded"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = asdict(self)
        # 处理 datetime 序列化
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class RoomStatusChangedData(BaseEventData):
    """房间状态变更事件数据"""
    room_id: int = 0
    room_number: str = ""
    old_status: str = ""
    new_status: str = ""
    booking_id: Optional[int] = None
    reason: str = ""


@dataclass
class BookingCreatedData(BaseEventData):
    """预订创建事件数据"""
    booking_id: int = 0
    booking_number: str = ""
    guest_id: int = 0
    room_type_id: int = 0
    check_in_date: str = ""
    check_out_date: str = ""
    net_amount: str = "0"
    currency: str = ""
    created_by: Optional[int] = None


@dataclass
class BookingUpdatedData(BaseEventData):
    """预订修改事件数据（日期/人数/备注/重新报价）"""
    booking_id: int = 0
    booking_number: str = ""
    changed_fields: List[str] = field(default_factory=list)
    check_in_date: str = ""
    check_out_date: str = ""
    net_amount: str = "0"
    updated_by: Optional[int] = None


@dataclass
class BookingStatusChangedData(BaseEventData):
    """预订状态变更事件数据（确认/取消/未到）"""
    booking_id: int = 0
    booking_number: str = ""
    old_status: str = ""
    new_status: str = ""
    reason: str = ""
    refund_amount: Optional[str] = None


@dataclass
class RoomsAssignedData(BaseEventData):
    """房间分配事件数据"""
    booking_id: int = 0
    booking_number: str = ""
    released_room_ids: List[int] = field(default_factory=list)
    assigned_room_ids: List[int] = field(default_factory=list)


@dataclass
class GuestCheckedInData(BaseEventData):
    """客人入住事件数据"""
    booking_id: int = 0
    booking_number: str = ""
    guest_id: int = 0
    room_ids: List[int] = field(default_factory=list)
    check_in_time: Optional[datetime] = None


@dataclass
class GuestCheckedOutData(BaseEventData):
    """客人退房事件数据（客房部据此安排清洁）"""
    booking_id: int = 0
    booking_number: str = ""
    guest_id: int = 0
    room_ids: List[int] = field(default_factory=list)
    check_out_time: Optional[datetime] = None


@dataclass
class PaymentReceivedData(BaseEventData):
    """收款事件数据"""
    payment_id: int = 0
    booking_id: int = 0
    amount: str = "0"
    currency: str = ""
    method: str = ""
    transaction_id: Optional[str] = None
    aggregate_status: str = ""


@dataclass
class RefundRecordedData(BaseEventData):
    """退款事件数据"""
    refund_id: int = 0
    payment_id: int = 0
    booking_id: int = 0
    amount: str = "0"
    aggregate_status: str = ""
