"""
状态与类型枚举

ORM 模型（booking_app.models.ontology）与纯计算层共用
"""
from enum import Enum


class BookingStatus(str, Enum):
    """预订状态"""
    PENDING = "pending"            # 待确认
    CONFIRMED = "confirmed"        # 已确认
    CHECKED_IN = "checked_in"      # 已入住
    CHECKED_OUT = "checked_out"    # 已退房
    CANCELLED = "cancelled"        # 已取消
    NO_SHOW = "no_show"            # 未到店


# 参与房间冲突检查的预订状态
BLOCKING_BOOKING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)

TERMINAL_BOOKING_STATUSES = (
    BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
)


class RoomStatus(str, Enum):
    """房间状态"""
    AVAILABLE = "available"        # 空闲可售
    OCCUPIED = "occupied"          # 入住中
    CLEANING = "cleaning"          # 清洁中
    MAINTENANCE = "maintenance"    # 维护中
    OUT_OF_ORDER = "out_of_order"  # 停用


class BookingRoomStatus(str, Enum):
    """房间绑定状态"""
    ASSIGNED = "assigned"
    RELEASED = "released"


class PaymentStatus(str, Enum):
    """单笔支付状态"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED_PARTIAL = "refunded_partial"
    REFUNDED_FULL = "refunded_full"


# 曾经成功入账的支付（退款后仍计入已收金额）
SETTLED_PAYMENT_STATUSES = (
    PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED_PARTIAL, PaymentStatus.REFUNDED_FULL,
)


class RefundStatus(str, Enum):
    """退款状态"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BookingPaymentStatus(str, Enum):
    """预订聚合支付状态（推导值，不作为事实存储）"""
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    FULLY_REFUNDED = "fully_refunded"


class PaymentMethod(str, Enum):
    """支付方式"""
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    QR_CODE = "qr_code"
    PROMPTPAY = "promptpay"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class DiscountType(str, Enum):
    """折扣类型"""
    FLAT = "flat"
    PERCENTAGE = "percentage"
