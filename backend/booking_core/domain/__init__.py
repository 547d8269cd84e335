"""
booking_core/domain/__init__.py

领域层入口点：枚举与纯计算函数
"""
from booking_core.domain.enums import (
    BookingStatus,
    BLOCKING_BOOKING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    RoomStatus,
    BookingRoomStatus,
    PaymentStatus,
    SETTLED_PAYMENT_STATUSES,
    RefundStatus,
    BookingPaymentStatus,
    PaymentMethod,
    DiscountType,
)
from booking_core.domain.date_range import overlaps, nights_between, stay_nights, stay_bounds
from booking_core.domain.pricing import (
    DiscountPolicy,
    SeasonWindow,
    PricingConfig,
    PriceBreakdown,
    compute_breakdown,
    quantize_money,
)
from booking_core.domain.payment_status import (
    PaymentLedgerEntry,
    PaymentTotals,
    summarize_payments,
    derive_payment_status,
)
from booking_core.domain.policies import ConfirmationPolicy, CancellationPolicy

__all__ = [
    "BookingStatus",
    "BLOCKING_BOOKING_STATUSES",
    "TERMINAL_BOOKING_STATUSES",
    "RoomStatus",
    "BookingRoomStatus",
    "PaymentStatus",
    "SETTLED_PAYMENT_STATUSES",
    "RefundStatus",
    "BookingPaymentStatus",
    "PaymentMethod",
    "DiscountType",
    "overlaps",
    "nights_between",
    "stay_nights",
    "stay_bounds",
    "DiscountPolicy",
    "SeasonWindow",
    "PricingConfig",
    "PriceBreakdown",
    "compute_breakdown",
    "quantize_money",
    "PaymentLedgerEntry",
    "PaymentTotals",
    "summarize_payments",
    "derive_payment_status",
    "ConfirmationPolicy",
    "CancellationPolicy",
]
