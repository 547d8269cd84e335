"""
聚合支付状态推导

聚合状态只由预订的支付与退款记录决定，是纯函数；
同一网关事件重放不会产生新记录，因此结果不变。
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from booking_core.domain.enums import (
    BookingPaymentStatus,
    PaymentStatus,
    RefundStatus,
    SETTLED_PAYMENT_STATUSES,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class PaymentLedgerEntry:
    """一笔支付及其退款（金额, 状态）"""

    amount: Decimal
    status: PaymentStatus
    refunds: Tuple[Tuple[Decimal, RefundStatus], ...] = ()


@dataclass(frozen=True)
class PaymentTotals:
    gross_paid: Decimal = ZERO
    refunded: Decimal = ZERO

    @property
    def net_paid(self) -> Decimal:
        return self.gross_paid - self.refunded


def summarize_payments(entries: Iterable[PaymentLedgerEntry]) -> PaymentTotals:
    """汇总成功入账金额与成功退款金额"""
    gross = ZERO
    refunded = ZERO
    for entry in entries:
        if entry.status not in SETTLED_PAYMENT_STATUSES:
            continue
        gross += entry.amount
        refunded += sum(
            (amount for amount, status in entry.refunds if status == RefundStatus.SUCCEEDED),
            ZERO,
        )
    return PaymentTotals(gross_paid=gross, refunded=refunded)


@dataclass(frozen=True)
class LedgerMovement:
    """一次资金变动：收款为正，退款为负；按 (at, kind, record_id) 排序"""

    at: datetime
    amount: Decimal
    kind: int = 0  # 0 收款，1 退款；同一时刻先收款后退款
    record_id: int = 0

    @property
    def sort_key(self) -> Tuple[datetime, int, int]:
        return (self.at, self.kind, self.record_id)


def peak_net_paid(movements: Iterable[LedgerMovement]) -> Decimal:
    """按时间顺序回放资金变动，返回净收款曾达到的最高值"""
    running = ZERO
    peak = ZERO
    for movement in sorted(movements, key=lambda m: m.sort_key):
        running += movement.amount
        if running > peak:
            peak = running
    return peak


def derive_payment_status(net_amount: Decimal,
                          entries: Iterable[PaymentLedgerEntry],
                          peak_paid: Optional[Decimal] = None) -> BookingPaymentStatus:
    """
    推导预订的聚合支付状态

    - 曾经付清（净收款峰值 >= 应付）且有退款：
      净收款 <= 0 -> FULLY_REFUNDED，净收款 < 应付 -> PARTIALLY_REFUNDED
    - 净收款 >= 应付 -> PAID
    - 0 < 净收款 < 应付 -> PARTIALLY_PAID
    - 否则 UNPAID

    peak_paid 由 peak_net_paid 按时间回放得到；未提供时视为所有收款都先于退款到账
    """
    totals = summarize_payments(entries)
    net_paid = totals.net_paid
    if peak_paid is None:
        peak_paid = totals.gross_paid

    if totals.refunded > 0 and peak_paid >= net_amount and peak_paid > 0:
        if net_paid <= 0:
            return BookingPaymentStatus.FULLY_REFUNDED
        if net_paid < net_amount:
            return BookingPaymentStatus.PARTIALLY_REFUNDED
    if net_paid >= net_amount and net_paid > 0:
        return BookingPaymentStatus.PAID
    if net_paid > 0:
        return BookingPaymentStatus.PARTIALLY_PAID
    return BookingPaymentStatus.UNPAID


def payment_status_after_refunds(amount: Decimal,
                                 refunds: List[Tuple[Decimal, RefundStatus]]) -> PaymentStatus:
    """根据成功退款金额得到单笔支付的状态"""
    refunded = sum((a for a, s in refunds if s == RefundStatus.SUCCEEDED), ZERO)
    if refunded <= 0:
        return PaymentStatus.SUCCEEDED
    if refunded >= amount:
        return PaymentStatus.REFUNDED_FULL
    return PaymentStatus.REFUNDED_PARTIAL
