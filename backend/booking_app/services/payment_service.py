"""
支付服务 - 本体操作层
管理 Payment / Refund 对象，并对账得到预订的聚合支付状态

- 聚合状态不存储，每次都从已存储的支付/退款记录推导
- 网关事件按 (transaction_id, event_type) 去重：重放只生效一次
- 同一预订的支付/退款写入通过预订行排他锁串行化
"""
from typing import List, Optional, Callable, Dict, Any
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from booking_app.config import settings
from booking_app.models.ontology import (
    Booking, Payment, Refund, GatewayEventRecord,
    PaymentStatus, RefundStatus, PaymentMethod, BookingPaymentStatus,
)
from booking_app.models.schemas import GatewayEvent, GatewayEventResult
from booking_app.models.events import EventType, PaymentReceivedData, RefundRecordedData
from booking_app.services.event_bus import event_bus, Event
from booking_app.services.unit_of_work import (
    Clock, system_clock, run_with_retry, flush_or_conflict, commit_or_conflict,
)
from booking_core.domain.enums import SETTLED_PAYMENT_STATUSES
from booking_core.domain.payment_status import (
    LedgerMovement, PaymentLedgerEntry, PaymentTotals, summarize_payments,
    derive_payment_status, payment_status_after_refunds, peak_net_paid,
)
from booking_core.domain.policies import CancellationPolicy
from booking_core.domain.pricing import to_decimal, quantize_money
from booking_core.errors import (
    NotFoundError, ValidationError, InvalidRefundAmountError,
)

logger = logging.getLogger(__name__)

# 网关事件类型
GATEWAY_SUCCESS_EVENTS = ("payment_intent.succeeded",)
GATEWAY_FAILURE_EVENTS = ("payment_intent.payment_failed", "payment_intent.canceled")
GATEWAY_REFUND_EVENTS = ("charge.refunded",)

# 网关支付方式 -> 本地支付方式
GATEWAY_METHODS = {
    "card": PaymentMethod.CREDIT_CARD,
    "promptpay": PaymentMethod.PROMPTPAY,
}

MANUAL_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.SUCCEEDED, PaymentStatus.FAILED)


class PaymentService:
    """支付服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Optional[Clock] = None):
        self.db = db
        # 支持依赖注入事件发布器，便于测试
        self._publish_event = event_publisher or event_bus.publish
        self._clock = clock or system_clock

    # ============== 查询 ==============

    def get_payment(self, payment_id: int) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def get_payment_by_transaction(self, transaction_id: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.transaction_id == transaction_id).first()

    def get_booking_payments(self, booking_id: int) -> List[Payment]:
        return self.db.query(Payment).filter(
            Payment.booking_id == booking_id
        ).order_by(Payment.id).all()

    def _lock_booking(self, booking_id: int) -> Booking:
        """读取并锁定预订行（同一预订的支付写入串行执行）"""
        booking = self.db.query(Booking).filter(
            Booking.id == booking_id
        ).with_for_update().first()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return booking

    # ============== 对账 ==============

    @staticmethod
    def ledger_entries(booking: Booking) -> List[PaymentLedgerEntry]:
        return [
            PaymentLedgerEntry(
                amount=payment.amount,
                status=payment.status,
                refunds=tuple((r.amount, r.status) for r in payment.refunds),
            )
            for payment in booking.payments
        ]

    @staticmethod
    def ledger_movements(booking: Booking) -> List[LedgerMovement]:
        """已入账收款与成功退款的时间线"""
        movements = []
        for payment in booking.payments:
            if payment.status not in SETTLED_PAYMENT_STATUSES:
                continue
            movements.append(LedgerMovement(
                at=payment.paid_at or payment.created_at, amount=payment.amount,
                kind=0, record_id=payment.id,
            ))
            for refund in payment.refunds:
                if refund.status == RefundStatus.SUCCEEDED:
                    movements.append(LedgerMovement(
                        at=refund.processed_at or refund.created_at, amount=-refund.amount,
                        kind=1, record_id=refund.id,
                    ))
        return movements

    def payment_totals(self, booking: Booking) -> PaymentTotals:
        return summarize_payments(self.ledger_entries(booking))

    def status_for(self, booking: Booking) -> BookingPaymentStatus:
        """根据预订当前的支付/退款记录推导聚合状态"""
        return derive_payment_status(
            booking.net_amount,
            self.ledger_entries(booking),
            peak_paid=peak_net_paid(self.ledger_movements(booking)),
        )

    def aggregate_payment_status(self, booking_id: int) -> BookingPaymentStatus:
        """预订的聚合支付状态（从存储重新推导）"""
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return self.status_for(booking)

    def is_sufficient(self, booking: Booking, ratio: Decimal) -> bool:
        """净收款是否达到 净额 x ratio"""
        ratio = to_decimal(ratio)
        if ratio <= 0:
            return True
        required = quantize_money(booking.net_amount * ratio, settings.minor_units_for(booking.currency))
        return self.payment_totals(booking).net_paid >= required

    def evaluate_cancellation_refund(self, booking: Booking, now: datetime,
                                     policy: CancellationPolicy) -> Decimal:
        """
        按取消提前天数评估应退金额

        只评估不入账：实际退款仍通过 record_refund 逐笔记录
        """
        days_before = (booking.check_in_date.date() - now.date()).days
        net_paid = self.payment_totals(booking).net_paid
        amount = policy.refund_amount(net_paid, days_before, settings.minor_units_for(booking.currency))
        logger.info(
            f"Cancellation refund for booking {booking.id}: {amount} "
            f"({days_before} days before check-in, net paid {net_paid})"
        )
        return amount

    def get_payment_summary(self, booking_id: int) -> Dict[str, Any]:
        """获取预订的支付汇总"""
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        totals = self.payment_totals(booking)
        balance = booking.net_amount - totals.net_paid
        return {
            "booking_id": booking.id,
            "net_amount": booking.net_amount,
            "gross_paid": totals.gross_paid,
            "refunded": totals.refunded,
            "net_paid": totals.net_paid,
            "balance_due": balance if balance > 0 else Decimal("0"),
            "status": self.status_for(booking),
        }

    # ============== 收款 ==============

    def record_payment(self, booking_id: int, amount: Any, method: PaymentMethod,
                       gateway_ref: Optional[str] = None, currency: Optional[str] = None,
                       status: PaymentStatus = PaymentStatus.SUCCEEDED,
                       description: Optional[str] = None) -> Payment:
        """
        记录一笔支付

        gateway_ref 作为交易号：已存在同交易号的支付时原样返回，不重复入账

        Raises:
            NotFoundError: 预订不存在
            ValidationError: 金额不为正、币种与预订不一致或状态不合法
        """
        def operation() -> Payment:
            if gateway_ref:
                existing = self.get_payment_by_transaction(gateway_ref)
                if existing and existing.booking_id != booking_id:
                    raise ValidationError(
                        f"交易号 {gateway_ref} 已用于预订 {existing.booking_id} 的支付",
                        {"booking_id": booking_id, "transaction_id": gateway_ref,
                         "payment_id": existing.id, "owner_booking_id": existing.booking_id},
                    )
                if existing:
                    logger.info(f"Payment replay ignored for transaction {gateway_ref}")
                    return existing

            booking = self._lock_booking(booking_id)
            payment = self._post_payment(
                booking, amount, method, gateway_ref, currency, status, description,
            )
            commit_or_conflict(self.db, {"booking_id": booking_id, "transaction_id": gateway_ref})
            self.db.refresh(payment)
            self._publish_payment(payment, booking)
            return payment

        return run_with_retry(self.db, operation)

    def _post_payment(self, booking: Booking, amount: Any, method: PaymentMethod,
                      transaction_id: Optional[str], currency: Optional[str],
                      status: PaymentStatus, description: Optional[str] = None,
                      gateway_response: Optional[Dict[str, Any]] = None) -> Payment:
        """在当前事务内写入支付记录（不提交）"""
        if status not in MANUAL_PAYMENT_STATUSES:
            raise ValidationError(f"不能直接记录状态为 {status.value} 的支付", {"status": status})

        currency = (currency or booking.currency).upper()
        if currency != booking.currency:
            raise ValidationError(
                f"支付币种 {currency} 与预订币种 {booking.currency} 不一致",
                {"booking_id": booking.id, "currency": currency},
            )

        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("支付金额必须大于 0", {"booking_id": booking.id, "amount": amount})
        amount = quantize_money(amount, settings.minor_units_for(currency))

        now = self._clock()
        payment = Payment(
            amount=amount,
            currency=currency,
            payment_method=method,
            status=status,
            transaction_id=transaction_id,
            gateway_response=gateway_response,
            paid_at=now if status == PaymentStatus.SUCCEEDED else None,
            description=description,
            created_at=now,
        )
        booking.payments.append(payment)
        flush_or_conflict(self.db, {"booking_id": booking.id, "transaction_id": transaction_id})

        logger.info(
            f"Payment {payment.id} recorded for booking {booking.id}: "
            f"{amount} {currency} via {method.value} ({status.value})"
        )
        return payment

    def _publish_payment(self, payment: Payment, booking: Booking) -> None:
        event_type = (EventType.PAYMENT_FAILED if payment.status == PaymentStatus.FAILED
                      else EventType.PAYMENT_RECEIVED)
        self._publish_event(Event(
            event_type=event_type,
            timestamp=self._clock(),
            data=PaymentReceivedData(
                payment_id=payment.id,
                booking_id=booking.id,
                amount=str(payment.amount),
                currency=payment.currency,
                method=payment.payment_method.value,
                transaction_id=payment.transaction_id,
                aggregate_status=self.status_for(booking).value,
            ).to_dict(),
            source="payment_service"
        ))

    # ============== 退款 ==============

    def record_refund(self, payment_id: int, amount: Any, reason: Optional[str] = None) -> Refund:
        """
        记录一笔退款

        Raises:
            NotFoundError: 支付不存在
            ValidationError: 退款金额不为正
            InvalidRefundAmountError: 超过可退余额（不会被截断）或支付未成功入账
        """
        def operation() -> Refund:
            payment = self.get_payment(payment_id)
            if not payment:
                raise NotFoundError("Payment", payment_id)
            booking = self._lock_booking(payment.booking_id)
            refund = self._post_refund(payment, amount, reason)
            commit_or_conflict(self.db, {"payment_id": payment_id})
            self.db.refresh(refund)
            self._publish_refund(refund, payment, booking)
            return refund

        return run_with_retry(self.db, operation)

    def _post_refund(self, payment: Payment, amount: Any, reason: Optional[str],
                     gateway_refund_id: Optional[str] = None) -> Refund:
        """在当前事务内写入退款记录（不提交）"""
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("退款金额必须大于 0", {"payment_id": payment.id, "amount": amount})
        amount = quantize_money(amount, settings.minor_units_for(payment.currency))

        if payment.status not in SETTLED_PAYMENT_STATUSES:
            raise InvalidRefundAmountError(
                f"支付 {payment.id} 状态为 {payment.status.value}，没有可退金额",
                {"payment_id": payment.id, "status": payment.status, "requested": amount},
            )

        refundable = payment.refundable_amount
        if amount > refundable:
            raise InvalidRefundAmountError(
                f"退款金额 {amount} 超过支付 {payment.id} 的可退余额 {refundable}",
                {"payment_id": payment.id, "requested": amount, "refundable": refundable},
            )

        now = self._clock()
        refund = Refund(
            amount=amount,
            status=RefundStatus.SUCCEEDED,
            reason=reason,
            gateway_refund_id=gateway_refund_id,
            created_at=now,
            processed_at=now,
        )
        payment.refunds.append(refund)
        payment.status = payment_status_after_refunds(
            payment.amount, [(r.amount, r.status) for r in payment.refunds]
        )
        self.db.flush()

        logger.info(f"Refund {refund.id} of {amount} recorded against payment {payment.id}")
        return refund

    def _publish_refund(self, refund: Refund, payment: Payment, booking: Booking) -> None:
        self._publish_event(Event(
            event_type=EventType.REFUND_RECORDED,
            timestamp=self._clock(),
            data=RefundRecordedData(
                refund_id=refund.id,
                payment_id=payment.id,
                booking_id=booking.id,
                amount=str(refund.amount),
                aggregate_status=self.status_for(booking).value,
            ).to_dict(),
            source="payment_service"
        ))

    # ============== 网关事件 ==============

    def apply_gateway_event(self, event: GatewayEvent) -> GatewayEventResult:
        """
        应用网关事件（Stripe 风格 {id, type, data: {object}, livemode}）

        - payment_intent.succeeded：支付成功（新建或更新支付记录）
        - payment_intent.payment_failed / payment_intent.canceled：支付失败
        - charge.refunded：按累计退款额与已记录退款的差额新增退款
        - 其他类型：记录日志后忽略
        - 已应用过的事件重放：不产生任何变化，返回 duplicate

        金额为币种最小单位（如 satang / cent）
        """
        if event.type not in GATEWAY_SUCCESS_EVENTS + GATEWAY_FAILURE_EVENTS + GATEWAY_REFUND_EVENTS:
            logger.warning(f"Unhandled gateway event type {event.type} ({event.id}), ignored")
            return GatewayEventResult(event_id=event.id, event_type=event.type, outcome="ignored")

        if not event.livemode and not settings.GATEWAY_ACCEPT_TEST_EVENTS:
            logger.warning(f"Test-mode gateway event {event.id} ignored")
            return GatewayEventResult(event_id=event.id, event_type=event.type, outcome="ignored")

        return run_with_retry(self.db, lambda: self._apply_gateway_event(event))

    def _apply_gateway_event(self, event: GatewayEvent) -> GatewayEventResult:
        obj = event.data.object_
        if event.type in GATEWAY_REFUND_EVENTS:
            dedup_key = f"{_require(obj, 'id', event)}#{int(obj.get('amount_refunded', 0))}"
        else:
            dedup_key = _require(obj, "id", event)

        if self._already_applied(dedup_key, event.type):
            logger.info(f"Gateway event {event.id} ({event.type}, {dedup_key}) already applied")
            payment = self.get_payment_by_transaction(_intent_id(obj, event))
            return self._result(event, "duplicate", payment)

        if event.type in GATEWAY_REFUND_EVENTS:
            payment, refund = self._apply_refund_event(event, obj)
            booking_id = payment.booking_id
        else:
            payment = self._apply_intent_event(event, obj)
            refund = None
            booking_id = payment.booking_id

        self.db.add(GatewayEventRecord(
            event_id=event.id,
            event_type=event.type,
            transaction_id=dedup_key,
            booking_id=booking_id,
            livemode=event.livemode,
            received_at=self._clock(),
        ))
        commit_or_conflict(self.db, {"event_id": event.id, "transaction_id": dedup_key})
        self.db.refresh(payment)

        booking = payment.booking
        if refund is not None:
            self._publish_refund(refund, payment, booking)
        elif event.type not in GATEWAY_REFUND_EVENTS:
            self._publish_payment(payment, booking)
        return self._result(event, "applied", payment)

    def _already_applied(self, transaction_id: str, event_type: str) -> bool:
        return self.db.query(GatewayEventRecord).filter(
            GatewayEventRecord.transaction_id == transaction_id,
            GatewayEventRecord.event_type == event_type,
        ).first() is not None

    def _apply_intent_event(self, event: GatewayEvent, obj: Dict[str, Any]) -> Payment:
        """支付意图成功/失败"""
        intent_id = _require(obj, "id", event)
        currency = str(obj.get("currency") or settings.DEFAULT_CURRENCY).upper()
        succeeded = event.type in GATEWAY_SUCCESS_EVENTS

        payment = self.get_payment_by_transaction(intent_id)
        if payment is not None:
            booking = self._lock_booking(payment.booking_id)
            if succeeded:
                if payment.status in (PaymentStatus.PENDING, PaymentStatus.FAILED):
                    payment.status = PaymentStatus.SUCCEEDED
                    payment.paid_at = self._clock()
                    payment.gateway_response = obj
                    logger.info(f"Payment {payment.id} for booking {booking.id} succeeded via gateway")
            elif payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.FAILED
                payment.gateway_response = obj
                logger.info(f"Payment {payment.id} for booking {booking.id} failed via gateway")
            elif payment.status in SETTLED_PAYMENT_STATUSES:
                logger.warning(
                    f"Gateway {event.type} for settled payment {payment.id} ignored"
                )
            self.db.flush()
            return payment

        booking_id = _booking_id(obj, event)
        booking = self._lock_booking(booking_id)
        amount_minor = obj.get("amount_received") if succeeded else None
        if not amount_minor:
            amount_minor = _require(obj, "amount", event)
        amount = _from_minor_units(amount_minor, currency)
        return self._post_payment(
            booking,
            amount,
            _gateway_method(obj),
            intent_id,
            currency,
            PaymentStatus.SUCCEEDED if succeeded else PaymentStatus.FAILED,
            description=obj.get("description"),
            gateway_response=obj,
        )

    def _apply_refund_event(self, event: GatewayEvent, obj: Dict[str, Any]):
        """charge.refunded：amount_refunded 为累计值，只入账差额"""
        intent_id = _intent_id(obj, event)
        payment = self.get_payment_by_transaction(intent_id)
        if payment is None:
            raise NotFoundError("Payment", intent_id, f"交易 {intent_id} 没有对应的支付记录")
        self._lock_booking(payment.booking_id)

        currency = str(obj.get("currency") or payment.currency).upper()
        cumulative = _from_minor_units(_require(obj, "amount_refunded", event), currency)
        already = sum(
            (r.amount for r in payment.refunds if r.status == RefundStatus.SUCCEEDED),
            Decimal("0"),
        )
        delta = cumulative - already
        if delta <= 0:
            logger.info(f"Gateway refund {event.id} adds nothing beyond recorded refunds")
            return payment, None

        refund = self._post_refund(payment, delta, "gateway refund", gateway_refund_id=obj.get("id"))
        return payment, refund

    @staticmethod
    def _result(event: GatewayEvent, outcome: str, payment: Optional[Payment]) -> GatewayEventResult:
        if payment is None:
            return GatewayEventResult(event_id=event.id, event_type=event.type, outcome=outcome)
        return GatewayEventResult(
            event_id=event.id,
            event_type=event.type,
            outcome=outcome,
            booking_id=payment.booking_id,
            payment_id=payment.id,
            aggregate_status=derive_payment_status(
                payment.booking.net_amount, PaymentService.ledger_entries(payment.booking)
            ),
        )


def _require(obj: Dict[str, Any], key: str, event: GatewayEvent) -> Any:
    value = obj.get(key)
    if value is None:
        raise ValidationError(
            f"网关事件 {event.id} 缺少字段 {key}",
            {"event_id": event.id, "event_type": event.type, "field": key},
        )
    return value


def _intent_id(obj: Dict[str, Any], event: GatewayEvent) -> str:
    """退款事件的对象是 charge，交易号取其 payment_intent"""
    if event.type in GATEWAY_REFUND_EVENTS:
        return obj.get("payment_intent") or _require(obj, "id", event)
    return _require(obj, "id", event)


def _booking_id(obj: Dict[str, Any], event: GatewayEvent) -> int:
    metadata = obj.get("metadata") or {}
    raw = metadata.get("booking_id")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(
            f"网关事件 {event.id} 的 metadata.booking_id 无效",
            {"event_id": event.id, "booking_id": raw},
        )


def _gateway_method(obj: Dict[str, Any]) -> PaymentMethod:
    types = obj.get("payment_method_types") or []
    for method_type in types:
        if method_type in GATEWAY_METHODS:
            return GATEWAY_METHODS[method_type]
    return PaymentMethod.OTHER


def _from_minor_units(amount: Any, currency: str) -> Decimal:
    return Decimal(int(amount)).scaleb(-settings.minor_units_for(currency))
