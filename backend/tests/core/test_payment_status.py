"""
Tests for booking_core/domain/payment_status.py and policies.py
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from booking_core.domain.enums import BookingPaymentStatus, PaymentStatus, RefundStatus
from booking_core.domain.payment_status import (
    LedgerMovement, PaymentLedgerEntry, summarize_payments, derive_payment_status,
    payment_status_after_refunds, peak_net_paid,
)
from booking_core.domain.policies import CancellationPolicy, ConfirmationPolicy
from booking_core.errors import ValidationError

NET = Decimal("3360.00")


def _paid(amount, *refunds, status=PaymentStatus.SUCCEEDED):
    return PaymentLedgerEntry(
        Decimal(amount), status,
        tuple((Decimal(a), s) for a, s in refunds),
    )


class TestDerivePaymentStatus:

    def test_unpaid(self):
        assert derive_payment_status(NET, []) == BookingPaymentStatus.UNPAID

    def test_partial_then_paid_then_fully_refunded(self):
        entries = [_paid("2000")]
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.PARTIALLY_PAID

        entries.append(_paid("1360"))
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.PAID

        entries[0] = _paid("2000", ("2000", RefundStatus.SUCCEEDED),
                           status=PaymentStatus.REFUNDED_FULL)
        entries[1] = _paid("1360", ("1360", RefundStatus.SUCCEEDED),
                           status=PaymentStatus.REFUNDED_FULL)
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.FULLY_REFUNDED

    def test_partial_refund(self):
        entries = [_paid("3360", ("360", RefundStatus.SUCCEEDED), status=PaymentStatus.REFUNDED_PARTIAL)]
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.PARTIALLY_REFUNDED

    def test_refund_without_prior_full_payment(self):
        entries = [_paid("2000", ("500", RefundStatus.SUCCEEDED), status=PaymentStatus.REFUNDED_PARTIAL)]
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.PARTIALLY_PAID

        entries = [_paid("2000", ("2000", RefundStatus.SUCCEEDED), status=PaymentStatus.REFUNDED_FULL)]
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.UNPAID

    def test_peak_from_time_ordered_movements(self):
        t0 = datetime(2025, 1, 10, 9, 0)
        movements = [
            LedgerMovement(t0 + timedelta(minutes=10), Decimal("1360"), kind=0, record_id=2),
            LedgerMovement(t0, Decimal("2000"), kind=0, record_id=1),
            LedgerMovement(t0 + timedelta(minutes=5), Decimal("-500"), kind=1, record_id=1),
        ]
        peak = peak_net_paid(movements)
        assert peak == Decimal("2860")

        # 总收款达到应付，但退款发生在补款之前，从未付清
        entries = [
            _paid("2000", ("500", RefundStatus.SUCCEEDED), status=PaymentStatus.REFUNDED_PARTIAL),
            _paid("1360"),
        ]
        assert derive_payment_status(NET, entries, peak_paid=peak) == BookingPaymentStatus.PARTIALLY_PAID

    def test_same_instant_payment_counts_before_refund(self):
        t0 = datetime(2025, 1, 10, 9, 0)
        movements = [
            LedgerMovement(t0, Decimal("-3360"), kind=1, record_id=1),
            LedgerMovement(t0, Decimal("3360"), kind=0, record_id=1),
        ]
        assert peak_net_paid(movements) == Decimal("3360")

    def test_overpayment_is_paid(self):
        assert derive_payment_status(NET, [_paid("4000")]) == BookingPaymentStatus.PAID

    def test_failed_and_pending_payments_do_not_count(self):
        entries = [
            _paid("3360", status=PaymentStatus.FAILED),
            _paid("3360", status=PaymentStatus.PENDING),
        ]
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.UNPAID

    def test_only_succeeded_refunds_count(self):
        entries = [_paid("3360", ("3360", RefundStatus.FAILED), ("100", RefundStatus.PENDING))]
        totals = summarize_payments(entries)
        assert totals.refunded == Decimal("0")
        assert derive_payment_status(NET, entries) == BookingPaymentStatus.PAID

    def test_pure_function(self):
        entries = (_paid("2000"),)
        assert derive_payment_status(NET, entries) == derive_payment_status(NET, entries)


class TestPaymentStatusAfterRefunds:

    def test_partial_and_full(self):
        amount = Decimal("1000")
        assert payment_status_after_refunds(amount, []) == PaymentStatus.SUCCEEDED
        assert payment_status_after_refunds(
            amount, [(Decimal("400"), RefundStatus.SUCCEEDED)]
        ) == PaymentStatus.REFUNDED_PARTIAL
        assert payment_status_after_refunds(
            amount, [(Decimal("400"), RefundStatus.SUCCEEDED), (Decimal("600"), RefundStatus.SUCCEEDED)]
        ) == PaymentStatus.REFUNDED_FULL


class TestPolicies:

    def test_cancellation_tiers(self):
        policy = CancellationPolicy.from_pairs([[1, "0.5"], [7, "1"], [0, "0"]])
        assert policy.refund_ratio(10) == Decimal("1")
        assert policy.refund_ratio(7) == Decimal("1")
        assert policy.refund_ratio(5) == Decimal("0.5")
        assert policy.refund_ratio(0) == Decimal("0")
        assert policy.refund_ratio(-2) == Decimal("0")

    def test_refund_amount_rounded(self):
        policy = CancellationPolicy.from_pairs([[0, "0.5"]])
        assert policy.refund_amount(Decimal("3360.01"), 3) == Decimal("1680.00")
        assert policy.refund_amount(Decimal("0"), 3) == Decimal("0.00")

    def test_ratio_bounds(self):
        with pytest.raises(ValidationError):
            CancellationPolicy.from_pairs([[1, "1.2"]])
        with pytest.raises(ValidationError):
            ConfirmationPolicy(deposit_ratio=Decimal("-0.1"))
