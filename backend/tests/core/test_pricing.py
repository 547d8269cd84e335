"""
Tests for booking_core/domain/pricing.py
"""
import pytest
from datetime import date, datetime
from decimal import Decimal

from booking_core.domain.pricing import (
    DiscountPolicy, SeasonWindow, PricingConfig, compute_breakdown, quantize_money,
)
from booking_core.errors import ValidationError


@pytest.fixture
def config():
    return PricingConfig(city_tax_rate=Decimal("0.05"), vat_rate=Decimal("0.07"))


class TestComputeBreakdown:

    def test_three_nights_with_city_tax_and_vat(self, config):
        """1000/晚 x 3 晚，城市税 5%，增值税 7%"""
        b = compute_breakdown(Decimal("1000"), date(2025, 1, 15), date(2025, 1, 18), config)

        assert b.nights == 3
        assert b.subtotal == Decimal("3000.00")
        assert b.city_tax == Decimal("150.00")
        assert b.vat == Decimal("210.00")
        assert b.tax_amount == Decimal("360.00")
        assert b.service_charges == Decimal("0.00")
        assert b.discount_amount == Decimal("0.00")
        assert b.net_amount == Decimal("3360.00")
        assert b.room_rate == Decimal("1000.00")
        assert b.nightly_rates == [Decimal("1000.00")] * 3

    def test_deterministic(self, config):
        args = (Decimal("1234.56"), date(2025, 3, 1), date(2025, 3, 5), config)
        assert compute_breakdown(*args) == compute_breakdown(*args)

    def test_stay_timestamps_round_nights_up(self, config):
        """14:00 入住到 12:00 退房仍按 3 晚计算"""
        b = compute_breakdown(
            1000, datetime(2025, 1, 15, 14), datetime(2025, 1, 18, 12), config,
        )
        assert b.nights == 3
        assert b.net_amount == Decimal("3360.00")

    def test_room_count_multiplies_subtotal(self, config):
        b = compute_breakdown(1000, date(2025, 1, 15), date(2025, 1, 17), config, room_count=2)
        assert b.subtotal == Decimal("4000.00")
        assert b.room_rate == Decimal("1000.00")
        assert b.net_amount == Decimal("4480.00")

    def test_seasonal_multiplier_per_night(self):
        """季节窗口内的晚按系数计价，窗口外系数为 1"""
        config = PricingConfig(seasons=(SeasonWindow.parse("peak", "12-30", "01-01"),))
        b = compute_breakdown(
            1000, date(2024, 12, 29), date(2025, 1, 2), config,
            seasonal_pricing={"peak": 1.5},
        )
        assert b.nightly_rates == [
            Decimal("1000.00"), Decimal("1500.00"), Decimal("1500.00"), Decimal("1500.00"),
        ]
        assert b.subtotal == Decimal("5500.00")
        assert b.room_rate == Decimal("1375.00")

    def test_season_label_without_multiplier_is_neutral(self):
        config = PricingConfig(seasons=(SeasonWindow.parse("high", "01-01", "12-31"),))
        b = compute_breakdown(1000, date(2025, 5, 1), date(2025, 5, 2), config,
                              seasonal_pricing={"peak": 2})
        assert b.subtotal == Decimal("1000.00")

    def test_percentage_discount_before_tax(self, config):
        b = compute_breakdown(1000, date(2025, 1, 15), date(2025, 1, 18), config,
                              discount=DiscountPolicy.percentage("0.1"))
        assert b.discount_amount == Decimal("300.00")
        assert b.city_tax == Decimal("135.00")
        assert b.vat == Decimal("189.00")
        assert b.net_amount == Decimal("3024.00")

    def test_discount_after_tax(self):
        config = PricingConfig(city_tax_rate=Decimal("0.05"), vat_rate=Decimal("0.07"),
                               discount_before_tax=False)
        b = compute_breakdown(1000, date(2025, 1, 15), date(2025, 1, 18), config,
                              discount=DiscountPolicy.flat(300))
        assert b.city_tax == Decimal("150.00")
        assert b.vat == Decimal("210.00")
        assert b.net_amount == Decimal("3060.00")

    def test_flat_discount_capped_at_subtotal(self, config):
        b = compute_breakdown(1000, date(2025, 1, 15), date(2025, 1, 16), config,
                              discount=DiscountPolicy.flat(5000))
        assert b.discount_amount == Decimal("1000.00")
        assert b.net_amount == Decimal("0.00")

    def test_service_charge(self):
        config = PricingConfig(service_charge_rate=Decimal("0.10"), vat_rate=Decimal("0.07"))
        b = compute_breakdown(1000, date(2025, 1, 15), date(2025, 1, 16), config)
        assert b.service_charges == Decimal("100.00")
        assert b.net_amount == Decimal("1170.00")

    def test_zero_decimal_currency(self):
        config = PricingConfig(vat_rate=Decimal("0.07"), currency="JPY", minor_units=0)
        b = compute_breakdown(Decimal("12345"), date(2025, 1, 15), date(2025, 1, 16), config)
        assert b.vat == Decimal("864")
        assert b.net_amount == Decimal("13209")
        assert b.currency == "JPY"

    @pytest.mark.parametrize("check_out", [date(2025, 1, 15), date(2025, 1, 14)])
    def test_non_positive_nights_rejected(self, config, check_out):
        with pytest.raises(ValidationError) as exc_info:
            compute_breakdown(1000, date(2025, 1, 15), check_out, config)
        assert exc_info.value.context["nights"] <= 0

    def test_room_count_must_be_positive(self, config):
        with pytest.raises(ValidationError):
            compute_breakdown(1000, date(2025, 1, 15), date(2025, 1, 16), config, room_count=0)


class TestMoney:

    def test_bankers_rounding(self):
        assert quantize_money(Decimal("2.345")) == Decimal("2.34")
        assert quantize_money(Decimal("2.355")) == Decimal("2.36")
        assert quantize_money(Decimal("2.5"), 0) == Decimal("2")

    def test_percentage_discount_out_of_range(self):
        with pytest.raises(ValidationError):
            DiscountPolicy.percentage("1.5")

    def test_negative_discount(self):
        with pytest.raises(ValidationError):
            DiscountPolicy.flat(-1)


class TestSeasonWindow:

    def test_wraps_year_end(self):
        window = SeasonWindow.parse("peak", "12-01", "02-29")
        assert window.contains(date(2024, 12, 25))
        assert window.contains(date(2025, 1, 15))
        assert not window.contains(date(2025, 3, 1))

    def test_first_matching_window_wins(self):
        config = PricingConfig(seasons=(
            SeasonWindow.parse("peak", "07-01", "07-31"),
            SeasonWindow.parse("high", "06-01", "09-30"),
        ))
        assert config.season_for(date(2025, 7, 10)) == "peak"
        assert config.season_for(date(2025, 8, 10)) == "high"
        assert config.season_for(date(2025, 1, 10)) is None
