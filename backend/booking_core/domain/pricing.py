"""
booking_core/domain/pricing.py

定价计算 - 纯函数

计算一次预订的价格明细：
- 每晚房价 = 基础价格 x 季节系数（无匹配季节时系数为 1）
- 小计 = 每晚房价之和 x 房间数
- 折扣（固定金额或比例）作为显式参数传入
- 城市税、增值税、服务费按配置比例计算
- 净额 = 小计 - 折扣 + 城市税 + 增值税 + 服务费

全部使用 Decimal；只在最终净额和每个需要持久化的字段上
按币种最小单位做银行家舍入（ROUND_HALF_EVEN）。
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, List, Mapping, Optional, Tuple

from booking_core.domain.date_range import DateLike, nights_between, stay_nights
from booking_core.domain.enums import DiscountType
from booking_core.errors import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")


def to_decimal(value: Any) -> Decimal:
    """转换为 Decimal（浮点数经字符串转换，避免二进制误差）"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_money(amount: Decimal, minor_units: int = 2) -> Decimal:
    """按币种最小单位舍入（ROUND_HALF_EVEN）"""
    return amount.quantize(ONE.scaleb(-minor_units), rounding=ROUND_HALF_EVEN)


@dataclass(frozen=True)
class DiscountPolicy:
    """
    折扣策略

    Attributes:
        discount_type: FLAT（固定金额）或 PERCENTAGE（比例，0~1）
        value: 金额或比例
    """

    discount_type: DiscountType
    value: Decimal

    def __post_init__(self):
        value = to_decimal(self.value)
        object.__setattr__(self, "value", value)
        if value < 0:
            raise ValidationError("折扣不能为负数", {"discount": str(value)})
        if self.discount_type == DiscountType.PERCENTAGE and value > ONE:
            raise ValidationError("折扣比例必须在 0 到 1 之间", {"discount": str(value)})

    @classmethod
    def flat(cls, amount: Any) -> "DiscountPolicy":
        return cls(DiscountType.FLAT, to_decimal(amount))

    @classmethod
    def percentage(cls, ratio: Any) -> "DiscountPolicy":
        return cls(DiscountType.PERCENTAGE, to_decimal(ratio))

    def amount_for(self, subtotal: Decimal) -> Decimal:
        """计算折扣金额（不超过小计）"""
        if self.discount_type == DiscountType.PERCENTAGE:
            return subtotal * self.value
        return min(self.value, subtotal)


@dataclass(frozen=True)
class SeasonWindow:
    """
    季节窗口：每年 start(月, 日) 到 end(月, 日)，含首尾

    start 晚于 end 时表示跨年（如 12-01 到 02-28）
    """

    label: str
    start: Tuple[int, int]
    end: Tuple[int, int]

    def contains(self, day: date) -> bool:
        key = (day.month, day.day)
        if self.start <= self.end:
            return self.start <= key <= self.end
        return key >= self.start or key <= self.end

    @classmethod
    def parse(cls, label: str, start: str, end: str) -> "SeasonWindow":
        """从 'MM-DD' 字符串构造"""
        sm, sd = (int(p) for p in start.split("-"))
        em, ed = (int(p) for p in end.split("-"))
        return cls(label, (sm, sd), (em, ed))


@dataclass(frozen=True)
class PricingConfig:
    """
    定价配置（税率、服务费率等均为外部配置，不在代码中写死）

    Attributes:
        city_tax_rate: 城市税率（0~1）
        vat_rate: 增值税率（0~1）
        service_charge_rate: 服务费率（0~1）
        discount_before_tax: 折扣是否在计税前扣除
        currency: 币种
        minor_units: 币种最小单位位数
        seasons: 季节日历，第一个匹配的窗口生效
    """

    city_tax_rate: Decimal = ZERO
    vat_rate: Decimal = ZERO
    service_charge_rate: Decimal = ZERO
    discount_before_tax: bool = True
    currency: str = "THB"
    minor_units: int = 2
    seasons: Tuple[SeasonWindow, ...] = ()

    def __post_init__(self):
        for name in ("city_tax_rate", "vat_rate", "service_charge_rate"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

    def season_for(self, day: date) -> Optional[str]:
        for window in self.seasons:
            if window.contains(day):
                return window.label
        return None


@dataclass(frozen=True)
class PriceBreakdown:
    """价格明细（创建预订时冻结到预订记录上）"""

    room_rate: Decimal
    nights: int
    room_count: int
    nightly_rates: List[Decimal] = field(default_factory=list)
    subtotal: Decimal = ZERO
    city_tax: Decimal = ZERO
    vat: Decimal = ZERO
    service_charges: Decimal = ZERO
    discount_amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    currency: str = "THB"

    @property
    def tax_amount(self) -> Decimal:
        return self.city_tax + self.vat

    def to_dict(self) -> Dict[str, Any]:
        return {
            "room_rate": self.room_rate,
            "nights": self.nights,
            "room_count": self.room_count,
            "nightly_rates": list(self.nightly_rates),
            "subtotal": self.subtotal,
            "city_tax": self.city_tax,
            "vat": self.vat,
            "service_charges": self.service_charges,
            "discount_amount": self.discount_amount,
            "net_amount": self.net_amount,
            "currency": self.currency,
        }


def seasonal_multiplier(seasonal_pricing: Optional[Mapping[str, Any]], day: date,
                        config: PricingConfig) -> Decimal:
    """某日的季节系数，无匹配时为 1"""
    if not seasonal_pricing:
        return ONE
    label = config.season_for(day)
    if label is None or label not in seasonal_pricing:
        return ONE
    return to_decimal(seasonal_pricing[label])


def compute_breakdown(
    base_price: Any,
    check_in: DateLike,
    check_out: DateLike,
    config: PricingConfig,
    seasonal_pricing: Optional[Mapping[str, Any]] = None,
    room_count: int = 1,
    discount: Optional[DiscountPolicy] = None,
) -> PriceBreakdown:
    """
    计算价格明细

    Args:
        base_price: 基础每晚价格
        check_in: 入住日期/时间
        check_out: 离店日期/时间
        config: 定价配置
        seasonal_pricing: 季节系数表 {"peak": 1.5}
        room_count: 房间数
        discount: 折扣策略

    Returns:
        PriceBreakdown

    Raises:
        ValidationError: 晚数不为正或房间数不为正
    """
    nights = nights_between(check_in, check_out)
    if nights <= 0:
        raise ValidationError(
            "离店日期必须晚于入住日期",
            {"check_in": check_in, "check_out": check_out, "nights": nights},
        )
    if room_count <= 0:
        raise ValidationError("房间数必须大于 0", {"room_count": room_count})

    base = to_decimal(base_price)
    nightly = [base * seasonal_multiplier(seasonal_pricing, day, config)
               for day in stay_nights(check_in, check_out)]

    per_room = sum(nightly, ZERO)
    subtotal = per_room * room_count
    discount_amount = discount.amount_for(subtotal) if discount else ZERO
    taxable = subtotal - discount_amount if config.discount_before_tax else subtotal

    city_tax = taxable * config.city_tax_rate
    vat = taxable * config.vat_rate
    service_charges = taxable * config.service_charge_rate
    net_amount = subtotal - discount_amount + city_tax + vat + service_charges

    q = config.minor_units
    return PriceBreakdown(
        room_rate=quantize_money(per_room / nights, q),
        nights=nights,
        room_count=room_count,
        nightly_rates=[quantize_money(rate, q) for rate in nightly],
        subtotal=quantize_money(subtotal, q),
        city_tax=quantize_money(city_tax, q),
        vat=quantize_money(vat, q),
        service_charges=quantize_money(service_charges, q),
        discount_amount=quantize_money(discount_amount, q),
        net_amount=quantize_money(net_amount, q),
        currency=config.currency,
    )
