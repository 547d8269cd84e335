"""
外部策略参数

确认所需定金比例、入住前付款比例、按提前天数的取消退款比例
都不是代码里的业务常量，由配置构造后显式传入服务。
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Sequence, Tuple

from booking_core.domain.pricing import to_decimal, quantize_money
from booking_core.errors import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")


def _check_ratio(name: str, ratio: Decimal) -> Decimal:
    if ratio < ZERO or ratio > ONE:
        raise ValidationError(f"{name} 必须在 0 到 1 之间", {name: str(ratio)})
    return ratio


@dataclass(frozen=True)
class ConfirmationPolicy:
    """
    付款门槛

    Attributes:
        deposit_ratio: 确认预订时净收款至少达到净额的比例
        check_in_ratio: 办理入住时净收款至少达到净额的比例
    """

    deposit_ratio: Decimal = ZERO
    check_in_ratio: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, "deposit_ratio",
                           _check_ratio("deposit_ratio", to_decimal(self.deposit_ratio)))
        object.__setattr__(self, "check_in_ratio",
                           _check_ratio("check_in_ratio", to_decimal(self.check_in_ratio)))


@dataclass(frozen=True)
class CancellationPolicy:
    """
    取消退款阶梯

    tiers 为 (提前天数下限, 退款比例)，按天数从大到小匹配第一个满足的阶梯；
    没有阶梯匹配（例如入住日之后才取消）时不退款。
    """

    tiers: Tuple[Tuple[int, Decimal], ...] = ()

    def __post_init__(self):
        normalized = []
        for min_days, ratio in self.tiers:
            normalized.append((int(min_days), _check_ratio("refund_ratio", to_decimal(ratio))))
        normalized.sort(key=lambda tier: tier[0], reverse=True)
        object.__setattr__(self, "tiers", tuple(normalized))

    @classmethod
    def from_pairs(cls, pairs: Iterable[Sequence[Any]]) -> "CancellationPolicy":
        return cls(tuple((int(days), to_decimal(ratio)) for days, ratio in pairs))

    def refund_ratio(self, days_before_check_in: int) -> Decimal:
        for min_days, ratio in self.tiers:
            if days_before_check_in >= min_days:
                return ratio
        return ZERO

    def refund_amount(self, net_paid: Decimal, days_before_check_in: int,
                      minor_units: int = 2) -> Decimal:
        """应退金额 = 净收款 x 退款比例（净收款不为正时为 0）"""
        if net_paid <= 0:
            return quantize_money(ZERO, minor_units)
        return quantize_money(net_paid * self.refund_ratio(days_before_check_in), minor_units)


__all__ = ["ConfirmationPolicy", "CancellationPolicy"]
