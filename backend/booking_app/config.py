"""
应用配置
从环境变量 / .env 读取；税率、季节日历、确认与取消策略都属于外部配置
"""
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from booking_core.domain.pricing import PricingConfig, SeasonWindow
from booking_core.domain.policies import ConfirmationPolicy, CancellationPolicy


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "Hotel Booking Core"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./booking.db"

    # 入住/退房固定时刻（本地时间）
    CHECK_IN_HOUR: int = 14
    CHECK_OUT_HOUR: int = 12

    # 币种
    DEFAULT_CURRENCY: str = "THB"
    CURRENCY_MINOR_UNITS: Dict[str, int] = {"THB": 2, "USD": 2, "EUR": 2, "JPY": 0}

    # 税费配置（比例，0~1）
    CITY_TAX_RATE: Decimal = Decimal("0.01")
    VAT_RATE: Decimal = Decimal("0.07")
    SERVICE_CHARGE_RATE: Decimal = Decimal("0")
    DISCOUNT_BEFORE_TAX: bool = True

    # 季节日历：label -> [起始 MM-DD, 结束 MM-DD]，按顺序匹配
    SEASON_CALENDAR: List[List[str]] = [
        ["peak", "12-01", "02-29"],
        ["peak", "07-01", "08-31"],
        ["high", "03-01", "05-31"],
        ["high", "09-01", "11-30"],
    ]

    # 阻塞可售的维护类型
    BLOCKING_MAINTENANCE_TYPES: List[str] = ["REPAIR", "RENOVATION"]

    # 确认预订所需的已付比例（相对净额）
    CONFIRMATION_DEPOSIT_RATIO: Decimal = Decimal("0.5")
    # 办理入住所需的已付比例
    CHECK_IN_PAYMENT_RATIO: Decimal = Decimal("0")

    # 取消退款阶梯：[提前天数下限, 退款比例]，按天数从大到小匹配
    CANCELLATION_REFUND_TIERS: List[List[Decimal]] = [
        [Decimal("7"), Decimal("1")],
        [Decimal("1"), Decimal("0.5")],
        [Decimal("0"), Decimal("0")],
    ]

    # 未到店定时扫描（cron 表达式，本地时间）
    NO_SHOW_SWEEP_ENABLED: bool = False
    NO_SHOW_SWEEP_CRON: str = "5 0 * * *"

    # 并发冲突内部重试次数
    CONCURRENCY_MAX_RETRIES: int = 3

    # 网关事件是否接受测试模式（livemode=false）
    GATEWAY_ACCEPT_TEST_EVENTS: bool = True

    model_config = ConfigDict(env_file=".env", case_sensitive=True)

    def minor_units_for(self, currency: Optional[str] = None) -> int:
        return self.CURRENCY_MINOR_UNITS.get(currency or self.DEFAULT_CURRENCY, 2)

    def pricing_config(self, currency: Optional[str] = None) -> PricingConfig:
        """根据设置构造定价配置"""
        currency = currency or self.DEFAULT_CURRENCY
        return PricingConfig(
            city_tax_rate=self.CITY_TAX_RATE,
            vat_rate=self.VAT_RATE,
            service_charge_rate=self.SERVICE_CHARGE_RATE,
            discount_before_tax=self.DISCOUNT_BEFORE_TAX,
            currency=currency,
            minor_units=self.minor_units_for(currency),
            seasons=tuple(
                SeasonWindow.parse(label, start, end)
                for label, start, end in self.SEASON_CALENDAR
            ),
        )

    def confirmation_policy(self) -> ConfirmationPolicy:
        return ConfirmationPolicy(
            deposit_ratio=self.CONFIRMATION_DEPOSIT_RATIO,
            check_in_ratio=self.CHECK_IN_PAYMENT_RATIO,
        )

    def cancellation_policy(self) -> CancellationPolicy:
        return CancellationPolicy.from_pairs(self.CANCELLATION_REFUND_TIERS)


# 全局设置实例
settings = Settings()
