"""
价格服务 - 本体操作层
根据房间/房型的基础价格与季节系数生成报价（PriceBreakdown）

报价是确定性的：相同输入和相同配置得到相同结果。
预订创建时把报价冻结到预订记录，之后房价或税率变化不影响已有预订。
"""
from typing import Optional
import logging

from sqlalchemy.orm import Session

from booking_app.config import settings
from booking_app.models.ontology import Room, RoomType
from booking_core.domain.date_range import DateLike
from booking_core.domain.pricing import (
    DiscountPolicy, PricingConfig, PriceBreakdown, compute_breakdown,
)
from booking_core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class PriceService:
    """价格服务"""

    def __init__(self, db: Session, config: Optional[PricingConfig] = None):
        self.db = db
        self.config = config

    def _config_for(self, config: Optional[PricingConfig]) -> PricingConfig:
        return config or self.config or settings.pricing_config()

    def quote(self, room_id: Optional[int] = None, room_type_id: Optional[int] = None,
              check_in: DateLike = None, check_out: DateLike = None,
              number_of_guests: int = 1, room_count: int = 1,
              discount: Optional[DiscountPolicy] = None,
              config: Optional[PricingConfig] = None) -> PriceBreakdown:
        """
        报价

        指定房间时使用房间自身的基础价格和季节系数表（房间未配置季节系数时沿用房型的），
        指定房型时使用房型的价格

        Raises:
            NotFoundError: 房间/房型不存在或已停售
            ValidationError: 晚数不为正、人数不为正或超过所报房间的容量
        """
        if (room_id is None) == (room_type_id is None):
            raise ValidationError("room_id 与 room_type_id 必须且只能提供一个")
        if check_in is None or check_out is None:
            raise ValidationError("必须提供入住和离店日期")
        if number_of_guests <= 0:
            raise ValidationError("入住人数必须大于 0", {"number_of_guests": number_of_guests})

        if room_id is not None:
            room = self.db.query(Room).filter(Room.id == room_id).first()
            if not room or not room.is_active:
                raise NotFoundError("Room", room_id)
            base_price = room.base_price
            seasonal_pricing = room.seasonal_pricing
            if seasonal_pricing is None and room.room_type is not None:
                seasonal_pricing = room.room_type.seasonal_pricing
            per_room_capacity = room.max_occupancy
            target = f"room {room.room_number}"
        else:
            room_type = self.db.query(RoomType).filter(RoomType.id == room_type_id).first()
            if not room_type or not room_type.is_active:
                raise NotFoundError("RoomType", room_type_id)
            base_price = room_type.base_price
            seasonal_pricing = room_type.seasonal_pricing
            per_room_capacity = room_type.max_occupancy
            target = f"room type {room_type.code}"

        capacity = (per_room_capacity or 0) * room_count
        if number_of_guests > capacity:
            raise ValidationError(
                f"入住人数 {number_of_guests} 超过容量 {capacity}",
                {"number_of_guests": number_of_guests, "capacity": capacity,
                 "room_id": room_id, "room_type_id": room_type_id},
            )

        breakdown = compute_breakdown(
            base_price=base_price,
            check_in=check_in,
            check_out=check_out,
            config=self._config_for(config),
            seasonal_pricing=seasonal_pricing,
            room_count=room_count,
            discount=discount,
        )
        logger.debug(
            f"Quoted {target}: {breakdown.nights} nights x {room_count} rooms, "
            f"net {breakdown.net_amount} {breakdown.currency}"
        )
        return breakdown
