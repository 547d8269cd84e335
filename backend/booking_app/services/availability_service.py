"""
可用性服务 - 本体操作层
回答“某房间/某房型在某日期区间是否可售”，纯查询，不修改任何状态

规则：
- 半开区间 [check_in, check_out)：退房当天可被新入住使用
- 只有已确认/已入住的预订阻塞房间
- 未完成的阻塞类维护（默认 REPAIR / RENOVATION）在重叠日期内阻塞房间
- 停用（OUT_OF_ORDER）的房间永不可售
- 房型级：空闲房间数 - 同房型重叠阻塞预订中尚未分配房间的数量 >= 所需房间数
"""
from typing import List, Optional, Iterable, Dict, Any, Tuple
from datetime import datetime, date
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from booking_app.config import settings
from booking_app.models.ontology import (
    Room, RoomType, Booking, BookingRoom, MaintenanceLog,
    RoomStatus, BookingRoomStatus,
)
from booking_core.domain.date_range import DateLike, stay_bounds
from booking_core.domain.enums import BLOCKING_BOOKING_STATUSES
from booking_core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def normalize_stay(check_in: DateLike, check_out: DateLike) -> Tuple[datetime, datetime]:
    """
    把查询区间转换为时间戳

    纯日期按配置的入住/退房时刻展开（与预订记录的存储方式一致），
    时间戳原样使用
    """
    if isinstance(check_in, datetime) and isinstance(check_out, datetime):
        start, end = check_in, check_out
    else:
        start, end = stay_bounds(check_in, check_out,
                                 settings.CHECK_IN_HOUR, settings.CHECK_OUT_HOUR)
    if end <= start:
        raise ValidationError(
            "离店日期必须晚于入住日期",
            {"check_in": check_in, "check_out": check_out},
        )
    return start, end


class AvailabilityService:
    """可用性服务"""

    def __init__(self, db: Session, blocking_maintenance_types: Optional[Iterable[str]] = None):
        self.db = db
        types = blocking_maintenance_types
        if types is None:
            types = settings.BLOCKING_MAINTENANCE_TYPES
        self.blocking_maintenance_types = [t.upper() for t in types]

    # ============== 实体读取 ==============

    def get_room(self, room_id: int) -> Room:
        """获取可售房间（不存在或已停售时抛出 NotFoundError）"""
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if not room or not room.is_active:
            raise NotFoundError("Room", room_id)
        return room

    def get_room_type(self, room_type_id: int) -> RoomType:
        room_type = self.db.query(RoomType).filter(RoomType.id == room_type_id).first()
        if not room_type or not room_type.is_active:
            raise NotFoundError("RoomType", room_type_id)
        return room_type

    # ============== 冲突来源 ==============

    def room_conflicts(self, room_id: int, start: datetime, end: datetime,
                       exclude_booking_id: Optional[int] = None) -> List[Booking]:
        """与区间重叠、且当前绑定在该房间上的阻塞预订"""
        query = self.db.query(Booking).join(
            BookingRoom, BookingRoom.booking_id == Booking.id
        ).filter(
            BookingRoom.room_id == room_id,
            BookingRoom.status == BookingRoomStatus.ASSIGNED,
            Booking.status.in_(BLOCKING_BOOKING_STATUSES),
            Booking.check_in_date < end,
            Booking.check_out_date > start,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.all()

    def maintenance_blocks(self, room_id: int, start: datetime, end: datetime) -> List[MaintenanceLog]:
        """与区间重叠的未完成阻塞类维护（无结束时间视为持续中）"""
        if not self.blocking_maintenance_types:
            return []
        return self.db.query(MaintenanceLog).filter(
            MaintenanceLog.room_id == room_id,
            MaintenanceLog.is_completed.is_(False),
            func.upper(MaintenanceLog.type).in_(self.blocking_maintenance_types),
            MaintenanceLog.start_time < end,
            (MaintenanceLog.end_time.is_(None)) | (MaintenanceLog.end_time > start),
        ).all()

    def is_room_free(self, room: Room, start: datetime, end: datetime,
                     exclude_booking_id: Optional[int] = None) -> bool:
        """单个房间在区间内是否空闲（不检查房型）"""
        if room.status == RoomStatus.OUT_OF_ORDER:
            return False
        if self.room_conflicts(room.id, start, end, exclude_booking_id):
            return False
        if self.maintenance_blocks(room.id, start, end):
            return False
        return True

    def unassigned_demand(self, room_type_id: int, start: datetime, end: datetime,
                          exclude_booking_id: Optional[int] = None) -> int:
        """同房型重叠阻塞预订中尚未绑定具体房间的房间数"""
        query = self.db.query(Booking).filter(
            Booking.room_type_id == room_type_id,
            Booking.status.in_(BLOCKING_BOOKING_STATUSES),
            Booking.check_in_date < end,
            Booking.check_out_date > start,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)

        demand = 0
        for booking in query.all():
            demand += max(booking.room_count - len(booking.active_bindings), 0)
        return demand

    # ============== 对外查询 ==============

    def available_rooms(self, room_type_id: int, check_in: DateLike, check_out: DateLike,
                        exclude_booking_id: Optional[int] = None,
                        requires_accessible: bool = False) -> List[Room]:
        """列出房型下区间内空闲的具体房间"""
        self.get_room_type(room_type_id)
        start, end = normalize_stay(check_in, check_out)

        query = self.db.query(Room).filter(
            Room.room_type_id == room_type_id,
            Room.is_active.is_(True),
        )
        if requires_accessible:
            query = query.filter(Room.accessible.is_(True))

        return [
            room for room in query.order_by(Room.room_number).all()
            if self.is_room_free(room, start, end, exclude_booking_id)
        ]

    def is_available(self, room_id: Optional[int] = None, room_type_id: Optional[int] = None,
                     check_in: DateLike = None, check_out: DateLike = None,
                     exclude_booking_id: Optional[int] = None, room_count: int = 1) -> bool:
        """
        可用性查询

        Args:
            room_id: 具体房间（与 room_type_id 二选一）
            room_type_id: 房型
            check_in: 入住日期（或时间戳）
            check_out: 离店日期（或时间戳）
            exclude_booking_id: 从冲突集合中排除的预订（重新分配时排除自身）
            room_count: 房型级查询所需房间数

        Raises:
            NotFoundError: 房间或房型不存在/已停售
            ValidationError: 日期区间为空
        """
        if (room_id is None) == (room_type_id is None):
            raise ValidationError("room_id 与 room_type_id 必须且只能提供一个")
        if check_in is None or check_out is None:
            raise ValidationError("必须提供入住和离店日期")

        if room_id is not None:
            room = self.get_room(room_id)
            start, end = normalize_stay(check_in, check_out)
            return self.is_room_free(room, start, end, exclude_booking_id)

        if room_count <= 0:
            raise ValidationError("房间数必须大于 0", {"room_count": room_count})
        free = self.available_rooms(room_type_id, check_in, check_out, exclude_booking_id)
        start, end = normalize_stay(check_in, check_out)
        demand = self.unassigned_demand(room_type_id, start, end, exclude_booking_id)
        return len(free) - demand >= room_count

    def room_type_availability(self, check_in: DateLike, check_out: DateLike) -> List[Dict[str, Any]]:
        """所有可售房型在区间内的库存汇总"""
        start, end = normalize_stay(check_in, check_out)
        result = []

        room_types = self.db.query(RoomType).filter(
            RoomType.is_active.is_(True)
        ).order_by(RoomType.id).all()

        for room_type in room_types:
            rooms = self.db.query(Room).filter(
                Room.room_type_id == room_type.id,
                Room.is_active.is_(True),
            ).all()
            total = len(rooms)
            free = sum(1 for room in rooms if self.is_room_free(room, start, end))
            demand = self.unassigned_demand(room_type.id, start, end)
            available = max(free - demand, 0)

            result.append({
                "room_type_id": room_type.id,
                "code": room_type.code,
                "name": room_type.name or {},
                "base_price": room_type.base_price,
                "total_rooms": total,
                "available_rooms": available,
                "occupied_rooms": total - available,
                "availability_percentage": round(available / total * 100, 1) if total else 0.0,
            })

        logger.debug(f"Room type availability computed for {start} - {end}")
        return result
