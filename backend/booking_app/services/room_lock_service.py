"""
房晚锁服务 - “为区间预留房间”的并发安全原语

阻塞预订每占用房间一晚写入一行 RoomNightLock，(room_id, night) 唯一。
先做冲突预检（给出可读的 RoomUnavailableError），再插入并 flush；
预检之后仍撞上唯一约束说明并发写入方先提交，转换为 ConcurrencyConflictError。
"""
from typing import List, Optional, Iterable
import logging

from sqlalchemy.orm import Session

from booking_app.models.ontology import Booking, RoomNightLock
from booking_app.services.unit_of_work import flush_or_conflict
from booking_core.domain.date_range import stay_nights
from booking_core.errors import RoomUnavailableError

logger = logging.getLogger(__name__)


class RoomLockService:
    """房晚锁服务"""

    def __init__(self, db: Session):
        self.db = db

    def held_locks(self, booking_id: int, room_id: Optional[int] = None) -> List[RoomNightLock]:
        query = self.db.query(RoomNightLock).filter(RoomNightLock.booking_id == booking_id)
        if room_id is not None:
            query = query.filter(RoomNightLock.room_id == room_id)
        return query.order_by(RoomNightLock.room_id, RoomNightLock.night).all()

    def acquire(self, booking: Booking, room_ids: Optional[Iterable[int]] = None) -> int:
        """
        为预订占用的房间写入房晚锁（已持有的晚不重复写入）

        Args:
            booking: 预订
            room_ids: 指定房间，默认为预订当前绑定的全部房间

        Returns:
            新写入的锁数量

        Raises:
            RoomUnavailableError: 某晚已被其他预订锁定
            ConcurrencyConflictError: 预检后被并发写入抢先
        """
        if room_ids is None:
            room_ids = [b.room_id for b in booking.active_bindings]
        room_ids = list(room_ids)
        nights = stay_nights(booking.check_in_date, booking.check_out_date)
        if not room_ids or not nights:
            return 0

        existing = self.db.query(RoomNightLock).filter(
            RoomNightLock.room_id.in_(room_ids),
            RoomNightLock.night.in_(nights),
        ).all()

        foreign = [lock for lock in existing if lock.booking_id != booking.id]
        if foreign:
            first = foreign[0]
            raise RoomUnavailableError(
                f"房间 {first.room_id} 在 {first.night.isoformat()} 已被预订 {first.booking_id} 占用",
                {
                    "booking_id": booking.id,
                    "room_id": first.room_id,
                    "night": first.night,
                    "held_by": first.booking_id,
                },
            )

        held = {(lock.room_id, lock.night) for lock in existing}
        created = 0
        for room_id in room_ids:
            for night in nights:
                if (room_id, night) in held:
                    continue
                self.db.add(RoomNightLock(room_id=room_id, night=night, booking_id=booking.id))
                created += 1

        flush_or_conflict(self.db, {"booking_id": booking.id, "room_ids": room_ids})
        if created:
            logger.info(f"Booking {booking.id} locked {created} room-nights on rooms {room_ids}")
        return created

    def release(self, booking: Booking, room_ids: Optional[Iterable[int]] = None) -> int:
        """释放预订持有的房晚锁（可限定房间）"""
        query = self.db.query(RoomNightLock).filter(RoomNightLock.booking_id == booking.id)
        if room_ids is not None:
            room_ids = list(room_ids)
            if not room_ids:
                return 0
            query = query.filter(RoomNightLock.room_id.in_(room_ids))

        released = query.delete(synchronize_session=False)
        if released:
            logger.info(f"Booking {booking.id} released {released} room-nights")
        return released
