"""
房间分配服务 - 本体操作层
把房型级预订绑定到具体房间

重新分配在同一事务内完成：释放旧绑定/房晚锁与写入新绑定/房晚锁一起提交，
任何一步失败整体回滚，预订不会处于重复占用或无房的中间状态。
"""
from typing import List, Optional, Callable
import logging

from sqlalchemy.orm import Session

from booking_app.models.ontology import (
    Booking, BookingRoom, Room, BookingStatus, BookingRoomStatus, RoomStatus,
)
from booking_app.models.events import EventType, RoomsAssignedData
from booking_app.services.event_bus import event_bus, Event
from booking_app.services.availability_service import AvailabilityService
from booking_app.services.room_lock_service import RoomLockService
from booking_app.services.unit_of_work import (
    Clock, system_clock, run_with_retry, commit_or_conflict,
)
from booking_core.errors import (
    NotFoundError, ValidationError, InvalidBookingStateError,
    RoomUnavailableError, CapacityExceededError,
)

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class AssignmentService:
    """房间分配服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Optional[Clock] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._clock = clock or system_clock
        self.availability = AvailabilityService(db)
        self.locks = RoomLockService(db)

    def _lock_booking(self, booking_id: int, operation: str) -> Booking:
        booking = self.db.query(Booking).filter(
            Booking.id == booking_id
        ).with_for_update().first()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        if booking.status not in ASSIGNABLE_STATUSES:
            raise InvalidBookingStateError(booking.id, booking.status.value, operation)
        return booking

    def _validate_room(self, booking: Booking, room_id: int) -> Room:
        """校验单个房间能否分配给预订"""
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if not room or not room.is_active:
            raise NotFoundError("Room", room_id)

        context = {"booking_id": booking.id, "room_id": room.id}
        if room.room_type_id != booking.room_type_id:
            raise RoomUnavailableError(
                f"房间 {room.room_number} 的房型与预订不符",
                {**context, "room_type_id": room.room_type_id,
                 "booking_room_type_id": booking.room_type_id},
            )
        if room.status == RoomStatus.OUT_OF_ORDER:
            raise RoomUnavailableError(f"房间 {room.room_number} 已停用", context)
        if booking.requires_accessible and not room.accessible:
            raise RoomUnavailableError(f"房间 {room.room_number} 不是无障碍房间", context)

        start, end = booking.check_in_date, booking.check_out_date
        conflicts = self.availability.room_conflicts(room.id, start, end, exclude_booking_id=booking.id)
        if conflicts:
            raise RoomUnavailableError(
                f"房间 {room.room_number} 在所选日期已被预订 {conflicts[0].booking_number} 占用",
                {**context, "held_by": conflicts[0].id},
            )
        if self.availability.maintenance_blocks(room.id, start, end):
            raise RoomUnavailableError(f"房间 {room.room_number} 在所选日期有维护安排", context)
        return room

    def assign(self, booking_id: int, room_ids: List[int]) -> Booking:
        """
        分配房间（再次调用即重新分配）
        业务规则：
        - 预订状态为 PENDING 或 CONFIRMED
        - 房间存在且可售、房型一致、未停用、满足无障碍要求、日期内无冲突
        - 房间总容量 >= 入住人数
        - 已确认的预订同时写入房晚锁

        Raises:
            ValidationError: 房间列表为空、重复或超过预订房间数
            NotFoundError: 预订或房间不存在
            InvalidBookingStateError: 预订状态不允许分配
            RoomUnavailableError: 房间不可用
            CapacityExceededError: 容量不足
        """
        room_ids = list(room_ids)
        if not room_ids:
            raise ValidationError("至少需要分配一个房间", {"booking_id": booking_id})
        if len(set(room_ids)) != len(room_ids):
            raise ValidationError("房间列表有重复", {"booking_id": booking_id, "room_ids": room_ids})

        def operation():
            booking = self._lock_booking(booking_id, "assign")
            if len(room_ids) > booking.room_count:
                raise ValidationError(
                    f"预订 {booking.booking_number} 只预订了 {booking.room_count} 间房",
                    {"booking_id": booking.id, "room_ids": room_ids, "room_count": booking.room_count},
                )

            rooms = [self._validate_room(booking, room_id) for room_id in room_ids]

            capacity = sum(room.max_occupancy or 0 for room in rooms)
            if capacity < booking.number_of_guests:
                raise CapacityExceededError(
                    f"所选房间容量 {capacity} 小于入住人数 {booking.number_of_guests}",
                    {"booking_id": booking.id, "room_ids": room_ids,
                     "capacity": capacity, "number_of_guests": booking.number_of_guests},
                )

            now = self._clock()
            current = {b.room_id: b for b in booking.active_bindings}
            released = [rid for rid in current if rid not in room_ids]
            added = [rid for rid in room_ids if rid not in current]

            for room_id in released:
                current[room_id].status = BookingRoomStatus.RELEASED
                current[room_id].released_at = now
            self.locks.release(booking, released)

            for room_id in added:
                booking.bindings.append(BookingRoom(
                    room_id=room_id,
                    status=BookingRoomStatus.ASSIGNED,
                    assigned_at=now,
                ))

            if booking.status == BookingStatus.CONFIRMED:
                self.locks.acquire(booking, room_ids)

            booking.updated_at = now
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "assign"})
            self.db.refresh(booking)
            return booking, released, added

        booking, released, added = run_with_retry(self.db, operation)
        logger.info(
            f"Booking {booking.booking_number} rooms assigned: released {released}, added {added}"
        )
        self._publish(booking, released, added)
        return booking

    def unassign(self, booking_id: int, room_id: int) -> Booking:
        """解除单个房间的分配（释放绑定与房晚锁）"""
        def operation():
            booking = self._lock_booking(booking_id, "unassign")
            binding = next((b for b in booking.active_bindings if b.room_id == room_id), None)
            if binding is None:
                raise NotFoundError(
                    "BookingRoom", room_id,
                    f"预订 {booking.booking_number} 没有分配房间 {room_id}",
                )
            binding.status = BookingRoomStatus.RELEASED
            binding.released_at = self._clock()
            self.locks.release(booking, [room_id])
            booking.updated_at = self._clock()
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "unassign"})
            self.db.refresh(booking)
            return booking

        booking = run_with_retry(self.db, operation)
        logger.info(f"Booking {booking.booking_number} room {room_id} unassigned")
        self._publish(booking, [room_id], [])
        return booking

    def _publish(self, booking: Booking, released: List[int], added: List[int]) -> None:
        self._publish_event(Event(
            event_type=EventType.ROOMS_ASSIGNED,
            timestamp=self._clock(),
            data=RoomsAssignedData(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                released_room_ids=list(released),
                assigned_room_ids=[b.room_id for b in booking.active_bindings],
            ).to_dict(),
            source="assignment_service"
        ))
