"""
预订服务 - 本体操作层
管理 Booking 对象（预订生命周期的聚合根）

生命周期：
    PENDING -> CONFIRMED -> CHECKED_IN -> CHECKED_OUT
    PENDING | CONFIRMED -> CANCELLED
    CONFIRMED -> NO_SHOW

状态只通过 booking_state_machine 变更；非法转换抛出 InvalidTransitionError 且不修改任何状态。
当前时间通过注入的 clock 读取。
"""
from typing import List, Optional, Callable, Dict, Any
from datetime import datetime, date, time, timedelta
import logging

from sqlalchemy.orm import Session

from booking_app.config import settings
from booking_app.models.ontology import (
    Booking, BookingRoom, BookingSequence, Guest,
    BookingStatus, BookingRoomStatus, RoomStatus,
)
from booking_app.models.schemas import BookingCreate, BookingUpdate
from booking_app.models.events import (
    EventType, BookingCreatedData, BookingUpdatedData, BookingStatusChangedData,
    GuestCheckedInData, GuestCheckedOutData, RoomStatusChangedData,
)
from booking_app.services.event_bus import event_bus, Event
from booking_app.services.availability_service import AvailabilityService, normalize_stay
from booking_app.services.price_service import PriceService
from booking_app.services.payment_service import PaymentService
from booking_app.services.room_lock_service import RoomLockService
from booking_app.services.unit_of_work import (
    Clock, system_clock, run_with_retry, flush_or_conflict, commit_or_conflict,
)
from booking_core.domain.policies import ConfirmationPolicy, CancellationPolicy
from booking_core.domain.pricing import PricingConfig
from booking_core.engine.state_machine import booking_state_machine, room_state_machine
from booking_core.errors import (
    NotFoundError, ValidationError, InvalidTransitionError, InvalidBookingStateError,
    RoomUnavailableError, CapacityExceededError, ConcurrencyConflictError,
)

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class BookingService:
    """预订服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Optional[Clock] = None,
                 pricing_config: Optional[PricingConfig] = None,
                 confirmation_policy: Optional[ConfirmationPolicy] = None,
                 cancellation_policy: Optional[CancellationPolicy] = None):
        self.db = db
        # 支持依赖注入事件发布器，便于测试
        self._publish_event = event_publisher or event_bus.publish
        self._clock = clock or system_clock
        self.confirmation_policy = confirmation_policy or settings.confirmation_policy()
        self.cancellation_policy = cancellation_policy or settings.cancellation_policy()

        self.availability = AvailabilityService(db)
        self.price_service = PriceService(db, pricing_config)
        self.payment_service = PaymentService(db, event_publisher, clock)
        self.locks = RoomLockService(db)

    # ============== 查询 ==============

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        """获取单个预订"""
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def get_booking_by_number(self, booking_number: str) -> Optional[Booking]:
        """根据预订号获取预订"""
        return self.db.query(Booking).filter(Booking.booking_number == booking_number).first()

    def get_bookings(self, status: Optional[BookingStatus] = None,
                     guest_id: Optional[int] = None,
                     room_type_id: Optional[int] = None,
                     check_in_date: Optional[date] = None) -> List[Booking]:
        """获取预订列表"""
        query = self.db.query(Booking)

        if status:
            query = query.filter(Booking.status == status)
        if guest_id:
            query = query.filter(Booking.guest_id == guest_id)
        if room_type_id:
            query = query.filter(Booking.room_type_id == room_type_id)
        if check_in_date:
            start = datetime.combine(check_in_date, time.min)
            query = query.filter(
                Booking.check_in_date >= start,
                Booking.check_in_date < start + timedelta(days=1),
            )

        return query.order_by(Booking.check_in_date.desc(), Booking.id.desc()).all()

    def get_today_arrivals(self) -> List[Booking]:
        """获取今日预抵（已确认）"""
        return self.get_bookings(status=BookingStatus.CONFIRMED, check_in_date=self._clock().date())

    def get_today_departures(self) -> List[Booking]:
        """获取今日预离（在住）"""
        start = datetime.combine(self._clock().date(), time.min)
        return self.db.query(Booking).filter(
            Booking.status == BookingStatus.CHECKED_IN,
            Booking.check_out_date >= start,
            Booking.check_out_date < start + timedelta(days=1),
        ).order_by(Booking.id).all()

    def get_booking_detail(self, booking_id: int) -> Optional[Dict[str, Any]]:
        """获取预订详情（含聚合支付状态与当前分配的房间）"""
        booking = self.get_booking(booking_id)
        if not booking:
            return None

        detail = {column.name: getattr(booking, column.name) for column in Booking.__table__.columns}
        detail["payment_status"] = self.payment_service.status_for(booking)
        detail["assigned_room_ids"] = [b.room_id for b in booking.active_bindings]
        return detail

    def _lock_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(
            Booking.id == booking_id
        ).with_for_update().first()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return booking

    # ============== 创建 ==============

    def _next_booking_number(self, year: int) -> str:
        """生成预订号 BK-<年>-<6位序号>，每年单调递增"""
        sequence = self.db.query(BookingSequence).filter(
            BookingSequence.year == year
        ).with_for_update().first()
        if not sequence:
            sequence = BookingSequence(year=year, last_value=0)
            self.db.add(sequence)
            flush_or_conflict(self.db, {"booking_sequence": year})

        sequence.last_value += 1
        return f"BK-{year}-{sequence.last_value:06d}"

    def create(self, data: BookingCreate, created_by: Optional[int] = None) -> Booking:
        """
        创建预订
        业务规则：
        - 客人、房型必须存在
        - 离店日期晚于入住日期，人数不超过房型容量
        - 房型级库存足够
        - 报价冻结到预订记录
        - 初始状态 PENDING
        """
        def operation() -> Booking:
            guest = self.db.query(Guest).filter(Guest.id == data.guest_id).first()
            if not guest:
                raise NotFoundError("Guest", data.guest_id)
            room_type = self.availability.get_room_type(data.room_type_id)

            number_of_guests = data.number_of_adults + data.number_of_children
            breakdown = self.price_service.quote(
                room_type_id=room_type.id,
                check_in=data.check_in_date,
                check_out=data.check_out_date,
                number_of_guests=number_of_guests,
                room_count=data.room_count,
                discount=data.discount.to_policy() if data.discount else None,
            )

            if not self.availability.is_available(
                room_type_id=room_type.id,
                check_in=data.check_in_date,
                check_out=data.check_out_date,
                room_count=data.room_count,
            ):
                raise RoomUnavailableError(
                    f"房型 {room_type.code} 在所选日期没有 {data.room_count} 间空房",
                    {"room_type_id": room_type.id, "room_count": data.room_count,
                     "check_in": data.check_in_date, "check_out": data.check_out_date},
                )
            if data.requires_accessible:
                accessible = self.availability.available_rooms(
                    room_type.id, data.check_in_date, data.check_out_date, requires_accessible=True,
                )
                if len(accessible) < data.room_count:
                    raise RoomUnavailableError(
                        f"房型 {room_type.code} 在所选日期没有足够的无障碍房间",
                        {"room_type_id": room_type.id, "room_count": data.room_count},
                    )

            check_in, check_out = normalize_stay(data.check_in_date, data.check_out_date)
            now = self._clock()
            booking = Booking(
                booking_number=self._next_booking_number(now.year),
                guest_id=guest.id,
                room_type_id=room_type.id,
                room_count=data.room_count,
                check_in_date=check_in,
                check_out_date=check_out,
                number_of_adults=data.number_of_adults,
                number_of_children=data.number_of_children,
                special_requests=data.special_requests,
                requires_accessible=data.requires_accessible,
                nights=breakdown.nights,
                room_rate=breakdown.room_rate,
                total_amount=breakdown.subtotal,
                city_tax_amount=breakdown.city_tax,
                vat_amount=breakdown.vat,
                tax_amount=breakdown.tax_amount,
                service_charges=breakdown.service_charges,
                discount_amount=breakdown.discount_amount,
                net_amount=breakdown.net_amount,
                currency=breakdown.currency,
                status=BookingStatus(booking_state_machine.initial_state),
                created_at=now,
                updated_at=now,
                created_by=created_by,
                updated_by=created_by,
            )
            self.db.add(booking)
            commit_or_conflict(self.db, {"booking_number": booking.booking_number})
            self.db.refresh(booking)
            return booking

        booking = run_with_retry(self.db, operation)
        logger.info(
            f"Booking {booking.booking_number} created: room type {booking.room_type_id}, "
            f"{booking.nights} nights, net {booking.net_amount} {booking.currency}"
        )

        self._publish_event(Event(
            event_type=EventType.BOOKING_CREATED,
            timestamp=self._clock(),
            data=BookingCreatedData(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                guest_id=booking.guest_id,
                room_type_id=booking.room_type_id,
                check_in_date=booking.check_in_date.isoformat(),
                check_out_date=booking.check_out_date.isoformat(),
                net_amount=str(booking.net_amount),
                currency=booking.currency,
                created_by=created_by,
            ).to_dict(),
            source="booking_service"
        ))
        return booking

    # ============== 修改 ==============

    def update(self, booking_id: int, data: BookingUpdate,
               updated_by: Optional[int] = None) -> Booking:
        """
        修改预订（仅 PENDING / CONFIRMED）
        业务规则：
        - 新日期在排除自身后仍有房型库存，已绑定房间在新日期内空闲
        - 人数不超过房型容量与已绑定房间的总容量
        - 已确认预订的房晚锁在同一事务内迁移到新日期
        - 冻结价格保持不变；requote 为真时按新条件重新报价，晚数变化必须重新报价
        """
        def operation():
            booking = self._lock_booking(booking_id)
            if booking.status not in EDITABLE_STATUSES:
                raise InvalidBookingStateError(booking.id, booking.status.value, "update")

            check_in = data.check_in_date or booking.check_in_date.date()
            check_out = data.check_out_date or booking.check_out_date.date()
            new_start, new_end = normalize_stay(check_in, check_out)
            adults = data.number_of_adults if data.number_of_adults is not None else booking.number_of_adults
            children = (data.number_of_children if data.number_of_children is not None
                        else booking.number_of_children)

            changed = []
            dates_changed = (new_start, new_end) != (booking.check_in_date, booking.check_out_date)
            if dates_changed:
                changed.append("dates")
            guests_changed = (adults, children) != (booking.number_of_adults, booking.number_of_children)
            if guests_changed:
                changed.append("guests")

            if data.discount is not None and not data.requote:
                raise ValidationError("折扣只能在重新报价时指定", {"booking_id": booking.id})

            breakdown = None
            if dates_changed or guests_changed or data.requote:
                breakdown = self.price_service.quote(
                    room_type_id=booking.room_type_id,
                    check_in=check_in,
                    check_out=check_out,
                    number_of_guests=adults + children,
                    room_count=booking.room_count,
                    discount=data.discount.to_policy() if data.discount else None,
                )
                if breakdown.nights != booking.nights and not data.requote:
                    raise ValidationError(
                        f"预订 {booking.booking_number} 晚数由 {booking.nights} 变为 {breakdown.nights}，需要重新报价",
                        {"booking_id": booking.id, "nights": booking.nights,
                         "new_nights": breakdown.nights},
                    )

            rooms = [b.room for b in booking.active_bindings]
            if guests_changed and rooms:
                capacity = sum(room.max_occupancy or 0 for room in rooms)
                if capacity < adults + children:
                    raise CapacityExceededError(
                        f"已分配房间容量 {capacity} 小于入住人数 {adults + children}",
                        {"booking_id": booking.id, "capacity": capacity,
                         "number_of_guests": adults + children},
                    )

            if dates_changed:
                if not self.availability.is_available(
                    room_type_id=booking.room_type_id,
                    check_in=check_in,
                    check_out=check_out,
                    exclude_booking_id=booking.id,
                    room_count=booking.room_count,
                ):
                    raise RoomUnavailableError(
                        f"房型在新日期内已无足够空房，无法修改预订 {booking.booking_number}",
                        {"booking_id": booking.id, "room_type_id": booking.room_type_id,
                         "check_in": check_in, "check_out": check_out},
                    )
                for room in rooms:
                    if not self.availability.is_available(
                        room_id=room.id, check_in=check_in, check_out=check_out,
                        exclude_booking_id=booking.id,
                    ):
                        raise RoomUnavailableError(
                            f"房间 {room.room_number} 在新日期内不可用",
                            {"booking_id": booking.id, "room_id": room.id,
                             "check_in": check_in, "check_out": check_out},
                        )

                holds_locks = booking.status == BookingStatus.CONFIRMED
                if holds_locks:
                    self.locks.release(booking)
                booking.check_in_date = new_start
                booking.check_out_date = new_end
                if holds_locks:
                    self.locks.acquire(booking)

            booking.number_of_adults = adults
            booking.number_of_children = children
            if data.special_requests is not None and data.special_requests != booking.special_requests:
                booking.special_requests = data.special_requests
                changed.append("special_requests")

            if data.requote:
                _apply_breakdown(booking, breakdown)
                changed.append("pricing")

            if changed:
                booking.updated_by = updated_by
                self._touch(booking)
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "update"})
            self.db.refresh(booking)
            return booking, changed

        booking, changed = run_with_retry(self.db, operation)
        if not changed:
            return booking
        logger.info(f"Booking {booking.booking_number} updated: {', '.join(changed)}")

        self._publish_event(Event(
            event_type=EventType.BOOKING_UPDATED,
            timestamp=self._clock(),
            data=BookingUpdatedData(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                changed_fields=changed,
                check_in_date=booking.check_in_date.isoformat(),
                check_out_date=booking.check_out_date.isoformat(),
                net_amount=str(booking.net_amount),
                updated_by=updated_by,
            ).to_dict(),
            source="booking_service"
        ))
        return booking

    # ============== 生命周期 ==============

    def _fire(self, booking: Booking, trigger: str,
              context: Optional[Dict[str, Any]] = None) -> BookingStatus:
        """计算目标状态（不修改记录）"""
        return BookingStatus(booking_state_machine.fire(booking.status, trigger, booking.id, context))

    def _require_payment(self, booking: Booking, trigger: str, ratio) -> None:
        if not self.payment_service.is_sufficient(booking, ratio):
            logger.warning(
                f"Booking {booking.id} {trigger} rejected: payment below {ratio} of net amount"
            )
            raise InvalidTransitionError(
                "Booking", booking.id, booking.status.value, trigger,
                message=f"预订 {booking.booking_number} 已付款项不足净额的 {ratio}，无法执行 {trigger}",
                reason="insufficient_payment",
            )

    def confirm(self, booking_id: int, policy: Optional[ConfirmationPolicy] = None) -> Booking:
        """
        确认预订 PENDING -> CONFIRMED
        - 已付款达到定金比例
        - 房型级库存仍然足够
        - 已分配房间时在此刻写入房晚锁
        """
        policy = policy or self.confirmation_policy

        def operation():
            booking = self._lock_booking(booking_id)
            old_status = booking.status
            target = self._fire(booking, "confirm")
            self._require_payment(booking, "confirm", policy.deposit_ratio)

            if not self.availability.is_available(
                room_type_id=booking.room_type_id,
                check_in=booking.check_in_date,
                check_out=booking.check_out_date,
                exclude_booking_id=booking.id,
                room_count=booking.room_count,
            ):
                raise RoomUnavailableError(
                    f"房型在预订 {booking.booking_number} 的日期内已无足够空房",
                    {"booking_id": booking.id, "room_type_id": booking.room_type_id},
                )
            self._require_rooms_offerable(booking, "confirm")

            booking.status = target
            self.locks.acquire(booking)
            self._touch(booking)
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "confirm"})
            self.db.refresh(booking)
            return booking, old_status

        booking, old_status = run_with_retry(self.db, operation)
        self._publish_status_change(EventType.BOOKING_CONFIRMED, booking, old_status)
        return booking

    def check_in(self, booking_id: int, actual_time: Optional[datetime] = None,
                 notes: Optional[str] = None,
                 policy: Optional[ConfirmationPolicy] = None) -> Booking:
        """
        办理入住 CONFIRMED -> CHECKED_IN
        业务规则：
        - 必须已分配房间
        - 房间没有被其他在住预订占用，房间状态允许入住
        - 已付款达到入住比例（可选）
        - 房间状态 -> OCCUPIED
        """
        policy = policy or self.confirmation_policy

        def operation():
            booking = self._lock_booking(booking_id)
            old_status = booking.status
            target = self._fire(booking, "check_in")

            bindings = booking.active_bindings
            if len(bindings) < booking.room_count:
                raise InvalidTransitionError(
                    "Booking", booking.id, booking.status.value, "check_in",
                    message=f"预订 {booking.booking_number} 尚未分配全部房间，无法入住",
                    reason="no_rooms_assigned",
                )
            self._require_payment(booking, "check_in", policy.check_in_ratio)

            check_in_time = actual_time or self._clock()
            if check_in_time >= booking.check_out_date:
                raise ValidationError(
                    "入住时间不能晚于离店时间",
                    {"booking_id": booking.id, "actual_check_in": check_in_time},
                )

            # 先校验全部房间，再统一修改
            self._require_rooms_offerable(booking, "check_in")
            rooms = [b.room for b in bindings]
            room_targets = []
            for room in rooms:
                occupant = self._checked_in_occupant(room.id, booking.id)
                if occupant is not None:
                    raise RoomUnavailableError(
                        f"房间 {room.room_number} 仍有在住预订 {occupant.booking_number}",
                        {"booking_id": booking.id, "room_id": room.id, "held_by": occupant.id},
                    )
                room_targets.append(
                    RoomStatus(room_state_machine.fire(room.status, "check_in", room.id))
                )

            self.locks.acquire(booking)
            changes = []
            for room, room_target in zip(rooms, room_targets):
                changes.append((room, room.status, room_target))
                room.status = room_target

            booking.status = target
            booking.actual_check_in = check_in_time
            if notes:
                booking.check_in_notes = notes
            self._touch(booking)
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "check_in"})
            self.db.refresh(booking)
            return booking, old_status, changes

        booking, old_status, changes = run_with_retry(self.db, operation)
        logger.info(f"Booking {booking.booking_number} checked in: {old_status.value} -> checked_in")

        self._publish_room_changes(changes, booking, "check_in")
        self._publish_event(Event(
            event_type=EventType.GUEST_CHECKED_IN,
            timestamp=self._clock(),
            data=GuestCheckedInData(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                guest_id=booking.guest_id,
                room_ids=[room.id for room, _, _ in changes],
                check_in_time=booking.actual_check_in,
            ).to_dict(),
            source="booking_service"
        ))
        return booking

    def check_out(self, booking_id: int, actual_time: Optional[datetime] = None,
                  notes: Optional[str] = None) -> Booking:
        """
        办理退房 CHECKED_IN -> CHECKED_OUT
        房间进入 CLEANING（清洁完成由客房部流程驱动），房晚锁释放
        """
        def operation():
            booking = self._lock_booking(booking_id)
            target = self._fire(booking, "check_out")

            check_out_time = actual_time or self._clock()
            changes = []
            for room in booking.assigned_rooms:
                if room_state_machine.can_fire(room.status, "check_out"):
                    old = room.status
                    room.status = RoomStatus(room_state_machine.fire(room.status, "check_out", room.id))
                    changes.append((room, old, room.status))
                else:
                    logger.warning(
                        f"Room {room.room_number} is {room.status.value} at check-out of "
                        f"booking {booking.id}, status left unchanged"
                    )

            self.locks.release(booking)
            booking.status = target
            booking.actual_check_out = check_out_time
            if notes:
                booking.check_out_notes = notes
            self._touch(booking)
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "check_out"})
            self.db.refresh(booking)
            return booking, changes

        booking, changes = run_with_retry(self.db, operation)
        logger.info(f"Booking {booking.booking_number} checked out")

        self._publish_room_changes(changes, booking, "check_out")
        self._publish_event(Event(
            event_type=EventType.GUEST_CHECKED_OUT,
            timestamp=self._clock(),
            data=GuestCheckedOutData(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                guest_id=booking.guest_id,
                room_ids=[room.id for room, _, _ in changes],
                check_out_time=booking.actual_check_out,
            ).to_dict(),
            source="booking_service"
        ))
        return booking

    def cancel(self, booking_id: int, reason: Optional[str] = None,
               policy: Optional[CancellationPolicy] = None) -> Booking:
        """
        取消预订 PENDING | CONFIRMED -> CANCELLED
        - 释放房间绑定和房晚锁
        - 被错误标记为 OCCUPIED 的房间恢复为 AVAILABLE
        - 按取消策略评估应退金额并记录在预订上（实际退款另行记录）
        """
        policy = policy or self.cancellation_policy

        def operation():
            booking = self._lock_booking(booking_id)
            old_status = booking.status
            target = self._fire(booking, "cancel")
            now = self._clock()

            refund_amount = self.payment_service.evaluate_cancellation_refund(booking, now, policy)
            changes = self._release_rooms(booking, now)

            booking.status = target
            booking.cancellation_reason = reason
            booking.cancellation_refund_amount = refund_amount
            self._touch(booking)
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "cancel"})
            self.db.refresh(booking)
            return booking, old_status, changes

        booking, old_status, changes = run_with_retry(self.db, operation)
        self._publish_room_changes(changes, booking, "cancel")
        self._publish_status_change(
            EventType.BOOKING_CANCELLED, booking, old_status, reason or "",
            refund_amount=str(booking.cancellation_refund_amount),
        )
        return booking

    def mark_no_show(self, booking_id: int) -> Booking:
        """
        标记未到店 CONFIRMED -> NO_SHOW
        只有入住日已经过去（当前时间到达入住日次日零点）且没有实际入住时间时允许
        """
        def operation():
            booking = self._lock_booking(booking_id)
            old_status = booking.status
            now = self._clock()
            context = {
                "check_in_elapsed": now >= _day_after(booking.check_in_date),
                "actual_check_in": booking.actual_check_in,
            }
            target = self._fire(booking, "mark_no_show", context)

            changes = self._release_rooms(booking, now)
            booking.status = target
            self._touch(booking)
            commit_or_conflict(self.db, {"booking_id": booking.id, "operation": "mark_no_show"})
            self.db.refresh(booking)
            return booking, old_status, changes

        booking, old_status, changes = run_with_retry(self.db, operation)
        self._publish_room_changes(changes, booking, "no_show")
        self._publish_status_change(EventType.BOOKING_NO_SHOW, booking, old_status)
        return booking

    def sweep_no_shows(self) -> List[Booking]:
        """
        定期扫描：入住日已过仍未入住的已确认预订标记为 NO_SHOW
        由外部调度器调用
        """
        cutoff = datetime.combine(self._clock().date(), time.min)
        candidates = self.db.query(Booking.id).filter(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.actual_check_in.is_(None),
            Booking.check_in_date < cutoff,
        ).order_by(Booking.id).all()

        marked = []
        for (booking_id,) in candidates:
            try:
                marked.append(self.mark_no_show(booking_id))
            except InvalidTransitionError as e:
                # 扫描期间状态已被其他请求改变
                logger.info(f"No-show sweep skipped booking {booking_id}: {e.message}")
            except ConcurrencyConflictError as e:
                logger.warning(f"No-show sweep gave up on booking {booking_id} after retries: {e.message}")
        logger.info(f"No-show sweep marked {len(marked)} bookings")
        return marked

    # ============== 内部辅助 ==============

    def _touch(self, booking: Booking) -> None:
        booking.updated_at = self._clock()

    def _require_rooms_offerable(self, booking: Booking, operation: str) -> None:
        """已绑定房间在预订区间内没有停用，也没有阻塞类维护"""
        for binding in booking.active_bindings:
            room = binding.room
            context = {"booking_id": booking.id, "room_id": room.id, "operation": operation}
            if room.status == RoomStatus.OUT_OF_ORDER:
                raise RoomUnavailableError(f"房间 {room.room_number} 已停用", context)
            blocks = self.availability.maintenance_blocks(
                room.id, booking.check_in_date, booking.check_out_date,
            )
            if blocks:
                logger.warning(
                    f"Booking {booking.id} {operation} rejected: room {room.room_number} "
                    f"under {blocks[0].type} maintenance {blocks[0].id}"
                )
                raise RoomUnavailableError(
                    f"房间 {room.room_number} 在预订 {booking.booking_number} 的日期内有维护安排",
                    {**context, "maintenance_id": blocks[0].id},
                )

    def _checked_in_occupant(self, room_id: int, exclude_booking_id: int) -> Optional[Booking]:
        """当前在住并绑定该房间的其他预订"""
        return self.db.query(Booking).join(
            BookingRoom, BookingRoom.booking_id == Booking.id
        ).filter(
            BookingRoom.room_id == room_id,
            BookingRoom.status == BookingRoomStatus.ASSIGNED,
            Booking.status == BookingStatus.CHECKED_IN,
            Booking.id != exclude_booking_id,
        ).first()

    def _release_rooms(self, booking: Booking, now: datetime):
        """释放绑定与房晚锁；没有其他在住预订的 OCCUPIED 房间恢复为 AVAILABLE"""
        changes = []
        for binding in booking.active_bindings:
            room = binding.room
            binding.status = BookingRoomStatus.RELEASED
            binding.released_at = now
            if room.status == RoomStatus.OCCUPIED and self._checked_in_occupant(room.id, booking.id) is None:
                old = room.status
                room.status = RoomStatus(room_state_machine.fire(room.status, "release", room.id))
                changes.append((room, old, room.status))
                logger.warning(f"Room {room.room_number} was marked occupied, reset to available")
        self.locks.release(booking)
        return changes

    def _publish_status_change(self, event_type: EventType, booking: Booking,
                               old_status: BookingStatus, reason: str = "",
                               refund_amount: Optional[str] = None) -> None:
        self._publish_event(Event(
            event_type=event_type,
            timestamp=self._clock(),
            data=BookingStatusChangedData(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                old_status=old_status.value,
                new_status=booking.status.value,
                reason=reason,
                refund_amount=refund_amount,
            ).to_dict(),
            source="booking_service"
        ))

    def _publish_room_changes(self, changes, booking: Booking, reason: str) -> None:
        for room, old, new in changes:
            self._publish_event(Event(
                event_type=EventType.ROOM_STATUS_CHANGED,
                timestamp=self._clock(),
                data=RoomStatusChangedData(
                    room_id=room.id,
                    room_number=room.room_number,
                    old_status=old.value,
                    new_status=new.value,
                    booking_id=booking.id,
                    reason=reason,
                ).to_dict(),
                source="booking_service"
            ))


def _day_after(moment: datetime) -> datetime:
    return datetime.combine(moment.date() + timedelta(days=1), time.min)


def _apply_breakdown(booking: Booking, breakdown) -> None:
    """把报价冻结到预订记录"""
    booking.nights = breakdown.nights
    booking.room_rate = breakdown.room_rate
    booking.total_amount = breakdown.subtotal
    booking.city_tax_amount = breakdown.city_tax
    booking.vat_amount = breakdown.vat
    booking.tax_amount = breakdown.tax_amount
    booking.service_charges = breakdown.service_charges
    booking.discount_amount = breakdown.discount_amount
    booking.net_amount = breakdown.net_amount
    booking.currency = breakdown.currency
