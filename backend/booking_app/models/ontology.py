"""
本体对象定义 (Ontology Objects)
预订核心的持久化实体：房型、房间、客人、预订、房间绑定、
房晚锁、支付、退款、网关事件去重账本、维护记录
"""
from datetime import datetime
from decimal import Decimal
from typing import List
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, JSON,
    Enum as SQLEnum, Boolean, Numeric, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from booking_app.database import Base

from booking_core.domain.enums import (
    BookingStatus, RoomStatus, BookingRoomStatus, PaymentStatus,
    RefundStatus, PaymentMethod, BookingPaymentStatus,
)


# ============== 本体对象定义 ==============

class RoomType(Base):
    """
    房型对象
    未分配具体房间的预订按房型库存占用
    """
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False)      # 房型代码
    name = Column(JSON, nullable=False, default=dict)           # {"en": "...", "th": "..."}
    description = Column(JSON)                                  # 多语言描述
    base_price = Column(Numeric(10, 2), nullable=False)         # 基础价格
    seasonal_pricing = Column(JSON)                             # {"peak": 1.5, "low": 0.8}
    max_occupancy = Column(Integer, default=2)                  # 单间最大入住人数
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接：一个房型对应多个房间
    rooms = relationship("Room", back_populates="room_type")


class Room(Base):
    """
    房间对象
    同一房间不能被两个日期重叠的阻塞预订占用（由 room_night_locks 保证）
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(10), unique=True, nullable=False)  # 房间号
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    status = Column(SQLEnum(RoomStatus), default=RoomStatus.AVAILABLE, nullable=False)
    floor = Column(Integer, nullable=False)                        # 楼层
    max_occupancy = Column(Integer, nullable=False, default=2)     # 最大入住人数
    bed_count = Column(Integer, nullable=False, default=1)         # 床位数
    bed_type = Column(String(20))                                  # King / Queen / Twin
    base_price = Column(Numeric(10, 2), nullable=False)            # 基础每晚价格
    seasonal_pricing = Column(JSON)                                # 季节系数表
    smoking_allowed = Column(Boolean, default=False)
    pet_friendly = Column(Boolean, default=False)
    accessible = Column(Boolean, default=False)                    # 无障碍
    name = Column(JSON, nullable=False, default=dict)              # 多语言名称
    description = Column(JSON)                                     # 多语言描述
    notes = Column(Text)
    is_active = Column(Boolean, default=True)                      # 是否可售
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    room_type = relationship("RoomType", back_populates="rooms")
    bindings = relationship("BookingRoom", back_populates="room")
    maintenance_logs = relationship("MaintenanceLog", back_populates="room")


class Guest(Base):
    """客人对象（预订只引用客人，资料维护在外部）"""
    __tablename__ = "guests"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(100), nullable=False)
    email = Column(String(100))
    phone = Column(String(30))
    created_at = Column(DateTime, default=datetime.utcnow)

    bookings = relationship("Booking", back_populates="guest")


class Booking(Base):
    """
    预订对象 - 预订生命周期的聚合根
    价格字段在创建时冻结，之后不随房价或税率变化重新计算
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(20), unique=True, nullable=False)  # BK-2025-000001
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    room_count = Column(Integer, nullable=False, default=1)

    # 时间线（日期语义，存储为固定入住/退房时刻）
    check_in_date = Column(DateTime, nullable=False)
    check_out_date = Column(DateTime, nullable=False)
    actual_check_in = Column(DateTime)
    actual_check_out = Column(DateTime)

    # 客人信息
    number_of_adults = Column(Integer, nullable=False, default=1)
    number_of_children = Column(Integer, nullable=False, default=0)
    special_requests = Column(Text)
    requires_accessible = Column(Boolean, default=False)

    # 冻结价格
    nights = Column(Integer, nullable=False)
    room_rate = Column(Numeric(10, 2), nullable=False)           # 预订时的每晚房价
    total_amount = Column(Numeric(12, 2), nullable=False)        # 房费小计
    city_tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    vat_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    service_charges = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    net_amount = Column(Numeric(12, 2), nullable=False)          # 客人应付
    currency = Column(String(3), nullable=False, default="THB")

    status = Column(SQLEnum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    cancellation_reason = Column(Text)
    cancellation_refund_amount = Column(Numeric(12, 2))          # 取消时评估的应退金额
    check_in_notes = Column(Text)
    check_out_notes = Column(Text)

    # 审计
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    created_by = Column(Integer)
    updated_by = Column(Integer)

    # 链接
    guest = relationship("Guest", back_populates="bookings")
    room_type = relationship("RoomType")
    bindings = relationship("BookingRoom", back_populates="booking", order_by="BookingRoom.id")
    payments = relationship("Payment", back_populates="booking", order_by="Payment.id")

    @property
    def number_of_guests(self) -> int:
        return (self.number_of_adults or 0) + (self.number_of_children or 0)

    @property
    def active_bindings(self) -> List["BookingRoom"]:
        return [b for b in self.bindings if b.status == BookingRoomStatus.ASSIGNED]

    @property
    def assigned_rooms(self) -> List["Room"]:
        return [b.room for b in self.active_bindings]


class BookingRoom(Base):
    """
    房间绑定：把房型级预订映射到具体房间
    重新分配时旧绑定置为 RELEASED（保留历史）
    """
    __tablename__ = "booking_rooms"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    status = Column(SQLEnum(BookingRoomStatus), default=BookingRoomStatus.ASSIGNED, nullable=False)
    assigned_at = Column(DateTime, nullable=False)
    released_at = Column(DateTime)

    booking = relationship("Booking", back_populates="bindings")
    room = relationship("Room", back_populates="bindings")


class RoomNightLock(Base):
    """
    房晚锁：阻塞预订（已确认/已入住）每占用房间一晚写入一行
    (room_id, night) 唯一约束保证同一房间同一晚至多一个阻塞预订
    """
    __tablename__ = "room_night_locks"
    __table_args__ = (
        UniqueConstraint("room_id", "night", name="uq_room_night"),
        Index("ix_room_night_locks_booking", "booking_id"),
    )

    id = Column(Integer, primary_key=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    night = Column(Date, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)


class BookingSequence(Base):
    """预订号序列：每年单调递增"""
    __tablename__ = "booking_sequences"

    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


class Payment(Base):
    """
    支付记录对象
    属于 Booking，按插入顺序参与对账
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    transaction_id = Column(String(100), unique=True)            # 网关交易号
    gateway_response = Column(JSON)                              # 网关原始响应
    paid_at = Column(DateTime)
    description = Column(Text)
    created_at = Column(DateTime, nullable=False)

    booking = relationship("Booking", back_populates="payments")
    refunds = relationship("Refund", back_populates="payment", order_by="Refund.id")

    @property
    def refundable_amount(self) -> Decimal:
        """可退余额 = 金额 - 未失败的退款"""
        reserved = sum(
            (r.amount for r in self.refunds if r.status != RefundStatus.FAILED),
            Decimal("0"),
        )
        return self.amount - reserved


class Refund(Base):
    """退款记录，属于一笔支付"""
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(SQLEnum(RefundStatus), default=RefundStatus.SUCCEEDED, nullable=False)
    reason = Column(Text)
    gateway_refund_id = Column(String(100))
    created_at = Column(DateTime, nullable=False)
    processed_at = Column(DateTime)

    payment = relationship("Payment", back_populates="refunds")


class GatewayEventRecord(Base):
    """
    网关事件去重账本
    (transaction_id, event_type) 唯一：同一事件重放只生效一次
    """
    __tablename__ = "gateway_events"
    __table_args__ = (
        UniqueConstraint("transaction_id", "event_type", name="uq_gateway_txn_event"),
    )

    id = Column(Integer, primary_key=True)
    event_id = Column(String(100), nullable=False)
    event_type = Column(String(100), nullable=False)
    transaction_id = Column(String(100), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"))
    livemode = Column(Boolean, default=False)
    received_at = Column(DateTime, nullable=False)


class MaintenanceLog(Base):
    """
    维护记录
    未完成且类型属于阻塞类型时，重叠日期内房间不可售
    """
    __tablename__ = "maintenance_logs"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    type = Column(String(30), nullable=False)        # CLEANING / REPAIR / INSPECTION / RENOVATION
    description = Column(Text, nullable=False, default="")
    cost = Column(Numeric(10, 2))
    performed_by = Column(String(100))
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime)                      # 为空表示未确定结束时间
    is_completed = Column(Boolean, default=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    room = relationship("Room", back_populates="maintenance_logs")


__all__ = [
    "BookingStatus", "RoomStatus", "BookingRoomStatus", "PaymentStatus",
    "RefundStatus", "PaymentMethod", "BookingPaymentStatus",
    "RoomType", "Room", "Guest", "Booking", "BookingRoom", "RoomNightLock",
    "BookingSequence", "Payment", "Refund", "GatewayEventRecord", "MaintenanceLog",
]
