"""
Pydantic 模式定义
用于 API 请求/响应验证
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, model_validator

from booking_core.domain.enums import (
    BookingStatus, RoomStatus, PaymentStatus, RefundStatus, PaymentMethod,
    BookingPaymentStatus, DiscountType,
)
from booking_core.domain.pricing import DiscountPolicy


# ============== 定价 Schemas ==============

class DiscountSpec(BaseModel):
    discount_type: DiscountType
    value: Decimal = Field(..., ge=0)

    def to_policy(self) -> DiscountPolicy:
        return DiscountPolicy(self.discount_type, self.value)


class QuoteRequest(BaseModel):
    room_id: Optional[int] = None
    room_type_id: Optional[int] = None
    check_in_date: date
    check_out_date: date
    number_of_guests: int = Field(default=1, ge=1)
    room_count: int = Field(default=1, ge=1)
    discount: Optional[DiscountSpec] = None

    @model_validator(mode="after")
    def _one_target(self):
        if (self.room_id is None) == (self.room_type_id is None):
            raise ValueError("room_id 与 room_type_id 必须且只能提供一个")
        return self


class PriceBreakdownResponse(BaseModel):
    room_rate: Decimal
    nights: int
    room_count: int
    nightly_rates: List[Decimal]
    subtotal: Decimal
    city_tax: Decimal
    vat: Decimal
    service_charges: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    currency: str


# ============== 可用性 Schemas ==============

class AvailabilityResponse(BaseModel):
    room_id: Optional[int] = None
    room_type_id: Optional[int] = None
    check_in_date: date
    check_out_date: date
    is_available: bool


class RoomTypeAvailability(BaseModel):
    room_type_id: int
    code: str
    name: Dict[str, str]
    base_price: Decimal
    total_rooms: int
    available_rooms: int
    occupied_rooms: int
    availability_percentage: float


class RoomSummary(BaseModel):
    id: int
    room_number: str
    room_type_id: int
    status: RoomStatus
    floor: int
    max_occupancy: int
    accessible: bool
    name: Dict[str, str] = {}
    model_config = ConfigDict(from_attributes=True)


# ============== 预订 Schemas ==============

class BookingCreate(BaseModel):
    guest_id: int
    room_type_id: int
    check_in_date: date
    check_out_date: date
    room_count: int = Field(default=1, ge=1)
    number_of_adults: int = Field(default=1, ge=1)
    number_of_children: int = Field(default=0, ge=0)
    special_requests: Optional[str] = None
    requires_accessible: bool = False
    discount: Optional[DiscountSpec] = None


class BookingUpdate(BaseModel):
    """修改预订：未提供的字段保持不变；requote 为真时按新条件重新报价"""
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    number_of_adults: Optional[int] = Field(default=None, ge=1)
    number_of_children: Optional[int] = Field(default=None, ge=0)
    special_requests: Optional[str] = None
    requote: bool = False
    discount: Optional[DiscountSpec] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class CheckInRequest(BaseModel):
    actual_check_in_time: Optional[datetime] = None
    notes: Optional[str] = None


class CheckOutRequest(BaseModel):
    actual_check_out_time: Optional[datetime] = None
    notes: Optional[str] = None


class AssignRoomsRequest(BaseModel):
    room_ids: List[int] = Field(..., min_length=1)


class BookingResponse(BaseModel):
    id: int
    booking_number: str
    guest_id: int
    room_type_id: int
    room_count: int
    check_in_date: datetime
    check_out_date: datetime
    actual_check_in: Optional[datetime]
    actual_check_out: Optional[datetime]
    number_of_adults: int
    number_of_children: int
    special_requests: Optional[str]
    requires_accessible: bool
    nights: int
    room_rate: Decimal
    total_amount: Decimal
    city_tax_amount: Decimal
    vat_amount: Decimal
    tax_amount: Decimal
    service_charges: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    currency: str
    status: BookingStatus
    payment_status: BookingPaymentStatus
    assigned_room_ids: List[int] = []
    cancellation_reason: Optional[str] = None
    cancellation_refund_amount: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# ============== 支付 Schemas ==============

class PaymentCreate(BaseModel):
    booking_id: int
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    description: Optional[str] = None


class RefundCreate(BaseModel):
    payment_id: int
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    booking_id: int
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RefundResponse(BaseModel):
    id: int
    payment_id: int
    amount: Decimal
    status: RefundStatus
    reason: Optional[str]
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PaymentSummaryResponse(BaseModel):
    booking_id: int
    net_amount: Decimal
    gross_paid: Decimal
    refunded: Decimal
    net_paid: Decimal
    balance_due: Decimal
    status: BookingPaymentStatus


# ============== 网关事件 Schemas ==============

class GatewayEventData(BaseModel):
    object_: Dict[str, Any] = Field(..., alias="object")
    model_config = ConfigDict(populate_by_name=True)


class GatewayEvent(BaseModel):
    """Stripe 风格的网关事件 {id, type, data: {object}, livemode}"""
    id: str
    type: str
    data: GatewayEventData
    livemode: bool = False


class GatewayEventResult(BaseModel):
    event_id: str
    event_type: str
    outcome: str            # applied / duplicate / ignored
    booking_id: Optional[int] = None
    payment_id: Optional[int] = None
    aggregate_status: Optional[BookingPaymentStatus] = None


# ============== 后续事项 Schemas ==============

class HousekeepingItem(BaseModel):
    room_id: int
    booking_id: Optional[int] = None
    requested_at: datetime


class RefundDueItem(BaseModel):
    booking_id: Optional[int] = None
    booking_number: Optional[str] = None
    amount: Decimal


class FollowUpsResponse(BaseModel):
    housekeeping: List[HousekeepingItem] = []
    refunds_due: List[RefundDueItem] = []
