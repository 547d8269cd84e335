"""
预订管理路由
生命周期操作直接委托给服务层；BookingError 由全局异常处理器转换为 HTTP 响应
"""
from typing import List, Optional
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from booking_app.database import get_db
from booking_app.models.ontology import BookingStatus
from booking_app.models.schemas import (
    BookingCreate, BookingUpdate, BookingCancel, BookingResponse, CheckInRequest, CheckOutRequest,
    AssignRoomsRequest, PaymentSummaryResponse,
)
from booking_app.services.booking_service import BookingService
from booking_app.services.assignment_service import AssignmentService
from booking_app.services.payment_service import PaymentService
from booking_app.services.unit_of_work import Clock, get_clock

router = APIRouter(prefix="/bookings", tags=["预订管理"])


def _detail(service: BookingService, booking_id: int) -> BookingResponse:
    detail = service.get_booking_detail(booking_id)
    if not detail:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="预订不存在")
    return BookingResponse(**detail)


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    status: Optional[BookingStatus] = None,
    guest_id: Optional[int] = None,
    room_type_id: Optional[int] = None,
    check_in_date: Optional[date] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """获取预订列表"""
    service = BookingService(db, clock=clock)
    bookings = service.get_bookings(status, guest_id, room_type_id, check_in_date)
    return [_detail(service, b.id) for b in bookings]


@router.get("/today-arrivals", response_model=List[BookingResponse])
def get_today_arrivals(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """获取今日预抵"""
    service = BookingService(db, clock=clock)
    return [_detail(service, b.id) for b in service.get_today_arrivals()]


@router.get("/today-departures", response_model=List[BookingResponse])
def get_today_departures(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """获取今日预离"""
    service = BookingService(db, clock=clock)
    return [_detail(service, b.id) for b in service.get_today_departures()]


@router.post("/sweep-no-shows", response_model=List[BookingResponse])
def sweep_no_shows(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """扫描并标记未到店预订"""
    service = BookingService(db, clock=clock)
    return [_detail(service, b.id) for b in service.sweep_no_shows()]


@router.get("/by-number/{booking_number}", response_model=BookingResponse)
def get_booking_by_number(
    booking_number: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """根据预订号获取预订"""
    service = BookingService(db, clock=clock)
    booking = service.get_booking_by_number(booking_number)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="预订不存在")
    return _detail(service, booking.id)


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """获取预订详情"""
    return _detail(BookingService(db, clock=clock), booking_id)


@router.post("", response_model=BookingResponse)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """创建预订"""
    service = BookingService(db, clock=clock)
    booking = service.create(data)
    return _detail(service, booking.id)


@router.put("/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: int,
    data: BookingUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """修改预订（日期、人数、备注，可选重新报价）"""
    service = BookingService(db, clock=clock)
    booking = service.update(booking_id, data)
    return _detail(service, booking.id)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """确认预订"""
    service = BookingService(db, clock=clock)
    booking = service.confirm(booking_id)
    return _detail(service, booking.id)


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
def check_in_booking(
    booking_id: int,
    data: CheckInRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """办理入住"""
    service = BookingService(db, clock=clock)
    booking = service.check_in(booking_id, data.actual_check_in_time, data.notes)
    return _detail(service, booking.id)


@router.post("/{booking_id}/check-out", response_model=BookingResponse)
def check_out_booking(
    booking_id: int,
    data: CheckOutRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """办理退房"""
    service = BookingService(db, clock=clock)
    booking = service.check_out(booking_id, data.actual_check_out_time, data.notes)
    return _detail(service, booking.id)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    data: BookingCancel,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """取消预订"""
    service = BookingService(db, clock=clock)
    booking = service.cancel(booking_id, data.reason)
    return _detail(service, booking.id)


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
def mark_no_show(
    booking_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """标记未到"""
    service = BookingService(db, clock=clock)
    booking = service.mark_no_show(booking_id)
    return _detail(service, booking.id)


@router.post("/{booking_id}/rooms", response_model=BookingResponse)
def assign_rooms(
    booking_id: int,
    data: AssignRoomsRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """分配（或重新分配）房间"""
    AssignmentService(db, clock=clock).assign(booking_id, data.room_ids)
    return _detail(BookingService(db, clock=clock), booking_id)


@router.delete("/{booking_id}/rooms/{room_id}", response_model=BookingResponse)
def unassign_room(
    booking_id: int,
    room_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """解除房间分配"""
    AssignmentService(db, clock=clock).unassign(booking_id, room_id)
    return _detail(BookingService(db, clock=clock), booking_id)


@router.get("/{booking_id}/payment-status", response_model=PaymentSummaryResponse)
def get_payment_status(
    booking_id: int,
    db: Session = Depends(get_db)
):
    """获取预订支付汇总与聚合支付状态"""
    return PaymentSummaryResponse(**PaymentService(db).get_payment_summary(booking_id))
