"""
支付与退款路由，含支付网关回调
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from booking_app.database import get_db
from booking_app.models.schemas import (
    PaymentCreate, RefundCreate, PaymentResponse, RefundResponse,
    GatewayEvent, GatewayEventResult,
)
from booking_app.services.payment_service import PaymentService
from booking_app.services.unit_of_work import Clock, get_clock

router = APIRouter(prefix="/payments", tags=["支付管理"])


@router.post("", response_model=PaymentResponse)
def record_payment(
    data: PaymentCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """记录收款"""
    service = PaymentService(db, clock=clock)
    return service.record_payment(
        data.booking_id,
        data.amount,
        data.payment_method,
        gateway_ref=data.transaction_id,
        currency=data.currency,
        description=data.description,
    )


@router.post("/refunds", response_model=RefundResponse)
def record_refund(
    data: RefundCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """记录退款"""
    service = PaymentService(db, clock=clock)
    return service.record_refund(data.payment_id, data.amount, data.reason)


@router.get("/booking/{booking_id}", response_model=List[PaymentResponse])
def list_booking_payments(
    booking_id: int,
    db: Session = Depends(get_db)
):
    """获取预订的支付记录"""
    return PaymentService(db).get_booking_payments(booking_id)


@router.post("/gateway-events", response_model=GatewayEventResult)
def receive_gateway_event(
    event: GatewayEvent,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """支付网关回调（可重复投递）"""
    service = PaymentService(db, clock=clock)
    return service.apply_gateway_event(event)
