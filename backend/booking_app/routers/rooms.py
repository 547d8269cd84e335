"""
房间可用性与报价路由
"""
from typing import List
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from booking_app.database import get_db
from booking_app.models.schemas import (
    AvailabilityResponse, RoomTypeAvailability, RoomSummary,
    QuoteRequest, PriceBreakdownResponse,
)
from booking_app.services.availability_service import AvailabilityService
from booking_app.services.price_service import PriceService

router = APIRouter(prefix="/rooms", tags=["房间可用性"])


@router.get("/availability", response_model=List[RoomTypeAvailability])
def get_room_type_availability(
    check_in_date: date,
    check_out_date: date,
    db: Session = Depends(get_db)
):
    """各房型在日期区间内的库存汇总"""
    service = AvailabilityService(db)
    return service.room_type_availability(check_in_date, check_out_date)


@router.get("/types/{room_type_id}/availability", response_model=AvailabilityResponse)
def check_room_type_availability(
    room_type_id: int,
    check_in_date: date,
    check_out_date: date,
    room_count: int = Query(1, ge=1),
    db: Session = Depends(get_db)
):
    """房型级可用性"""
    service = AvailabilityService(db)
    available = service.is_available(
        room_type_id=room_type_id,
        check_in=check_in_date,
        check_out=check_out_date,
        room_count=room_count,
    )
    return AvailabilityResponse(
        room_type_id=room_type_id,
        check_in_date=check_in_date,
        check_out_date=check_out_date,
        is_available=available,
    )


@router.get("/types/{room_type_id}/available-rooms", response_model=List[RoomSummary])
def list_available_rooms(
    room_type_id: int,
    check_in_date: date,
    check_out_date: date,
    requires_accessible: bool = False,
    db: Session = Depends(get_db)
):
    """房型下日期区间内空闲的具体房间"""
    service = AvailabilityService(db)
    return service.available_rooms(
        room_type_id, check_in_date, check_out_date, requires_accessible=requires_accessible,
    )


@router.get("/{room_id}/availability", response_model=AvailabilityResponse)
def check_room_availability(
    room_id: int,
    check_in_date: date,
    check_out_date: date,
    db: Session = Depends(get_db)
):
    """单个房间可用性"""
    service = AvailabilityService(db)
    available = service.is_available(room_id=room_id, check_in=check_in_date, check_out=check_out_date)
    return AvailabilityResponse(
        room_id=room_id,
        check_in_date=check_in_date,
        check_out_date=check_out_date,
        is_available=available,
    )


@router.post("/quote", response_model=PriceBreakdownResponse)
def quote(
    data: QuoteRequest,
    db: Session = Depends(get_db)
):
    """报价"""
    breakdown = PriceService(db).quote(
        room_id=data.room_id,
        room_type_id=data.room_type_id,
        check_in=data.check_in_date,
        check_out=data.check_out_date,
        number_of_guests=data.number_of_guests,
        room_count=data.room_count,
        discount=data.discount.to_policy() if data.discount else None,
    )
    return PriceBreakdownResponse(**breakdown.to_dict())
