"""
后续事项路由
客房部、财务读取并取走事件处理器积累的待清洁房间与待退款记录
"""
from typing import List
from fastapi import APIRouter

from booking_app.models.schemas import FollowUpsResponse, HousekeepingItem, RefundDueItem
from booking_app.services.event_handlers import event_handlers

router = APIRouter(prefix="/operations", tags=["后续事项"])


@router.get("/follow-ups", response_model=FollowUpsResponse)
def get_follow_ups():
    """查看待跟进事项（不清空）"""
    return FollowUpsResponse(**event_handlers.pending_follow_ups())


@router.post("/housekeeping/drain", response_model=List[HousekeepingItem])
def drain_housekeeping():
    """取走待清洁房间"""
    return [HousekeepingItem(**item) for item in event_handlers.drain_housekeeping()]


@router.post("/refunds-due/drain", response_model=List[RefundDueItem])
def drain_refunds_due():
    """取走待退款记录"""
    return [RefundDueItem(**item) for item in event_handlers.drain_refunds_due()]
