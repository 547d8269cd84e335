"""
事件处理器
订阅预订领域事件，把需要外部流程跟进的事项记录下来（客房清洁、待退款、支付失败）
"""
from collections import deque
from decimal import Decimal
from typing import Deque, List, Dict, Any
import logging
import threading

from booking_app.services.event_bus import event_bus, Event
from booking_app.models.events import EventType

logger = logging.getLogger(__name__)

MAX_PENDING_FOLLOW_UPS = 500


class EventHandlers:
    """
    事件处理器集合

    housekeeping_queue: 退房后等待清洁的房间
    refunds_due: 取消后评估出应退金额、尚待财务处理的预订

    两个队列都有上限，超出时丢弃最早的条目；
    由 /operations/follow-ups 接口读取，drain_* 取走后清空。
    """

    def __init__(self, max_pending: int = MAX_PENDING_FOLLOW_UPS):
        self.housekeeping_queue: Deque[Dict[str, Any]] = deque(maxlen=max_pending)
        self.refunds_due: Deque[Dict[str, Any]] = deque(maxlen=max_pending)
        self._lock = threading.Lock()
        self._registered = False

    def _enqueue(self, queue: Deque[Dict[str, Any]], item: Dict[str, Any], kind: str) -> None:
        with self._lock:
            if len(queue) == queue.maxlen:
                logger.warning(f"{kind} queue full ({queue.maxlen}), dropping oldest entry {queue[0]}")
            queue.append(item)

    def handle_guest_checked_out(self, event: Event) -> None:
        """处理退房事件：房间进入待清洁队列"""
        data = event.data
        room_ids = data.get("room_ids") or []
        if not room_ids:
            logger.warning(f"Checkout event for booking {data.get('booking_id')} has no rooms")
            return

        for room_id in room_ids:
            self._enqueue(self.housekeeping_queue, {
                "room_id": room_id,
                "booking_id": data.get("booking_id"),
                "requested_at": event.timestamp,
            }, "Housekeeping")
        logger.info(f"Rooms {room_ids} queued for housekeeping after booking {data.get('booking_id')}")

    def handle_booking_cancelled(self, event: Event) -> None:
        """处理取消事件：应退金额大于 0 时记录待退款"""
        data = event.data
        amount = Decimal(data.get("refund_amount") or "0")
        if amount <= 0:
            return

        self._enqueue(self.refunds_due, {
            "booking_id": data.get("booking_id"),
            "booking_number": data.get("booking_number"),
            "amount": amount,
        }, "Refund")
        logger.info(f"Refund of {amount} due for cancelled booking {data.get('booking_number')}")

    def handle_payment_failed(self, event: Event) -> None:
        data = event.data
        logger.warning(
            f"Payment {data.get('payment_id')} for booking {data.get('booking_id')} failed "
            f"({data.get('transaction_id')})"
        )

    def pending_follow_ups(self) -> Dict[str, List[Dict[str, Any]]]:
        """当前待跟进事项的快照（不清空）"""
        with self._lock:
            return {
                "housekeeping": list(self.housekeeping_queue),
                "refunds_due": list(self.refunds_due),
            }

    def drain_housekeeping(self) -> List[Dict[str, Any]]:
        """取走全部待清洁房间"""
        with self._lock:
            items = list(self.housekeeping_queue)
            self.housekeeping_queue.clear()
        logger.info(f"Drained {len(items)} housekeeping requests")
        return items

    def drain_refunds_due(self) -> List[Dict[str, Any]]:
        """取走全部待退款记录"""
        with self._lock:
            items = list(self.refunds_due)
            self.refunds_due.clear()
        logger.info(f"Drained {len(items)} refunds due")
        return items

    def register_handlers(self, event_bus_instance=None) -> None:
        """注册所有事件处理器"""
        if self._registered:
            return

        bus = event_bus_instance or event_bus

        bus.subscribe(EventType.GUEST_CHECKED_OUT, self.handle_guest_checked_out)
        bus.subscribe(EventType.BOOKING_CANCELLED, self.handle_booking_cancelled)
        bus.subscribe(EventType.PAYMENT_FAILED, self.handle_payment_failed)

        self._registered = True
        logger.info("Event handlers registered successfully")

    def unregister_handlers(self, event_bus_instance=None) -> None:
        """取消注册所有事件处理器（用于测试）"""
        bus = event_bus_instance or event_bus

        bus.unsubscribe(EventType.GUEST_CHECKED_OUT, self.handle_guest_checked_out)
        bus.unsubscribe(EventType.BOOKING_CANCELLED, self.handle_booking_cancelled)
        bus.unsubscribe(EventType.PAYMENT_FAILED, self.handle_payment_failed)

        self._registered = False
        logger.info("Event handlers unregistered")


# 全局事件处理器实例
event_handlers = EventHandlers()


def register_event_handlers():
    """注册所有事件处理器（应用启动时调用）"""
    event_handlers.register_handlers()
