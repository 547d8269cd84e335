"""
事件总线 - 进程内发布/订阅
业务事务提交后发布预订与支付事件，由订阅方跟进客房清洁、退款、通知等外部流程

订阅键：
- 精确类型："booking.cancelled"
- 领域前缀："booking.*"（匹配所有 booking. 开头的事件）
- 全部："*"
"""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Union
import logging
import threading
import uuid

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], None]

WILDCARD = "*"


def event_type_key(event_type: Union[str, Enum]) -> str:
    return event_type.value if isinstance(event_type, Enum) else event_type


@dataclass
class Event:
    """领域事件"""
    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str  # 发布方服务名
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def type_key(self) -> str:
        return event_type_key(self.event_type)


@dataclass(frozen=True)
class FailedDelivery:
    """处理器执行失败的投递记录（已提交的业务不回滚，需要人工或补偿流程跟进）"""
    event: Event
    handler_name: str
    error: str


class EventBus:
    """
    线程安全的内存事件总线

    处理器同步执行，按订阅顺序调用；单个处理器异常被记录为 FailedDelivery，
    不影响其他处理器，也不会传回发布方。
    """

    def __init__(self, max_history: int = 100, max_failures: int = 100):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._history: Deque[Event] = deque(maxlen=max_history)
        self._failures: Deque[FailedDelivery] = deque(maxlen=max_failures)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Union[str, Enum], handler: EventHandler) -> None:
        key = event_type_key(event_type)
        with self._lock:
            handlers = self._subscribers.setdefault(key, [])
            if handler in handlers:
                return
            handlers.append(handler)
        logger.info(f"Handler {_name(handler)} subscribed to {key}")

    def unsubscribe(self, event_type: Union[str, Enum], handler: EventHandler) -> None:
        key = event_type_key(event_type)
        with self._lock:
            handlers = self._subscribers.get(key, [])
            if handler not in handlers:
                return
            handlers.remove(handler)
            if not handlers:
                del self._subscribers[key]
        logger.info(f"Handler {_name(handler)} unsubscribed from {key}")

    def handlers_for(self, event_type: Union[str, Enum]) -> List[EventHandler]:
        """匹配某事件类型的处理器：精确订阅在前，其次领域前缀，最后通配"""
        key = event_type_key(event_type)
        domain = key.split(".", 1)[0]
        with self._lock:
            matched = list(self._subscribers.get(key, []))
            for pattern in (f"{domain}.*", WILDCARD):
                for handler in self._subscribers.get(pattern, []):
                    if handler not in matched:
                        matched.append(handler)
        return matched

    def publish(self, event: Event) -> None:
        """
        发布事件（同步执行所有匹配的处理器）

        只应在数据库提交之后调用。
        """
        self._history.append(event)

        for handler in self.handlers_for(event.event_type):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler {_name(handler)} failed for {event.type_key} "
                    f"({event.event_id}): {e}",
                    exc_info=True
                )
                self._failures.append(FailedDelivery(event=event, handler_name=_name(handler), error=str(e)))

    def get_history(self, event_type: Optional[Union[str, Enum]] = None, limit: int = 50) -> List[Event]:
        """最近发布的事件（最新的在前）"""
        history = list(self._history)
        if event_type:
            key = event_type_key(event_type)
            history = [e for e in history if e.type_key == key]
        return list(reversed(history))[:limit]

    def get_failed_deliveries(self) -> List[FailedDelivery]:
        return list(self._failures)

    def clear_subscribers(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def clear_history(self) -> None:
        """清空事件历史与失败记录"""
        self._history.clear()
        self._failures.clear()


def _name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


# 全局事件总线
event_bus = EventBus()
