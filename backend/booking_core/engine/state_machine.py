"""
booking_core/engine/state_machine.py

状态机引擎 - 校验状态转换

状态保存在持久化记录上，状态机本身无状态：
给定当前状态与触发动作，返回目标状态或抛出 InvalidTransitionError。
"""
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass
import logging

from booking_core.errors import InvalidTransitionError
from booking_core.domain.enums import BookingStatus, RoomStatus

logger = logging.getLogger(__name__)


@dataclass
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
        condition: 可选的转换条件
    """

    from_state: str
    to_state: str
    trigger: str
    condition: Optional[Callable[[Dict[str, Any]], bool]] = None

    def is_allowed(self, context: Dict[str, Any]) -> bool:
        """检查转换是否被允许"""
        if self.condition is None:
            return True
        return bool(self.condition(context))


@dataclass
class StateMachineConfig:
    """
    状态机配置

    Attributes:
        name: 状态机名称（用作错误中的实体类型）
        states: 所有状态的列表
        transitions: 转换列表
        initial_state: 初始状态
        terminal_states: 终态列表
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str
    terminal_states: tuple = ()


class StateMachine:
    """
    状态机引擎

    Example:
        >>> booking_state_machine.fire("pending", "confirm", entity_id=1)
        'confirmed'
        >>> booking_state_machine.fire("pending", "check_in", entity_id=1)
        Traceback (most recent call last):
        InvalidTransitionError: ...
    """

    def __init__(self, config: StateMachineConfig):
        self._config = config
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        # 构建转换映射: (from_state, trigger) -> transition
        for t in config.transitions:
            self._transition_map.setdefault(t.from_state, {})[t.trigger] = t

    @property
    def config(self) -> StateMachineConfig:
        """获取状态机配置"""
        return self._config

    @property
    def initial_state(self) -> str:
        return self._config.initial_state

    def is_terminal(self, state: str) -> bool:
        return _value(state) in self._config.terminal_states

    def triggers_from(self, state: str) -> List[str]:
        """获取某状态下可用的触发动作"""
        return sorted(self._transition_map.get(_value(state), {}).keys())

    def can_fire(self, current_state: str, trigger: str,
                 context: Optional[Dict[str, Any]] = None) -> bool:
        """
        检查当前状态下能否执行触发动作

        Args:
            current_state: 当前状态
            trigger: 触发动作
            context: 可选的上下文数据

        Returns:
            True 如果转换被允许
        """
        transition = self._transition_map.get(_value(current_state), {}).get(trigger)
        if transition is None:
            return False
        return transition.is_allowed(context or {})

    def fire(self, current_state: str, trigger: str, entity_id: Any = None,
             context: Optional[Dict[str, Any]] = None) -> str:
        """
        计算状态转换的目标状态

        Args:
            current_state: 当前状态
            trigger: 触发动作
            entity_id: 实体ID（用于错误上下文）
            context: 可选的上下文数据

        Returns:
            目标状态

        Raises:
            InvalidTransitionError: 转换不被允许
        """
        current = _value(current_state)
        if not self.can_fire(current, trigger, context):
            logger.warning(
                f"Invalid transition on {self._config.name} {entity_id}: "
                f"{current} (trigger: {trigger})"
            )
            raise InvalidTransitionError(self._config.name, entity_id, current, trigger)

        target = self._transition_map[current][trigger].to_state
        logger.info(
            f"{self._config.name} {entity_id} transition: {current} -> {target} (trigger: {trigger})"
        )
        return target


def _value(state: Any) -> str:
    return state.value if hasattr(state, "value") else state


# ============== 预订生命周期 ==============

BOOKING_STATE_MACHINE_CONFIG = StateMachineConfig(
    name="Booking",
    states=[s.value for s in BookingStatus],
    transitions=[
        StateTransition(BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value, "confirm"),
        StateTransition(BookingStatus.CONFIRMED.value, BookingStatus.CHECKED_IN.value, "check_in"),
        StateTransition(BookingStatus.CHECKED_IN.value, BookingStatus.CHECKED_OUT.value, "check_out"),
        StateTransition(BookingStatus.PENDING.value, BookingStatus.CANCELLED.value, "cancel"),
        StateTransition(BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value, "cancel"),
        StateTransition(
            BookingStatus.CONFIRMED.value, BookingStatus.NO_SHOW.value, "mark_no_show",
            condition=lambda ctx: ctx.get("check_in_elapsed", False)
            and ctx.get("actual_check_in") is None,
        ),
    ],
    initial_state=BookingStatus.PENDING.value,
    terminal_states=(
        BookingStatus.CHECKED_OUT.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.NO_SHOW.value,
    ),
)

# ============== 房间状态 ==============
# 清洁完成、维护等由外部的客房部流程驱动

ROOM_STATE_MACHINE_CONFIG = StateMachineConfig(
    name="Room",
    states=[s.value for s in RoomStatus],
    transitions=[
        StateTransition(RoomStatus.AVAILABLE.value, RoomStatus.OCCUPIED.value, "check_in"),
        StateTransition(RoomStatus.CLEANING.value, RoomStatus.OCCUPIED.value, "check_in"),
        StateTransition(RoomStatus.OCCUPIED.value, RoomStatus.CLEANING.value, "check_out"),
        StateTransition(RoomStatus.OCCUPIED.value, RoomStatus.AVAILABLE.value, "release"),
        StateTransition(RoomStatus.CLEANING.value, RoomStatus.AVAILABLE.value, "housekeeping_done"),
        StateTransition(RoomStatus.AVAILABLE.value, RoomStatus.MAINTENANCE.value, "start_maintenance"),
        StateTransition(RoomStatus.CLEANING.value, RoomStatus.MAINTENANCE.value, "start_maintenance"),
        StateTransition(RoomStatus.MAINTENANCE.value, RoomStatus.AVAILABLE.value, "finish_maintenance"),
        StateTransition(RoomStatus.AVAILABLE.value, RoomStatus.OUT_OF_ORDER.value, "take_out_of_order"),
        StateTransition(RoomStatus.MAINTENANCE.value, RoomStatus.OUT_OF_ORDER.value, "take_out_of_order"),
        StateTransition(RoomStatus.OUT_OF_ORDER.value, RoomStatus.AVAILABLE.value, "return_to_service"),
    ],
    initial_state=RoomStatus.AVAILABLE.value,
)


booking_state_machine = StateMachine(BOOKING_STATE_MACHINE_CONFIG)
room_state_machine = StateMachine(ROOM_STATE_MACHINE_CONFIG)


# 导出
__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
    "BOOKING_STATE_MACHINE_CONFIG",
    "ROOM_STATE_MACHINE_CONFIG",
    "booking_state_machine",
    "room_state_machine",
]
