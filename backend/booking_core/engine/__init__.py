"""
booking_core/engine - 核心引擎模块

- state_machine: 状态机引擎（预订生命周期、房间状态）

使用方式:
    >>> from booking_core.engine import booking_state_machine, room_state_machine
"""

from booking_core.engine.state_machine import (
    StateTransition,
    StateMachineConfig,
    StateMachine,
    booking_state_machine,
    room_state_machine,
)

__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
    "booking_state_machine",
    "room_state_machine",
]
