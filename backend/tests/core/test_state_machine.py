"""
状态机引擎测试
"""
import pytest

from booking_core.domain.enums import BookingStatus, RoomStatus
from booking_core.engine.state_machine import (
    StateMachine, StateMachineConfig, StateTransition,
    booking_state_machine, room_state_machine,
)
from booking_core.errors import InvalidTransitionError


class TestBookingStateMachine:

    @pytest.mark.parametrize("current,trigger,expected", [
        (BookingStatus.PENDING, "confirm", BookingStatus.CONFIRMED),
        (BookingStatus.CONFIRMED, "check_in", BookingStatus.CHECKED_IN),
        (BookingStatus.CHECKED_IN, "check_out", BookingStatus.CHECKED_OUT),
        (BookingStatus.PENDING, "cancel", BookingStatus.CANCELLED),
        (BookingStatus.CONFIRMED, "cancel", BookingStatus.CANCELLED),
    ])
    def test_legal_transitions(self, current, trigger, expected):
        assert booking_state_machine.fire(current, trigger, entity_id=1) == expected.value

    def test_check_in_from_pending_rejected(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            booking_state_machine.fire(BookingStatus.PENDING, "check_in", entity_id=7)

        err = exc_info.value
        assert err.current_state == "pending"
        assert err.trigger == "check_in"
        assert err.context["entity_id"] == 7
        assert err.context["attempted"] == "check_in"

    @pytest.mark.parametrize("terminal", [
        BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
    ])
    def test_terminal_states_have_no_exits(self, terminal):
        assert booking_state_machine.is_terminal(terminal)
        assert booking_state_machine.triggers_from(terminal) == []
        for trigger in ("confirm", "check_in", "check_out", "cancel", "mark_no_show"):
            assert not booking_state_machine.can_fire(terminal, trigger)

    def test_cancel_not_allowed_after_check_in(self):
        assert not booking_state_machine.can_fire(BookingStatus.CHECKED_IN, "cancel")

    def test_no_show_requires_elapsed_check_in_and_no_arrival(self):
        sm = booking_state_machine
        assert not sm.can_fire(BookingStatus.CONFIRMED, "mark_no_show")
        assert not sm.can_fire(BookingStatus.CONFIRMED, "mark_no_show",
                               {"check_in_elapsed": False, "actual_check_in": None})
        assert not sm.can_fire(BookingStatus.CONFIRMED, "mark_no_show",
                               {"check_in_elapsed": True, "actual_check_in": "2025-01-15T15:00"})
        assert sm.can_fire(BookingStatus.CONFIRMED, "mark_no_show",
                           {"check_in_elapsed": True, "actual_check_in": None})

    def test_initial_state(self):
        assert booking_state_machine.initial_state == BookingStatus.PENDING.value


class TestRoomStateMachine:

    def test_check_in_from_available_or_cleaning(self):
        assert room_state_machine.fire(RoomStatus.AVAILABLE, "check_in") == "occupied"
        assert room_state_machine.fire(RoomStatus.CLEANING, "check_in") == "occupied"

    def test_check_out_goes_to_cleaning(self):
        assert room_state_machine.fire(RoomStatus.OCCUPIED, "check_out") == "cleaning"

    @pytest.mark.parametrize("status", [RoomStatus.MAINTENANCE, RoomStatus.OUT_OF_ORDER, RoomStatus.OCCUPIED])
    def test_check_in_blocked(self, status):
        with pytest.raises(InvalidTransitionError) as exc_info:
            room_state_machine.fire(status, "check_in", entity_id=101)
        assert exc_info.value.entity_type == "Room"

    def test_housekeeping_returns_room_to_service(self):
        assert room_state_machine.fire(RoomStatus.CLEANING, "housekeeping_done") == "available"


class TestCustomMachine:

    def test_condition_receives_context(self):
        sm = StateMachine(StateMachineConfig(
            name="Door",
            states=["open", "closed"],
            transitions=[
                StateTransition("closed", "open", "open", condition=lambda ctx: ctx.get("key")),
            ],
            initial_state="closed",
        ))
        assert sm.fire("closed", "open", context={"key": True}) == "open"
        with pytest.raises(InvalidTransitionError):
            sm.fire("closed", "open", context={"key": False})
