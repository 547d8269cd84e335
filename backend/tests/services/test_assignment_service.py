"""
房间分配服务测试
"""
import pytest
from datetime import date
from decimal import Decimal

from booking_app.models.events import EventType
from booking_app.models.ontology import RoomType, BookingStatus, BookingRoomStatus, RoomStatus
from booking_app.services.room_lock_service import RoomLockService
from booking_core.errors import (
    NotFoundError, ValidationError, InvalidBookingStateError,
    RoomUnavailableError, CapacityExceededError,
)


def _locked_rooms(db_session, booking_id):
    return sorted({lock.room_id for lock in RoomLockService(db_session).held_locks(booking_id)})


class TestAssign:
    """分配房间"""

    def test_assign_pending_booking(self, booking_service, assignment_service, booking_data,
                                    sample_rooms, db_session, events):
        booking = booking_service.create(booking_data())
        booking = assignment_service.assign(booking.id, [sample_rooms["R101"].id])

        assert [b.room_id for b in booking.active_bindings] == [sample_rooms["R101"].id]
        assert _locked_rooms(db_session, booking.id) == []
        assert events[-1].event_type == EventType.ROOMS_ASSIGNED
        assert events[-1].data["assigned_room_ids"] == [sample_rooms["R101"].id]

    def test_reassign_confirmed_booking(self, confirmed_booking, assignment_service, sample_rooms,
                                        db_session):
        """R101 -> R102：旧绑定释放、房晚锁迁移"""
        booking = confirmed_booking()
        r101, r102 = sample_rooms["R101"].id, sample_rooms["R102"].id

        booking = assignment_service.assign(booking.id, [r102])

        assert [b.room_id for b in booking.active_bindings] == [r102]
        released = [b for b in booking.bindings if b.room_id == r101]
        assert released[0].status == BookingRoomStatus.RELEASED
        assert released[0].released_at is not None
        assert _locked_rooms(db_session, booking.id) == [r102]
        assert len(RoomLockService(db_session).held_locks(booking.id)) == 3

    def test_failed_reassign_keeps_original(self, confirmed_booking, assignment_service,
                                            booking_service, sample_rooms, db_session):
        first = confirmed_booking()
        confirmed_booking("R102")
        r101, r102 = sample_rooms["R101"].id, sample_rooms["R102"].id

        with pytest.raises(RoomUnavailableError):
            assignment_service.assign(first.id, [r102])

        first = booking_service.get_booking(first.id)
        assert [b.room_id for b in first.active_bindings] == [r101]
        assert _locked_rooms(db_session, first.id) == [r101]

    def test_confirm_conflicts_with_overlapping_lock(self, booking_service, assignment_service,
                                                     booking_data, sample_rooms):
        """两个待确认预订都绑定 R101，后确认的一个失败"""
        r101 = sample_rooms["R101"].id
        first = booking_service.create(booking_data())
        second = booking_service.create(booking_data(check_in_date=date(2025, 1, 16),
                                                     check_out_date=date(2025, 1, 19)))
        assignment_service.assign(first.id, [r101])
        assignment_service.assign(second.id, [r101])

        booking_service.confirm(first.id)
        with pytest.raises(RoomUnavailableError) as exc_info:
            booking_service.confirm(second.id)

        assert exc_info.value.context["held_by"] == first.id
        assert booking_service.get_booking(second.id).status == BookingStatus.PENDING

    def test_wrong_room_type(self, booking_service, assignment_service, booking_data, db_session,
                             make_room):
        standard = RoomType(code="STD", name={"en": "Standard"}, base_price=Decimal("600"), max_occupancy=2)
        db_session.add(standard)
        db_session.commit()
        room = make_room(standard, "S201", floor=2)
        db_session.commit()

        booking = booking_service.create(booking_data())
        with pytest.raises(RoomUnavailableError):
            assignment_service.assign(booking.id, [room.id])

    def test_out_of_order_room(self, booking_service, assignment_service, booking_data,
                               sample_rooms, db_session):
        room = sample_rooms["R102"]
        room.status = RoomStatus.OUT_OF_ORDER
        db_session.commit()

        booking = booking_service.create(booking_data())
        with pytest.raises(RoomUnavailableError):
            assignment_service.assign(booking.id, [room.id])

    def test_accessible_room_required(self, booking_service, assignment_service, booking_data,
                                      sample_rooms):
        booking = booking_service.create(booking_data(requires_accessible=True))

        with pytest.raises(RoomUnavailableError):
            assignment_service.assign(booking.id, [sample_rooms["R101"].id])
        booking = assignment_service.assign(booking.id, [sample_rooms["R103"].id])
        assert [b.room_id for b in booking.active_bindings] == [sample_rooms["R103"].id]

    def test_capacity(self, booking_service, assignment_service, booking_data, sample_rooms):
        booking = booking_service.create(booking_data(room_count=2, number_of_adults=3))

        with pytest.raises(CapacityExceededError) as exc_info:
            assignment_service.assign(booking.id, [sample_rooms["R101"].id])
        assert exc_info.value.context["capacity"] == 2

        booking = assignment_service.assign(booking.id, [sample_rooms["R101"].id, sample_rooms["R102"].id])
        assert len(booking.active_bindings) == 2

    def test_more_rooms_than_booked(self, booking_service, assignment_service, booking_data, sample_rooms):
        booking = booking_service.create(booking_data())
        with pytest.raises(ValidationError):
            assignment_service.assign(booking.id, [sample_rooms["R101"].id, sample_rooms["R102"].id])

    @pytest.mark.parametrize("room_ids", [[], [1, 1]])
    def test_invalid_room_list(self, booking_service, assignment_service, booking_data, room_ids):
        booking = booking_service.create(booking_data())
        with pytest.raises(ValidationError):
            assignment_service.assign(booking.id, room_ids)

    def test_unknown_room(self, booking_service, assignment_service, booking_data):
        booking = booking_service.create(booking_data())
        with pytest.raises(NotFoundError):
            assignment_service.assign(booking.id, [9999])

    def test_cancelled_booking(self, booking_service, assignment_service, booking_data, sample_rooms):
        booking = booking_service.create(booking_data())
        booking_service.cancel(booking.id)

        with pytest.raises(InvalidBookingStateError) as exc_info:
            assignment_service.assign(booking.id, [sample_rooms["R101"].id])
        assert exc_info.value.current_state == "cancelled"


class TestUnassign:
    """解除分配"""

    def test_unassign_releases_locks(self, confirmed_booking, assignment_service, sample_rooms,
                                     db_session):
        booking = confirmed_booking()
        r101 = sample_rooms["R101"].id

        booking = assignment_service.unassign(booking.id, r101)
        assert booking.active_bindings == []
        assert _locked_rooms(db_session, booking.id) == []

        with pytest.raises(NotFoundError):
            assignment_service.unassign(booking.id, r101)
