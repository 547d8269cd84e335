"""
预订 API 测试
覆盖 /bookings 端点与错误响应格式
"""
import pytest
from datetime import datetime
from decimal import Decimal
from fastapi.testclient import TestClient


@pytest.fixture
def create_booking(client, sample_guest, sample_room_type, sample_rooms):
    """通过 API 创建预订；默认 2025-01-15 至 2025-01-18，净额 3240（城市税 1%，增值税 7%）"""
    def _create(**overrides):
        payload = {
            "guest_id": sample_guest.id,
            "room_type_id": sample_room_type.id,
            "check_in_date": "2025-01-15",
            "check_out_date": "2025-01-18",
            "number_of_adults": 2,
        }
        payload.update(overrides)
        response = client.post("/bookings", json=payload)
        assert response.status_code == 200, response.text
        return response.json()
    return _create


@pytest.fixture
def confirmed(client, create_booking, sample_rooms):
    """已分配 R101、付定金并确认的预订"""
    def _make(room_number="R101", **overrides):
        booking = create_booking(**overrides)
        client.post(f"/bookings/{booking['id']}/rooms", json={"room_ids": [sample_rooms[room_number].id]})
        client.post("/payments", json={
            "booking_id": booking["id"], "amount": "1620.00", "payment_method": "cash",
        })
        response = client.post(f"/bookings/{booking['id']}/confirm")
        assert response.status_code == 200, response.text
        return response.json()
    return _make


class TestCreateBooking:

    def test_create(self, client: TestClient, create_booking):
        data = create_booking()

        assert data["status"] == "pending"
        assert data["payment_status"] == "unpaid"
        assert data["booking_number"] == "BK-2025-000001"
        assert data["nights"] == 3
        assert Decimal(data["net_amount"]) == Decimal("3240")
        assert data["assigned_room_ids"] == []

    def test_get_by_id_and_number(self, client: TestClient, create_booking):
        data = create_booking()

        assert client.get(f"/bookings/{data['id']}").json()["id"] == data["id"]
        assert client.get(f"/bookings/by-number/{data['booking_number']}").json()["id"] == data["id"]
        assert client.get("/bookings/9999").status_code == 404
        assert client.get("/bookings/by-number/BK-1999-000001").status_code == 404

    def test_empty_stay_rejected(self, client: TestClient, create_booking, sample_guest, sample_room_type):
        response = client.post("/bookings", json={
            "guest_id": sample_guest.id,
            "room_type_id": sample_room_type.id,
            "check_in_date": "2025-01-15",
            "check_out_date": "2025-01-15",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_unknown_room_type(self, client: TestClient, sample_guest):
        response = client.post("/bookings", json={
            "guest_id": sample_guest.id,
            "room_type_id": 9999,
            "check_in_date": "2025-01-15",
            "check_out_date": "2025-01-18",
        })
        assert response.status_code == 404
        assert response.json()["context"] == {"entity_type": "RoomType", "entity_id": 9999}

    def test_request_validation(self, client: TestClient, sample_guest, sample_room_type):
        response = client.post("/bookings", json={
            "guest_id": sample_guest.id,
            "room_type_id": sample_room_type.id,
            "check_in_date": "2025-01-15",
            "check_out_date": "2025-01-18",
            "room_count": 0,
        })
        assert response.status_code == 422


class TestLifecycle:

    def test_confirm_requires_deposit(self, client: TestClient, create_booking, sample_rooms):
        booking = create_booking()

        response = client.post(f"/bookings/{booking['id']}/confirm")
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "invalid_transition"
        assert body["context"]["reason"] == "insufficient_payment"
        assert body["context"]["current_state"] == "pending"

    def test_full_stay(self, client: TestClient, confirmed, sample_rooms, clock):
        booking = confirmed()
        assert booking["status"] == "confirmed"
        assert booking["assigned_room_ids"] == [sample_rooms["R101"].id]
        assert booking["payment_status"] == "partially_paid"

        clock.set(datetime(2025, 1, 15, 15, 0))
        response = client.post(f"/bookings/{booking['id']}/check-in", json={"notes": "晚到"})
        assert response.status_code == 200
        assert response.json()["status"] == "checked_in"

        clock.set(datetime(2025, 1, 18, 10, 0))
        response = client.post(f"/bookings/{booking['id']}/check-out", json={})
        assert response.status_code == 200
        assert response.json()["status"] == "checked_out"
        assert response.json()["actual_check_out"] == "2025-01-18T10:00:00"

    def test_check_in_from_pending(self, client: TestClient, create_booking):
        booking = create_booking()

        response = client.post(f"/bookings/{booking['id']}/check-in", json={})
        assert response.status_code == 409
        body = response.json()
        assert body["context"]["current_state"] == "pending"
        assert body["context"]["attempted"] == "check_in"

    def test_cancel(self, client: TestClient, confirmed):
        booking = confirmed()

        response = client.post(f"/bookings/{booking['id']}/cancel", json={"reason": "行程变更"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "行程变更"
        assert Decimal(data["cancellation_refund_amount"]) == Decimal("810")
        assert data["assigned_room_ids"] == []

        again = client.post(f"/bookings/{booking['id']}/cancel", json={})
        assert again.status_code == 409

    def test_no_show_and_sweep(self, client: TestClient, confirmed, clock):
        first = confirmed()
        second = confirmed("R102")

        clock.set(datetime(2025, 1, 15, 20, 0))
        assert client.post(f"/bookings/{first['id']}/no-show").status_code == 409

        clock.set(datetime(2025, 1, 16, 1, 0))
        assert client.post(f"/bookings/{first['id']}/no-show").json()["status"] == "no_show"

        swept = client.post("/bookings/sweep-no-shows").json()
        assert [b["id"] for b in swept] == [second["id"]]
        assert swept[0]["status"] == "no_show"


class TestUpdate:

    def test_shift_dates(self, client: TestClient, confirmed, sample_rooms):
        booking = confirmed()

        response = client.put(f"/bookings/{booking['id']}", json={
            "check_in_date": "2025-01-16", "check_out_date": "2025-01-19",
        })
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["check_in_date"] == "2025-01-16T14:00:00"
        assert data["check_out_date"] == "2025-01-19T12:00:00"
        assert Decimal(data["net_amount"]) == Decimal("3240")
        assert data["assigned_room_ids"] == [sample_rooms["R101"].id]

    def test_extend_with_requote(self, client: TestClient, create_booking):
        booking = create_booking()

        response = client.put(f"/bookings/{booking['id']}", json={"check_out_date": "2025-01-19"})
        assert response.status_code == 400
        assert response.json()["context"]["new_nights"] == 4

        response = client.put(f"/bookings/{booking['id']}", json={
            "check_out_date": "2025-01-19", "requote": True,
        })
        assert response.json()["nights"] == 4
        assert Decimal(response.json()["net_amount"]) == Decimal("4320")

    def test_clash_with_next_guest(self, client: TestClient, confirmed):
        booking = confirmed()
        confirmed(check_in_date="2025-01-18", check_out_date="2025-01-20")

        response = client.put(f"/bookings/{booking['id']}", json={
            "check_out_date": "2025-01-19", "requote": True,
        })
        assert response.status_code == 409
        assert response.json()["error"] == "room_unavailable"
        assert client.get(f"/bookings/{booking['id']}").json()["check_out_date"] == "2025-01-18T12:00:00"

    def test_cancelled_booking_not_editable(self, client: TestClient, create_booking):
        booking = create_booking()
        client.post(f"/bookings/{booking['id']}/cancel", json={})

        response = client.put(f"/bookings/{booking['id']}", json={"special_requests": "安静房间"})
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_booking_state"
        assert client.put("/bookings/9999", json={}).status_code == 404


class TestRoomAssignment:

    def test_assign_and_unassign(self, client: TestClient, create_booking, sample_rooms):
        booking = create_booking()
        r101, r102 = sample_rooms["R101"].id, sample_rooms["R102"].id

        response = client.post(f"/bookings/{booking['id']}/rooms", json={"room_ids": [r101]})
        assert response.json()["assigned_room_ids"] == [r101]

        response = client.post(f"/bookings/{booking['id']}/rooms", json={"room_ids": [r102]})
        assert response.json()["assigned_room_ids"] == [r102]

        response = client.delete(f"/bookings/{booking['id']}/rooms/{r102}")
        assert response.json()["assigned_room_ids"] == []

        assert client.delete(f"/bookings/{booking['id']}/rooms/{r102}").status_code == 404

    def test_capacity_exceeded(self, client: TestClient, create_booking, sample_rooms):
        booking = create_booking(room_count=2, number_of_adults=3)

        response = client.post(f"/bookings/{booking['id']}/rooms",
                               json={"room_ids": [sample_rooms["R101"].id]})
        assert response.status_code == 422
        assert response.json()["error"] == "capacity_exceeded"

    def test_room_taken(self, client: TestClient, confirmed, create_booking, sample_rooms):
        confirmed()
        other = create_booking()

        response = client.post(f"/bookings/{other['id']}/rooms",
                               json={"room_ids": [sample_rooms["R101"].id]})
        assert response.status_code == 409
        assert response.json()["error"] == "room_unavailable"


class TestQueries:

    def test_list_and_filters(self, client: TestClient, confirmed, create_booking):
        booking = confirmed()
        pending = create_booking(check_in_date="2025-02-01", check_out_date="2025-02-03")

        assert [b["id"] for b in client.get("/bookings").json()] == [pending["id"], booking["id"]]
        assert [b["id"] for b in client.get("/bookings", params={"status": "pending"}).json()] == [pending["id"]]
        assert [b["id"] for b in client.get(
            "/bookings", params={"check_in_date": "2025-01-15"}
        ).json()] == [booking["id"]]

    def test_today_arrivals(self, client: TestClient, confirmed, clock):
        booking = confirmed()
        clock.set(datetime(2025, 1, 15, 8, 0))

        assert [b["id"] for b in client.get("/bookings/today-arrivals").json()] == [booking["id"]]
        assert client.get("/bookings/today-departures").json() == []

    def test_payment_status(self, client: TestClient, confirmed):
        booking = confirmed()

        summary = client.get(f"/bookings/{booking['id']}/payment-status").json()
        assert summary["status"] == "partially_paid"
        assert Decimal(summary["net_paid"]) == Decimal("1620")
        assert Decimal(summary["balance_due"]) == Decimal("1620")
