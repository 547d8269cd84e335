"""
Pytest 配置和共享 fixtures
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import datetime, date, timedelta
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from booking_app.database import Base, get_db
from booking_app.models import ontology  # noqa
from booking_app.models.ontology import RoomType, Room, Guest, RoomStatus
from booking_app.models.schemas import BookingCreate
from booking_app.services.booking_service import BookingService
from booking_app.services.assignment_service import AssignmentService
from booking_app.services.payment_service import PaymentService
from booking_app.services.unit_of_work import get_clock
from booking_core.domain.policies import ConfirmationPolicy, CancellationPolicy
from booking_core.domain.pricing import PricingConfig
from booking_app.main import app


class FakeClock:
    """可调的固定时钟"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def clock():
    """固定时钟：2025-01-10 09:00"""
    return FakeClock(datetime(2025, 1, 10, 9, 0))


@pytest.fixture
def events():
    """收集发布的事件"""
    return []


@pytest.fixture
def pricing_config():
    """城市税 5%，增值税 7%"""
    return PricingConfig(city_tax_rate=Decimal("0.05"), vat_rate=Decimal("0.07"))


@pytest.fixture
def cancellation_policy():
    return CancellationPolicy.from_pairs([[7, "1"], [1, "0.5"], [0, "0"]])


@pytest.fixture
def booking_service(db_session, events, clock, pricing_config, cancellation_policy):
    """确认不要求定金的预订服务"""
    return BookingService(
        db_session,
        event_publisher=events.append,
        clock=clock,
        pricing_config=pricing_config,
        confirmation_policy=ConfirmationPolicy(),
        cancellation_policy=cancellation_policy,
    )


@pytest.fixture
def assignment_service(db_session, events, clock):
    return AssignmentService(db_session, event_publisher=events.append, clock=clock)


@pytest.fixture
def payment_service(db_session, events, clock):
    return PaymentService(db_session, event_publisher=events.append, clock=clock)


@pytest.fixture
def client(db_session, clock):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ============== 数据 Fixtures ==============

@pytest.fixture
def sample_room_type(db_session):
    """豪华间：1000/晚，每间最多 2 人"""
    room_type = RoomType(
        code="DLX",
        name={"en": "Deluxe", "th": "ดีลักซ์"},
        base_price=Decimal("1000.00"),
        max_occupancy=2,
        is_active=True
    )
    db_session.add(room_type)
    db_session.commit()
    db_session.refresh(room_type)
    return room_type


def _make_room(db_session, room_type, room_number, floor=1, **kwargs):
    room = Room(
        room_number=room_number,
        room_type_id=room_type.id,
        floor=floor,
        max_occupancy=kwargs.pop("max_occupancy", 2),
        base_price=kwargs.pop("base_price", room_type.base_price),
        name=kwargs.pop("name", {"en": f"Room {room_number}"}),
        status=kwargs.pop("status", RoomStatus.AVAILABLE),
        **kwargs
    )
    db_session.add(room)
    return room


@pytest.fixture
def make_room(db_session):
    """房间工厂（调用方负责 commit）"""
    def _make(room_type, room_number, floor=1, **kwargs):
        return _make_room(db_session, room_type, room_number, floor, **kwargs)
    return _make


@pytest.fixture
def sample_rooms(db_session, sample_room_type):
    """R101、R102（普通）与 R103（无障碍）"""
    rooms = [
        _make_room(db_session, sample_room_type, "R101"),
        _make_room(db_session, sample_room_type, "R102"),
        _make_room(db_session, sample_room_type, "R103", accessible=True),
    ]
    db_session.commit()
    for room in rooms:
        db_session.refresh(room)
    return {room.room_number: room for room in rooms}


@pytest.fixture
def sample_guest(db_session):
    guest = Guest(full_name="Somchai Jaidee", email="somchai@example.com", phone="0812345678")
    db_session.add(guest)
    db_session.commit()
    db_session.refresh(guest)
    return guest


@pytest.fixture
def booking_data(sample_guest, sample_room_type, sample_rooms):
    """构造 BookingCreate：默认 2025-01-15 入住，2025-01-18 离店"""
    def _make(**overrides):
        data = dict(
            guest_id=sample_guest.id,
            room_type_id=sample_room_type.id,
            check_in_date=date(2025, 1, 15),
            check_out_date=date(2025, 1, 18),
            room_count=1,
            number_of_adults=2,
            number_of_children=0,
        )
        data.update(overrides)
        return BookingCreate(**data)
    return _make


@pytest.fixture
def confirmed_booking(booking_service, assignment_service, booking_data, sample_rooms):
    """已确认并分配 R101 的预订工厂"""
    def _make(room_number="R101", **overrides):
        booking = booking_service.create(booking_data(**overrides))
        assignment_service.assign(booking.id, [sample_rooms[room_number].id])
        return booking_service.confirm(booking.id)
    return _make
