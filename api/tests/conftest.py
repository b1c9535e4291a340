"""Shared test fixtures.

Tests run against a throwaway SQLite database unless RB_DATABASE_URL points
somewhere else. Tables are dropped and recreated before every test.
"""

import os

os.environ.setdefault("RB_DATABASE_URL", "sqlite+aiosqlite:///./test.db")

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from resortbook.core.auth import hash_password  # noqa: E402
from resortbook.core.database import async_session_factory, engine  # noqa: E402
from resortbook.main import app  # noqa: E402
from resortbook.models import (  # noqa: E402
    Base,
    Booking,
    BookingStatus,
    BookingType,
    DailySessionType,
    DailyYogaSession,
    PaymentStatus,
    PriceUnit,
    Room,
    RoomType,
    Service,
    ServiceCategory,
    User,
    UserRole,
    YogaSession,
    YogaSessionType,
)
from resortbook.models.base import utcnow  # noqa: E402

USER_EMAIL = "guest@example.com"
USER_PASSWORD = "guestpass123"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


@pytest.fixture(autouse=True)
async def _database():
    """Fresh schema for every test.

    The global engine is created at import time. When pytest-asyncio creates a new
    event loop for tests, any existing pooled connections are bound to the old loop
    and will fail with 'Future attached to a different loop'. Disposing before each
    test forces fresh connections in the current loop.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def inventory():
    """One room, a yoga batch, a daily class and a few services."""
    start = utcnow().date() + timedelta(days=10)
    async with async_session_factory() as session:
        room = Room(room_number="101", room_type=RoomType.AC, price_per_night_paise=200000, capacity=4)
        small_room = Room(room_number="201", room_type=RoomType.NON_AC, price_per_night_paise=150000, capacity=2)
        batch = YogaSession(
            type=YogaSessionType.TTC_200,
            batch_name="200hr Test Batch",
            start_date=start,
            end_date=start + timedelta(days=24),
            capacity=15,
            booked_seats=0,
            price_paise=1000000,
        )
        daily = DailyYogaSession(
            name="Morning Hatha",
            type=DailySessionType.REGULAR,
            price_paise=60000,
            time_slots=[{"time": "07:00", "is_active": True}, {"time": "18:00", "is_active": False}],
        )
        breakfast = Service(
            name="Breakfast",
            category=ServiceCategory.FOOD,
            subcategory="breakfast",
            price_paise=25000,
            price_unit=PriceUnit.PER_PERSON,
        )
        scuba = Service(
            name="Scuba Diving",
            category=ServiceCategory.ADVENTURE,
            price_paise=450000,
            price_unit=PriceUnit.PER_PERSON,
            min_age=12,
            available_slots=5,
        )
        scooter = Service(
            name="Scooter Rental",
            category=ServiceCategory.ADDON,
            price_paise=50000,
            price_unit=PriceUnit.PER_DAY,
        )
        session.add_all([room, small_room, batch, daily, breakfast, scuba, scooter])
        await session.commit()
        return {
            "room": room,
            "small_room": small_room,
            "batch": batch,
            "daily": daily,
            "breakfast": breakfast,
            "scuba": scuba,
            "scooter": scooter,
            "start": start,
        }


@pytest.fixture
async def users():
    async with async_session_factory() as session:
        user = User(
            email=USER_EMAIL,
            hashed_password=hash_password(USER_PASSWORD),
            first_name="Asha",
            last_name="Guest",
            phone="9800000001",
        )
        admin = User(
            email=ADMIN_EMAIL,
            hashed_password=hash_password(ADMIN_PASSWORD),
            first_name="Resort",
            last_name="Admin",
            role=UserRole.ADMIN,
        )
        session.add_all([user, admin])
        await session.commit()
        return {"user": user, "admin": admin}


async def _login(client, email: str, password: str) -> dict:
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
async def auth_headers(client, users):
    return await _login(client, USER_EMAIL, USER_PASSWORD)


@pytest.fixture
async def admin_headers(client, users):
    return await _login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def make_booking():
    """Insert a booking row directly, bypassing the workflow."""

    async def _make(session, **overrides):
        check_in = overrides.pop("check_in", utcnow().date() + timedelta(days=10))
        fields = {
            "booking_type": BookingType.ROOM,
            "guest_email": "walkin@example.com",
            "primary_guest": {"name": "Walk In", "email": "walkin@example.com", "phone": "9811111111"},
            "check_in": check_in,
            "check_out": check_in + timedelta(days=2),
            "guests": [{"name": "Walk In", "age": 35}],
            "total_guests": 1,
            "adults": 1,
            "children": 0,
            "total_amount_paise": 100000,
            "status": BookingStatus.PENDING,
            "payment_status": PaymentStatus.PENDING,
        }
        fields.update(overrides)
        booking = Booking(**fields)
        session.add(booking)
        await session.commit()
        return booking

    return _make
