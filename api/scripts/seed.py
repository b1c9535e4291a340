"""Seed the database with resort inventory and an admin account.

Run with: python -m scripts.seed
Creates rooms, add-on services, yoga batches and daily classes. The admin is
only created when RB_SEED_ADMIN_EMAIL and RB_SEED_ADMIN_PASSWORD are set.
Re-running also expires stale unpaid bookings when a hold window is configured.
"""

import asyncio
import logging
from datetime import timedelta

from sqlalchemy import select

from resortbook.core.auth import hash_password
from resortbook.core.config import settings
from resortbook.core.database import async_session_factory, engine
from resortbook.models import (
    Base,
    DailySessionType,
    DailyYogaSession,
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
from resortbook.models.base import utcnow
from resortbook.services.availability import expire_stale_pending_bookings

logger = logging.getLogger("scripts.seed")

ROOMS = [
    {"room_number": "101", "room_type": RoomType.AC, "price_per_night_paise": 350000, "capacity": 3,
     "amenities": ["wifi", "ac", "balcony"]},
    {"room_number": "102", "room_type": RoomType.AC, "price_per_night_paise": 350000, "capacity": 3,
     "amenities": ["wifi", "ac"]},
    {"room_number": "103", "room_type": RoomType.AC, "price_per_night_paise": 500000, "capacity": 4,
     "amenities": ["wifi", "ac", "sea view"]},
    {"room_number": "201", "room_type": RoomType.NON_AC, "price_per_night_paise": 200000, "capacity": 2,
     "amenities": ["wifi", "fan"]},
    {"room_number": "202", "room_type": RoomType.NON_AC, "price_per_night_paise": 200000, "capacity": 2,
     "amenities": ["wifi", "fan"]},
    {"room_number": "203", "room_type": RoomType.NON_AC, "price_per_night_paise": 250000, "capacity": 4,
     "amenities": ["wifi", "fan", "garden view"]},
]

SERVICES = [
    {"name": "Breakfast", "category": ServiceCategory.FOOD, "subcategory": "breakfast",
     "price_paise": 20000, "price_unit": PriceUnit.PER_PERSON},
    {"name": "Scuba Diving", "category": ServiceCategory.ADVENTURE, "subcategory": "water",
     "price_paise": 450000, "price_unit": PriceUnit.PER_PERSON, "min_age": 12, "available_slots": 8,
     "duration_minutes": 180},
    {"name": "Kayaking", "category": ServiceCategory.ADVENTURE, "subcategory": "water",
     "price_paise": 120000, "price_unit": PriceUnit.PER_PERSON, "min_age": 8, "duration_minutes": 90},
    {"name": "Scooter Rental", "category": ServiceCategory.ADDON, "subcategory": "rental",
     "price_paise": 50000, "price_unit": PriceUnit.PER_DAY, "min_age": 18, "available_slots": 10},
    {"name": "Ayurvedic Massage", "category": ServiceCategory.ADDON, "subcategory": "spa",
     "price_paise": 250000, "price_unit": PriceUnit.PER_SESSION, "duration_minutes": 60},
    {"name": "Airport Taxi (one way)", "category": ServiceCategory.TRANSPORT, "subcategory": "airport",
     "price_paise": 150000, "price_unit": PriceUnit.FLAT_RATE},
]

DAILY_SESSIONS = [
    {"name": "Morning Hatha", "type": DailySessionType.REGULAR, "price_paise": 60000, "duration_minutes": 90,
     "time_slots": [{"time": "07:00", "is_active": True}, {"time": "09:00", "is_active": True}]},
    {"name": "Therapy Yoga", "type": DailySessionType.THERAPY, "price_paise": 90000, "duration_minutes": 60,
     "time_slots": [{"time": "16:00", "is_active": True}]},
]


def _yoga_batches() -> list[dict]:
    start = utcnow().date() + timedelta(days=30)
    return [
        {"type": YogaSessionType.TTC_200, "batch_name": f"200hr TTC {start:%B %Y}", "start_date": start,
         "end_date": start + timedelta(days=24), "capacity": 15, "price_paise": 12000000,
         "instructor": "Lead Instructor", "schedule": {"days": ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat"],
                                                    "time": "06:30"}},
        {"type": YogaSessionType.TTC_300, "batch_name": f"300hr TTC {start:%B %Y}", "start_date": start,
         "end_date": start + timedelta(days=35), "capacity": 12, "price_paise": 18000000,
         "instructor": "Senior Instructor", "schedule": {"days": ["Mon", "Tue", "Wed", "Thu", "Fri"],
                                                      "time": "06:30"}},
    ]


async def seed():
    # Create tables (in dev; production uses migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        expired = await expire_stale_pending_bookings(db)
        if expired:
            logger.info("Expired %d unpaid pending booking(s)", expired)

        result = await db.execute(select(Room).limit(1))
        if result.scalar_one_or_none():
            logger.info("Inventory already seeded, skipping.")
        else:
            db.add_all(Room(**data) for data in ROOMS)
            db.add_all(Service(**data) for data in SERVICES)
            db.add_all(YogaSession(**data) for data in _yoga_batches())
            db.add_all(DailyYogaSession(**data) for data in DAILY_SESSIONS)
            logger.info(
                "Seeded %d rooms, %d services, 2 yoga batches, %d daily classes",
                len(ROOMS),
                len(SERVICES),
                len(DAILY_SESSIONS),
            )

        if settings.seed_admin_email and settings.seed_admin_password:
            existing = await db.execute(select(User).where(User.email == settings.seed_admin_email.lower()))
            if existing.scalar_one_or_none() is None:
                db.add(
                    User(
                        email=settings.seed_admin_email.lower(),
                        hashed_password=hash_password(settings.seed_admin_password),
                        first_name="Resort",
                        last_name="Admin",
                        role=UserRole.ADMIN,
                    )
                )
                logger.info("Created admin %s", settings.seed_admin_email)
        else:
            logger.info("RB_SEED_ADMIN_EMAIL / RB_SEED_ADMIN_PASSWORD not set, no admin created.")

        await db.commit()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(seed())
