"""Public inventory routes: rooms, yoga sessions and services."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.database import get_db
from resortbook.models.base import utcnow
from resortbook.models.inventory import (
    DailyYogaSession,
    Room,
    RoomType,
    Service,
    ServiceCategory,
    YogaSession,
    YogaSessionType,
)
from resortbook.schemas import DailyYogaSessionOut, RoomAvailabilityOut, RoomOut, ServiceOut, YogaSessionOut
from resortbook.services.availability import check_date_overlap, overlap_conflict, validate_booking_dates

router = APIRouter(tags=["inventory"])


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


@router.get("/rooms", response_model=list[RoomOut])
async def list_rooms(
    room_type: RoomType | None = None,
    min_capacity: int | None = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
):
    query = select(Room).where(Room.is_available.is_(True))
    if room_type is not None:
        query = query.where(Room.room_type == room_type)
    if min_capacity is not None:
        query = query.where(Room.capacity >= min_capacity)
    result = await db.execute(query.order_by(Room.room_number))
    return result.scalars().all()


@router.get("/rooms/{room_id}", response_model=RoomOut)
async def get_room(room_id: int, db: AsyncSession = Depends(get_db)):
    room = await db.get(Room, room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


@router.get("/rooms/{room_id}/availability", response_model=RoomAvailabilityOut)
async def get_room_availability(
    room_id: int,
    check_in: date = Query(..., description="Date in YYYY-MM-DD format"),
    check_out: date = Query(..., description="Date in YYYY-MM-DD format"),
    db: AsyncSession = Depends(get_db),
):
    """Whether a room is free for [check_in, check_out), with any conflicting bookings."""
    room = await db.get(Room, room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    validate_booking_dates(check_in, check_out)
    conflicts = await check_date_overlap(db, room.id, check_in, check_out)

    return RoomAvailabilityOut(
        room_id=room.id,
        check_in=check_in,
        check_out=check_out,
        is_available=room.is_available and not conflicts,
        conflicts=overlap_conflict(conflicts).conflicts,
    )


# ---------------------------------------------------------------------------
# Yoga
# ---------------------------------------------------------------------------


@router.get("/yoga/sessions", response_model=list[YogaSessionOut])
async def list_yoga_sessions(
    type: YogaSessionType | None = None,
    include_past: bool = False,
    db: AsyncSession = Depends(get_db),
):
    query = select(YogaSession).where(YogaSession.is_active.is_(True))
    if type is not None:
        query = query.where(YogaSession.type == type)
    if not include_past:
        query = query.where(YogaSession.start_date >= utcnow().date())
    result = await db.execute(query.order_by(YogaSession.start_date))
    return result.scalars().all()


@router.get("/yoga/sessions/{session_id}", response_model=YogaSessionOut)
async def get_yoga_session(session_id: int, db: AsyncSession = Depends(get_db)):
    session = await db.get(YogaSession, session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Yoga session not found")
    return session


@router.get("/yoga/daily-sessions", response_model=list[DailyYogaSessionOut])
async def list_daily_sessions(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(DailyYogaSession).where(DailyYogaSession.is_active.is_(True)).order_by(DailyYogaSession.name)
    )
    return result.scalars().all()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@router.get("/services", response_model=list[ServiceOut])
async def list_services(category: ServiceCategory | None = None, db: AsyncSession = Depends(get_db)):
    query = select(Service).where(Service.is_active.is_(True))
    if category is not None:
        query = query.where(Service.category == category)
    result = await db.execute(query.order_by(Service.category, Service.name))
    return result.scalars().all()
