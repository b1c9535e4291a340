"""Booking routes: create (account or public), list, view, cancel, check in/out.

Handlers commit as soon as the workflow step returns and only then send
notifications, so a mail failure can never undo a booking.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.database import get_db
from resortbook.core.dependencies import can_access_booking, get_current_user, get_optional_user, require_admin
from resortbook.models.booking import Booking, BookingStatus, BookingType
from resortbook.models.user import User
from resortbook.schemas import BookingCreate, BookingOut, BookingPage, CancelRequest, PublicBookingCreate
from resortbook.services.notifications import booking_recipient, send_booking_cancellation
from resortbook.services.reservation import (
    BookingFilter,
    cancel_booking,
    check_in,
    check_out,
    create_booking,
    get_booking,
    list_bookings,
)

router = APIRouter(prefix="/bookings", tags=["bookings"])


async def _accessible_booking(
    db: AsyncSession, booking_id: int, user: User | None, guest_email: str | None = None, lock: bool = False
) -> Booking:
    booking = await get_booking(db, booking_id, lock=lock)
    if not can_access_booking(booking, user, guest_email):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_user_booking(
    body: BookingCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await create_booking(db, body, user=user)
    await db.commit()
    return booking


@router.post("/public", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_public_booking(body: PublicBookingCreate, db: AsyncSession = Depends(get_db)):
    """Book without an account. The primary guest's email owns the booking."""
    booking = await create_booking(db, body)
    await db.commit()
    return booking


@router.get("", response_model=BookingPage)
async def list_my_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    booking_type: BookingType | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = BookingFilter(user_id=user.id, status=status_filter, booking_type=booking_type, page=page, limit=limit)
    bookings, total = await list_bookings(db, filters)
    return BookingPage(bookings=bookings, page=page, limit=limit, total=total)


@router.get("/public/{booking_id}", response_model=BookingOut)
async def get_public_booking(
    booking_id: int,
    email: str = Query(..., description="Email the booking was made with"),
    db: AsyncSession = Depends(get_db),
):
    return await _accessible_booking(db, booking_id, None, email)


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking_detail(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _accessible_booking(db, booking_id, user)


@router.delete("/{booking_id}", response_model=BookingOut)
async def cancel(
    booking_id: int,
    body: CancelRequest | None = None,
    email: str | None = Query(None, description="Required for bookings made without an account"),
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _accessible_booking(db, booking_id, user, email, lock=True)
    await cancel_booking(db, booking, reason=body.reason if body else None)
    await db.commit()

    await send_booking_cancellation(booking, booking_recipient(booking))
    return booking


@router.post("/{booking_id}/check-in", response_model=BookingOut)
async def check_in_booking(
    booking_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id, lock=True)
    await check_in(db, booking)
    await db.commit()
    return booking


@router.post("/{booking_id}/check-out", response_model=BookingOut)
async def check_out_booking(
    booking_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id, lock=True)
    await check_out(db, booking)
    await db.commit()
    return booking
