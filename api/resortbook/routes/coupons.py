"""Coupon routes: public validation and admin management."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.database import get_db
from resortbook.core.dependencies import require_admin
from resortbook.models.coupon import CouponServiceType, DiscountType
from resortbook.models.user import User
from resortbook.schemas import (
    CouponCreate,
    CouponDetailOut,
    CouponOut,
    CouponPage,
    CouponQuoteOut,
    CouponSummary,
    CouponUpdate,
    CouponUsageOut,
    CouponValidateRequest,
)
from resortbook.services.coupons import (
    CouponFilter,
    coupon_statistics,
    coupon_usage_statistics,
    create_coupon,
    delete_coupon,
    get_coupon,
    list_coupons,
    quote_coupon,
    toggle_coupon,
    total_pages,
    update_coupon,
)

router = APIRouter(prefix="/coupons", tags=["coupons"])


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------


@router.post("/validate", response_model=CouponQuoteOut)
async def validate(body: CouponValidateRequest, db: AsyncSession = Depends(get_db)):
    """Check a code against an order value without redeeming it."""
    quote = await quote_coupon(
        db,
        body.code,
        body.service_type,
        body.order_value_paise,
        user_id=body.user_id,
        phone_number=body.phone_number,
    )
    return CouponQuoteOut(
        coupon=CouponSummary.model_validate(quote["coupon"]),
        discount_paise=quote["discount"],
        final_amount_paise=quote["final_amount"],
    )


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("", response_model=CouponOut, status_code=status.HTTP_201_CREATED)
async def create(body: CouponCreate, admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    coupon = await create_coupon(db, body.model_dump(), admin.id)
    await db.commit()
    return coupon


@router.get("", response_model=CouponPage)
async def list_all(
    is_active: bool | None = None,
    service_type: CouponServiceType | None = None,
    discount_type: DiscountType | None = None,
    valid_from: datetime | None = None,
    valid_until: datetime | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    filters = CouponFilter(
        is_active=is_active,
        service_type=service_type,
        discount_type=discount_type,
        valid_from=valid_from,
        valid_until=valid_until,
        page=page,
        limit=limit,
    )
    coupons, total = await list_coupons(db, filters)
    return CouponPage(coupons=coupons, page=page, limit=limit, total=total, total_pages=total_pages(total, limit))


@router.get("/statistics")
async def statistics(_admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return await coupon_statistics(db)


@router.get("/{coupon_id}", response_model=CouponDetailOut)
async def get(coupon_id: int, _admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    coupon = await get_coupon(db, coupon_id)
    stats = await coupon_usage_statistics(db, coupon.id)
    return CouponDetailOut(
        coupon=CouponOut.model_validate(coupon),
        total_usages=stats["total_usages"],
        recent_usages=[CouponUsageOut.model_validate(u) for u in stats["recent_usages"]],
    )


@router.patch("/{coupon_id}", response_model=CouponOut)
async def update(
    coupon_id: int,
    body: CouponUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    coupon = await update_coupon(db, coupon_id, body.model_dump(exclude_unset=True), admin.id)
    await db.commit()
    return coupon


@router.post("/{coupon_id}/toggle", response_model=CouponOut)
async def toggle(coupon_id: int, admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    coupon = await toggle_coupon(db, coupon_id, admin.id)
    await db.commit()
    return coupon


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete(coupon_id: int, _admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await delete_coupon(db, coupon_id)
    await db.commit()
