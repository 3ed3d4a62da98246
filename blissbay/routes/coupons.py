from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.database import get_db, transaction
from blissbay.dependencies import get_current_user
from blissbay.models import User
from blissbay.services import coupons as coupon_service

router = APIRouter(prefix="/coupons", tags=["coupons"])


class CouponRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    orderAmount: float = Field(..., ge=0)
    products: List[str] = []
    categories: List[str] = []


# =====================================================
# VALIDATE (no redemption)
# =====================================================
@router.post("/validate")
def validate_coupon(
    payload: CouponRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    coupon, discount = coupon_service.validate_coupon(
        db,
        payload.code,
        payload.orderAmount,
        payload.products,
        payload.categories,
        user_id=user.id,
    )
    return {
        "valid": True,
        "code": coupon.code,
        "discount": discount,
        "discountedAmount": round(payload.orderAmount - discount, 2),
    }


# =====================================================
# APPLY (counts one redemption)
# =====================================================
@router.post("/apply")
def apply_coupon(
    payload: CouponRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    with transaction(db):
        result = coupon_service.apply_coupon(
            db,
            payload.code,
            payload.orderAmount,
            user.id,
            product_ids=payload.products,
            category_ids=payload.categories,
        )
    return result
