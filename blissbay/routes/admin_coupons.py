from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from blissbay.database import get_db, transaction
from blissbay.dependencies import require_admin
from blissbay.errors import Conflict, NotFound
from blissbay.models import Coupon, CouponStatus, DiscountType, User
from blissbay.services.audit import log_activity
from blissbay.services.coupons import normalize_code, serialize_coupon

router = APIRouter(prefix="/admin/coupons", tags=["admin-coupons"])


# =====================================================
# Pydantic Schemas
# =====================================================

class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    starts_at: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: Optional[int] = Field(None, ge=1)
    applicable_products: List[str] = []
    applicable_categories: List[str] = []
    status: CouponStatus = CouponStatus.active

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == DiscountType.percentage and not (1 <= self.discount_value <= 100):
            raise ValueError("Percentage discount must be between 1 and 100")
        return self


class CouponUpdate(BaseModel):
    description: Optional[str] = None
    max_discount_amount: Optional[float] = Field(None, gt=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    starts_at: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: Optional[int] = Field(None, ge=1)
    applicable_products: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    status: Optional[CouponStatus] = None


def _get_coupon(db: Session, coupon_id: str) -> Coupon:
    coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if not coupon:
        raise NotFound("Coupon not found")
    return coupon


# =====================================================
# ADMIN: CRUD
# =====================================================
@router.get("")
def list_coupons(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return [serialize_coupon(c) for c in db.query(Coupon).order_by(Coupon.created_at.desc()).all()]


@router.get("/{coupon_id}")
def get_coupon(coupon_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return serialize_coupon(_get_coupon(db, coupon_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_coupon(payload: CouponCreate, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    data = payload.model_dump()
    data["code"] = normalize_code(data["code"])

    with transaction(db):
        if db.query(Coupon.id).filter(Coupon.code == data["code"]).first():
            raise Conflict("Coupon code already exists", reason="duplicate_coupon")
        coupon = Coupon(**data, used_count=0)
        db.add(coupon)
        db.flush()
        log_activity(db, "coupon", coupon.id, "CREATE", admin.id, {"code": coupon.code})

    return serialize_coupon(coupon)


@router.put("/{coupon_id}")
def update_coupon(
    coupon_id: str,
    payload: CouponUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    with transaction(db):
        coupon = _get_coupon(db, coupon_id)
        changes = payload.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(coupon, field, value)
        log_activity(db, "coupon", coupon.id, "UPDATE", admin.id, {"fields": sorted(changes)})
    return serialize_coupon(coupon)


@router.delete("/{coupon_id}")
def delete_coupon(coupon_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    with transaction(db):
        coupon = _get_coupon(db, coupon_id)
        log_activity(db, "coupon", coupon.id, "DELETE", admin.id, {"code": coupon.code})
        db.delete(coupon)
    return {"message": "Coupon deleted"}
