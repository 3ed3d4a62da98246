import logging
from datetime import datetime
from typing import Iterable, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from blissbay.errors import (
    CouponBelowMinimum,
    CouponExpired,
    CouponInactive,
    CouponNotApplicable,
    CouponNotFound,
    CouponUsageLimitReached,
)
from blissbay.models import Coupon, CouponStatus, CouponUsage, DiscountType

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def compute_discount(coupon: Coupon, amount: float) -> float:
    if coupon.discount_type == DiscountType.percentage:
        discount = amount * coupon.discount_value / 100.0
    else:
        discount = coupon.discount_value

    if coupon.max_discount_amount is not None:
        discount = min(discount, coupon.max_discount_amount)

    return round(max(0.0, min(discount, amount)), 2)


def validate_coupon(
    db: Session,
    code: str,
    order_amount: float,
    product_ids: Iterable[str] = (),
    category_ids: Iterable[str] = (),
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Coupon, float]:
    """Run every coupon rule without touching counters; returns (coupon, discount)."""
    now = now or datetime.utcnow()

    coupon = db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()
    if not coupon:
        raise CouponNotFound("Coupon not found")

    if coupon.status == CouponStatus.inactive:
        raise CouponInactive("Coupon is not active")
    if coupon.starts_at and coupon.starts_at > now:
        raise CouponInactive("Coupon is not active yet")
    if coupon.status == CouponStatus.expired or (coupon.expiry_date and coupon.expiry_date < now):
        raise CouponExpired("Coupon has expired")

    if order_amount < (coupon.min_order_amount or 0):
        raise CouponBelowMinimum(
            f"Minimum order amount for this coupon is {coupon.min_order_amount:.2f}",
            extra={"min_order_amount": coupon.min_order_amount},
        )

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponUsageLimitReached("Coupon usage limit reached")

    if user_id and coupon.per_user_limit is not None:
        used_by_user = (
            db.query(func.count(CouponUsage.id))
            .filter(CouponUsage.coupon_id == coupon.id, CouponUsage.user_id == user_id)
            .scalar()
        )
        if used_by_user >= coupon.per_user_limit:
            raise CouponUsageLimitReached("You have already used this coupon", reason="coupon_user_limit_reached")

    restricted_products = set(coupon.applicable_products or [])
    restricted_categories = set(coupon.applicable_categories or [])
    if restricted_products or restricted_categories:
        matches = (restricted_products & set(product_ids)) or (restricted_categories & set(category_ids))
        if not matches:
            raise CouponNotApplicable("Coupon does not apply to the items in this order")

    return coupon, compute_discount(coupon, order_amount)


def redeem_coupon(
    db: Session,
    coupon: Coupon,
    user_id: str,
    discount: float,
    order_id: Optional[str] = None,
) -> CouponUsage:
    """
    Count one redemption. Must run inside the caller's transaction so the
    increment and the usage record commit together.
    """
    result = db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            Coupon.status == CouponStatus.active,
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
    )
    if result.rowcount != 1:
        raise CouponUsageLimitReached("Coupon usage limit reached")

    usage = CouponUsage(
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        discount_amount=discount,
    )
    db.add(usage)
    logger.info("Coupon %s redeemed by %s (discount=%.2f)", coupon.code, user_id, discount)
    return usage


def apply_coupon(
    db: Session,
    code: str,
    order_amount: float,
    user_id: str,
    product_ids: Iterable[str] = (),
    category_ids: Iterable[str] = (),
    order_id: Optional[str] = None,
) -> dict:
    """Validate and redeem in one step. Caller owns the transaction."""
    coupon, discount = validate_coupon(
        db, code, order_amount, product_ids, category_ids, user_id=user_id,
    )
    redeem_coupon(db, coupon, user_id, discount, order_id=order_id)
    return {
        "code": coupon.code,
        "discount": discount,
        "discountedAmount": round(order_amount - discount, 2),
    }


def serialize_coupon(coupon: Coupon) -> dict:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "description": coupon.description,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "min_order_amount": coupon.min_order_amount,
        "max_discount_amount": coupon.max_discount_amount,
        "starts_at": coupon.starts_at,
        "expiry_date": coupon.expiry_date,
        "usage_limit": coupon.usage_limit,
        "used_count": coupon.used_count,
        "per_user_limit": coupon.per_user_limit,
        "applicable_products": coupon.applicable_products or [],
        "applicable_categories": coupon.applicable_categories or [],
        "status": coupon.status,
        "created_at": coupon.created_at,
    }
