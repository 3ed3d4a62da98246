from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import require_admin
from blissbay.models import (
    ActivityLog,
    Order,
    OrderPaymentStatus,
    OrderStatus,
    Product,
    ReviewStatus,
    User,
    UserRole,
)
from blissbay.services import reviews as review_service
from blissbay.services.audit import serialize_activity
from blissbay.services.cart import release_expired_reservations

router = APIRouter(prefix="/admin", tags=["admin"])

LOW_STOCK_THRESHOLD = 5
REVENUE_MONTHS = 6


def _month_starts(now: datetime, months: int):
    """First day of each of the last ``months`` months, oldest first."""
    year, month = now.year, now.month
    starts = []
    for _ in range(months):
        starts.append(datetime(year, month, 1))
        month -= 1
        if month == 0:
            month, year = 12, year - 1
    return list(reversed(starts))


# ─────────────────────────────────────────────
# DASHBOARD
# ─────────────────────────────────────────────

@router.get("/dashboard")
def admin_dashboard(db: Session = Depends(get_db), admin=Depends(require_admin)):
    now = datetime.utcnow()

    total_products = db.query(Product).filter(Product.is_deleted.is_(False)).count()
    total_orders = db.query(Order).count()
    total_users = db.query(User).filter(User.role == UserRole.user).count()
    new_users = db.query(User).filter(User.created_at >= now - timedelta(days=30)).count()

    paid = db.query(Order).filter(Order.payment_status == OrderPaymentStatus.paid)
    total_revenue = paid.with_entities(func.sum(Order.total_amount)).scalar() or 0

    months = _month_starts(now, REVENUE_MONTHS)
    monthly = OrderedDict((m.strftime("%Y-%m"), 0.0) for m in months)
    for paid_at, amount in paid.filter(Order.paid_at >= months[0]).with_entities(Order.paid_at, Order.total_amount):
        key = paid_at.strftime("%Y-%m")
        if key in monthly:
            monthly[key] += amount

    by_status = {s.value: 0 for s in OrderStatus}
    for status_, count in db.query(Order.status, func.count(Order.id)).group_by(Order.status):
        by_status[OrderStatus(status_).value] = count

    low_stock = (
        db.query(Product)
        .filter(Product.is_deleted.is_(False), Product.stock <= LOW_STOCK_THRESHOLD)
        .order_by(Product.stock.asc())
        .limit(20)
        .all()
    )

    return {
        "total_products": total_products,
        "total_orders": total_orders,
        "total_users": total_users,
        "new_users_last_30_days": new_users,
        "total_revenue": round(total_revenue, 2),
        "monthly_revenue": [{"month": k, "revenue": round(v, 2)} for k, v in monthly.items()],
        "orders_by_status": by_status,
        "low_stock": [{"id": p.id, "name": p.name, "stock": p.stock} for p in low_stock],
    }


# ─────────────────────────────────────────────
# ACTIVITY LOGS
# ─────────────────────────────────────────────

@router.get("/logs")
def get_activity_logs(
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
):
    query = db.query(ActivityLog).order_by(ActivityLog.created_at.desc())
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if action:
        query = query.filter(ActivityLog.action == action)
    total = query.count()
    logs = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "total": total,
        "page": page,
        "results": [serialize_activity(log) for log in logs],
    }


@router.get("/logs/{entity_id}")
def get_entity_logs(entity_id: str, db: Session = Depends(get_db), admin=Depends(require_admin)):
    logs = db.query(ActivityLog).filter(ActivityLog.entity_id == entity_id).order_by(ActivityLog.created_at.desc()).all()
    return [serialize_activity(log) for log in logs]


# ─────────────────────────────────────────────
# CART RESERVATIONS
# ─────────────────────────────────────────────

@router.post("/carts/release-expired")
def release_expired(db: Session = Depends(get_db), admin=Depends(require_admin)):
    return {"released_lines": release_expired_reservations(db)}


# ─────────────────────────────────────────────
# REVIEW MODERATION
# ─────────────────────────────────────────────

class ReviewStatusPayload(BaseModel):
    status: ReviewStatus


@router.patch("/reviews/{review_id}/status")
def moderate_review(
    review_id: str,
    payload: ReviewStatusPayload,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    review = review_service.set_review_status(db, review_id, payload.status, admin)
    return review_service.serialize_review(review)
