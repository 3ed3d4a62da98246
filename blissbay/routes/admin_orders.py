from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import get_queue, require_admin
from blissbay.errors import NotFound
from blissbay.models import Order, OrderPaymentStatus, User
from blissbay.services import orders as order_service

router = APIRouter(prefix="/admin/orders", tags=["admin-orders"])


class OrderStatusUpdate(BaseModel):
    # plain str: unknown values get a 400 with the allowed list
    status: str
    note: Optional[str] = None


# =====================================================
# ADMIN: LIST ORDERS
# =====================================================
@router.get("")
def list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    user_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == order_service.parse_status(status))
    if payment_status:
        try:
            query = query.filter(Order.payment_status == OrderPaymentStatus(payment_status))
        except ValueError:
            return {"total": 0, "page": page, "results": []}
    if user_id:
        query = query.filter(Order.user_id == user_id)
    if date_from:
        query = query.filter(Order.created_at >= date_from)
    if date_to:
        query = query.filter(Order.created_at <= date_to)

    total = query.count()
    orders = query.order_by(Order.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "total": total,
        "page": page,
        "results": [order_service.serialize_order(o, include_items=False) for o in orders],
    }


# =====================================================
# ADMIN: ORDER DETAIL
# =====================================================
@router.get("/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")

    data = order_service.serialize_order(order)
    data["customer"] = {"id": order.user.id, "name": order.user.name, "email": order.user.email}
    return data


# =====================================================
# ADMIN: UPDATE STATUS
# =====================================================
@router.put("/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    queue=Depends(get_queue),
):
    order = order_service.update_order_status(db, order_id, payload.status, admin, queue, note=payload.note)
    return order_service.serialize_order(order)
