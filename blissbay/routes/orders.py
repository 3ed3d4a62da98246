from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import get_current_user
from blissbay.errors import Forbidden
from blissbay.models import User, UserRole
from blissbay.routes.cart import CheckoutPayload
from blissbay.services import orders as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


def _page(orders, total, page, per_page) -> dict:
    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
        "results": [order_service.serialize_order(o, include_items=False) for o in orders],
    }


# =====================================================
# CREATE ORDER (checkout the current cart)
# =====================================================
@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: CheckoutPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    address = order_service.resolve_shipping_address(
        db,
        user.id,
        address_id=payload.addressId,
        inline=payload.shippingAddress.model_dump() if payload.shippingAddress else None,
    )
    order = order_service.checkout(
        db,
        user,
        address,
        payload.paymentMethod,
        coupon_code=payload.couponCode,
        notes=payload.notes,
    )
    return order_service.serialize_order(order)


# =====================================================
# MY ORDERS
# =====================================================
@router.get("")
def my_orders(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    orders, total = order_service.list_user_orders(db, user.id, page, per_page)
    return _page(orders, total, page, per_page)


# =====================================================
# ORDERS BY USER (self or admin)
# =====================================================
@router.get("/user/{user_id}")
def orders_by_user(
    user_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if user_id != user.id and user.role != UserRole.admin:
        raise Forbidden("You can only view your own orders")

    orders, total = order_service.list_user_orders(db, user_id, page, per_page)
    return _page(orders, total, page, per_page)


# =====================================================
# ORDER DETAIL
# =====================================================
@router.get("/{order_id}")
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = order_service.get_order_for(db, order_id, user)
    return order_service.serialize_order(order)


# =====================================================
# USER: CANCEL ORDER
# =====================================================
@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = order_service.cancel_order(db, order_id, user)
    return order_service.serialize_order(order)
