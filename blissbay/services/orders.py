"""
Checkout and the order status machine.

Checkout consumes the stock already reserved by the cart; only lines whose
reservation lapsed are reserved again here. Any invalid line aborts the
whole transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from blissbay.database import transaction
from blissbay.errors import BadRequest, CheckoutFailed, Conflict, Forbidden, NotFound
from blissbay.jobs import dispatch
from blissbay.models import (
    Address,
    Cart,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    User,
    UserRole,
)
from blissbay.services import coupons as coupon_service
from blissbay.services.audit import log_activity
from blissbay.services.cart import release_stock, reserve_stock
from blissbay.tasks import ORDER_SHIPPED

logger = logging.getLogger(__name__)

ESTIMATED_DELIVERY_DAYS = 5

ALLOWED_TRANSITIONS = {
    OrderStatus.pending: {OrderStatus.processing, OrderStatus.cancelled},
    OrderStatus.processing: {OrderStatus.shipped, OrderStatus.cancelled},
    OrderStatus.shipped: {OrderStatus.delivered},
    OrderStatus.delivered: set(),
    OrderStatus.cancelled: set(),
}

ADDRESS_FIELDS = ("full_name", "phone", "street", "city", "state", "postal_code", "country")


# =====================================================
# HELPERS
# =====================================================

def _address_snapshot(address: Address) -> dict:
    return {field: getattr(address, field) for field in ADDRESS_FIELDS}


def resolve_shipping_address(
    db: Session,
    user_id: str,
    address_id: Optional[str] = None,
    inline: Optional[dict] = None,
) -> dict:
    if inline:
        return {field: inline.get(field) for field in ADDRESS_FIELDS}

    query = db.query(Address).filter(Address.user_id == user_id)
    if address_id:
        address = query.filter(Address.id == address_id).first()
        if not address:
            raise NotFound("Address not found")
    else:
        address = query.filter(Address.is_default.is_(True)).first()
        if not address:
            raise BadRequest("A shipping address is required", reason="shipping_address_required")

    return _address_snapshot(address)


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise BadRequest(f"Invalid order status '{value}'. Allowed: {allowed}", reason="invalid_status")


def _restore_stock(db: Session, order: Order) -> None:
    for item in order.items:
        release_stock(db, item.product_id, item.quantity)


# =====================================================
# CHECKOUT
# =====================================================

def checkout(
    db: Session,
    user: User,
    shipping_address: dict,
    payment_method: PaymentMethod,
    coupon_code: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    with transaction(db):
        cart = db.query(Cart).filter(Cart.user_id == user.id).first()
        if not cart or not cart.items:
            raise BadRequest("Cart is empty", reason="cart_empty")

        problems = []
        for line in cart.items:
            product = line.product
            if product is None or product.is_deleted:
                problems.append({
                    "product_id": line.product_id,
                    "reason": "product_unavailable",
                    "message": "Product is no longer available",
                })
                continue
            if not line.reserved and not reserve_stock(db, product.id, line.quantity):
                problems.append({
                    "product_id": product.id,
                    "reason": "insufficient_stock",
                    "message": f"Only {product.stock} unit(s) of '{product.name}' available",
                    "requested": line.quantity,
                    "available": product.stock,
                })

        if problems:
            raise CheckoutFailed("Some cart items cannot be ordered", extra={"lines": problems})

        now = datetime.utcnow()
        order = Order(
            user_id=user.id,
            subtotal=0,
            total_amount=0,
            payment_method=payment_method,
            status=OrderStatus.pending,
            payment_status=OrderPaymentStatus.pending,
            shipping_address=shipping_address,
            notes=notes,
            estimated_delivery=now + timedelta(days=ESTIMATED_DELIVERY_DAYS),
            created_at=now,
        )

        subtotal = 0.0
        product_ids, category_ids = [], []
        for line in cart.items:
            product = line.product
            price = round(product.effective_price, 2)
            line_total = round(price * line.quantity, 2)
            subtotal += line_total
            product_ids.append(product.id)
            if product.category_id:
                category_ids.append(product.category_id)

            order.items.append(OrderItem(
                product_id=product.id,
                name_snapshot=product.name,
                category_snapshot=product.category.name if product.category else None,
                image_snapshot=product.image_url,
                price=price,
                quantity=line.quantity,
                subtotal=line_total,
            ))

        subtotal = round(subtotal, 2)
        order.subtotal = subtotal
        order.total_amount = subtotal
        db.add(order)
        db.flush()

        if coupon_code:
            result = coupon_service.apply_coupon(
                db,
                coupon_code,
                subtotal,
                user.id,
                product_ids=product_ids,
                category_ids=category_ids,
                order_id=order.id,
            )
            order.coupon_code = result["code"]
            order.discount_amount = result["discount"]
            order.total_amount = result["discountedAmount"]

        # reserved stock now belongs to the order
        for line in list(cart.items):
            cart.items.remove(line)
        cart.total_amount = 0
        cart.reserved_until = None

    logger.info("Order %s created for user %s (total=%.2f)", order.id, user.id, order.total_amount)
    return order


# =====================================================
# ACCESS
# =====================================================

def get_order_for(db: Session, order_id: str, user: User) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    if order.user_id != user.id and user.role != UserRole.admin:
        # do not reveal other users' order ids
        raise NotFound("Order not found")
    return order


def list_user_orders(db: Session, user_id: str, page: int = 1, per_page: int = 20):
    query = db.query(Order).filter(Order.user_id == user_id)
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return orders, total


# =====================================================
# STATUS MACHINE
# =====================================================

def update_order_status(
    db: Session,
    order_id: str,
    new_status: str,
    admin: User,
    queue,
    note: Optional[str] = None,
) -> Order:
    target = parse_status(new_status)

    with transaction(db):
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFound("Order not found")

        current = OrderStatus(order.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise Conflict(
                f"Cannot change order status from '{current.value}' to '{target.value}'",
                reason="invalid_transition",
            )

        now = datetime.utcnow()
        order.status = target
        if target == OrderStatus.shipped:
            order.shipped_at = now
        elif target == OrderStatus.delivered:
            order.delivered_at = now
        elif target == OrderStatus.cancelled:
            order.cancelled_at = now
            _restore_stock(db, order)

        log_activity(
            db,
            "order",
            order.id,
            "STATUS_UPDATE",
            admin.id,
            {"before": current.value, "after": target.value, "note": note},
        )

    if target == OrderStatus.shipped:
        dispatch(queue, ORDER_SHIPPED, {"order_id": order.id})

    logger.info("Order %s status %s -> %s by %s", order.id, current.value, target.value, admin.id)
    return order


def cancel_order(db: Session, order_id: str, user: User) -> Order:
    with transaction(db):
        order = get_order_for(db, order_id, user)
        if order.user_id != user.id:
            raise Forbidden("You can only cancel your own orders")
        if order.status != OrderStatus.pending:
            raise Conflict("Only pending orders can be cancelled", reason="invalid_transition")
        if order.payment_status == OrderPaymentStatus.paid:
            raise Conflict("Paid orders must be refunded by support", reason="order_paid")

        order.status = OrderStatus.cancelled
        order.cancelled_at = datetime.utcnow()
        _restore_stock(db, order)
        log_activity(db, "order", order.id, "CANCELLED", user.id, {"before": "pending", "after": "cancelled"})

    return order


# =====================================================
# SERIALIZATION
# =====================================================

def serialize_order(order: Order, include_items: bool = True) -> dict:
    data = {
        "id": order.id,
        "user_id": order.user_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "transaction_id": order.transaction_id,
        "subtotal": order.subtotal,
        "discount_amount": order.discount_amount,
        "total_amount": order.total_amount,
        "coupon_code": order.coupon_code,
        "shipping_address": order.shipping_address,
        "notes": order.notes,
        "estimated_delivery": order.estimated_delivery,
        "paid_at": order.paid_at,
        "shipped_at": order.shipped_at,
        "delivered_at": order.delivered_at,
        "cancelled_at": order.cancelled_at,
        "created_at": order.created_at,
    }
    if include_items:
        data["items"] = [
            {
                "product_id": item.product_id,
                "name": item.name_snapshot,
                "category": item.category_snapshot,
                "image_url": item.image_snapshot,
                "price": item.price,
                "quantity": item.quantity,
                "subtotal": item.subtotal,
            }
            for item in order.items
        ]
    return data
