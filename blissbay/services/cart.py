"""
Cart operations with reserve-at-add stock semantics.

Quantities in a cart are held out of ``Product.stock`` while the line is
``reserved``. Every stock change goes through a conditional UPDATE so two
concurrent requests can never drive stock below zero.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from blissbay.config import Settings
from blissbay.database import transaction
from blissbay.errors import BadRequest, CartLimitExceeded, InsufficientStock, NotFound
from blissbay.models import Cart, CartItem, Product

logger = logging.getLogger(__name__)


# =====================================================
# STOCK PRIMITIVES
# =====================================================

def reserve_stock(db: Session, product_id: str, quantity: int) -> bool:
    result = db.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.is_deleted.is_(False),
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity)
    )
    return result.rowcount == 1


def release_stock(db: Session, product_id: str, quantity: int) -> None:
    db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
    )


def _insufficient(product: Product, requested: int) -> InsufficientStock:
    return InsufficientStock(
        f"Only {product.stock} unit(s) of '{product.name}' available",
        extra={"product_id": product.id, "requested": requested, "available": product.stock},
    )


# =====================================================
# HELPERS
# =====================================================

def recompute_total(cart: Cart) -> float:
    cart.total_amount = round(sum(item.quantity * item.price for item in cart.items), 2)
    return cart.total_amount


def _touch_reservation(cart: Cart, settings: Settings) -> None:
    if any(item.reserved for item in cart.items):
        cart.reserved_until = datetime.utcnow() + timedelta(minutes=settings.CART_RESERVATION_MINUTES)
    else:
        cart.reserved_until = None


def get_cart(db: Session, user_id: str) -> Optional[Cart]:
    return db.query(Cart).filter(Cart.user_id == user_id).first()


def get_or_create_cart(db: Session, user_id: str) -> Cart:
    cart = get_cart(db, user_id)
    if not cart:
        cart = Cart(user_id=user_id, total_amount=0)
        db.add(cart)
        db.flush()
    return cart


def _find_line(cart: Cart, product_id: str) -> Optional[CartItem]:
    for item in cart.items:
        if item.product_id == product_id:
            return item
    return None


def _active_product(db: Session, product_id: str) -> Product:
    product = db.query(Product).filter(
        Product.id == product_id,
        Product.is_deleted.is_(False),
    ).first()
    if not product:
        raise NotFound("Product not found")
    return product


# =====================================================
# OPERATIONS
# =====================================================

def add_to_cart(db: Session, user_id: str, product_id: str, quantity: int, settings: Settings) -> Cart:
    if quantity < 1:
        raise BadRequest("Quantity must be at least 1", reason="invalid_quantity")

    with transaction(db):
        product = _active_product(db, product_id)
        cart = get_or_create_cart(db, user_id)
        line = _find_line(cart, product_id)

        if line is None and len(cart.items) >= settings.MAX_CART_ITEMS:
            raise CartLimitExceeded(f"Cart cannot hold more than {settings.MAX_CART_ITEMS} products")

        new_quantity = quantity + (line.quantity if line else 0)
        if new_quantity > settings.MAX_PRODUCT_QUANTITY:
            raise CartLimitExceeded(
                f"Maximum quantity per product is {settings.MAX_PRODUCT_QUANTITY}"
            )

        # an expired line holds nothing, so it has to reserve its whole quantity again
        to_reserve = quantity if (line and line.reserved) else new_quantity
        if not reserve_stock(db, product.id, to_reserve):
            raise _insufficient(product, to_reserve)

        price = round(product.effective_price, 2)
        if line is None:
            cart.items.append(CartItem(product_id=product.id, quantity=new_quantity, price=price, reserved=True))
        else:
            line.quantity = new_quantity
            line.price = price
            line.reserved = True

        recompute_total(cart)
        _touch_reservation(cart, settings)

    logger.info("Cart add | user=%s product=%s qty=%s", user_id, product_id, quantity)
    return cart


def update_cart_line(db: Session, user_id: str, product_id: str, quantity: int, settings: Settings) -> Cart:
    if quantity < 1:
        raise BadRequest("Quantity must be at least 1", reason="invalid_quantity")
    if quantity > settings.MAX_PRODUCT_QUANTITY:
        raise CartLimitExceeded(f"Maximum quantity per product is {settings.MAX_PRODUCT_QUANTITY}")

    with transaction(db):
        cart = get_cart(db, user_id)
        line = _find_line(cart, product_id) if cart else None
        if line is None:
            raise NotFound("Item not in cart")

        product = line.product
        if line.reserved:
            delta = quantity - line.quantity
            if delta > 0 and not reserve_stock(db, product_id, delta):
                raise _insufficient(product, delta)
            if delta < 0:
                release_stock(db, product_id, -delta)
        elif not reserve_stock(db, product_id, quantity):
            raise _insufficient(product, quantity)

        line.quantity = quantity
        line.reserved = True
        recompute_total(cart)
        _touch_reservation(cart, settings)

    return cart


def remove_cart_line(db: Session, user_id: str, product_id: str, settings: Settings) -> Cart:
    with transaction(db):
        cart = get_cart(db, user_id)
        line = _find_line(cart, product_id) if cart else None
        if line is None:
            raise NotFound("Item not in cart")

        if line.reserved:
            release_stock(db, product_id, line.quantity)
        cart.items.remove(line)
        recompute_total(cart)
        _touch_reservation(cart, settings)

    return cart


def clear_cart(db: Session, user_id: str) -> Optional[Cart]:
    with transaction(db):
        cart = get_cart(db, user_id)
        if cart is None:
            return None

        for line in list(cart.items):
            if line.reserved:
                release_stock(db, line.product_id, line.quantity)
            cart.items.remove(line)

        cart.total_amount = 0
        cart.reserved_until = None

    return cart


# =====================================================
# RESERVATION EXPIRY
# =====================================================

def _release_cart(db: Session, cart: Cart) -> int:
    released = 0
    for line in cart.items:
        if line.reserved:
            release_stock(db, line.product_id, line.quantity)
            line.reserved = False
            released += 1
    cart.reserved_until = None
    return released


def release_if_expired(db: Session, cart: Cart, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    if cart.reserved_until is None or cart.reserved_until > now:
        return 0
    with transaction(db):
        released = _release_cart(db, cart)
    if released:
        logger.info("Released %s expired cart line(s) for cart %s", released, cart.id)
    return released


def release_expired_reservations(db: Session, now: Optional[datetime] = None) -> int:
    """Return reserved stock of every cart whose reservation window has lapsed."""
    now = now or datetime.utcnow()
    released = 0
    with transaction(db):
        carts = db.query(Cart).filter(
            Cart.reserved_until.isnot(None),
            Cart.reserved_until <= now,
        ).all()
        for cart in carts:
            released += _release_cart(db, cart)

    if released:
        logger.info("Reservation sweep released %s cart line(s) across %s cart(s)", released, len(carts))
    return released


# =====================================================
# SERIALIZATION
# =====================================================

def serialize_cart(cart: Optional[Cart]) -> dict:
    if cart is None:
        return {
            "cart_id": None,
            "items": [],
            "total_items": 0,
            "total_amount": 0,
            "reserved_until": None,
        }

    items = []
    for item in cart.items:
        product = item.product
        items.append({
            "id": item.id,
            "product_id": item.product_id,
            "name": product.name if product else None,
            "image_url": product.image_url if product else None,
            "price": item.price,
            "quantity": item.quantity,
            "subtotal": round(item.price * item.quantity, 2),
            "reserved": item.reserved,
            "available": bool(product and not product.is_deleted),
        })

    return {
        "cart_id": cart.id,
        "items": items,
        "total_items": len(items),
        "total_amount": cart.total_amount,
        "reserved_until": cart.reserved_until,
    }
