import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from blissbay.database import transaction
from blissbay.errors import BadRequest, NotFound
from blissbay.models import PRODUCT_FLAGS, CartItem, Category, OrderItem, Product, User
from blissbay.services.audit import log_activity
from blissbay.services.cart import recompute_total

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "description",
    "brand",
    "price",
    "discounted_price",
    "category_id",
    "image_url",
) + PRODUCT_FLAGS


def descendant_category_ids(db: Session, category_id: str) -> List[str]:
    ids = [category_id]
    for cid, ancestors in db.query(Category.id, Category.ancestors).all():
        if any(a.get("id") == category_id for a in ancestors or []):
            ids.append(cid)
    return ids


def _check_prices(price: Optional[float], discounted: Optional[float]) -> None:
    if price is not None and discounted is not None and discounted > price:
        raise BadRequest("Discounted price cannot exceed price", reason="invalid_discount")


def _check_category(db: Session, category_id: Optional[str]) -> None:
    if category_id and not db.query(Category.id).filter(Category.id == category_id).first():
        raise NotFound("Category not found")


def get_product(db: Session, product_id: str, include_deleted: bool = False) -> Product:
    query = db.query(Product).filter(Product.id == product_id)
    if not include_deleted:
        query = query.filter(Product.is_deleted.is_(False))
    product = query.first()
    if not product:
        raise NotFound("Product not found")
    return product


# =====================================================
# ADMIN WRITES
# =====================================================

def create_product(db: Session, admin: User, data: dict) -> Product:
    with transaction(db):
        _check_prices(data.get("price"), data.get("discounted_price"))
        _check_category(db, data.get("category_id"))

        product = Product(**{k: v for k, v in data.items() if k in EDITABLE_FIELDS or k == "stock"})
        db.add(product)
        db.flush()
        log_activity(db, "product", product.id, "CREATE", admin.id, {"after": serialize_product(product)})
    return product


def update_product(db: Session, admin: User, product_id: str, changes: dict) -> Product:
    with transaction(db):
        product = get_product(db, product_id)
        before = serialize_product(product)

        _check_prices(changes.get("price", product.price), changes.get("discounted_price", product.discounted_price))
        if "category_id" in changes:
            _check_category(db, changes["category_id"])

        for field, value in changes.items():
            if field in EDITABLE_FIELDS:
                setattr(product, field, value)

        log_activity(db, "product", product.id, "UPDATE", admin.id,
                     {"before": before, "after": serialize_product(product)})
    return product


def adjust_stock(db: Session, admin: User, product_id: str, delta: int, reason: Optional[str] = None) -> Product:
    """Apply an inventory correction without ever going below zero."""
    with transaction(db):
        product = get_product(db, product_id)
        before = product.stock
        result = db.execute(
            update(Product)
            .where(Product.id == product.id, Product.stock + delta >= 0)
            .values(stock=Product.stock + delta)
        )
        if result.rowcount != 1:
            raise BadRequest(
                f"Adjustment would make stock negative (current {before})",
                reason="negative_stock",
            )
        db.refresh(product)
        if before == 0 and product.stock > 0:
            product.is_back_in_stock = True
        log_activity(db, "product", product.id, "STOCK_ADJUST", admin.id,
                     {"before": before, "after": product.stock, "delta": delta, "reason": reason})
    return product


def delete_product(db: Session, admin: User, product_id: str) -> str:
    """Soft-delete products that appear in orders, hard-delete the rest. Returns the mode used."""
    with transaction(db):
        product = get_product(db, product_id)
        ordered = db.query(OrderItem.id).filter(OrderItem.product_id == product.id).first()

        # reserved cart quantities are dropped together with the product
        for line in db.query(CartItem).filter(CartItem.product_id == product.id).all():
            cart = line.cart
            cart.items.remove(line)
            recompute_total(cart)

        if ordered:
            product.is_deleted = True
            product.deleted_at = datetime.utcnow()
            mode = "soft"
        else:
            db.delete(product)
            mode = "hard"

        log_activity(db, "product", product_id, "DELETE", admin.id, {"mode": mode, "name": product.name})

    logger.info("Product %s deleted (%s) by %s", product_id, mode, admin.id)
    return mode


# =====================================================
# SERIALIZATION
# =====================================================

def serialize_product(product: Product) -> dict:
    data = {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "brand": product.brand,
        "price": product.price,
        "discounted_price": product.discounted_price,
        "stock": product.stock,
        "in_stock": product.stock > 0,
        "category_id": product.category_id,
        "category": product.category.name if product.category else None,
        "image_url": product.image_url,
        "rating": product.rating,
        "rating_count": product.rating_count,
        "is_deleted": product.is_deleted,
        "created_at": product.created_at,
    }
    data.update({flag: getattr(product, flag) for flag in PRODUCT_FLAGS})
    return data
